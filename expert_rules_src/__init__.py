"""Expert Rule Evaluation Engine.

Validates interpreted antimicrobial susceptibility results against curated
expert rules (intrinsic resistance, acquired resistance, phenotype
confirmation, quality control, reporting guidance) and returns a verdict
with a possibly overridden final result.
"""

from .models import (
    Confidence,
    EvaluationContext,
    ExpertRule,
    RuleCategory,
    RuleOutcome,
    RuleScope,
    SusceptibilityResult,
    TestMethod,
    ValidationVerdict,
)
from .expressions import ParseError, parse_action, parse_condition
from .evaluator import EvalError, TypeMismatch, UnknownIdentifier, confidence_for, evaluate, render
from .repository import InMemoryRuleRepository, RepositoryError, RuleRepository
from .store import SQLiteRuleRepository
from .service import ExpertRuleService, RuleNotFoundError

__all__ = [
    "Confidence",
    "EvaluationContext",
    "ExpertRule",
    "RuleCategory",
    "RuleOutcome",
    "RuleScope",
    "SusceptibilityResult",
    "TestMethod",
    "ValidationVerdict",
    "ParseError",
    "parse_action",
    "parse_condition",
    "EvalError",
    "TypeMismatch",
    "UnknownIdentifier",
    "confidence_for",
    "evaluate",
    "render",
    "InMemoryRuleRepository",
    "RepositoryError",
    "RuleRepository",
    "SQLiteRuleRepository",
    "ExpertRuleService",
    "RuleNotFoundError",
]
