"""Shared fixtures for expert rule tests."""

import pytest
from datetime import datetime

from expert_rules_src.models import (
    EvaluationContext,
    ExpertRule,
    RuleCategory,
    SusceptibilityResult,
    TestMethod,
)


@pytest.fixture
def make_rule():
    """Factory for ExpertRule with sensible defaults."""
    def _make(
        rule_id="rule-1",
        name="Test rule",
        category=RuleCategory.INTRINSIC_RESISTANCE,
        condition='interpretedResult == "Susceptible"',
        action="Report as resistant",
        priority=5,
        year=2024,
        organism_id=None,
        drug_id=None,
        is_active=True,
        **kwargs,
    ):
        now = datetime(2024, 1, 15, 9, 30)
        return ExpertRule(
            id=rule_id,
            name=name,
            description=kwargs.pop("description", ""),
            category=category,
            condition=condition,
            action=action,
            priority=priority,
            year=year,
            organism_id=organism_id,
            drug_id=drug_id,
            is_active=is_active,
            created_at=kwargs.pop("created_at", now),
            updated_at=kwargs.pop("updated_at", now),
            **kwargs,
        )
    return _make


@pytest.fixture
def make_context():
    """Factory for EvaluationContext; defaults to a susceptible E. coli / Ampicillin disk result."""
    def _make(
        organism_id="E. coli",
        drug_id="Ampicillin",
        test_value=12,
        test_method=TestMethod.DISK_DIFFUSION,
        interpreted_result=SusceptibilityResult.SUSCEPTIBLE,
        year=2024,
        additional_data=None,
    ):
        return EvaluationContext(
            organism_id=organism_id,
            drug_id=drug_id,
            test_value=test_value,
            test_method=test_method,
            interpreted_result=interpreted_result,
            year=year,
            additional_data=additional_data or {},
        )
    return _make
