"""Data models for the expert rule evaluation engine.

This module defines:
- ExpertRule: a stored rule (condition + action template + scope)
- EvaluationContext: one interpreted susceptibility test outcome
- RuleOutcome: what evaluating a single rule against a context produced
- ValidationVerdict: the aggregated answer for a context

Rules are authored against the enumeration *values* below, e.g.
``interpretedResult == "Susceptible" && testMethod == "disk_diffusion"``.
"""

import random
import string
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


class RuleCategory(str, Enum):
    """Kind of expert rule. Drives confidence and verdict classification."""
    INTRINSIC_RESISTANCE = "intrinsic_resistance"
    ACQUIRED_RESISTANCE = "acquired_resistance"
    PHENOTYPE_CONFIRMATION = "phenotype_confirmation"
    QUALITY_CONTROL = "quality_control"
    REPORTING_GUIDANCE = "reporting_guidance"


class TestMethod(str, Enum):
    """Susceptibility testing method."""
    __test__ = False  # not a pytest test class

    DISK_DIFFUSION = "disk_diffusion"
    BROTH_MICRODILUTION = "broth_microdilution"
    AGAR_DILUTION = "agar_dilution"
    E_TEST = "e_test"
    AUTOMATED = "automated"
    MOLECULAR = "molecular"

    @classmethod
    def _missing_(cls, value):
        # Breakpoint tables spell gradient diffusion "etest"
        if isinstance(value, str):
            normalized = value.strip().lower().replace("-", "_")
            if normalized == "etest":
                return cls.E_TEST
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class SusceptibilityResult(str, Enum):
    """Interpreted S/I/R category from breakpoint lookup."""
    SUSCEPTIBLE = "Susceptible"
    INTERMEDIATE = "Intermediate"
    RESISTANT = "Resistant"
    NOT_TESTED = "NotTested"
    NOT_INTERPRETABLE = "NotInterpretable"


class Confidence(str, Enum):
    """How much weight a triggered rule carries."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RuleScope(Enum):
    """Scope derived from a rule's organism/drug foreign keys."""
    PAIR = "pair"
    ORGANISM = "organism"
    DRUG = "drug"
    GLOBAL = "global"

    @property
    def specificity_rank(self) -> int:
        """Higher is more specific: pair > organism > drug > global."""
        return _SPECIFICITY_RANK[self]


_SPECIFICITY_RANK = {
    RuleScope.PAIR: 3,
    RuleScope.ORGANISM: 2,
    RuleScope.DRUG: 1,
    RuleScope.GLOBAL: 0,
}


def _parse_category(value: "RuleCategory | str") -> "RuleCategory | str":
    """Coerce to RuleCategory, keeping unknown values as raw strings."""
    if isinstance(value, RuleCategory):
        return value
    try:
        return RuleCategory(value)
    except ValueError:
        return value


def _parse_datetime(val):
    if val is None:
        return None
    if isinstance(val, datetime):
        return val
    return datetime.fromisoformat(val)


def generate_rule_id() -> str:
    """Generate an id of the form ``rule-<epoch millis>-<9 base36 chars>``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"rule-{int(time.time() * 1000)}-{suffix}"


@dataclass(frozen=True)
class ExpertRule:
    """A stored expert rule.

    Immutable; updates go through ``dataclasses.replace`` in the service
    so repository copies never change underneath an evaluation.
    """
    id: str
    name: str
    description: str
    category: RuleCategory | str
    condition: str
    action: str
    priority: int
    year: int
    organism_id: str | None = None
    drug_id: str | None = None
    source_reference: str | None = None
    notes: str | None = None
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def create(
        cls,
        name: str,
        description: str,
        category: RuleCategory | str,
        condition: str,
        action: str,
        priority: int,
        year: int,
        organism_id: str | None = None,
        drug_id: str | None = None,
        source_reference: str | None = None,
        notes: str | None = None,
    ) -> "ExpertRule":
        """Build a new active rule with a fresh id and timestamps."""
        now = datetime.now()
        return cls(
            id=generate_rule_id(),
            name=name,
            description=description,
            category=_parse_category(category),
            condition=condition,
            action=action,
            priority=priority,
            year=year,
            organism_id=organism_id or None,
            drug_id=drug_id or None,
            source_reference=source_reference,
            notes=notes,
            is_active=True,
            created_at=now,
            updated_at=now,
        )

    @property
    def scope(self) -> RuleScope:
        if self.organism_id and self.drug_id:
            return RuleScope.PAIR
        if self.organism_id:
            return RuleScope.ORGANISM
        if self.drug_id:
            return RuleScope.DRUG
        return RuleScope.GLOBAL

    @property
    def category_value(self) -> str:
        if isinstance(self.category, RuleCategory):
            return self.category.value
        return str(self.category)

    def applies_to(self, organism_id: str, drug_id: str) -> bool:
        """Check the rule's scope covers this organism/drug pair."""
        if self.organism_id and self.organism_id != organism_id:
            return False
        if self.drug_id and self.drug_id != drug_id:
            return False
        return True

    def with_updates(self, **changes: Any) -> "ExpertRule":
        """Return a copy with the given fields replaced and updated_at refreshed."""
        changes.setdefault("updated_at", datetime.now())
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category_value,
            "condition": self.condition,
            "action": self.action,
            "priority": self.priority,
            "year": self.year,
            "organism_id": self.organism_id,
            "drug_id": self.drug_id,
            "scope": self.scope.value,
            "source_reference": self.source_reference,
            "notes": self.notes,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExpertRule":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            category=_parse_category(data.get("category") or data.get("rule_type", "")),
            condition=data.get("condition", ""),
            action=data.get("action", ""),
            priority=int(data.get("priority", 0)),
            year=int(data["year"]),
            organism_id=data.get("organism_id"),
            drug_id=data.get("drug_id"),
            source_reference=data.get("source_reference"),
            notes=data.get("notes"),
            is_active=bool(data.get("is_active", True)),
            created_at=_parse_datetime(data.get("created_at")) or datetime.now(),
            updated_at=_parse_datetime(data.get("updated_at")) or datetime.now(),
        )

    @classmethod
    def from_row(cls, row) -> "ExpertRule":
        """Create from an ``expert_rules`` database row (sqlite3.Row)."""
        return cls(
            id=row["id"],
            name=row["name"],
            description=row["description"] or "",
            category=_parse_category(row["rule_type"]),
            condition=row["condition_expr"],
            action=row["action_expr"],
            priority=int(row["priority"]),
            year=int(row["year"]),
            organism_id=row["microorganism_id"],
            drug_id=row["drug_id"],
            source_reference=row["source_reference"],
            notes=row["notes"],
            is_active=bool(row["is_active"]),
            created_at=_parse_datetime(row["created_at"]),
            updated_at=_parse_datetime(row["updated_at"]),
        )


# Keys accepted by EvaluationContext.from_dict; camelCase matches the
# lab-result payloads the validation workflow already produces.
_CONTEXT_KEYS = {
    "organism_id": ("organism_id", "organismId", "microorganismId"),
    "drug_id": ("drug_id", "drugId"),
    "test_value": ("test_value", "testValue"),
    "test_method": ("test_method", "testMethod"),
    "interpreted_result": ("interpreted_result", "interpretedResult"),
    "year": ("year",),
    "additional_data": ("additional_data", "additionalData"),
}


def _pick(data: dict, keys: tuple[str, ...], default=None):
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass(frozen=True)
class EvaluationContext:
    """A single interpreted susceptibility test outcome.

    ``additional_data`` is the open map of extra named scalars rule
    authors may reference. Fixed fields always win over open-map keys
    with the same name.
    """
    organism_id: str
    drug_id: str
    test_value: float
    test_method: TestMethod
    interpreted_result: SusceptibilityResult
    year: int | None = None
    additional_data: dict[str, str | int | float | bool] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "test_method", TestMethod(self.test_method))
        object.__setattr__(
            self, "interpreted_result", SusceptibilityResult(self.interpreted_result)
        )
        extra = dict(self.additional_data or {})
        for key, value in extra.items():
            if not isinstance(value, (str, int, float, bool)):
                raise ValueError(
                    f"additional_data[{key!r}] must be a string, number or boolean, "
                    f"got {type(value).__name__}"
                )
        object.__setattr__(self, "additional_data", extra)

    def with_year(self, year: int) -> "EvaluationContext":
        return replace(self, year=year)

    def to_dict(self) -> dict[str, Any]:
        return {
            "organism_id": self.organism_id,
            "drug_id": self.drug_id,
            "test_value": self.test_value,
            "test_method": self.test_method.value,
            "interpreted_result": self.interpreted_result.value,
            "year": self.year,
            "additional_data": dict(self.additional_data),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EvaluationContext":
        """Build from a snake_case or camelCase payload."""
        year = _pick(data, _CONTEXT_KEYS["year"])
        return cls(
            organism_id=_pick(data, _CONTEXT_KEYS["organism_id"], ""),
            drug_id=_pick(data, _CONTEXT_KEYS["drug_id"], ""),
            test_value=float(_pick(data, _CONTEXT_KEYS["test_value"], 0)),
            test_method=_pick(data, _CONTEXT_KEYS["test_method"]),
            interpreted_result=_pick(data, _CONTEXT_KEYS["interpreted_result"]),
            year=int(year) if year is not None else None,
            additional_data=_pick(data, _CONTEXT_KEYS["additional_data"], {}),
        )


@dataclass
class RuleOutcome:
    """Result of evaluating one rule against one context."""
    rule_id: str
    rule_name: str
    category: RuleCategory | str
    triggered: bool
    priority: int
    confidence: Confidence
    materialized_action: str = ""
    message: str = ""
    recommendation: str | None = None
    scope: RuleScope = RuleScope.GLOBAL

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "category": (
                self.category.value
                if isinstance(self.category, RuleCategory)
                else self.category
            ),
            "triggered": self.triggered,
            "action": self.materialized_action,
            "priority": self.priority,
            "confidence": self.confidence.value,
            "message": self.message,
            "recommendation": self.recommendation,
            "scope": self.scope.value,
        }


@dataclass
class ValidationVerdict:
    """Aggregated expert-rule verdict for one test outcome."""
    is_valid: bool
    final_result: SusceptibilityResult
    triggered_rules: list[RuleOutcome] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    # Rules that could not be evaluated (unknown identifier, type mismatch, bad text)
    evaluation_failures: list[RuleOutcome] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "final_result": self.final_result.value,
            "triggered_rules": [o.to_dict() for o in self.triggered_rules],
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "recommendations": list(self.recommendations),
            "evaluation_failures": [o.to_dict() for o in self.evaluation_failures],
        }
