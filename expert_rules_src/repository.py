"""Rule repository port and an in-memory implementation.

The engine only ever talks to a ``RuleRepository``. Storage failures must
surface as ``RepositoryError`` so ``validate`` can refuse to answer with a
partial rule set.
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime

from .models import ExpertRule, RuleCategory, RuleScope


class RepositoryError(RuntimeError):
    """Raised when the rule store cannot be read or written."""


class RuleRepository(ABC):
    """Storage port for expert rules.

    Lookup methods used by rule selection return active rules only;
    ``find_by_id`` and ``find_all`` also see soft-deleted rules for auditing.
    """

    @abstractmethod
    def find_rules_by_pair(self, organism_id: str, drug_id: str, year: int) -> list[ExpertRule]:
        """Active rules scoped to exactly this organism and drug for ``year``."""

    @abstractmethod
    def find_rules_by_organism(self, organism_id: str) -> list[ExpertRule]:
        """Active organism-general rules (no drug)."""

    @abstractmethod
    def find_rules_by_drug(self, drug_id: str) -> list[ExpertRule]:
        """Active drug-general rules (no organism)."""

    @abstractmethod
    def find_global_rules_by_year(self, year: int) -> list[ExpertRule]:
        """Active rules with neither organism nor drug for ``year``."""

    @abstractmethod
    def find_rules_by_category(
        self, category: RuleCategory, year: int | None = None
    ) -> list[ExpertRule]:
        """Active rules of a category, optionally limited to one year."""

    @abstractmethod
    def find_rules_by_year(self, year: int) -> list[ExpertRule]:
        """Active rules of any scope for ``year``."""

    @abstractmethod
    def find_by_id(self, rule_id: str) -> ExpertRule | None:
        """Any rule by id, active or not."""

    @abstractmethod
    def find_all(self, include_inactive: bool = True) -> list[ExpertRule]:
        """Every stored rule."""

    @abstractmethod
    def save(self, rule: ExpertRule) -> ExpertRule:
        """Insert a new rule."""

    @abstractmethod
    def update(self, rule: ExpertRule) -> ExpertRule:
        """Replace a stored rule by id."""

    @abstractmethod
    def soft_delete(self, rule_id: str) -> None:
        """Mark a rule inactive."""

    def find_active_rules(self) -> list[ExpertRule]:
        return self.find_all(include_inactive=False)


def _by_priority(rules: list[ExpertRule]) -> list[ExpertRule]:
    return sorted(rules, key=lambda r: (-r.priority, r.id))


class InMemoryRuleRepository(RuleRepository):
    """Dict-backed repository for tests and embedded use."""

    def __init__(self, rules: list[ExpertRule] | None = None):
        self._rules: dict[str, ExpertRule] = {}
        for rule in rules or []:
            self._rules[rule.id] = rule

    def _active(self) -> list[ExpertRule]:
        return [r for r in self._rules.values() if r.is_active]

    def find_rules_by_pair(self, organism_id: str, drug_id: str, year: int) -> list[ExpertRule]:
        return _by_priority([
            r for r in self._active()
            if r.organism_id == organism_id and r.drug_id == drug_id and r.year == year
        ])

    def find_rules_by_organism(self, organism_id: str) -> list[ExpertRule]:
        return _by_priority([
            r for r in self._active()
            if r.scope == RuleScope.ORGANISM and r.organism_id == organism_id
        ])

    def find_rules_by_drug(self, drug_id: str) -> list[ExpertRule]:
        return _by_priority([
            r for r in self._active()
            if r.scope == RuleScope.DRUG and r.drug_id == drug_id
        ])

    def find_global_rules_by_year(self, year: int) -> list[ExpertRule]:
        return _by_priority([
            r for r in self._active()
            if r.scope == RuleScope.GLOBAL and r.year == year
        ])

    def find_rules_by_category(
        self, category: RuleCategory, year: int | None = None
    ) -> list[ExpertRule]:
        return _by_priority([
            r for r in self._active()
            if r.category == category and (year is None or r.year == year)
        ])

    def find_rules_by_year(self, year: int) -> list[ExpertRule]:
        return _by_priority([r for r in self._active() if r.year == year])

    def find_by_id(self, rule_id: str) -> ExpertRule | None:
        return self._rules.get(rule_id)

    def find_all(self, include_inactive: bool = True) -> list[ExpertRule]:
        rules = list(self._rules.values()) if include_inactive else self._active()
        return _by_priority(rules)

    def save(self, rule: ExpertRule) -> ExpertRule:
        if rule.id in self._rules:
            raise RepositoryError(f"Rule {rule.id} already exists")
        self._rules[rule.id] = rule
        return rule

    def update(self, rule: ExpertRule) -> ExpertRule:
        if rule.id not in self._rules:
            raise RepositoryError(f"Rule {rule.id} does not exist")
        self._rules[rule.id] = rule
        return rule

    def soft_delete(self, rule_id: str) -> None:
        rule = self._rules.get(rule_id)
        if rule is None:
            return
        self._rules[rule_id] = replace(rule, is_active=False, updated_at=datetime.now())
