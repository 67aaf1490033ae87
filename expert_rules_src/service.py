"""Expert rule service: validation entry point and rule administration.

Validation flow:
    EvaluationContext -> RuleSelector -> evaluate_rule (per rule) -> aggregate

A rule that cannot be evaluated (bad text, unknown identifier, type
mismatch) is recorded as not triggered and the batch continues. A
repository failure aborts the whole call.
"""

import logging
from dataclasses import replace

from .aggregator import aggregate
from .cache import NullParseCache, ParseCache
from .config import config
from .evaluator import EvalError, confidence_for, evaluate, render
from .expressions import ParseError, parse_action, parse_condition, referenced_identifiers
from .models import (
    Confidence,
    EvaluationContext,
    ExpertRule,
    RuleCategory,
    RuleOutcome,
    ValidationVerdict,
)
from .repository import RepositoryError, RuleRepository
from .selector import RuleSelector

logger = logging.getLogger(__name__)


class RuleNotFoundError(LookupError):
    """Raised when an administrative operation names an unknown rule id."""

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Expert rule not found: {rule_id}")


RECOMMENDATIONS = {
    RuleCategory.INTRINSIC_RESISTANCE:
        "Consider intrinsic resistance pattern. Review organism identification.",
    RuleCategory.ACQUIRED_RESISTANCE:
        "Possible acquired resistance. Consider additional testing or alternative therapy.",
    RuleCategory.QUALITY_CONTROL:
        "Review test procedure and quality control measures.",
    RuleCategory.PHENOTYPE_CONFIRMATION:
        "Perform confirmatory testing to verify phenotype.",
    RuleCategory.REPORTING_GUIDANCE:
        "Follow institutional reporting guidelines.",
}
DEFAULT_RECOMMENDATION = "Review result and consider clinical context."

# Fields an administrator may patch through update_rule
UPDATABLE_FIELDS = (
    "name",
    "description",
    "condition",
    "action",
    "priority",
    "notes",
    "source_reference",
    "is_active",
)


class ExpertRuleService:
    """Façade over rule selection, evaluation and aggregation."""

    def __init__(
        self,
        repository: RuleRepository,
        cache: ParseCache | None = None,
        default_year: int | None = None,
    ):
        self.repository = repository
        self.selector = RuleSelector(repository)
        if cache is None:
            cache = ParseCache() if config.PARSE_CACHE_ENABLED else NullParseCache()
        self.cache = cache
        self.default_year = default_year

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _effective_context(self, context: EvaluationContext) -> EvaluationContext:
        if context.year is not None:
            return context
        return context.with_year(self.default_year or config.get_default_year())

    def validate(self, context: EvaluationContext) -> ValidationVerdict:
        """Validate one interpreted test outcome against the expert rules.

        Returns a complete verdict. Per-rule failures are isolated.

        Raises:
            RepositoryError: the candidate rule set could not be loaded
        """
        context = self._effective_context(context)

        try:
            rules = self.selector.select(context.organism_id, context.drug_id, context.year)
        except RepositoryError as e:
            logger.error(
                f"Cannot validate {context.organism_id}/{context.drug_id}: "
                f"rule lookup failed: {e}"
            )
            raise

        outcomes = [self.evaluate_rule(rule, context) for rule in rules]
        verdict = aggregate(context, outcomes)

        logger.info(
            f"Validated {context.organism_id}/{context.drug_id} "
            f"({context.interpreted_result.value}): {len(rules)} rule(s), "
            f"{len(verdict.triggered_rules)} triggered, final={verdict.final_result.value}"
        )
        return verdict

    def validate_many(self, contexts: list[EvaluationContext]) -> list[ValidationVerdict]:
        """Validate several outcomes independently, preserving input order."""
        return [self.validate(context) for context in contexts]

    def evaluate_rule(self, rule: ExpertRule, context: EvaluationContext) -> RuleOutcome:
        """Evaluate a single rule against a context.

        Never raises for bad rule text or evaluation errors; those come
        back as a non-triggered outcome whose message holds the diagnostic.
        """
        context = self._effective_context(context)

        try:
            condition = self.cache.condition_for(rule)
            triggered = evaluate(condition, context)
            action = render(self.cache.action_for(rule), context) if triggered else ""
        except (ParseError, EvalError) as e:
            logger.warning(f"Rule {rule.id} ({rule.name}) not evaluated: {e}")
            return RuleOutcome(
                rule_id=rule.id,
                rule_name=rule.name,
                category=rule.category,
                triggered=False,
                priority=rule.priority,
                confidence=Confidence.LOW,
                message=f"Rule evaluation error: {e}",
                scope=rule.scope,
            )

        if not triggered:
            return RuleOutcome(
                rule_id=rule.id,
                rule_name=rule.name,
                category=rule.category,
                triggered=False,
                priority=rule.priority,
                confidence=Confidence.LOW,
                scope=rule.scope,
            )

        return RuleOutcome(
            rule_id=rule.id,
            rule_name=rule.name,
            category=rule.category,
            triggered=True,
            priority=rule.priority,
            confidence=confidence_for(rule.category),
            materialized_action=action,
            message=f"{rule.name}: {action}",
            recommendation=RECOMMENDATIONS.get(rule.category, DEFAULT_RECOMMENDATION),
            scope=rule.scope,
        )

    # -------------------------------------------------------------------------
    # Authoring
    # -------------------------------------------------------------------------

    def check_rule(self, condition: str, action: str) -> list[str]:
        """Compile rule text and return the identifiers it references.

        Raises:
            ParseError: condition or action text is malformed
        """
        names = referenced_identifiers(parse_condition(condition))
        for name in parse_action(action).placeholders:
            if name not in names:
                names.append(name)
        return names

    def create_rule(
        self,
        name: str,
        description: str,
        category: RuleCategory | str,
        condition: str,
        action: str,
        priority: int = 1,
        year: int | None = None,
        organism_id: str | None = None,
        drug_id: str | None = None,
        source_reference: str | None = None,
        notes: str | None = None,
    ) -> ExpertRule:
        """Create and persist a new active rule.

        Raises:
            ValueError: missing name/condition/action, unknown category, bad year
            ParseError: condition or action text is malformed
        """
        if not (name or "").strip():
            raise ValueError("Rule name is required.")
        if not (condition or "").strip():
            raise ValueError("Rule condition is required.")
        if not (action or "").strip():
            raise ValueError("Rule action is required.")
        category = RuleCategory(category)
        year = year if year is not None else (self.default_year or config.get_default_year())
        if int(year) <= 0:
            raise ValueError(f"Invalid standards year: {year}")

        self.check_rule(condition, action)

        rule = ExpertRule.create(
            name=name.strip(),
            description=description or "",
            category=category,
            condition=condition,
            action=action,
            priority=int(priority),
            year=int(year),
            organism_id=organism_id,
            drug_id=drug_id,
            source_reference=source_reference,
            notes=notes,
        )
        saved = self.repository.save(rule)
        logger.info(f"Created expert rule {saved.id}: {saved.name}")
        return saved

    def update_rule(self, rule_id: str, **updates) -> ExpertRule:
        """Patch the given fields of a rule; other fields keep their values.

        Raises:
            RuleNotFoundError: no rule with this id
            ValueError: an unknown or read-only field was given
            ParseError: new condition or action text is malformed
        """
        unknown = set(updates) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

        existing = self.repository.find_by_id(rule_id)
        if existing is None:
            raise RuleNotFoundError(rule_id)

        if "condition" in updates or "action" in updates:
            self.check_rule(
                updates.get("condition", existing.condition),
                updates.get("action", existing.action),
            )
        if "priority" in updates:
            updates["priority"] = int(updates["priority"])
        if "is_active" in updates:
            updates["is_active"] = bool(updates["is_active"])

        updated = self.repository.update(existing.with_updates(**updates))
        logger.info(f"Updated expert rule {rule_id}: {', '.join(sorted(updates)) or 'no changes'}")
        return updated

    def soft_delete_rule(self, rule_id: str) -> ExpertRule:
        """Deactivate a rule. It stays retrievable by id.

        Raises:
            RuleNotFoundError: no rule with this id
        """
        existing = self.repository.find_by_id(rule_id)
        if existing is None:
            raise RuleNotFoundError(rule_id)

        self.repository.soft_delete(rule_id)
        logger.info(f"Deactivated expert rule {rule_id}")
        return self.repository.find_by_id(rule_id) or replace(existing, is_active=False)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_rule(self, rule_id: str) -> ExpertRule | None:
        return self.repository.find_by_id(rule_id)

    def list_all(self, include_inactive: bool = True) -> list[ExpertRule]:
        return self.repository.find_all(include_inactive=include_inactive)

    def list_by_category(
        self,
        category: RuleCategory | str | None = None,
        year: int | None = None,
    ) -> list[ExpertRule]:
        """Active rules of one category; every active rule when no category is given."""
        if category is None:
            rules = self.repository.find_active_rules()
            return [r for r in rules if year is None or r.year == year]
        return self.repository.find_rules_by_category(RuleCategory(category), year)

    def list_by_year(self, year: int) -> list[ExpertRule]:
        return self.repository.find_rules_by_year(year)

    def list_by_priority(self, min_priority: int) -> list[ExpertRule]:
        return [r for r in self.repository.find_active_rules() if r.priority >= min_priority]

    def get_statistics(self) -> dict:
        """Rule counts by category, year and active flag."""
        rules = self.repository.find_all(include_inactive=True)

        by_category: dict[str, int] = {}
        by_year: dict[int, int] = {}
        for rule in rules:
            by_category[rule.category_value] = by_category.get(rule.category_value, 0) + 1
            by_year[rule.year] = by_year.get(rule.year, 0) + 1

        active = sum(1 for r in rules if r.is_active)
        return {
            "total_rules": len(rules),
            "active_rules": active,
            "inactive_rules": len(rules) - active,
            "rules_by_category": by_category,
            "rules_by_year": dict(sorted(by_year.items())),
        }
