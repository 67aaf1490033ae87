"""Candidate rule selection for an organism/drug/year.

Rules come from four repository buckets:
1. pair-specific rules for (organism, drug, year)
2. organism-general rules
3. drug-general rules
4. global rules for the year

and are returned most specific first, then by priority, then by id.
"""

import logging

from .models import ExpertRule
from .repository import RuleRepository

logger = logging.getLogger(__name__)


def selection_key(rule: ExpertRule) -> tuple[int, int, str]:
    """Sort key: specificity desc, priority desc, id asc."""
    return (-rule.scope.specificity_rank, -rule.priority, rule.id)


class RuleSelector:
    """Gathers the deduplicated candidate rule set from a repository."""

    def __init__(self, repository: RuleRepository):
        self.repository = repository

    def select(self, organism_id: str, drug_id: str, year: int) -> list[ExpertRule]:
        """Return active candidate rules in evaluation order.

        Repository errors propagate unchanged: an incomplete candidate
        set would silently under-enforce resistance rules.
        """
        buckets = (
            self.repository.find_rules_by_pair(organism_id, drug_id, year),
            self.repository.find_rules_by_organism(organism_id),
            self.repository.find_rules_by_drug(drug_id),
            self.repository.find_global_rules_by_year(year),
        )

        candidates: dict[str, ExpertRule] = {}
        for bucket in buckets:
            for rule in bucket:
                if rule.id in candidates:
                    logger.debug(f"Rule {rule.id} returned by more than one lookup, keeping first")
                    continue
                if not rule.is_active:
                    continue
                if not rule.applies_to(organism_id, drug_id):
                    logger.warning(
                        f"Repository returned rule {rule.id} outside its scope "
                        f"for {organism_id}/{drug_id}, skipping"
                    )
                    continue
                candidates[rule.id] = rule

        rules = sorted(candidates.values(), key=selection_key)
        logger.debug(
            f"Selected {len(rules)} candidate rule(s) for {organism_id}/{drug_id} ({year})"
        )
        return rules
