"""Append-only cache of compiled rule text.

Entries are keyed by ``(rule_id, sha256(text))`` so an edited rule simply
misses and compiles again; stale entries are never served. Concurrent
validate calls may race on a miss, in which case the first stored result
wins via ``dict.setdefault`` and every caller sees the same object.
"""

import hashlib
import logging

from .expressions import ActionTemplate, Expression, parse_action, parse_condition
from .models import ExpertRule

logger = logging.getLogger(__name__)


def content_hash(text: str) -> str:
    return hashlib.sha256((text or "").encode("utf-8")).hexdigest()


class ParseCache:
    """Compute-once-on-miss store of parsed conditions and action templates."""

    def __init__(self):
        self._conditions: dict[tuple[str, str], Expression] = {}
        self._actions: dict[tuple[str, str], ActionTemplate] = {}

    def condition_for(self, rule: ExpertRule) -> Expression:
        """Parsed condition for a rule (raises ParseError on bad text)."""
        key = (rule.id, content_hash(rule.condition))
        compiled = self._conditions.get(key)
        if compiled is None:
            logger.debug(f"Compiling condition for rule {rule.id}")
            compiled = self._conditions.setdefault(key, parse_condition(rule.condition))
        return compiled

    def action_for(self, rule: ExpertRule) -> ActionTemplate:
        """Parsed action template for a rule (raises ParseError on bad text)."""
        key = (rule.id, content_hash(rule.action))
        compiled = self._actions.get(key)
        if compiled is None:
            logger.debug(f"Compiling action template for rule {rule.id}")
            compiled = self._actions.setdefault(key, parse_action(rule.action))
        return compiled

    def __len__(self) -> int:
        return len(self._conditions) + len(self._actions)


class NullParseCache(ParseCache):
    """Cache that always recompiles. Used when PARSE_CACHE_ENABLED is off."""

    def condition_for(self, rule: ExpertRule) -> Expression:
        return parse_condition(rule.condition)

    def action_for(self, rule: ExpertRule) -> ActionTemplate:
        return parse_action(rule.action)
