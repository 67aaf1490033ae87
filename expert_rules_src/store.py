"""SQLite-backed expert rule storage."""

import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

from .models import ExpertRule, RuleCategory
from .repository import RepositoryError, RuleRepository

logger = logging.getLogger(__name__)

_COLUMNS = """
    id, name, description, rule_type, microorganism_id, drug_id,
    condition_expr, action_expr, priority, year, source_reference,
    notes, is_active, created_at, updated_at
"""

_ORDER = "ORDER BY priority DESC, id ASC"


class SQLiteRuleRepository(RuleRepository):
    """Rule repository over a single ``expert_rules`` SQLite table."""

    def __init__(self, db_path: str | None = None):
        """Initialize rule store.

        Args:
            db_path: Path to SQLite database. Defaults to EXPERT_RULES_DB_PATH
                     env var or ~/.aegis/expert_rules.db
        """
        if db_path:
            self.db_path = os.path.expanduser(db_path)
        else:
            self.db_path = os.path.expanduser(
                os.environ.get("EXPERT_RULES_DB_PATH", "~/.aegis/expert_rules.db")
            )

        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema."""
        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path) as f:
            schema = f.read()

        with self._connect() as conn:
            conn.executescript(schema)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success, and map sqlite errors."""
        conn = None
        try:
            conn = sqlite3.connect(self.db_path)
            conn.row_factory = sqlite3.Row
            with conn:
                yield conn
        except sqlite3.Error as e:
            logger.error(f"Expert rule store error ({self.db_path}): {e}")
            raise RepositoryError(f"Expert rule store unavailable: {e}") from e
        finally:
            if conn is not None:
                conn.close()

    def _query(self, where: str, params: tuple = ()) -> list[ExpertRule]:
        with self._connect() as conn:
            cursor = conn.execute(
                f"SELECT {_COLUMNS} FROM expert_rules WHERE {where} {_ORDER}",
                params,
            )
            return [ExpertRule.from_row(row) for row in cursor.fetchall()]

    # Lookups used by rule selection

    def find_rules_by_pair(self, organism_id: str, drug_id: str, year: int) -> list[ExpertRule]:
        return self._query(
            "microorganism_id = ? AND drug_id = ? AND year = ? AND is_active = 1",
            (organism_id, drug_id, year),
        )

    def find_rules_by_organism(self, organism_id: str) -> list[ExpertRule]:
        return self._query(
            "microorganism_id = ? AND drug_id IS NULL AND is_active = 1",
            (organism_id,),
        )

    def find_rules_by_drug(self, drug_id: str) -> list[ExpertRule]:
        return self._query(
            "drug_id = ? AND microorganism_id IS NULL AND is_active = 1",
            (drug_id,),
        )

    def find_global_rules_by_year(self, year: int) -> list[ExpertRule]:
        return self._query(
            "microorganism_id IS NULL AND drug_id IS NULL AND year = ? AND is_active = 1",
            (year,),
        )

    # Administrative lookups

    def find_rules_by_category(
        self, category: RuleCategory, year: int | None = None
    ) -> list[ExpertRule]:
        value = category.value if isinstance(category, RuleCategory) else category
        if year is None:
            return self._query("rule_type = ? AND is_active = 1", (value,))
        return self._query("rule_type = ? AND year = ? AND is_active = 1", (value, year))

    def find_rules_by_year(self, year: int) -> list[ExpertRule]:
        return self._query("year = ? AND is_active = 1", (year,))

    def find_by_id(self, rule_id: str) -> ExpertRule | None:
        rules = self._query("id = ?", (rule_id,))
        return rules[0] if rules else None

    def find_all(self, include_inactive: bool = True) -> list[ExpertRule]:
        if include_inactive:
            return self._query("1 = 1")
        return self._query("is_active = 1")

    # Writes

    def save(self, rule: ExpertRule) -> ExpertRule:
        """Insert a new rule.

        Raises:
            RepositoryError: if a rule with the same id already exists
        """
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO expert_rules ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                self._to_params(rule),
            )

        logger.info(f"Saved expert rule {rule.id} ({rule.category_value}, year {rule.year})")
        return rule

    def update(self, rule: ExpertRule) -> ExpertRule:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE expert_rules SET
                    name = ?, description = ?, rule_type = ?, microorganism_id = ?,
                    drug_id = ?, condition_expr = ?, action_expr = ?, priority = ?,
                    year = ?, source_reference = ?, notes = ?, is_active = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                self._to_params(rule)[1:-2] + (rule.updated_at.isoformat(), rule.id),
            )
            if cursor.rowcount == 0:
                raise RepositoryError(f"Rule {rule.id} does not exist")

        logger.info(f"Updated expert rule {rule.id}")
        return rule

    def soft_delete(self, rule_id: str) -> None:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE expert_rules SET is_active = 0, updated_at = ? WHERE id = ?",
                (datetime.now().isoformat(), rule_id),
            )
            if cursor.rowcount > 0:
                logger.info(f"Deactivated expert rule {rule_id}")

    @staticmethod
    def _to_params(rule: ExpertRule) -> tuple:
        """Row values in _COLUMNS order."""
        return (
            rule.id,
            rule.name,
            rule.description or "",
            rule.category_value,
            rule.organism_id,
            rule.drug_id,
            rule.condition,
            rule.action,
            int(rule.priority),
            int(rule.year),
            rule.source_reference,
            rule.notes,
            1 if rule.is_active else 0,
            rule.created_at.isoformat(),
            rule.updated_at.isoformat(),
        )
