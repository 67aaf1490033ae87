"""Tests for the SQLite rule repository."""

import sqlite3

import pytest

from expert_rules_src.models import RuleCategory, SusceptibilityResult
from expert_rules_src.repository import RepositoryError
from expert_rules_src.service import ExpertRuleService
from expert_rules_src.cache import ParseCache
from expert_rules_src.store import SQLiteRuleRepository


@pytest.fixture
def store(tmp_path):
    """Create a temporary rule database."""
    return SQLiteRuleRepository(str(tmp_path / "expert_rules.db"))


class TestSQLiteRuleRepository:
    """Test SQLiteRuleRepository operations."""

    def test_creates_database_and_directory(self, tmp_path):
        db_path = tmp_path / "nested" / "rules.db"

        SQLiteRuleRepository(str(db_path))

        assert db_path.exists()

    def test_default_path_from_env(self, tmp_path, monkeypatch):
        db_path = tmp_path / "from_env.db"
        monkeypatch.setenv("EXPERT_RULES_DB_PATH", str(db_path))

        store = SQLiteRuleRepository()

        assert store.db_path == str(db_path)
        assert db_path.exists()

    def test_save_and_find_by_id(self, store, make_rule):
        rule = make_rule(
            rule_id="rule-ecoli-amp",
            organism_id="E. coli",
            drug_id="Ampicillin",
            source_reference="CLSI M100-S34",
            notes="Chromosomal AmpC",
        )

        store.save(rule)
        loaded = store.find_by_id("rule-ecoli-amp")

        assert loaded == rule
        assert loaded.category == RuleCategory.INTRINSIC_RESISTANCE

    def test_find_by_id_missing(self, store):
        assert store.find_by_id("rule-missing") is None

    def test_duplicate_save_raises(self, store, make_rule):
        store.save(make_rule())

        with pytest.raises(RepositoryError):
            store.save(make_rule())

    def test_scoped_lookups(self, store, make_rule):
        store.save(make_rule(rule_id="rule-pair", organism_id="E. coli", drug_id="Ampicillin"))
        store.save(make_rule(rule_id="rule-org", organism_id="E. coli"))
        store.save(make_rule(rule_id="rule-drug", drug_id="Ampicillin"))
        store.save(make_rule(rule_id="rule-global"))
        store.save(make_rule(rule_id="rule-global-2023", year=2023))

        assert [r.id for r in store.find_rules_by_pair("E. coli", "Ampicillin", 2024)] == ["rule-pair"]
        assert store.find_rules_by_pair("E. coli", "Ampicillin", 2023) == []
        assert [r.id for r in store.find_rules_by_organism("E. coli")] == ["rule-org"]
        assert [r.id for r in store.find_rules_by_drug("Ampicillin")] == ["rule-drug"]
        assert [r.id for r in store.find_global_rules_by_year(2024)] == ["rule-global"]

    def test_lookups_ordered_by_priority_then_id(self, store, make_rule):
        store.save(make_rule(rule_id="rule-b", priority=5))
        store.save(make_rule(rule_id="rule-a", priority=5))
        store.save(make_rule(rule_id="rule-c", priority=8))

        assert [r.id for r in store.find_global_rules_by_year(2024)] == ["rule-c", "rule-a", "rule-b"]

    def test_find_by_category_and_year(self, store, make_rule):
        store.save(make_rule(rule_id="rule-qc", category=RuleCategory.QUALITY_CONTROL))
        store.save(make_rule(rule_id="rule-ir-2023", year=2023))
        store.save(make_rule(rule_id="rule-ir-2024"))

        by_category = store.find_rules_by_category(RuleCategory.INTRINSIC_RESISTANCE)
        by_category_year = store.find_rules_by_category(RuleCategory.INTRINSIC_RESISTANCE, 2023)
        by_year = store.find_rules_by_year(2024)

        assert {r.id for r in by_category} == {"rule-ir-2023", "rule-ir-2024"}
        assert [r.id for r in by_category_year] == ["rule-ir-2023"]
        assert {r.id for r in by_year} == {"rule-qc", "rule-ir-2024"}

    def test_update(self, store, make_rule):
        rule = make_rule()
        store.save(rule)

        store.update(rule.with_updates(name="Renamed", priority=2))
        loaded = store.find_by_id(rule.id)

        assert loaded.name == "Renamed"
        assert loaded.priority == 2
        assert loaded.created_at == rule.created_at

    def test_update_missing_rule_raises(self, store, make_rule):
        with pytest.raises(RepositoryError):
            store.update(make_rule(rule_id="rule-missing"))

    def test_soft_delete(self, store, make_rule):
        store.save(make_rule(rule_id="rule-1"))

        store.soft_delete("rule-1")

        assert not store.find_by_id("rule-1").is_active
        assert store.find_global_rules_by_year(2024) == []
        assert store.find_active_rules() == []
        assert len(store.find_all()) == 1

    def test_unknown_stored_category_kept_as_text(self, store, make_rule):
        store.save(make_rule(rule_id="rule-legacy"))
        with sqlite3.connect(store.db_path) as conn:
            conn.execute("UPDATE expert_rules SET rule_type = 'legacy_check' WHERE id = 'rule-legacy'")

        loaded = store.find_by_id("rule-legacy")

        assert loaded.category == "legacy_check"
        assert loaded.category_value == "legacy_check"

    def test_sqlite_errors_become_repository_errors(self, store):
        with sqlite3.connect(store.db_path) as conn:
            conn.execute("DROP TABLE expert_rules")

        with pytest.raises(RepositoryError):
            store.find_rules_by_pair("E. coli", "Ampicillin", 2024)


class TestServiceWithSQLite:
    """Validation flow against a real database file."""

    def test_intrinsic_resistance_overrides_susceptible(self, store, make_rule, make_context):
        store.save(make_rule(
            rule_id="rule-ecoli-amp",
            name="E. coli Ampicillin intrinsic resistance",
            condition='interpretedResult == "Susceptible" && testValue < 14',
            action="Report {drugId} as Resistant",
            priority=9,
            organism_id="E. coli",
            drug_id="Ampicillin",
        ))
        service = ExpertRuleService(store, cache=ParseCache(), default_year=2024)

        verdict = service.validate(make_context(test_value=12))

        assert not verdict.is_valid
        assert verdict.final_result == SusceptibilityResult.RESISTANT
        assert verdict.errors == ["E. coli Ampicillin intrinsic resistance: Report Ampicillin as Resistant"]

    def test_statistics(self, store):
        service = ExpertRuleService(store, cache=ParseCache(), default_year=2024)
        rule = service.create_rule(
            name="Vancomycin disk diffusion QC",
            description="Disk diffusion is unreliable for vancomycin in staphylococci",
            category=RuleCategory.QUALITY_CONTROL,
            condition='testMethod == "disk_diffusion"',
            action="Confirm {drugId} by MIC method",
            priority=8,
            drug_id="Vancomycin",
        )
        service.create_rule(
            name="Reporting comment",
            description="",
            category=RuleCategory.REPORTING_GUIDANCE,
            condition='interpretedResult == "Resistant"',
            action="Notify stewardship",
        )
        service.soft_delete_rule(rule.id)

        stats = service.get_statistics()

        assert stats["total_rules"] == 2
        assert stats["active_rules"] == 1
        assert stats["rules_by_category"] == {"quality_control": 1, "reporting_guidance": 1}
