"""Tests for the command-line runner."""

import argparse

import pytest

from expert_rules_src import runner
from expert_rules_src.config import Config
from expert_rules_src.models import RuleCategory
from expert_rules_src.store import SQLiteRuleRepository


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Temporary database path; keeps --db-path from leaking into Config."""
    monkeypatch.setattr(Config, "EXPERT_RULES_DB_PATH", Config.EXPERT_RULES_DB_PATH)
    return str(tmp_path / "expert_rules.db")


@pytest.fixture
def seeded_db(db_path, make_rule):
    store = SQLiteRuleRepository(db_path)
    store.save(make_rule(
        rule_id="rule-ecoli-amp",
        name="E. coli Ampicillin intrinsic resistance",
        condition='interpretedResult == "Susceptible" && testValue < 14',
        action="Report {drugId} as Resistant",
        priority=9,
        organism_id="E. coli",
        drug_id="Ampicillin",
    ))
    store.save(make_rule(
        rule_id="rule-van-qc",
        name="Vancomycin disk diffusion QC",
        category=RuleCategory.QUALITY_CONTROL,
        condition='testMethod == "disk_diffusion"',
        action="Confirm by MIC",
        drug_id="Vancomycin",
    ))
    return db_path


def validate_args(db_path, *extra, value="12", result="Susceptible"):
    return [
        "--db-path", db_path,
        "validate",
        "--organism", "E. coli",
        "--drug", "Ampicillin",
        "--method", "disk_diffusion",
        "--value", value,
        "--result", result,
        "--year", "2024",
        *extra,
    ]


class TestValidateCommand:
    """Test the validate sub-command and its exit status."""

    def test_invalid_result_exits_1(self, seeded_db, capsys):
        code = runner.main(validate_args(seeded_db))

        out = capsys.readouterr().out
        assert code == runner.EXIT_INVALID
        assert "Final result:   Resistant" in out
        assert "E. coli Ampicillin intrinsic resistance: Report Ampicillin as Resistant" in out

    def test_valid_result_exits_0(self, seeded_db, capsys):
        code = runner.main(validate_args(seeded_db, value="20"))

        out = capsys.readouterr().out
        assert code == runner.EXIT_VALID
        assert "Final result:   Susceptible" in out

    def test_extra_values_reach_rules(self, db_path, make_rule, capsys):
        SQLiteRuleRepository(db_path).save(make_rule(
            rule_id="rule-blood",
            category=RuleCategory.REPORTING_GUIDANCE,
            condition='specimenSource == "blood" && zoneMm < 14',
            action="Call result to ward",
        ))

        code = runner.main(validate_args(db_path, "--extra", "specimenSource=blood", "--extra", "zoneMm=12"))

        out = capsys.readouterr().out
        assert code == runner.EXIT_VALID
        assert "Test rule: Call result to ward" in out

    def test_repository_failure_exits_2(self, tmp_path, monkeypatch):
        monkeypatch.setattr(Config, "EXPERT_RULES_DB_PATH", Config.EXPERT_RULES_DB_PATH)

        # A directory cannot be opened as a database file
        code = runner.main(validate_args(str(tmp_path)))

        assert code == runner.EXIT_REPOSITORY_FAILURE

    def test_unknown_method_rejected(self, db_path):
        args = validate_args(db_path)
        args[args.index("disk_diffusion")] = "gradient_strip"

        with pytest.raises(SystemExit):
            runner.main(args)


class TestOtherCommands:
    """Test stats, list and check sub-commands."""

    def test_stats(self, seeded_db, capsys):
        code = runner.main(["--db-path", seeded_db, "stats"])

        out = capsys.readouterr().out
        assert code == 0
        assert "Total rules:      2" in out
        assert "intrinsic_resistance: 1" in out
        assert "quality_control: 1" in out

    def test_list_by_category(self, seeded_db, capsys):
        code = runner.main(["--db-path", seeded_db, "list", "--category", "quality_control"])

        out = capsys.readouterr().out
        assert code == 0
        assert "rule-van-qc" in out
        assert "rule-ecoli-amp" not in out

    def test_list_by_year(self, seeded_db, capsys):
        runner.main(["--db-path", seeded_db, "list", "--year", "2023"])

        assert "No rules found." in capsys.readouterr().out

    def test_check_valid_rule(self, db_path, capsys):
        code = runner.main([
            "--db-path", db_path,
            "check",
            "--condition", 'testValue < 14 && customFlag == "true"',
            "--action", "Report {drugId}",
        ])

        out = capsys.readouterr().out
        assert code == 0
        assert "testValue, customFlag, drugId" in out

    def test_check_malformed_rule(self, db_path, capsys):
        code = runner.main([
            "--db-path", db_path,
            "check",
            "--condition", "testValue <",
            "--action", "Report",
        ])

        assert code == 1
        assert "does not compile" in capsys.readouterr().out


class TestParseExtra:
    """Test key=value parsing for --extra."""

    def test_numbers_and_strings(self):
        assert runner.parse_extra(["zoneMm=12", "specimenSource=blood"]) == {
            "zoneMm": 12.0,
            "specimenSource": "blood",
        }

    def test_missing_equals(self):
        with pytest.raises(argparse.ArgumentTypeError):
            runner.parse_extra(["specimenSource"])

    def test_none(self):
        assert runner.parse_extra(None) == {}
