#!/usr/bin/env python3
"""CLI runner for expert rule validation and rule administration.

Usage:
    python -m expert_rules_src.runner validate --organism ORG-ECOLI --drug DRUG-AMP \\
        --method disk_diffusion --value 22 --result Susceptible
    python -m expert_rules_src.runner stats
    python -m expert_rules_src.runner list --category intrinsic_resistance
    python -m expert_rules_src.runner check --condition 'testValue < 15' --action 'Report {drugId} as R'
"""

import argparse
import logging
import sys

from .config import Config
from .expressions import ParseError
from .models import EvaluationContext, RuleCategory, SusceptibilityResult, TestMethod
from .repository import RepositoryError
from .service import ExpertRuleService
from .store import SQLiteRuleRepository

EXIT_VALID = 0
EXIT_INVALID = 1
EXIT_REPOSITORY_FAILURE = 2


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )


def parse_extra(pairs: list[str] | None) -> dict[str, str | float]:
    """Turn ``key=value`` arguments into open-map entries.

    Numeric values become numbers; everything else stays a string.
    """
    extra: dict[str, str | float] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"Expected key=value, got {pair!r}")
        try:
            extra[key] = float(value)
        except ValueError:
            extra[key] = value
    return extra


def show_verdict(verdict) -> None:
    """Display a validation verdict."""
    print("\n=== Expert Rule Validation ===")
    print(f"Valid:          {'yes' if verdict.is_valid else 'NO'}")
    print(f"Final result:   {verdict.final_result.value}")

    for title, messages in (
        ("Errors", verdict.errors),
        ("Warnings", verdict.warnings),
        ("Recommendations", verdict.recommendations),
    ):
        if messages:
            print(f"\n{title}:")
            for message in messages:
                print(f"  - {message}")

    if verdict.triggered_rules:
        print("\nTriggered rules:")
        print("-" * 80)
        for outcome in verdict.triggered_rules:
            print(
                f"  {outcome.rule_id:32s} | "
                f"{outcome.scope.value:8s} | "
                f"p={outcome.priority:<3} | "
                f"{outcome.confidence.value:6s} | "
                f"{outcome.rule_name}"
            )
        print("-" * 80)

    if verdict.evaluation_failures:
        print(f"\nRules not evaluated: {len(verdict.evaluation_failures)}")
        for outcome in verdict.evaluation_failures:
            print(f"  {outcome.rule_id}: {outcome.message}")
    print()


def show_stats(service: ExpertRuleService) -> None:
    """Display rule statistics."""
    stats = service.get_statistics()

    print("\n=== Expert Rule Statistics ===")
    print(f"Total rules:      {stats['total_rules']}")
    print(f"Active rules:     {stats['active_rules']}")
    print(f"Inactive rules:   {stats['inactive_rules']}")

    if stats["rules_by_category"]:
        print("\nBy category:")
        for category, count in stats["rules_by_category"].items():
            print(f"  {category}: {count}")

    if stats["rules_by_year"]:
        print("\nBy year:")
        for year, count in stats["rules_by_year"].items():
            print(f"  {year}: {count}")
    print()


def show_rules(rules) -> None:
    """Display a rule listing."""
    print(f"\n=== Expert Rules ({len(rules)}) ===")
    print("-" * 80)

    if not rules:
        print("No rules found.")
        return

    for rule in rules:
        status_icon = "✓" if rule.is_active else "✗"
        print(
            f"{status_icon} {rule.id:32s} | "
            f"{rule.category_value:22s} | "
            f"{rule.year} | "
            f"p={rule.priority:<3} | "
            f"{rule.name}"
        )

    print("-" * 80)


def cmd_validate(service: ExpertRuleService, args) -> int:
    logger = logging.getLogger(__name__)

    try:
        context = EvaluationContext(
            organism_id=args.organism,
            drug_id=args.drug,
            test_value=args.value,
            test_method=TestMethod(args.method),
            interpreted_result=SusceptibilityResult(args.result),
            year=args.year,
            additional_data=parse_extra(args.extra),
        )
    except (ValueError, argparse.ArgumentTypeError) as e:
        logger.error(f"Invalid test outcome: {e}")
        return EXIT_INVALID

    try:
        verdict = service.validate(context)
    except RepositoryError as e:
        logger.error(f"Validation aborted: {e}")
        return EXIT_REPOSITORY_FAILURE

    show_verdict(verdict)
    return EXIT_VALID if verdict.is_valid else EXIT_INVALID


def cmd_check(service: ExpertRuleService, args) -> int:
    try:
        names = service.check_rule(args.condition, args.action)
    except ParseError as e:
        print(f"Rule text does not compile: {e}")
        return 1

    print("Rule text compiles.")
    print(f"Referenced identifiers: {', '.join(names) if names else '(none)'}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Expert rule validation for antimicrobial susceptibility results",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Validate a disk diffusion result
    python -m expert_rules_src.runner validate --organism ORG-ECOLI --drug DRUG-AMP \\
        --method disk_diffusion --value 22 --result Susceptible

    # Pass extra named values rules may reference
    python -m expert_rules_src.runner validate ... --extra specimenSource=blood

    # Show rule statistics
    python -m expert_rules_src.runner stats

    # List intrinsic resistance rules for 2024
    python -m expert_rules_src.runner list --category intrinsic_resistance --year 2024
        """,
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    parser.add_argument(
        "--db-path",
        type=str,
        default=None,
        help=f"Path to expert rule database (default: {Config.EXPERT_RULES_DB_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Validate one interpreted test outcome")
    validate.add_argument("--organism", required=True, help="Organism identifier")
    validate.add_argument("--drug", required=True, help="Drug identifier")
    validate.add_argument(
        "--method",
        required=True,
        choices=[m.value for m in TestMethod],
        help="Testing method",
    )
    validate.add_argument("--value", type=float, required=True, help="Raw test value")
    validate.add_argument(
        "--result",
        required=True,
        choices=[r.value for r in SusceptibilityResult],
        help="Interpreted result",
    )
    validate.add_argument(
        "--year",
        type=int,
        default=None,
        help="Standards year (default: DEFAULT_STANDARDS_YEAR or current year)",
    )
    validate.add_argument(
        "--extra",
        action="append",
        metavar="KEY=VALUE",
        help="Additional named value for rule conditions (repeatable)",
    )

    subparsers.add_parser("stats", help="Show rule statistics")

    listing = subparsers.add_parser("list", help="List active rules")
    listing.add_argument(
        "--category",
        choices=[c.value for c in RuleCategory],
        default=None,
        help="Only rules of this category",
    )
    listing.add_argument("--year", type=int, default=None, help="Only rules for this year")

    check = subparsers.add_parser("check", help="Compile rule text without saving it")
    check.add_argument("--condition", required=True, help="Condition expression")
    check.add_argument("--action", required=True, help="Action template")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    logger = logging.getLogger(__name__)

    if args.db_path:
        Config.EXPERT_RULES_DB_PATH = args.db_path

    try:
        repository = SQLiteRuleRepository(Config.EXPERT_RULES_DB_PATH)
    except RepositoryError as e:
        logger.error(f"Failed to open rule store: {e}")
        return EXIT_REPOSITORY_FAILURE

    service = ExpertRuleService(repository)

    if args.command == "validate":
        return cmd_validate(service, args)

    if args.command == "check":
        return cmd_check(service, args)

    try:
        if args.command == "stats":
            show_stats(service)
        elif args.command == "list":
            if args.year is not None and args.category is None:
                rules = service.list_by_year(args.year)
            else:
                rules = service.list_by_category(args.category, args.year)
            show_rules(rules)
    except RepositoryError as e:
        logger.error(f"Rule store query failed: {e}")
        return EXIT_REPOSITORY_FAILURE

    return 0


if __name__ == "__main__":
    sys.exit(main())
