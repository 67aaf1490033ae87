"""Turns triggered rule outcomes into a validation verdict.

Classification:
- intrinsic/acquired resistance on a Susceptible result -> error
- intrinsic/acquired resistance on any other result     -> warning
- quality control                                       -> warning
- reporting guidance, phenotype confirmation            -> recommendation

A Susceptible result is overridden to Resistant when any resistance rule
fired. Nothing is ever downgraded.
"""

from .models import (
    EvaluationContext,
    RuleCategory,
    RuleOutcome,
    SusceptibilityResult,
    ValidationVerdict,
)

RESISTANCE_CATEGORIES = (
    RuleCategory.INTRINSIC_RESISTANCE,
    RuleCategory.ACQUIRED_RESISTANCE,
)


def determine_final_result(
    context: EvaluationContext,
    triggered: list[RuleOutcome],
) -> SusceptibilityResult:
    """Apply the one-directional Susceptible -> Resistant override."""
    if context.interpreted_result != SusceptibilityResult.SUSCEPTIBLE:
        return context.interpreted_result
    if any(o.category in RESISTANCE_CATEGORIES for o in triggered):
        return SusceptibilityResult.RESISTANT
    return context.interpreted_result


def aggregate(
    context: EvaluationContext,
    outcomes: list[RuleOutcome],
) -> ValidationVerdict:
    """Build the verdict from outcomes already in selection order."""
    triggered = [o for o in outcomes if o.triggered]
    errors: list[str] = []
    warnings: list[str] = []
    recommendations: list[str] = []

    for outcome in triggered:
        if outcome.category in RESISTANCE_CATEGORIES:
            if context.interpreted_result == SusceptibilityResult.SUSCEPTIBLE:
                errors.append(outcome.message)
            else:
                warnings.append(outcome.message)
        elif outcome.category == RuleCategory.QUALITY_CONTROL:
            warnings.append(outcome.message)
        elif outcome.category in (
            RuleCategory.REPORTING_GUIDANCE,
            RuleCategory.PHENOTYPE_CONFIRMATION,
        ):
            recommendations.append(outcome.message)

    return ValidationVerdict(
        is_valid=not errors,
        final_result=determine_final_result(context, triggered),
        triggered_rules=triggered,
        errors=errors,
        warnings=warnings,
        recommendations=recommendations,
        evaluation_failures=[o for o in outcomes if not o.triggered and o.message],
    )
