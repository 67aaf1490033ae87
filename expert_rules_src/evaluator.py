"""Evaluation of compiled rule conditions and action templates.

Identifiers resolve against the fixed context fields first, then the
context's open map. Strings only support ``==``/``!=``; numbers support
the full ordering set. Anything else is an EvalError, which callers
treat as "rule not triggered".
"""

import logging

from .expressions import (
    ActionTemplate,
    And,
    Comparison,
    Expression,
    Identifier,
    Literal,
    Or,
    Placeholder,
    TextSegment,
)
from .models import Confidence, EvaluationContext, RuleCategory

logger = logging.getLogger(__name__)


class EvalError(Exception):
    """Base class for evaluation-time failures."""


class UnknownIdentifier(EvalError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown identifier '{name}'")


class TypeMismatch(EvalError):
    def __init__(self, op: str, left_type: str, right_type: str | None = None):
        self.op = op
        self.left_type = left_type
        self.right_type = right_type
        if right_type is None:
            detail = f"operand of '{op}' must be boolean, got {left_type}"
        else:
            detail = f"cannot apply '{op}' to {left_type} and {right_type}"
        super().__init__(f"Type mismatch: {detail}")


FIXED_FIELDS = (
    "organismId",
    "drugId",
    "testValue",
    "testMethod",
    "interpretedResult",
    "year",
)

_FIELD_ALIASES = {"microorganismId": "organismId"}


def _fixed_value(context: EvaluationContext, name: str):
    name = _FIELD_ALIASES.get(name, name)
    if name == "organismId":
        return context.organism_id
    if name == "drugId":
        return context.drug_id
    if name == "testValue":
        return context.test_value
    if name == "testMethod":
        return context.test_method.value
    if name == "interpretedResult":
        return context.interpreted_result.value
    if name == "year":
        return context.year
    return None


def _normalize(value):
    """Map booleans onto the strings "true"/"false"; ints onto floats."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return float(value)
    return value


def resolve_identifier(name: str, context: EvaluationContext) -> str | float:
    """Look up an identifier: fixed fields first, then the open map."""
    value = _fixed_value(context, name)
    if value is None and name in context.additional_data:
        value = context.additional_data[name]
    if value is None:
        raise UnknownIdentifier(name)
    return _normalize(value)


def _type_name(value) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, float):
        return "number"
    return "string"


def _compare(op: str, left, right) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        raise TypeMismatch(op, _type_name(left), _type_name(right))

    if isinstance(left, float) and isinstance(right, float):
        if op == "==":
            return left == right
        if op == "!=":
            return left != right
        if op == ">=":
            return left >= right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        if op == "<":
            return left < right
        raise TypeMismatch(op, "number", "number")

    if isinstance(left, str) and isinstance(right, str):
        if op == "==":
            return left == right
        if op == "!=":
            return left != right

    raise TypeMismatch(op, _type_name(left), _type_name(right))


def _value(node: Expression, context: EvaluationContext):
    if isinstance(node, Identifier):
        return resolve_identifier(node.name, context)
    if isinstance(node, Literal):
        return node.value
    return _evaluate_node(node, context)


def _require_bool(op: str, value) -> bool:
    if not isinstance(value, bool):
        raise TypeMismatch(op, _type_name(value))
    return value


def _evaluate_node(node: Expression, context: EvaluationContext):
    if isinstance(node, Comparison):
        return _compare(node.op, _value(node.left, context), _value(node.right, context))
    if isinstance(node, And):
        if not _require_bool("&&", _value(node.left, context)):
            return False
        return _require_bool("&&", _value(node.right, context))
    if isinstance(node, Or):
        if _require_bool("||", _value(node.left, context)):
            return True
        return _require_bool("||", _value(node.right, context))
    if isinstance(node, (Identifier, Literal)):
        return _value(node, context)
    raise TypeError(f"Unsupported expression node: {type(node).__name__}")


def evaluate(expression: Expression, context: EvaluationContext) -> bool:
    """Evaluate a compiled condition against a context.

    Raises:
        UnknownIdentifier: an identifier is neither a fixed field nor in the open map
        TypeMismatch: operands of incompatible types, or a non-boolean condition
    """
    return _require_bool("condition", _evaluate_node(expression, context))


def _format_value(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def render(template: ActionTemplate, context: EvaluationContext) -> str:
    """Substitute ``{field}`` placeholders from the context.

    Placeholders that do not resolve are left in the output as written.
    """
    out: list[str] = []
    for part in template.parts:
        if isinstance(part, TextSegment):
            out.append(part.text)
        elif isinstance(part, Placeholder):
            try:
                out.append(_format_value(resolve_identifier(part.name, context)))
            except UnknownIdentifier:
                logger.debug(f"Leaving unresolved placeholder {part.token} in action text")
                out.append(part.token)
    return "".join(out)


CONFIDENCE_BY_CATEGORY = {
    RuleCategory.INTRINSIC_RESISTANCE: Confidence.HIGH,   # well-established
    RuleCategory.QUALITY_CONTROL: Confidence.HIGH,        # standardized
    RuleCategory.ACQUIRED_RESISTANCE: Confidence.MEDIUM,  # varies by strain
    RuleCategory.PHENOTYPE_CONFIRMATION: Confidence.MEDIUM,
    RuleCategory.REPORTING_GUIDANCE: Confidence.LOW,
}


def confidence_for(category: RuleCategory | str) -> Confidence:
    """Fixed confidence tier for a rule category; unknown categories are LOW."""
    return CONFIDENCE_BY_CATEGORY.get(category, Confidence.LOW)
