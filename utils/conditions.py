"""
Shared condition evaluator used to gate declarative actions.

Evaluates ConditionExpression trees (comparisons combined with
and / or / not) against a session's variable map. Evaluation is pure
and total: malformed input yields False, never an exception.
"""
from __future__ import annotations

import re
import operator as op
from typing import Any, Mapping, Union

from pydantic import ValidationError

from models.schemas import ComparisonOperator, ConditionExpression


ALIASES: dict[str, str] = {
    "eq": "equals",
    "ne": "notEquals",
    "gt": "greaterThan",
    "gte": "greaterThanOrEqual",
    "lt": "lessThan",
    "lte": "lessThanOrEqual",
}

VALID_OPERATORS = frozenset(o.value for o in ComparisonOperator)

_ORDERING: dict[str, Any] = {
    "greaterThan": op.gt,
    "greaterThanOrEqual": op.ge,
    "lessThan": op.lt,
    "lessThanOrEqual": op.le,
}


def normalize_operator(operator: Union[str, ComparisonOperator]) -> str:
    name = operator.value if isinstance(operator, ComparisonOperator) else str(operator)
    return ALIASES.get(name, name)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def strict_equals(actual: Any, expected: Any) -> bool:
    if _is_number(actual) and _is_number(expected):
        return actual == expected
    return type(actual) is type(expected) and actual == expected


def _matches(actual: Any, pattern: Any) -> bool:
    try:
        return re.search(str(pattern), str(actual)) is not None
    except re.error:
        return False


def compare_values(actual: Any, operator: str, expected: Any) -> bool:
    """Apply a single comparison. Operator aliases must already be normalized."""
    if actual is None:
        return False
    if operator == "exists":
        return True

    if operator == "equals":
        return strict_equals(actual, expected)
    if operator == "notEquals":
        return not strict_equals(actual, expected)
    if operator in _ORDERING:
        if _is_number(actual) and _is_number(expected):
            return _ORDERING[operator](actual, expected)
        return False
    if operator == "contains":
        return str(expected) in str(actual)
    if operator == "startsWith":
        return str(actual).startswith(str(expected))
    if operator == "endsWith":
        return str(actual).endswith(str(expected))
    if operator == "matches":
        return _matches(actual, expected)
    if operator == "in":
        # comparand is scalar in the schema, so this only holds for list input
        if isinstance(expected, (list, tuple)):
            return actual in expected
        return False
    return False


def _coerce(expression: Any) -> ConditionExpression | None:
    if isinstance(expression, ConditionExpression):
        return expression
    if isinstance(expression, Mapping):
        try:
            return ConditionExpression.model_validate(expression)
        except ValidationError:
            return None
    return None


def evaluate_condition(expression: Any, variables: Mapping[str, Any]) -> bool:
    """
    Evaluate a condition tree against variables.

    Combinators are checked first (and → or → not); a node with neither a
    combinator nor a complete comparison evaluates to False.
    """
    cond = _coerce(expression)
    if cond is None:
        return False

    if cond.and_ is not None:
        return all(evaluate_condition(sub, variables) for sub in cond.and_)
    if cond.or_ is not None:
        return any(evaluate_condition(sub, variables) for sub in cond.or_)
    if cond.not_ is not None:
        return not evaluate_condition(cond.not_, variables)

    if not cond.variable or cond.operator is None:
        return False

    operator = normalize_operator(cond.operator)
    actual = variables.get(cond.variable)

    if operator == "exists":
        return actual is not None
    if cond.value is None:
        return False
    return compare_values(actual, operator, cond.value)


def validate_condition(condition: Any) -> bool:
    """Structural check for a raw condition mapping."""
    if not isinstance(condition, Mapping):
        return False

    has_combinator = any(k in condition for k in ("and", "or", "not"))
    has_comparison = "variable" in condition and "operator" in condition
    if not has_combinator and not has_comparison:
        return False

    for key in ("and", "or"):
        if key in condition:
            subs = condition[key]
            if not isinstance(subs, list) or not all(validate_condition(s) for s in subs):
                return False
    if "not" in condition and not validate_condition(condition["not"]):
        return False

    if has_comparison:
        if not isinstance(condition["variable"], str):
            return False
        if not isinstance(condition["operator"], str) or condition["operator"] not in VALID_OPERATORS:
            return False
    return True
