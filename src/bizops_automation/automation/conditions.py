"""Condition evaluation over trigger contexts."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from ..core.templates import lookup_path
from .models import Condition, ConditionOperator, LogicalOperator


class _Missing:
    """Sentinel for a context path that does not resolve."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def extract(context: Mapping[str, Any], path: str) -> Any:
    """Extract a value from the context using dot notation, or MISSING."""
    try:
        return lookup_path(context, path)
    except KeyError:
        return MISSING


def _is_empty(value: Any) -> bool:
    if value is MISSING or value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return str(expected) in actual
    if isinstance(actual, (list, tuple, set, frozenset)):
        try:
            return expected in actual
        except TypeError:
            return False
    return False


def _compare_numbers(actual: Any, expected: Any, operator: ConditionOperator) -> bool:
    if actual is MISSING or actual is None or expected is None:
        return False
    try:
        left = float(actual)
        right = float(expected)
    except (TypeError, ValueError):
        return False

    if operator is ConditionOperator.GREATER_THAN:
        return left > right
    if operator is ConditionOperator.LESS_THAN:
        return left < right
    if operator is ConditionOperator.GREATER_THAN_OR_EQUAL:
        return left >= right
    return left <= right


_RELATIONAL = {
    ConditionOperator.GREATER_THAN,
    ConditionOperator.LESS_THAN,
    ConditionOperator.GREATER_THAN_OR_EQUAL,
    ConditionOperator.LESS_THAN_OR_EQUAL,
}


def check_condition(condition: Condition, context: Mapping[str, Any]) -> bool:
    """Evaluate a single condition."""
    actual = extract(context, condition.field)
    expected = condition.value
    operator = condition.operator

    if operator is ConditionOperator.EQUALS:
        return actual is not MISSING and actual == expected
    if operator is ConditionOperator.NOT_EQUALS:
        return actual is MISSING or actual != expected
    if operator in _RELATIONAL:
        return _compare_numbers(actual, expected, operator)
    if operator is ConditionOperator.CONTAINS:
        return _contains(actual, expected)
    if operator is ConditionOperator.NOT_CONTAINS:
        return not _contains(actual, expected)
    if operator is ConditionOperator.IS_EMPTY:
        return _is_empty(actual)
    if operator is ConditionOperator.IS_NOT_EMPTY:
        return not _is_empty(actual)
    if operator is ConditionOperator.IN:
        if not isinstance(expected, (list, tuple)) or actual is MISSING:
            return False
        return actual in expected

    # ConditionOperator is closed; authoring rejects anything else.
    raise ValueError(f"Unsupported operator: {operator}")


def evaluate(conditions: Iterable[Condition], context: Mapping[str, Any]) -> bool:
    """Fold conditions left to right using each condition's join.

    ``a JOIN_0 b JOIN_1 c`` is evaluated as ``(a JOIN_0 b) JOIN_1 c``; there is
    no AND-over-OR precedence. An empty list is vacuously true.
    """
    items = list(conditions)
    if not items:
        return True

    result = check_condition(items[0], context)
    for previous, current in zip(items, items[1:]):
        value = check_condition(current, context)
        if previous.join is LogicalOperator.OR:
            result = result or value
        else:
            result = result and value
    return result


__all__ = ["MISSING", "check_condition", "evaluate", "extract"]
