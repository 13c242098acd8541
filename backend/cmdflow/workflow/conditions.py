# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Condition Evaluator

Evaluates a condition node's (field, operator, value) triple against the
node input. Only the fixed operator table below is supported; nothing is
ever evaluated as code.

String operators compare display strings (None -> "", booleans lower-case),
numeric operators coerce both sides to float and are False when either
side is not a number.
"""

import math
from typing import Any, Callable, Dict

from cmdflow.templates import resolve_path, stringify

from .exceptions import WorkflowValidationError

DEFAULT_OPERATOR = "exists"
PREVIEW_LENGTH = 100


def _to_number(value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def _is_empty(value: Any) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value == 0
    if isinstance(value, (str, list, tuple, dict, set)):
        return len(value) == 0
    return False


def _exists(value: Any) -> bool:
    return value is not None and value != ""


# operator name -> fn(actual, expected) -> bool
OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "equals": lambda a, e: stringify(a) == stringify(e),
    "notEquals": lambda a, e: stringify(a) != stringify(e),
    "contains": lambda a, e: stringify(e) in stringify(a),
    "notContains": lambda a, e: stringify(e) not in stringify(a),
    "greaterThan": lambda a, e: _to_number(a) > _to_number(e),
    "lessThan": lambda a, e: _to_number(a) < _to_number(e),
    "exists": lambda a, e: _exists(a),
    "empty": lambda a, e: _is_empty(a),
}


def evaluate_condition(config: Dict[str, Any], value: Any) -> Dict[str, Any]:
    """
    Evaluate a condition config against an input value.

    Args:
        config: Node config with optional 'field', 'operator', 'value'
        value: Upstream input

    Returns:
        Structured payload: {_condition, result, operator, actual, expected, field}

    Raises:
        WorkflowValidationError: Unknown operator

    Examples:
        >>> evaluate_condition({"operator": "exists"}, {"a": 1})["result"]
        True
        >>> evaluate_condition({"field": "count", "operator": "greaterThan", "value": 3}, {"count": 5})["result"]
        True
    """
    config = config or {}
    field = str(config.get("field") or "").strip()
    op = config.get("operator") or DEFAULT_OPERATOR
    expected = config.get("value")
    if expected is None:
        expected = ""

    evaluate = OPERATORS.get(op)
    if evaluate is None:
        raise WorkflowValidationError(f"Unknown condition operator: {op}", field="operator")

    actual = resolve_path(value, field.lstrip(".")) if field else value
    result = bool(evaluate(actual, expected))

    return {
        "_condition": True,
        "result": result,
        "operator": op,
        "actual": stringify(actual)[:PREVIEW_LENGTH],
        "expected": stringify(expected)[:PREVIEW_LENGTH],
        "field": field or "(input)",
    }
