# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for condition evaluation
"""

import pytest

from cmdflow.workflow.conditions import evaluate_condition
from cmdflow.workflow.exceptions import WorkflowValidationError


@pytest.mark.parametrize(
    "config,value,expected",
    [
        ({"operator": "equals", "value": "ok"}, "ok", True),
        ({"operator": "equals", "value": "true"}, True, True),
        ({"operator": "notEquals", "value": "ok"}, "nope", True),
        ({"operator": "contains", "value": "err"}, "some error", True),
        ({"operator": "notContains", "value": "err"}, "fine", True),
        ({"operator": "greaterThan", "value": "10"}, 11, True),
        ({"operator": "greaterThan", "value": 10}, "abc", False),
        ({"operator": "lessThan", "value": 5}, "4.5", True),
        ({"operator": "empty"}, [], True),
        ({"operator": "empty"}, 0, True),
        ({"operator": "empty"}, "x", False),
        ({"operator": "exists"}, "", False),
        ({"operator": "exists"}, 0, True),
    ],
)
def test_operators(config, value, expected):
    assert evaluate_condition(config, value)["result"] is expected


def test_default_operator_is_exists():
    assert evaluate_condition({}, None)["result"] is False
    result = evaluate_condition({}, {"a": 1})
    assert result["result"] is True
    assert result["operator"] == "exists"


def test_field_path_is_resolved():
    result = evaluate_condition({"field": "data.status", "operator": "equals", "value": 200}, {"data": {"status": 200}})
    assert result == {
        "_condition": True,
        "result": True,
        "operator": "equals",
        "actual": "200",
        "expected": "200",
        "field": "data.status",
    }


def test_missing_field_does_not_exist():
    result = evaluate_condition({"field": "data.nothing"}, {"data": {}})
    assert result["result"] is False
    assert result["field"] == "data.nothing"


def test_whole_input_field_label():
    assert evaluate_condition({"operator": "exists"}, "x")["field"] == "(input)"


def test_actual_is_truncated():
    result = evaluate_condition({"operator": "exists"}, "y" * 500)
    assert len(result["actual"]) == 100


def test_unknown_operator_raises():
    with pytest.raises(WorkflowValidationError):
        evaluate_condition({"operator": "matchesRegex", "value": ".*"}, "x")
