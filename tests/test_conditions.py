"""Tests for condition evaluation."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from accubooks_automation.automations.conditions import (
    ConditionEvaluator,
    evaluate_condition,
    evaluate_conditions,
    render_placeholders,
    resolve_path,
)
from accubooks_automation.automations.expressions import SafeExpressionEvaluator
from accubooks_automation.automations.models import Condition


def _data(field: str, value, operator: str = "and", comparison: str = "equals") -> Condition:
    return Condition(
        type="data",
        operator=operator,
        config={"field": field, "operator": comparison, "value": value},
    )


class _StubState:
    """State provider answering from the condition's own config."""

    def __init__(self) -> None:
        self.calls = 0

    def check(self, condition: Condition, context) -> bool:
        self.calls += 1
        return bool(condition.config.get("expected"))


# ===========================================================================
# Folding
# ===========================================================================


class TestFold:
    def test_empty_list_is_true(self) -> None:
        assert evaluate_conditions([]) is True
        assert evaluate_conditions([], {"anything": 1}) is True

    def test_and_then_or_is_a_left_fold(self) -> None:
        ctx = {"a": 1, "b": 2}
        a_false = _data("a", 99)
        b_true = _data("b", 2, operator="or")
        # (True and False) or True
        assert evaluate_conditions([a_false, b_true], ctx) is True

    def test_order_matters(self) -> None:
        ctx = {"a": 1, "b": 2}
        a_true = _data("a", 1, operator="or")
        b_false = _data("b", 99)
        # (True or True) and False: no precedence, strictly left to right
        assert evaluate_conditions([a_true, b_false], ctx) is False

    def test_not_negates_into_accumulator(self) -> None:
        ctx = {"status": "paid"}
        assert evaluate_conditions([_data("status", "paid", operator="not")], ctx) is False
        assert evaluate_conditions([_data("status", "void", operator="not")], ctx) is True

    def test_every_condition_is_evaluated(self) -> None:
        state = _StubState()
        conditions = [
            Condition(type="system", config={"expected": False}),
            Condition(type="user", config={"expected": True}),
            Condition(type="system", operator="or", config={"expected": True}),
        ]
        assert evaluate_conditions(conditions, {}, state_provider=state) is True
        assert state.calls == 3


# ===========================================================================
# Data conditions
# ===========================================================================


class TestDataConditions:
    def test_status_mismatch(self) -> None:
        assert evaluate_condition(_data("status", "degraded"), {"status": "ok"}) is False

    def test_missing_context(self) -> None:
        assert evaluate_condition(_data("status", "ok"), None) is False

    def test_missing_field(self) -> None:
        assert evaluate_condition(_data("status", "ok"), {"other": "ok"}) is False

    def test_missing_field_config(self) -> None:
        condition = Condition(type="data", config={"value": 1})
        assert evaluate_condition(condition, {"x": 1}) is False

    def test_equals_is_strict(self) -> None:
        assert evaluate_condition(_data("n", "5"), {"n": 5}) is False
        assert evaluate_condition(_data("n", 5.0), {"n": 5}) is True
        assert evaluate_condition(_data("flag", 1), {"flag": True}) is False

    def test_nested_path(self) -> None:
        ctx = {"invoice": {"lines": [{"sku": "A1"}, {"sku": "B2"}]}}
        assert evaluate_condition(_data("invoice.lines.1.sku", "B2"), ctx) is True

    def test_contains(self) -> None:
        ctx = {"memo": "Refund for order 1042"}
        assert evaluate_condition(_data("memo", "order", comparison="contains"), ctx) is True
        assert evaluate_condition(_data("memo", "invoice", comparison="contains"), ctx) is False

    def test_contains_casts_numbers(self) -> None:
        assert evaluate_condition(_data("code", 42, comparison="contains"), {"code": 1042}) is True

    def test_greater_and_less(self) -> None:
        ctx = {"amount": "1500.50"}
        assert evaluate_condition(_data("amount", 1000, comparison="greater"), ctx) is True
        assert evaluate_condition(_data("amount", 1000, comparison="less"), ctx) is False

    def test_non_numeric_comparison_is_false(self) -> None:
        ctx = {"amount": "lots"}
        assert evaluate_condition(_data("amount", 1, comparison="greater"), ctx) is False

    def test_unknown_comparison_is_false(self) -> None:
        assert evaluate_condition(_data("a", 1, comparison="like"), {"a": 1}) is False


# ===========================================================================
# Time conditions
# ===========================================================================


class TestTimeConditions:
    NOW = datetime(2024, 3, 4, 9, 30, tzinfo=UTC)  # a Monday in March (month 2)

    @pytest.mark.parametrize(
        ("field", "value", "expected"),
        [
            ("hour", 9, True),
            ("hour", 10, False),
            ("day", 1, True),
            ("day", 0, False),
            ("month", 2, True),
            ("month", 3, False),
            ("minute", 30, False),
        ],
    )
    def test_fields(self, field: str, value: int, expected: bool) -> None:
        condition = Condition(type="time", config={"field": field, "value": value})
        assert evaluate_condition(condition, None, now=self.NOW) is expected

    def test_evaluator_uses_its_clock(self) -> None:
        evaluator = ConditionEvaluator(timezone=UTC, clock=lambda tz: self.NOW)
        condition = Condition(type="time", config={"field": "hour", "value": "9"})
        assert evaluator.evaluate([condition]) is True


# ===========================================================================
# Logic, user and system conditions
# ===========================================================================


class TestLogicConditions:
    def test_disabled_without_evaluator(self) -> None:
        condition = Condition(type="logic", config={"expression": "true"})
        assert evaluate_condition(condition, {}) is False

    def test_evaluates_with_placeholders(self) -> None:
        condition = Condition(
            type="logic",
            config={"expression": '${invoice.total} > 100 && ${invoice.state} === "open"'},
        )
        ctx = {"invoice": {"total": 250, "state": "open"}}
        result = evaluate_condition(condition, ctx, expressions=SafeExpressionEvaluator())
        assert result is True

    def test_evaluation_error_is_false(self) -> None:
        condition = Condition(type="logic", config={"expression": "__import__('os')"})
        assert evaluate_condition(condition, {}, expressions=SafeExpressionEvaluator()) is False

    def test_user_and_system_default_true(self) -> None:
        assert evaluate_condition(Condition(type="user"), None) is True
        assert evaluate_condition(Condition(type="system"), None) is True

    def test_state_provider_decides(self) -> None:
        provider = MagicMock()
        provider.check.return_value = False
        condition = Condition(type="system", config={"field": "system_health"})
        assert evaluate_condition(condition, {"x": 1}, state_provider=provider) is False
        provider.check.assert_called_once_with(condition, {"x": 1})


class TestHelpers:
    def test_render_placeholders(self) -> None:
        ctx = {"name": 'O"Neil', "count": 3, "flag": True}
        rendered = render_placeholders("${name} ${count} ${flag} ${missing}", ctx)
        assert rendered == '"O\\"Neil" 3 true null'

    def test_resolve_path_attributes(self) -> None:
        class Invoice:
            total = 12

        assert resolve_path({"invoice": Invoice()}, "invoice.total") == 12
