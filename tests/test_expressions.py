"""Tests for the restricted expression evaluator."""

from __future__ import annotations

import pytest

from accubooks_automation.automations.expressions import (
    MAX_EXPRESSION_LENGTH,
    ExpressionError,
    SafeExpressionEvaluator,
    normalize_expression,
)


@pytest.fixture()
def evaluator() -> SafeExpressionEvaluator:
    return SafeExpressionEvaluator()


class TestNormalize:
    def test_javascript_operators(self) -> None:
        assert normalize_expression("a === 1 && b !== 2") == "a == 1  and  b != 2"

    def test_literals(self) -> None:
        assert normalize_expression("x == null || y == true") == "x == None  or  y == True"

    def test_string_literals_untouched(self) -> None:
        assert normalize_expression('s == "a && b"') == 's == "a && b"'


class TestEvaluate:
    def test_comparisons_with_context(self, evaluator: SafeExpressionEvaluator) -> None:
        ctx = {"amount": 1500, "status": "overdue"}
        assert evaluator.evaluate('amount > 1000 && status === "overdue"', ctx) is True
        assert evaluator.evaluate("amount < 1000", ctx) is False

    def test_chained_comparison(self, evaluator: SafeExpressionEvaluator) -> None:
        assert evaluator.evaluate("1 < x <= 5", {"x": 5}) is True

    def test_negation(self, evaluator: SafeExpressionEvaluator) -> None:
        assert evaluator.evaluate("!paid", {"paid": False}) is True

    def test_mapping_access(self, evaluator: SafeExpressionEvaluator) -> None:
        ctx = {"invoice": {"lines": [{"total": 10}, {"total": 32}]}}
        assert evaluator.evaluate("invoice.lines[1]['total'] + 1", ctx) == 33

    def test_whitelisted_functions(self, evaluator: SafeExpressionEvaluator) -> None:
        ctx = {"email": "ar@example.com", "items": [1, 2, 3]}
        assert evaluator.evaluate('endswith(email, "@example.com")', ctx) is True
        assert evaluator.evaluate("len(items) == 3", ctx) is True
        assert evaluator.evaluate('matches(email, "^ar@")', ctx) is True

    def test_unknown_names_are_none(self, evaluator: SafeExpressionEvaluator) -> None:
        assert evaluator.evaluate("missing == null", {}) is True

    @pytest.mark.parametrize(
        "expression",
        [
            "__import__('os')",
            "open('/etc/passwd')",
            "(1).__class__",
            "2 ** 100",
            "'a' * 1000000",
            "[x for x in items]",
            "lambda: 1",
        ],
    )
    def test_rejects_unsafe_syntax(
        self, evaluator: SafeExpressionEvaluator, expression: str
    ) -> None:
        with pytest.raises(ExpressionError):
            evaluator.evaluate(expression, {"items": [1]})

    def test_rejects_syntax_errors(self, evaluator: SafeExpressionEvaluator) -> None:
        with pytest.raises(ExpressionError):
            evaluator.evaluate("amount >", {})

    def test_rejects_long_expressions(self, evaluator: SafeExpressionEvaluator) -> None:
        with pytest.raises(ExpressionError):
            evaluator.evaluate("1" * (MAX_EXPRESSION_LENGTH + 1), {})
