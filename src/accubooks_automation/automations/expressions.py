"""Restricted expression evaluation for ``logic`` conditions and ``script`` actions.

Only wired into the engine for development deployments. Expressions are
parsed with :mod:`ast` and walked against a whitelist; nothing is ever
handed to ``eval``/``exec``.
"""

from __future__ import annotations

import ast
import operator
import re
from collections.abc import Callable
from typing import Any, Protocol

MAX_EXPRESSION_LENGTH = 2000

_STRING_LITERAL = re.compile(r"(\"(?:[^\"\\]|\\.)*\"|'(?:[^'\\]|\\.)*')")
_JS_REWRITES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"==="), "=="),
    (re.compile(r"!=="), "!="),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
    (re.compile(r"\btrue\b"), "True"),
    (re.compile(r"\bfalse\b"), "False"),
    (re.compile(r"\b(?:null|undefined)\b"), "None"),
)

_BIN_OPS: dict[type[ast.operator], Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_COMPARE_OPS: dict[type[ast.cmpop], Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}


class ExpressionEvaluator(Protocol):
    """Evaluates a text expression against a context mapping."""

    def evaluate(self, expression: str, context: dict[str, Any]) -> Any: ...


class ExpressionError(ValueError):
    """The expression uses syntax outside the whitelist."""


class SafeExpressionEvaluator:
    """Evaluates a restricted subset of Python expressions.

    JavaScript-style operators (``&&``, ``||``, ``!``, ``===``, ``!==``) and
    literals (``true``, ``false``, ``null``) are accepted and normalised,
    so rule templates authored for the web client keep working.
    """

    def __init__(self) -> None:
        self._functions: dict[str, Callable[..., Any]] = {
            "len": len,
            "abs": abs,
            "min": min,
            "max": max,
            "round": round,
            "str": str,
            "int": int,
            "float": float,
            "contains": lambda haystack, needle: str(needle) in str(haystack or ""),
            "startswith": lambda value, prefix: str(value or "").startswith(str(prefix)),
            "endswith": lambda value, suffix: str(value or "").endswith(str(suffix)),
            "matches": lambda value, pattern: re.search(pattern, str(value or "")) is not None,
        }

    def evaluate(self, expression: str, context: dict[str, Any]) -> Any:
        if len(expression) > MAX_EXPRESSION_LENGTH:
            raise ExpressionError("Expression too long")
        normalized = normalize_expression(expression)
        try:
            node = ast.parse(normalized.strip(), mode="eval")
        except SyntaxError as exc:
            raise ExpressionError(f"Invalid expression: {exc.msg}") from exc
        return self._eval(node.body, context)

    def _eval(self, node: ast.AST, context: dict[str, Any]) -> Any:
        if isinstance(node, ast.Constant):
            return node.value

        if isinstance(node, ast.BoolOp):
            values = [self._eval(v, context) for v in node.values]
            if isinstance(node.op, ast.And):
                return all(values)
            return any(values)

        if isinstance(node, ast.UnaryOp):
            operand = self._eval(node.operand, context)
            if isinstance(node.op, ast.Not):
                return not operand
            if isinstance(node.op, ast.USub):
                return -operand
            if isinstance(node.op, ast.UAdd):
                return +operand
            raise ExpressionError("Unsupported unary operator")

        if isinstance(node, ast.BinOp):
            op = _BIN_OPS.get(type(node.op))
            if op is None:
                raise ExpressionError(f"Operator {type(node.op).__name__} not allowed")
            left = self._eval(node.left, context)
            right = self._eval(node.right, context)
            if isinstance(node.op, ast.Mult) and not (
                isinstance(left, int | float) and isinstance(right, int | float)
            ):
                raise ExpressionError("Multiplication is numeric only")
            return op(left, right)

        if isinstance(node, ast.Compare):
            left = self._eval(node.left, context)
            for op_node, comparator in zip(node.ops, node.comparators, strict=True):
                right = self._eval(comparator, context)
                compare = _COMPARE_OPS.get(type(op_node))
                if compare is None:
                    raise ExpressionError(f"Comparison {type(op_node).__name__} not allowed")
                if not compare(left, right):
                    return False
                left = right
            return True

        if isinstance(node, ast.IfExp):
            if self._eval(node.test, context):
                return self._eval(node.body, context)
            return self._eval(node.orelse, context)

        if isinstance(node, ast.Name):
            return context.get(node.id)

        if isinstance(node, ast.Attribute):
            value = self._eval(node.value, context)
            if isinstance(value, dict):
                return value.get(node.attr)
            raise ExpressionError("Attribute access only allowed on mappings")

        if isinstance(node, ast.Subscript):
            value = self._eval(node.value, context)
            key = self._eval(node.slice, context)
            if isinstance(value, dict):
                return value.get(key)
            if isinstance(value, list | tuple | str) and isinstance(key, int):
                return value[key]
            raise ExpressionError("Subscript only allowed on mappings and sequences")

        if isinstance(node, ast.List | ast.Tuple):
            return [self._eval(item, context) for item in node.elts]

        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.keywords:
                raise ExpressionError("Unsupported function call")
            func = self._functions.get(node.func.id)
            if func is None:
                raise ExpressionError(f"Function {node.func.id!r} not allowed")
            return func(*(self._eval(arg, context) for arg in node.args))

        raise ExpressionError(f"Unsupported expression: {type(node).__name__}")


def normalize_expression(expression: str) -> str:
    """Rewrite JavaScript operators/literals outside of string literals."""
    parts = _STRING_LITERAL.split(expression)
    for index in range(0, len(parts), 2):
        segment = parts[index]
        for pattern, replacement in _JS_REWRITES:
            segment = pattern.sub(replacement, segment)
        parts[index] = segment
    return "".join(parts)
