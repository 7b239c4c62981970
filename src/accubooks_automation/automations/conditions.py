"""Condition evaluation: fold a rule's conditions into a single gate."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from datetime import datetime, tzinfo
from typing import Any, Protocol

from accubooks_automation.automations.expressions import ExpressionEvaluator
from accubooks_automation.automations.models import (
    Condition,
    ConditionOperator,
    ConditionType,
)
from accubooks_automation.automations.schedule import cron_weekday

logger = logging.getLogger(__name__)

_MISSING = object()
_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")


class StateProvider(Protocol):
    """Answers ``user`` and ``system`` conditions from live application state."""

    def check(self, condition: Condition, context: Any) -> bool: ...


def evaluate_conditions(
    conditions: list[Condition],
    context: Any = None,
    *,
    now: datetime | None = None,
    expressions: ExpressionEvaluator | None = None,
    state_provider: StateProvider | None = None,
) -> bool:
    """Fold conditions left to right, starting from True.

    ``and`` -> acc and r, ``or`` -> acc or r, ``not`` -> acc and not r.
    This is a left fold, not boolean precedence: order matters. Every
    condition is evaluated even when the result is already decided.
    Empty list returns True.
    """
    result = True
    for condition in conditions:
        outcome = evaluate_condition(
            condition,
            context,
            now=now,
            expressions=expressions,
            state_provider=state_provider,
        )
        if condition.operator == ConditionOperator.AND:
            result = result and outcome
        elif condition.operator == ConditionOperator.OR:
            result = result or outcome
        else:
            result = result and not outcome
    return result


def evaluate_condition(
    condition: Condition,
    context: Any = None,
    *,
    now: datetime | None = None,
    expressions: ExpressionEvaluator | None = None,
    state_provider: StateProvider | None = None,
) -> bool:
    """Evaluate a single condition."""
    if condition.type == ConditionType.DATA:
        return _check_data(condition, context)
    if condition.type == ConditionType.TIME:
        return _check_time(condition, now or datetime.now().astimezone())
    if condition.type == ConditionType.LOGIC:
        return _check_logic(condition, context, expressions)
    # user / system
    if state_provider is None:
        return True
    return bool(state_provider.check(condition, context))


class ConditionEvaluator:
    """Binds clock and collaborators so the engine can call ``evaluate(conditions, ctx)``."""

    def __init__(
        self,
        *,
        timezone: tzinfo,
        expressions: ExpressionEvaluator | None = None,
        state_provider: StateProvider | None = None,
        clock: Callable[[tzinfo], datetime] | None = None,
    ) -> None:
        self._timezone = timezone
        self._expressions = expressions
        self._state_provider = state_provider
        self._clock = clock or (lambda tz: datetime.now(tz))

    @property
    def expressions_enabled(self) -> bool:
        return self._expressions is not None

    def evaluate(self, conditions: list[Condition], context: Any = None) -> bool:
        return evaluate_conditions(
            conditions,
            context,
            now=self._clock(self._timezone),
            expressions=self._expressions,
            state_provider=self._state_provider,
        )


# ------------------------------------------------------------------
# Per-type checks
# ------------------------------------------------------------------


def _check_data(condition: Condition, context: Any) -> bool:
    """Compare a dot-path field of the context against an expected value.

    config: field (str), operator (equals|contains|greater|less), value
    """
    path = condition.config.get("field")
    if context is None or not path:
        return False

    actual = resolve_path(context, str(path))
    if actual is _MISSING:
        return False

    comparison = condition.config.get("operator") or "equals"
    expected = condition.config.get("value")

    if comparison == "equals":
        return _strict_equals(actual, expected)
    if comparison == "contains":
        return stringify(expected) in stringify(actual)
    if comparison in ("greater", "less"):
        left, right = _as_number(actual), _as_number(expected)
        if left is None or right is None:
            return False
        return left > right if comparison == "greater" else left < right
    return False


def _check_time(condition: Condition, now: datetime) -> bool:
    """Compare the current hour, weekday (Sunday = 0) or month (January = 0).

    config: field (hour|day|month), value (int)
    """
    field = condition.config.get("field")
    expected = _as_number(condition.config.get("value"))
    if expected is None:
        return False

    if field == "hour":
        return now.hour == expected
    if field == "day":
        return cron_weekday(now) == expected
    if field == "month":
        return now.month - 1 == expected
    return False


def _check_logic(
    condition: Condition,
    context: Any,
    expressions: ExpressionEvaluator | None,
) -> bool:
    """Substitute ``${path}`` placeholders and evaluate the expression.

    config: expression (str). Always False without an expression evaluator,
    which is the case in every production deployment.
    """
    template = condition.config.get("expression")
    if not template:
        return False
    if expressions is None:
        logger.debug("Logic condition skipped: expression evaluation disabled")
        return False

    expression = render_placeholders(str(template), context)
    scope = context if isinstance(context, dict) else {}
    try:
        return bool(expressions.evaluate(expression, scope))
    except Exception as exc:
        logger.warning("Logic condition %r failed: %s", expression, exc)
        return False


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def resolve_path(obj: Any, path: str) -> Any:
    """Walk a dot-separated path through mappings, sequences and attributes.

    Returns the module sentinel ``_MISSING`` when any segment is absent.
    """
    current = obj
    for key in path.split("."):
        if isinstance(current, dict):
            if key not in current:
                return _MISSING
            current = current[key]
        elif isinstance(current, list | tuple):
            try:
                current = current[int(key)]
            except (ValueError, IndexError):
                return _MISSING
        elif current is not None and not key.startswith("_") and hasattr(current, key):
            current = getattr(current, key)
        else:
            return _MISSING
    return current


def render_placeholders(template: str, context: Any) -> str:
    """Replace ``${path}`` with literal values: strings quoted, the rest stringified."""

    def _replace(match: re.Match[str]) -> str:
        value = resolve_path(context, match.group(1).strip()) if context is not None else _MISSING
        if value is _MISSING or value is None:
            return "null"
        if isinstance(value, str):
            return json.dumps(value)
        return stringify(value)

    return _PLACEHOLDER.sub(_replace, template)


def stringify(value: Any) -> str:
    """String form used for ``contains`` comparisons and placeholder rendering."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    return str(value)


def _strict_equals(left: Any, right: Any) -> bool:
    """Equality without cross-type coercion; ints and floats compare numerically."""
    if (
        isinstance(left, int | float)
        and isinstance(right, int | float)
        and not isinstance(left, bool)
        and not isinstance(right, bool)
    ):
        return left == right
    return type(left) is type(right) and left == right


def _as_number(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
