"""Rule store: in-memory, insertion-ordered, validated rule definitions."""

from __future__ import annotations

import copy
import logging
import threading
from datetime import UTC, datetime
from typing import Any

from accubooks_automation.automations.models import (
    ActionConfig,
    AutomationRule,
    Condition,
    ConditionType,
    RuleCategory,
    RuleDraft,
    RulePriority,
    TriggerConfig,
    TriggerType,
)
from accubooks_automation.automations.schedule import ScheduleParser
from accubooks_automation.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = frozenset(
    {"name", "description", "category", "trigger", "conditions", "actions", "enabled", "priority"}
)
_TRACKER_FIELDS = frozenset(
    {"id", "created_at", "last_triggered", "execution_count", "failure_count", "success_rate"}
)
_DATA_COMPARISONS = frozenset({"equals", "contains", "greater", "less"})
_THRESHOLD_OPERATORS = frozenset({"greater", "less", "equals"})


class RuleStore:
    """Holds automation rules keyed by id.

    All reads return deep copies, so callers can never mutate stored
    state behind the store's lock.
    """

    def __init__(self) -> None:
        self._rules: dict[str, AutomationRule] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        with self._lock:
            return rule_id in self._rules

    def create(self, draft: RuleDraft | dict[str, Any]) -> AutomationRule:
        """Validate a draft and store it as a new rule.

        Raises:
            ValidationError: If the draft is malformed.
        """
        if isinstance(draft, dict):
            draft = _draft_from_dict(draft)

        rule = AutomationRule(
            name=draft.name,
            description=draft.description,
            category=draft.category,
            trigger=copy.deepcopy(draft.trigger),
            conditions=copy.deepcopy(draft.conditions),
            actions=copy.deepcopy(draft.actions),
            enabled=draft.enabled,
            priority=draft.priority,
        )
        validate_rule(rule)

        with self._lock:
            self._rules[rule.id] = rule
            snapshot = copy.deepcopy(rule)
        logger.info("Created rule %s (%s)", rule.id, rule.name)
        return snapshot

    def update(
        self,
        rule_id: str,
        fields: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> AutomationRule:
        """Merge *fields* into an existing rule.

        Raises:
            NotFoundError: If the rule id is unknown.
            ValidationError: If a field is not editable or the result is invalid.
        """
        changes = {**(fields or {}), **kwargs}
        protected = _TRACKER_FIELDS.intersection(changes)
        if protected:
            raise ValidationError(
                f"Fields are managed by the engine: {', '.join(sorted(protected))}",
                field=sorted(protected)[0],
            )
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Unknown rule fields: {', '.join(sorted(unknown))}",
                field=sorted(unknown)[0],
            )

        with self._lock:
            current = self._rules.get(rule_id)
            if current is None:
                raise NotFoundError(f"Rule {rule_id} not found", identifier=rule_id)
            candidate = copy.deepcopy(current)
            for key, value in changes.items():
                setattr(candidate, key, _coerce_field(key, value))
            validate_rule(candidate)
            self._rules[rule_id] = candidate
            snapshot = copy.deepcopy(candidate)

        logger.debug("Updated rule %s: %s", rule_id, ", ".join(sorted(changes)))
        return snapshot

    def delete(self, rule_id: str) -> bool:
        """Remove a rule. Returns True if it existed; unknown ids are a no-op."""
        with self._lock:
            removed = self._rules.pop(rule_id, None)
        if removed is not None:
            logger.info("Deleted rule %s (%s)", rule_id, removed.name)
        return removed is not None

    def enable(self, rule_id: str) -> AutomationRule:
        return self.update(rule_id, enabled=True)

    def disable(self, rule_id: str) -> AutomationRule:
        return self.update(rule_id, enabled=False)

    def get(self, rule_id: str) -> AutomationRule:
        """Return a copy of a rule.

        Raises:
            NotFoundError: If the rule id is unknown.
        """
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                raise NotFoundError(f"Rule {rule_id} not found", identifier=rule_id)
            return copy.deepcopy(rule)

    def list(self) -> list[AutomationRule]:
        """Return all rules in insertion order."""
        with self._lock:
            return [copy.deepcopy(r) for r in self._rules.values()]

    def enabled_rules(self, trigger_type: TriggerType) -> list[AutomationRule]:
        """Return enabled rules with the given trigger type, in insertion order."""
        with self._lock:
            return [
                copy.deepcopy(r)
                for r in self._rules.values()
                if r.enabled and r.trigger.type == trigger_type
            ]

    def record_outcome(
        self,
        rule_id: str,
        *,
        succeeded: bool,
        when: datetime | None = None,
    ) -> None:
        """Update a rule's cached run statistics after an executed run.

        Successful runs bump ``execution_count`` and ``last_triggered``;
        failed runs bump ``failure_count``. A rule deleted mid-run is ignored.
        """
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                logger.debug("Outcome for deleted rule %s dropped", rule_id)
                return
            if succeeded:
                rule.execution_count += 1
                rule.last_triggered = when or datetime.now(UTC)
            else:
                rule.failure_count += 1
            attempts = rule.execution_count + rule.failure_count
            rule.success_rate = rule.execution_count / attempts if attempts else 1.0


# ------------------------------------------------------------------
# Validation
# ------------------------------------------------------------------


def validate_rule(rule: AutomationRule) -> None:
    """Check a rule's structure.

    Raises:
        ValidationError: On the first problem found.
    """
    if not isinstance(rule.name, str) or not rule.name.strip():
        raise ValidationError("Rule name must not be empty", field="name")
    if not isinstance(rule.trigger, TriggerConfig):
        raise ValidationError("Rule requires exactly one trigger", field="trigger")
    _validate_trigger(rule.trigger)

    if not isinstance(rule.conditions, list):
        raise ValidationError("Conditions must be a list", field="conditions")
    for index, condition in enumerate(rule.conditions):
        if not isinstance(condition, Condition) or not isinstance(condition.config, dict):
            raise ValidationError(f"Condition {index} is malformed", field="conditions")
        comparison = condition.config.get("operator")
        if (
            condition.type == ConditionType.DATA
            and comparison is not None
            and comparison not in _DATA_COMPARISONS
        ):
            raise ValidationError(
                f"Condition {index} has unknown comparison {comparison!r}",
                field="conditions",
            )

    if not isinstance(rule.actions, list) or not rule.actions:
        raise ValidationError("Rule requires at least one action", field="actions")
    for index, action in enumerate(rule.actions):
        if not isinstance(action, ActionConfig) or not isinstance(action.config, dict):
            raise ValidationError(f"Action {index} is malformed", field="actions")


def _validate_trigger(trigger: TriggerConfig) -> None:
    config = trigger.config
    if not isinstance(config, dict):
        raise ValidationError("Trigger config must be a mapping", field="trigger")

    if trigger.type == TriggerType.SCHEDULE:
        expression = config.get("schedule")
        if not isinstance(expression, str) or not ScheduleParser.is_valid(expression):
            raise ValidationError(
                f"Schedule trigger needs a 5-field cron expression, got {expression!r}",
                field="trigger",
            )
    elif trigger.type == TriggerType.EVENT:
        if not _non_blank(config.get("event")):
            raise ValidationError("Event trigger needs an event name", field="trigger")
    elif trigger.type == TriggerType.WEBHOOK:
        if not _non_blank(config.get("webhook")):
            raise ValidationError("Webhook trigger needs a path", field="trigger")
    elif trigger.type == TriggerType.THRESHOLD:
        threshold = config.get("threshold")
        if (
            not isinstance(threshold, dict)
            or not _non_blank(threshold.get("metric"))
            or threshold.get("operator") not in _THRESHOLD_OPERATORS
            or isinstance(threshold.get("value"), bool)
            or not isinstance(threshold.get("value"), int | float)
        ):
            raise ValidationError(
                "Threshold trigger needs {metric, operator, numeric value}",
                field="trigger",
            )


def _non_blank(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _draft_from_dict(data: dict[str, Any]) -> RuleDraft:
    try:
        return RuleDraft.from_dict(data)
    except KeyError as exc:
        raise ValidationError(f"Missing rule field: {exc.args[0]}", field=str(exc.args[0])) from exc
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Malformed rule: {exc}") from exc


def _coerce_field(key: str, value: Any) -> Any:
    """Turn plain data into model objects for a partial update."""
    try:
        if key == "trigger" and isinstance(value, dict):
            return TriggerConfig.from_dict(value)
        if key == "conditions" and isinstance(value, list):
            return [Condition.from_dict(c) if isinstance(c, dict) else c for c in value]
        if key == "actions" and isinstance(value, list):
            return [ActionConfig.from_dict(a) if isinstance(a, dict) else a for a in value]
        if key == "category":
            return RuleCategory(value)
        if key == "priority":
            return RulePriority(value)
        if key == "enabled":
            return bool(value)
    except KeyError as exc:
        raise ValidationError(f"Missing {key} field: {exc.args[0]}", field=key) from exc
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid {key}: {exc}", field=key) from exc
    return value
