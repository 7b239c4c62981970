"""Automation data models: rules, triggers, conditions, actions, executions."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class RuleCategory(str, Enum):
    DATA = "data"
    WORKFLOW = "workflow"
    NOTIFICATION = "notification"
    SECURITY = "security"
    CUSTOM = "custom"


class RulePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TriggerType(str, Enum):
    """What starts an automation rule."""

    SCHEDULE = "schedule"
    EVENT = "event"
    MANUAL = "manual"
    WEBHOOK = "webhook"
    THRESHOLD = "threshold"


class ConditionType(str, Enum):
    DATA = "data"
    LOGIC = "logic"
    TIME = "time"
    USER = "user"
    SYSTEM = "system"


class ConditionOperator(str, Enum):
    """How a condition result is folded into the running result."""

    AND = "and"
    OR = "or"
    NOT = "not"


class ActionType(str, Enum):
    NOTIFICATION = "notification"
    WORKFLOW = "workflow"
    DATA = "data"
    API = "api"
    SCRIPT = "script"
    EMAIL = "email"


class ExecutionStatus(str, Enum):
    """Lifecycle state of a single rule execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        )


def _now() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class TriggerConfig:
    """The stimulus that fires a rule.

    config keys by type:
        schedule:  schedule (5-field cron string)
        event:     event (event name)
        webhook:   webhook (opaque path)
        threshold: threshold ({metric, operator, value})
        manual:    none
    """

    type: TriggerType
    config: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.type = TriggerType(self.type)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "config": dict(self.config)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TriggerConfig:
        return cls(type=data["type"], config=dict(data.get("config") or {}))


@dataclass
class Condition:
    """A predicate folded into the rule's gate.

    config keys: field, operator (equals|contains|greater|less), value,
    expression (logic conditions only).
    """

    type: ConditionType
    operator: ConditionOperator = ConditionOperator.AND
    config: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.type = ConditionType(self.type)
        self.operator = ConditionOperator(self.operator)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "operator": self.operator.value,
            "config": dict(self.config),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Condition:
        return cls(
            type=data["type"],
            operator=data.get("operator", ConditionOperator.AND),
            config=dict(data.get("config") or {}),
        )


@dataclass
class ActionConfig:
    """A side-effecting step executed when the rule fires.

    config keys: template, parameters, endpoint, method, headers, body,
    script, workflow_id, operation.
    """

    type: ActionType
    config: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.type = ActionType(self.type)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "config": dict(self.config)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActionConfig:
        return cls(type=data["type"], config=dict(data.get("config") or {}))


@dataclass
class RuleDraft:
    """Author-supplied fields of a rule, before the store assigns identity."""

    name: str
    trigger: TriggerConfig
    actions: list[ActionConfig] = field(default_factory=list)
    conditions: list[Condition] = field(default_factory=list)
    description: str = ""
    category: RuleCategory = RuleCategory.CUSTOM
    priority: RulePriority = RulePriority.MEDIUM
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RuleDraft:
        """Build a draft from plain data (TOML table, JSON body)."""
        return cls(
            name=data.get("name", ""),
            trigger=TriggerConfig.from_dict(data["trigger"]),
            actions=[ActionConfig.from_dict(a) for a in data.get("actions", [])],
            conditions=[Condition.from_dict(c) for c in data.get("conditions", [])],
            description=data.get("description", ""),
            category=RuleCategory(data.get("category", RuleCategory.CUSTOM)),
            priority=RulePriority(data.get("priority", RulePriority.MEDIUM)),
            enabled=bool(data.get("enabled", True)),
        )


@dataclass
class AutomationRule:
    """A trigger -> conditions -> actions definition held by the store.

    ``execution_count``, ``failure_count`` and ``success_rate`` are owned by
    the execution tracker; rule authors never set them.
    """

    name: str
    trigger: TriggerConfig
    id: str = field(default_factory=_new_id)
    description: str = ""
    category: RuleCategory = RuleCategory.CUSTOM
    conditions: list[Condition] = field(default_factory=list)
    actions: list[ActionConfig] = field(default_factory=list)
    enabled: bool = True
    priority: RulePriority = RulePriority.MEDIUM
    created_at: datetime = field(default_factory=_now)
    last_triggered: datetime | None = None
    execution_count: int = 0
    failure_count: int = 0
    success_rate: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "trigger": self.trigger.to_dict(),
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
            "enabled": self.enabled,
            "priority": self.priority.value,
            "created_at": self.created_at.isoformat(),
            "last_triggered": self.last_triggered.isoformat() if self.last_triggered else None,
            "execution_count": self.execution_count,
            "failure_count": self.failure_count,
            "success_rate": self.success_rate,
        }


@dataclass
class AutomationExecution:
    """Audit record of one firing of one rule."""

    rule_id: str
    trigger: str
    id: str = field(default_factory=_new_id)
    start_time: datetime = field(default_factory=_now)
    end_time: datetime | None = None
    status: ExecutionStatus = ExecutionStatus.PENDING
    result: list[dict[str, Any]] | None = None
    error: str | None = None
    logs: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_ms(self) -> float | None:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds() * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "trigger": self.trigger,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "logs": list(self.logs),
            "metadata": self.metadata,
            "duration_ms": self.duration_ms,
        }
