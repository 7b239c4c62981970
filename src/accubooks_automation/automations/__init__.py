"""Automation pipeline: trigger -> conditions -> actions engine."""

from __future__ import annotations

from accubooks_automation.automations.engine import AutomationEngine
from accubooks_automation.automations.models import (
    ActionConfig,
    ActionType,
    AutomationExecution,
    AutomationRule,
    Condition,
    ConditionOperator,
    ConditionType,
    ExecutionStatus,
    RuleCategory,
    RuleDraft,
    RulePriority,
    TriggerConfig,
    TriggerType,
)
from accubooks_automation.automations.statistics import ExecutionStatistics

__all__ = [
    "ActionConfig",
    "ActionType",
    "AutomationEngine",
    "AutomationExecution",
    "AutomationRule",
    "Condition",
    "ConditionOperator",
    "ConditionType",
    "ExecutionStatistics",
    "ExecutionStatus",
    "RuleCategory",
    "RuleDraft",
    "RulePriority",
    "TriggerConfig",
    "TriggerType",
]
