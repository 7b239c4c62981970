"""Built-in rules seeded when ``engine.seed_default_rules`` is on."""

from __future__ import annotations

from accubooks_automation.automations.models import (
    ActionConfig,
    ActionType,
    Condition,
    ConditionOperator,
    ConditionType,
    RuleCategory,
    RuleDraft,
    RulePriority,
    TriggerConfig,
    TriggerType,
)


def default_rules() -> list[RuleDraft]:
    """Return fresh drafts for the built-in rules."""
    return [
        RuleDraft(
            name="Daily Performance Report",
            description="Generate daily performance report at 9 AM",
            category=RuleCategory.DATA,
            priority=RulePriority.MEDIUM,
            trigger=TriggerConfig(
                type=TriggerType.SCHEDULE,
                config={"schedule": "0 9 * * 1-5"},
            ),
            actions=[
                ActionConfig(
                    type=ActionType.DATA,
                    config={"operation": "create", "parameters": {"type": "report"}},
                ),
                ActionConfig(
                    type=ActionType.NOTIFICATION,
                    config={
                        "template": "Daily report generated",
                        "parameters": {"priority": "medium"},
                    },
                ),
            ],
        ),
        RuleDraft(
            name="Anomaly Detection Alert",
            description="Alert when anomalies are detected in system metrics",
            category=RuleCategory.SECURITY,
            priority=RulePriority.HIGH,
            trigger=TriggerConfig(
                type=TriggerType.THRESHOLD,
                config={"threshold": {"metric": "error_rate", "operator": "greater", "value": 5}},
            ),
            conditions=[
                Condition(
                    type=ConditionType.SYSTEM,
                    operator=ConditionOperator.AND,
                    config={"field": "system_health", "operator": "equals", "value": "degraded"},
                ),
            ],
            actions=[
                ActionConfig(
                    type=ActionType.NOTIFICATION,
                    config={
                        "template": "System anomaly detected",
                        "parameters": {"priority": "high"},
                    },
                ),
                ActionConfig(
                    type=ActionType.WORKFLOW,
                    config={"parameters": {"workflowId": "incident-response"}},
                ),
            ],
        ),
    ]
