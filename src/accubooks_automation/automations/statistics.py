"""Aggregate statistics over rules and the retained execution history."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

from accubooks_automation.automations.models import (
    AutomationExecution,
    AutomationRule,
    ExecutionStatus,
)


@dataclass
class RuleStatistics:
    """Per-rule breakdown of the retained history."""

    rule_id: str
    executions: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    success_rate: float = 0.0
    average_execution_time_ms: float = 0.0


@dataclass
class ExecutionStatistics:
    """Engine-wide summary returned by ``get_statistics``."""

    total_rules: int
    active_rules: int
    total_executions: int
    success_rate: float
    average_execution_time_ms: float
    by_status: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


def compute_statistics(
    rules: list[AutomationRule],
    executions: list[AutomationExecution],
) -> ExecutionStatistics:
    """Summarise rules and executions.

    success_rate is completed / total (0 with no history). The average
    duration only counts executions that have an end time (0 if none).
    """
    by_status = {status.value: 0 for status in ExecutionStatus}
    for execution in executions:
        by_status[execution.status.value] += 1

    total = len(executions)
    return ExecutionStatistics(
        total_rules=len(rules),
        active_rules=sum(1 for r in rules if r.enabled),
        total_executions=total,
        success_rate=by_status[ExecutionStatus.COMPLETED.value] / total if total else 0.0,
        average_execution_time_ms=_average_duration_ms(executions),
        by_status=by_status,
    )


def compute_rule_statistics(
    rule_id: str,
    executions: list[AutomationExecution],
) -> RuleStatistics:
    own = [e for e in executions if e.rule_id == rule_id]
    stats = RuleStatistics(rule_id=rule_id, executions=len(own))
    for execution in own:
        if execution.status == ExecutionStatus.COMPLETED:
            stats.completed += 1
        elif execution.status == ExecutionStatus.FAILED:
            stats.failed += 1
        elif execution.status == ExecutionStatus.CANCELLED:
            stats.cancelled += 1
    if own:
        stats.success_rate = stats.completed / len(own)
    stats.average_execution_time_ms = _average_duration_ms(own)
    return stats


def _average_duration_ms(executions: list[AutomationExecution]) -> float:
    durations = [e.duration_ms for e in executions if e.duration_ms is not None]
    if not durations:
        return 0.0
    return sum(durations) / len(durations)
