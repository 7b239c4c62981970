"""Execution tracker: owns execution records and their state machine.

Allowed transitions::

    pending -> running | completed | failed | cancelled
    running -> completed | failed | cancelled

``end_time`` is stamped on every terminal transition, after which the
record is frozen: later transitions are refused.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections import deque
from datetime import UTC, datetime
from typing import Any

from accubooks_automation.automations.models import AutomationExecution, ExecutionStatus
from accubooks_automation.automations.store import RuleStore
from accubooks_automation.errors import NotFoundError

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.PENDING: frozenset(
        {
            ExecutionStatus.RUNNING,
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        }
    ),
    ExecutionStatus.RUNNING: frozenset(
        {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
    ),
}


def _now() -> datetime:
    return datetime.now(UTC)


class ExecutionTracker:
    """Bounded in-memory history of executions (oldest evicted first).

    Each record has exactly one writer, the task driving that execution,
    plus cancellation. Every mutation and every read happens under one
    lock and reads hand out copies of the record containers, so readers
    never see a torn record. Payload values (trigger data, action outcomes)
    are shared, not copied: they may hold objects that cannot be copied.
    """

    def __init__(self, store: RuleStore, history_limit: int = 100) -> None:
        self._store = store
        self._history_limit = history_limit
        self._history: deque[AutomationExecution] = deque()
        self._index: dict[str, AutomationExecution] = {}
        self._lock = threading.Lock()

    @property
    def history_limit(self) -> int:
        return self._history_limit

    def start(
        self,
        rule_id: str,
        trigger: str,
        metadata: dict[str, Any] | None = None,
    ) -> AutomationExecution:
        """Create a pending execution and return a snapshot of it."""
        execution = AutomationExecution(
            rule_id=rule_id,
            trigger=trigger,
            metadata=dict(metadata or {}),
        )
        execution.logs.append(f"Execution started at {execution.start_time.isoformat()}")
        with self._lock:
            self._history.append(execution)
            self._index[execution.id] = execution
            while len(self._history) > self._history_limit:
                evicted = self._history.popleft()
                self._index.pop(evicted.id, None)
            return _copy_record(execution)

    def log(self, execution_id: str, line: str) -> bool:
        """Append a trace line. Refused once the record is terminal."""
        with self._lock:
            execution = self._index.get(execution_id)
            if execution is None or execution.status.is_terminal:
                return False
            execution.logs.append(line)
            return True

    def mark_running(self, execution_id: str) -> bool:
        with self._lock:
            return self._transition(
                execution_id, ExecutionStatus.RUNNING, "Conditions met, executing actions"
            )

    def complete(self, execution_id: str, result: list[dict[str, Any]]) -> bool:
        """Finish an execution whose actions ran; updates the owning rule."""
        with self._lock:
            execution = self._index.get(execution_id)
            if not self._transition(
                execution_id, ExecutionStatus.COMPLETED, "Actions executed successfully"
            ):
                return False
            execution.result = result
            rule_id, finished = execution.rule_id, execution.end_time
        self._store.record_outcome(rule_id, succeeded=True, when=finished)
        return True

    def skip(self, execution_id: str, reason: str = "Conditions not met, skipping execution") -> bool:
        """Complete without running actions. Rule statistics are untouched."""
        with self._lock:
            return self._transition(execution_id, ExecutionStatus.COMPLETED, reason)

    def fail(self, execution_id: str, error: str, code: str | None = None) -> bool:
        """Mark an execution failed and record the error; counts against the rule."""
        with self._lock:
            execution = self._index.get(execution_id)
            if not self._transition(execution_id, ExecutionStatus.FAILED, f"Error: {error}"):
                return False
            execution.error = error
            if code:
                execution.metadata["error_code"] = code
            rule_id = execution.rule_id
        self._store.record_outcome(rule_id, succeeded=False)
        return True

    def cancel(self, execution_id: str) -> bool:
        """Cancel a pending or running execution.

        Bookkeeping only: an in-flight action is not interrupted, its
        eventual outcome is simply discarded.

        Raises:
            NotFoundError: If the execution id is unknown (or evicted).
        """
        with self._lock:
            if execution_id not in self._index:
                raise NotFoundError(
                    f"Execution {execution_id} not found",
                    kind="execution",
                    identifier=execution_id,
                )
            return self._transition(execution_id, ExecutionStatus.CANCELLED, "Execution cancelled")

    def is_cancelled(self, execution_id: str) -> bool:
        with self._lock:
            execution = self._index.get(execution_id)
            return execution is not None and execution.status == ExecutionStatus.CANCELLED

    def get(self, execution_id: str) -> AutomationExecution:
        """Return a snapshot of one execution.

        Raises:
            NotFoundError: If the execution id is unknown (or evicted).
        """
        with self._lock:
            execution = self._index.get(execution_id)
            if execution is None:
                raise NotFoundError(
                    f"Execution {execution_id} not found",
                    kind="execution",
                    identifier=execution_id,
                )
            return _copy_record(execution)

    def history(self, rule_id: str | None = None, limit: int = 50) -> list[AutomationExecution]:
        """Return snapshots, most recent first, optionally filtered by rule."""
        with self._lock:
            selected = [
                e for e in reversed(self._history) if rule_id is None or e.rule_id == rule_id
            ]
            return [_copy_record(e) for e in selected[: max(limit, 0)]]

    def snapshot(self) -> list[AutomationExecution]:
        """Return every retained execution, oldest first."""
        with self._lock:
            return [_copy_record(e) for e in self._history]

    def _transition(self, execution_id: str, target: ExecutionStatus, line: str) -> bool:
        """Apply a transition; caller holds the lock."""
        execution = self._index.get(execution_id)
        if execution is None:
            logger.debug("Transition to %s for unknown execution %s", target.value, execution_id)
            return False
        if target not in _TRANSITIONS.get(execution.status, frozenset()):
            logger.debug(
                "Execution %s: %s -> %s refused",
                execution_id,
                execution.status.value,
                target.value,
            )
            return False
        execution.status = target
        execution.logs.append(line)
        if target.is_terminal:
            execution.end_time = _now()
        return True


def _copy_record(execution: AutomationExecution) -> AutomationExecution:
    """Copy a record's containers without copying the payloads they hold."""
    result = execution.result
    if result is not None:
        result = [dict(item) if isinstance(item, dict) else item for item in result]
    return dataclasses.replace(
        execution,
        logs=list(execution.logs),
        metadata=dict(execution.metadata),
        result=result,
    )
