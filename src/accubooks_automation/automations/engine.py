"""AutomationEngine: the host-facing facade over store, tracker and dispatcher."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import UTC, datetime, tzinfo
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from accubooks_automation.automations.actions import ActionExecutor
from accubooks_automation.automations.collaborators import (
    ApiClient,
    DataBackend,
    HttpxApiClient,
    InMemoryDataBackend,
    LoggingNotificationSender,
    NotificationSender,
    WorkflowInvoker,
)
from accubooks_automation.automations.conditions import ConditionEvaluator, StateProvider
from accubooks_automation.automations.defaults import default_rules
from accubooks_automation.automations.event_bus import EventBus
from accubooks_automation.automations.expressions import (
    ExpressionEvaluator,
    SafeExpressionEvaluator,
)
from accubooks_automation.automations.loader import load_rules_file
from accubooks_automation.automations.models import (
    AutomationExecution,
    AutomationRule,
    RuleDraft,
    TriggerType,
)
from accubooks_automation.automations.scheduler import Dispatcher
from accubooks_automation.automations.statistics import (
    ExecutionStatistics,
    RuleStatistics,
    compute_rule_statistics,
    compute_statistics,
)
from accubooks_automation.automations.store import RuleStore
from accubooks_automation.automations.tracker import ExecutionTracker
from accubooks_automation.config.schema import AutomationConfig
from accubooks_automation.errors import AutomationError, ConfigurationError, NotFoundError

logger = logging.getLogger(__name__)


class AutomationEngine:
    """Owns one rule store, execution history, event bus and dispatcher.

    Hosts build as many engines as they like; there is no module-level
    instance. Collaborators not supplied fall back to logging/in-memory
    defaults, except the workflow invoker, which has none.
    """

    def __init__(
        self,
        config: AutomationConfig | None = None,
        *,
        notifier: NotificationSender | None = None,
        api_client: ApiClient | None = None,
        workflow_invoker: WorkflowInvoker | None = None,
        data_backend: DataBackend | None = None,
        state_provider: StateProvider | None = None,
        expression_evaluator: ExpressionEvaluator | None = None,
        clock: Callable[[tzinfo], datetime] | None = None,
    ) -> None:
        self.config = config or AutomationConfig()
        engine_cfg = self.config.engine
        self.timezone = _resolve_timezone(engine_cfg.timezone)

        expressions: ExpressionEvaluator | None = None
        if not self.config.is_production and engine_cfg.allow_expressions:
            expressions = expression_evaluator or SafeExpressionEvaluator()
        elif expression_evaluator is not None:
            logger.warning("Expression evaluator ignored: expressions are disabled")

        self.store = RuleStore()
        self.bus = EventBus()
        self.tracker = ExecutionTracker(self.store, history_limit=engine_cfg.history_limit)
        self._conditions = ConditionEvaluator(
            timezone=self.timezone,
            expressions=expressions,
            state_provider=state_provider,
            clock=clock,
        )
        self._executor = ActionExecutor(
            production=self.config.is_production,
            notifier=notifier or LoggingNotificationSender(),
            api_client=api_client
            or HttpxApiClient(
                timeout=self.config.http.timeout_seconds,
                user_agent=self.config.http.user_agent,
            ),
            workflow_invoker=workflow_invoker,
            data_backend=data_backend or InMemoryDataBackend(),
            script_evaluator=expressions,
        )
        self.dispatcher = Dispatcher(
            self.store,
            self.bus,
            self.execute_rule,
            timezone=self.timezone,
            tick_seconds=self.config.scheduler.tick_seconds,
            max_concurrent=self.config.scheduler.max_concurrent_executions,
            drain_timeout=self.config.scheduler.drain_timeout_seconds,
            clock=clock,
        )

        if engine_cfg.seed_default_rules:
            for draft in default_rules():
                self.store.create(draft)
        rules_path = self.config.get_rules_path()
        if rules_path is not None:
            self.load_rules(rules_path)

    @property
    def expressions_enabled(self) -> bool:
        return self._conditions.expressions_enabled

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def create_rule(self, draft: RuleDraft | dict[str, Any]) -> AutomationRule:
        return self.store.create(draft)

    def update_rule(
        self,
        rule_id: str,
        fields: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> AutomationRule:
        return self.store.update(rule_id, fields, **kwargs)

    def delete_rule(self, rule_id: str) -> bool:
        """Delete a rule. Its execution history is kept."""
        return self.store.delete(rule_id)

    def enable_rule(self, rule_id: str) -> AutomationRule:
        return self.store.enable(rule_id)

    def disable_rule(self, rule_id: str) -> AutomationRule:
        return self.store.disable(rule_id)

    def get_rule(self, rule_id: str) -> AutomationRule:
        return self.store.get(rule_id)

    def list_rules(self) -> list[AutomationRule]:
        return self.store.list()

    def load_rules(self, path: str | Path) -> list[AutomationRule]:
        """Create every rule defined in a rules file.

        Raises:
            ValidationError: If the file is unreadable or a rule is invalid.
        """
        created = [self.store.create(draft) for draft in load_rules_file(path)]
        logger.info("Loaded %d rules from %s", len(created), path)
        return created

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_rule(
        self,
        rule_id: str,
        trigger_source: str = "manual",
        data: Any = None,
    ) -> AutomationExecution:
        """Run one rule now and return the finished execution record.

        Disabled rules run too when called directly. Failures inside the
        run never raise; they end up on the record as ``failed``.

        Raises:
            NotFoundError: If the rule id is unknown.
        """
        rule = self.store.get(rule_id)
        started = self.tracker.start(rule.id, trigger_source, {"data": data})
        execution_id = started.id
        extra = {"rule_id": rule.id, "execution_id": execution_id, "trigger": trigger_source}
        logger.debug("Executing rule %s (%s)", rule.id, rule.name, extra=extra)

        try:
            if self.tracker.is_cancelled(execution_id):
                return self._snapshot(execution_id, started)

            if not self._conditions.evaluate(rule.conditions, data):
                self.tracker.skip(execution_id)
                logger.info("Rule %s skipped: conditions not met", rule.id, extra=extra)
                return self._snapshot(execution_id, started)

            if not self.tracker.mark_running(execution_id):
                return self._snapshot(execution_id, started)
            results = await self._executor.execute(rule.actions, data)
            if self.tracker.complete(execution_id, results):
                logger.info("Rule %s completed (%d actions)", rule.id, len(results), extra=extra)
        except asyncio.CancelledError:
            with contextlib.suppress(NotFoundError):
                self.tracker.cancel(execution_id)
            raise
        except AutomationError as exc:
            self.tracker.fail(execution_id, exc.message, code=exc.code)
            logger.warning("Rule %s failed: %s", rule.id, exc, extra=extra)
        except Exception as exc:
            self.tracker.fail(execution_id, str(exc) or type(exc).__name__)
            logger.exception("Rule %s failed unexpectedly", rule.id, extra=extra)
        return self._snapshot(execution_id, started)

    def cancel_execution(self, execution_id: str) -> bool:
        """Cancel a pending or running execution. False if already finished."""
        return self.tracker.cancel(execution_id)

    def get_execution(self, execution_id: str) -> AutomationExecution:
        return self.tracker.get(execution_id)

    def get_execution_history(
        self,
        rule_id: str | None = None,
        limit: int = 50,
    ) -> list[AutomationExecution]:
        return self.tracker.history(rule_id=rule_id, limit=limit)

    def get_statistics(self) -> ExecutionStatistics:
        return compute_statistics(self.store.list(), self.tracker.snapshot())

    def get_rule_statistics(self, rule_id: str) -> RuleStatistics:
        self.store.get(rule_id)
        return compute_rule_statistics(rule_id, self.tracker.snapshot())

    # ------------------------------------------------------------------
    # Stimuli
    # ------------------------------------------------------------------

    def emit(self, name: str, payload: Any = None) -> int:
        """Publish an event on the bus.

        Event rules fire only while the dispatcher is running. Returns the
        number of bus handlers that received the event.
        """
        return self.bus.publish(name, payload)

    async def handle_webhook(self, path: str, payload: Any = None) -> list[AutomationExecution]:
        """Run every enabled webhook rule bound to *path* and wait for them."""
        rules = [
            rule
            for rule in self.store.enabled_rules(TriggerType.WEBHOOK)
            if rule.trigger.config.get("webhook") == path
        ]
        if not rules:
            logger.debug("No webhook rules for %r", path)
            return []
        results = await asyncio.gather(
            *(self.execute_rule(rule.id, "webhook", payload) for rule in rules),
            return_exceptions=True,
        )
        executions = []
        for rule, outcome in zip(rules, results, strict=True):
            if isinstance(outcome, NotFoundError):
                logger.info("Webhook rule %s deleted before it ran", rule.id)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                executions.append(outcome)
        return executions

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self.dispatcher.running

    async def start(self) -> None:
        if not self.config.scheduler.enabled:
            logger.info("Scheduler disabled; only manual and webhook triggers will fire")
            return
        await self.dispatcher.start()

    async def stop(self) -> None:
        await self.dispatcher.stop()

    async def __aenter__(self) -> AutomationEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def _snapshot(self, execution_id: str, fallback: AutomationExecution) -> AutomationExecution:
        try:
            return self.tracker.get(execution_id)
        except NotFoundError:
            # Evicted by a burst of newer executions.
            return fallback


def _resolve_timezone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"Unknown timezone: {name}") from exc
