"""End-to-end tests for the AutomationEngine facade."""

from __future__ import annotations

import asyncio
import threading
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from accubooks_automation.automations.engine import AutomationEngine
from accubooks_automation.automations.models import (
    ActionConfig,
    Condition,
    ExecutionStatus,
    RuleDraft,
    TriggerConfig,
)
from accubooks_automation.config.schema import AutomationConfig
from accubooks_automation.errors import ConfigurationError, NotFoundError, ValidationError


def _draft(**overrides) -> RuleDraft:
    defaults = {
        "name": "test_rule",
        "trigger": TriggerConfig(type="manual"),
        "actions": [ActionConfig(type="notification", config={"template": "Hello"})],
    }
    defaults.update(overrides)
    return RuleDraft(**defaults)


class _BlockingNotifier:
    """Notifier that parks until released, so a run can be observed mid-flight."""

    def __init__(self) -> None:
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def send(self, message, parameters) -> None:
        self.entered.set()
        await self.release.wait()

    async def send_email(self, message, parameters) -> None:
        await self.send(message, parameters)


# ===========================================================================
# Manual execution
# ===========================================================================


class TestExecuteRule:
    @pytest.mark.asyncio()
    async def test_manual_notification(self, engine, notifier) -> None:
        rule = engine.create_rule(_draft())

        execution = await engine.execute_rule(rule.id)

        assert execution.status is ExecutionStatus.COMPLETED
        assert execution.trigger == "manual"
        assert len(execution.result) == 1
        assert execution.result[0]["sent"] is True
        assert execution.end_time is not None
        assert notifier.sent == [("Hello", {})]

        stored = engine.get_rule(rule.id)
        assert stored.execution_count == 1
        assert stored.last_triggered is not None

    @pytest.mark.asyncio()
    async def test_conditions_not_met(self, engine, notifier) -> None:
        condition = Condition(
            type="data", config={"field": "status", "operator": "equals", "value": "degraded"}
        )
        rule = engine.create_rule(_draft(conditions=[condition]))

        execution = await engine.execute_rule(rule.id, data={"status": "ok"})

        assert execution.status is ExecutionStatus.COMPLETED
        assert any("conditions not met" in line.lower() for line in execution.logs)
        assert execution.result is None
        assert notifier.sent == []
        assert engine.get_rule(rule.id).execution_count == 0

    @pytest.mark.asyncio()
    async def test_data_reaches_actions(self, engine, notifier) -> None:
        action = ActionConfig(type="notification", config={"template": "Invoice $number paid"})
        rule = engine.create_rule(_draft(actions=[action]))

        execution = await engine.execute_rule(rule.id, "event", {"number": "INV-9"})

        assert execution.metadata["data"] == {"number": "INV-9"}
        assert notifier.sent[0][0] == "Invoice INV-9 paid"

    @pytest.mark.asyncio()
    async def test_script_in_production_fails(self, engine, notifier) -> None:
        rule = engine.create_rule(
            _draft(
                actions=[
                    ActionConfig(type="notification"),
                    ActionConfig(type="script", config={"script": "1 + 1"}),
                ]
            )
        )

        execution = await engine.execute_rule(rule.id)

        assert execution.status is ExecutionStatus.FAILED
        assert "disabled" in execution.error
        assert execution.metadata["error_code"] == "SCRIPTS_DISABLED"
        assert execution.logs[-1].startswith("Error: ")
        assert notifier.sent == []
        assert engine.get_rule(rule.id).failure_count == 1

    @pytest.mark.asyncio()
    async def test_failed_action_still_completes(self, engine) -> None:
        rule = engine.create_rule(
            _draft(actions=[ActionConfig(type="workflow", config={"workflow_id": "wf"})])
        )
        execution = await engine.execute_rule(rule.id)
        assert execution.status is ExecutionStatus.COMPLETED
        assert execution.result[0]["code"] == "COLLABORATOR_MISSING"

    @pytest.mark.asyncio()
    async def test_unknown_rule(self, engine) -> None:
        with pytest.raises(NotFoundError):
            await engine.execute_rule("missing")

    @pytest.mark.asyncio()
    async def test_disabled_rule_runs_when_called_directly(self, engine) -> None:
        rule = engine.create_rule(_draft(enabled=False))
        execution = await engine.execute_rule(rule.id)
        assert execution.status is ExecutionStatus.COMPLETED

    @pytest.mark.asyncio()
    async def test_concurrent_runs_get_separate_records(self, engine) -> None:
        rule = engine.create_rule(_draft())
        executions = await asyncio.gather(*(engine.execute_rule(rule.id) for _ in range(3)))
        assert len({e.id for e in executions}) == 3
        assert engine.get_rule(rule.id).execution_count == 3

    @pytest.mark.asyncio()
    async def test_cancel_in_flight_discards_outcome(self) -> None:
        blocking = _BlockingNotifier()
        engine = AutomationEngine(notifier=blocking)
        rule = engine.create_rule(_draft())

        task = asyncio.create_task(engine.execute_rule(rule.id))
        await blocking.entered.wait()
        running = engine.get_execution_history(rule.id)[0]
        assert running.status is ExecutionStatus.RUNNING

        assert engine.cancel_execution(running.id) is True
        blocking.release.set()
        execution = await task

        assert execution.status is ExecutionStatus.CANCELLED
        assert execution.result is None
        assert engine.get_rule(rule.id).execution_count == 0

    @pytest.mark.asyncio()
    async def test_cancel_finished_execution(self, engine) -> None:
        rule = engine.create_rule(_draft())
        execution = await engine.execute_rule(rule.id)
        assert engine.cancel_execution(execution.id) is False

    @pytest.mark.asyncio()
    async def test_deleting_rule_keeps_history(self, engine) -> None:
        rule = engine.create_rule(_draft())
        execution = await engine.execute_rule(rule.id)
        assert engine.delete_rule(rule.id) is True
        assert engine.get_execution(execution.id).rule_id == rule.id


# ===========================================================================
# Development-only capabilities
# ===========================================================================


class TestDevelopmentMode:
    def test_expressions_disabled_in_production(self) -> None:
        config = AutomationConfig(engine={"allow_expressions": True})
        assert AutomationEngine(config).expressions_enabled is False

    def test_expressions_need_opt_in(self) -> None:
        config = AutomationConfig(engine={"environment": "development"})
        assert AutomationEngine(config).expressions_enabled is False

    @pytest.mark.asyncio()
    async def test_logic_condition_and_script(self, dev_config, notifier) -> None:
        engine = AutomationEngine(dev_config, notifier=notifier)
        rule = engine.create_rule(
            _draft(
                conditions=[
                    Condition(type="logic", config={"expression": "${amount} > 1000"})
                ],
                actions=[ActionConfig(type="script", config={"script": "amount / 100"})],
            )
        )

        execution = await engine.execute_rule(rule.id, data={"amount": 2500})

        assert execution.status is ExecutionStatus.COMPLETED
        assert execution.result == [{"script": "amount / 100", "result": 25.0}]

    @pytest.mark.asyncio()
    async def test_logic_condition_false_in_production(self, engine) -> None:
        rule = engine.create_rule(
            _draft(conditions=[Condition(type="logic", config={"expression": "true"})])
        )
        execution = await engine.execute_rule(rule.id)
        assert execution.result is None
        assert "Conditions not met" in execution.logs[-1]


# ===========================================================================
# Queries and statistics
# ===========================================================================


class TestQueries:
    def test_statistics_with_no_executions(self, engine) -> None:
        stats = engine.get_statistics()
        assert stats.total_executions == 0
        assert stats.success_rate == 0
        assert stats.average_execution_time_ms == 0

    @pytest.mark.asyncio()
    async def test_statistics_after_runs(self, engine) -> None:
        ok = engine.create_rule(_draft(name="ok"))
        bad = engine.create_rule(
            _draft(name="bad", actions=[ActionConfig(type="script", config={"script": "1"})])
        )
        engine.disable_rule(bad.id)
        await engine.execute_rule(ok.id)
        await engine.execute_rule(bad.id)

        stats = engine.get_statistics()
        assert stats.total_rules == 2
        assert stats.active_rules == 1
        assert stats.total_executions == 2
        assert stats.success_rate == pytest.approx(0.5)

        per_rule = engine.get_rule_statistics(ok.id)
        assert per_rule.completed == 1

    def test_rule_statistics_unknown_rule(self, engine) -> None:
        with pytest.raises(NotFoundError):
            engine.get_rule_statistics("missing")

    @pytest.mark.asyncio()
    async def test_uncopyable_trigger_data(self, engine) -> None:
        rule = engine.create_rule(_draft())
        lock = threading.Lock()

        execution = await engine.execute_rule(rule.id, "manual", {"lock": lock})

        assert execution.status is ExecutionStatus.COMPLETED
        assert execution.metadata["data"]["lock"] is lock
        assert engine.get_statistics().total_executions == 1
        assert engine.get_execution_history()[0].id == execution.id
        assert engine.get_rule(rule.id).execution_count == 1

    @pytest.mark.asyncio()
    async def test_history_limit_from_config(self) -> None:
        engine = AutomationEngine(AutomationConfig(engine={"history_limit": 2}))
        rule = engine.create_rule(_draft())
        for _ in range(4):
            await engine.execute_rule(rule.id)
        assert len(engine.get_execution_history()) == 2
        assert len(engine.get_execution_history(limit=1)) == 1

    def test_update_and_list(self, engine) -> None:
        rule = engine.create_rule(_draft())
        engine.update_rule(rule.id, description="weekly")
        assert engine.list_rules()[0].description == "weekly"
        with pytest.raises(ValidationError):
            engine.update_rule(rule.id, execution_count=5)


# ===========================================================================
# Webhooks, defaults and rule files
# ===========================================================================


class TestWebhooks:
    @pytest.mark.asyncio()
    async def test_runs_rules_for_path(self, engine, notifier) -> None:
        trigger = TriggerConfig(type="webhook", config={"webhook": "invoices/paid"})
        rule = engine.create_rule(_draft(trigger=trigger))
        engine.create_rule(
            _draft(trigger=TriggerConfig(type="webhook", config={"webhook": "other"}))
        )

        executions = await engine.handle_webhook("invoices/paid", {"id": 7})

        assert [e.rule_id for e in executions] == [rule.id]
        assert executions[0].trigger == "webhook"
        assert executions[0].metadata["data"] == {"id": 7}
        assert len(notifier.sent) == 1

    @pytest.mark.asyncio()
    async def test_disabled_webhook_rules_ignored(self, engine) -> None:
        trigger = TriggerConfig(type="webhook", config={"webhook": "hook"})
        engine.create_rule(_draft(trigger=trigger, enabled=False))
        assert await engine.handle_webhook("hook") == []


class TestSetup:
    def test_seeds_default_rules(self) -> None:
        engine = AutomationEngine(AutomationConfig(engine={"seed_default_rules": True}))
        names = [r.name for r in engine.list_rules()]
        assert names == ["Daily Performance Report", "Anomaly Detection Alert"]

    @pytest.mark.asyncio()
    async def test_anomaly_rule_starts_incident_workflow(self, notifier) -> None:
        invoker = AsyncMock()
        invoker.trigger.return_value = {"run": "inc-1"}
        engine = AutomationEngine(
            AutomationConfig(engine={"seed_default_rules": True}),
            notifier=notifier,
            workflow_invoker=invoker,
        )
        anomaly = engine.list_rules()[1]

        execution = await engine.execute_rule(anomaly.id, "threshold", {"error_rate": 9})

        assert execution.status is ExecutionStatus.COMPLETED
        assert notifier.sent[0][0] == "System anomaly detected"
        invoker.trigger.assert_awaited_once_with("incident-response", {"error_rate": 9})

    def test_rules_path_loaded_on_start(self, tmp_path: Path) -> None:
        rules_file = tmp_path / "rules.toml"
        rules_file.write_text(
            '[[rules]]\nname = "from file"\n'
            '[rules.trigger]\ntype = "manual"\n'
            '[[rules.actions]]\ntype = "notification"\n'
        )
        engine = AutomationEngine(AutomationConfig(engine={"rules_path": str(rules_file)}))
        assert [r.name for r in engine.list_rules()] == ["from file"]

    def test_unknown_timezone(self) -> None:
        with pytest.raises(ConfigurationError):
            AutomationEngine(AutomationConfig(engine={"timezone": "Mars/Olympus_Mons"}))
