"""Shared fixtures for the automation engine tests."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest

from accubooks_automation.automations.engine import AutomationEngine
from accubooks_automation.config.schema import AutomationConfig


class RecordingNotifier:
    """NotificationSender that remembers what it was asked to send."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.emails: list[tuple[str, dict[str, Any]]] = []

    async def send(self, message: str, parameters: dict[str, Any]) -> None:
        self.sent.append((message, parameters))

    async def send_email(self, message: str, parameters: dict[str, Any]) -> None:
        self.emails.append((message, parameters))


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def engine(notifier: RecordingNotifier) -> AutomationEngine:
    """Production engine with a recording notifier."""
    return AutomationEngine(AutomationConfig(), notifier=notifier)


@pytest.fixture()
def dev_config() -> AutomationConfig:
    return AutomationConfig(engine={"environment": "development", "allow_expressions": True})


@pytest.fixture()
def monday_9am() -> datetime:
    # 2024-01-01 was a Monday.
    return datetime(2024, 1, 1, 9, 0, tzinfo=UTC)
