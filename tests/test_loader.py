"""Tests for loading rules files."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from accubooks_automation.automations.loader import load_rules_file, parse_rule
from accubooks_automation.automations.models import ActionType, TriggerType
from accubooks_automation.errors import ValidationError

RULES_TOML = """
[[rules]]
name = "Overdue invoice reminder"
category = "notification"

[rules.trigger]
type = "event"
config = { event = "invoice.overdue" }

[[rules.conditions]]
type = "data"
config = { field = "amount", operator = "greater", value = 1000 }

[[rules.actions]]
type = "email"
config = { template = "Invoice $number is overdue", parameters = { to = "ar@example.com" } }

[[rules]]
name = "Nightly sync"

[rules.trigger]
type = "schedule"
config = { schedule = "0 2 * * *" }

[[rules.actions]]
type = "api"
config = { endpoint = "https://example.com/sync", method = "POST" }
"""


class TestLoadRulesFile:
    def test_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.toml"
        path.write_text(RULES_TOML)

        drafts = load_rules_file(path)

        assert [d.name for d in drafts] == ["Overdue invoice reminder", "Nightly sync"]
        assert drafts[0].trigger.type is TriggerType.EVENT
        assert drafts[0].conditions[0].config["value"] == 1000
        assert drafts[0].actions[0].type is ActionType.EMAIL
        assert drafts[1].trigger.config == {"schedule": "0 2 * * *"}

    def test_json_list(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.json"
        path.write_text(
            json.dumps(
                [
                    {
                        "name": "hook",
                        "trigger": {"type": "webhook", "config": {"webhook": "/stripe"}},
                        "actions": [{"type": "notification"}],
                    }
                ]
            )
        )
        (draft,) = load_rules_file(path)
        assert draft.trigger.type is TriggerType.WEBHOOK

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.toml"
        path.write_text("")
        assert load_rules_file(path) == []

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError) as exc_info:
            load_rules_file(tmp_path / "absent.toml")
        assert exc_info.value.details["field"] == "rules"

    def test_bad_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.toml"
        path.write_text("[[rules]\nname = ")
        with pytest.raises(ValidationError):
            load_rules_file(path)

    def test_rules_not_a_list(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.toml"
        path.write_text('rules = "nope"\n')
        with pytest.raises(ValidationError, match="must be a list"):
            load_rules_file(path)


class TestParseRule:
    def test_missing_trigger(self) -> None:
        with pytest.raises(ValidationError, match="missing 'trigger'"):
            parse_rule({"name": "x", "actions": []}, index=3)

    def test_unknown_trigger_type(self) -> None:
        with pytest.raises(ValidationError, match="malformed"):
            parse_rule({"name": "x", "trigger": {"type": "lunar"}, "actions": []})

    def test_not_a_table(self) -> None:
        with pytest.raises(ValidationError, match="not a table"):
            parse_rule(["x"], index=1)
