"""Load rule definitions from a TOML (or JSON) rules file.

Example::

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
"""

from __future__ import annotations

import json
import logging
import tomllib
from pathlib import Path
from typing import Any

from accubooks_automation.automations.models import RuleDraft
from accubooks_automation.errors import ValidationError

logger = logging.getLogger(__name__)


def load_rules_file(path: str | Path) -> list[RuleDraft]:
    """Parse *path* into rule drafts. Rules are validated when stored.

    Raises:
        ValidationError: If the file cannot be read or a rule is malformed.
    """
    path = Path(path).expanduser()
    try:
        raw = _read(path)
    except (OSError, tomllib.TOMLDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError(f"Cannot read rules file {path}: {exc}", field="rules") from exc

    entries = raw.get("rules", []) if isinstance(raw, dict) else raw
    if not isinstance(entries, list):
        raise ValidationError(f"{path}: 'rules' must be a list of tables", field="rules")

    drafts = []
    for index, entry in enumerate(entries):
        drafts.append(parse_rule(entry, index=index))
    logger.debug("Parsed %d rule definitions from %s", len(drafts), path)
    return drafts


def parse_rule(entry: Any, index: int = 0) -> RuleDraft:
    """Turn one rule table into a :class:`RuleDraft`."""
    if not isinstance(entry, dict):
        raise ValidationError(f"Rule {index} is not a table", field="rules")
    try:
        return RuleDraft.from_dict(entry)
    except KeyError as exc:
        raise ValidationError(
            f"Rule {index} is missing {exc.args[0]!r}", field=str(exc.args[0])
        ) from exc
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Rule {index} is malformed: {exc}", field="rules") from exc


def _read(path: Path) -> Any:
    if path.suffix.lower() == ".json":
        return json.loads(path.read_text(encoding="utf-8"))
    with open(path, "rb") as fh:
        return tomllib.load(fh)
