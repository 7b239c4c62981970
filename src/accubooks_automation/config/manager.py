"""Locate, read and write the automation config file."""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

import tomli_w

from accubooks_automation.config.defaults import DEFAULT_CONFIG
from accubooks_automation.config.schema import AutomationConfig

logger = logging.getLogger(__name__)

_CONFIG_DIR = Path("~/.config/accubooks").expanduser()
_CONFIG_FILE = "automation.toml"


class ConfigManager:
    """Owns ``automation.toml`` and the directory around it.

    A relative ``engine.rules_path`` in the file is resolved against the
    config directory, so a rules file can sit next to the config.
    Environment variables override file values only when no file exists.
    """

    def __init__(self, config_dir: Path | None = None) -> None:
        self._config_dir = config_dir or _CONFIG_DIR

    @property
    def config_dir(self) -> Path:
        return self._config_dir

    def load(self) -> AutomationConfig:
        """Load the config file merged over defaults.

        A missing or unreadable file yields defaults (plus environment).
        """
        path = self.get_config_path()
        if not path.is_file():
            logger.debug("No config at %s, using defaults", path)
            return AutomationConfig()

        try:
            with open(path, "rb") as fh:
                raw = tomllib.load(fh)
        except (tomllib.TOMLDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable config %s: %s", path, exc)
            return AutomationConfig()

        merged = _deep_merge(DEFAULT_CONFIG, raw)
        engine = merged.get("engine")
        if isinstance(engine, dict) and engine.get("rules_path"):
            engine["rules_path"] = str(self.resolve_rules_path(str(engine["rules_path"])))
        return AutomationConfig(**merged)

    def save(self, config: AutomationConfig) -> Path:
        """Write *config* as TOML and return the path written."""
        path = self.get_config_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as fh:
            tomli_w.dump(config.model_dump(), fh)
        logger.info("Wrote automation config to %s", path)
        return path

    def init(self, rules_path: str = "", *, overwrite: bool = False) -> Path:
        """Create a config file with defaults, optionally pointing at a rules file.

        Raises:
            FileExistsError: If a config exists and *overwrite* is False.
        """
        if self.exists() and not overwrite:
            raise FileExistsError(self.get_config_path())
        config = AutomationConfig()
        if rules_path:
            config.engine.rules_path = rules_path
        return self.save(config)

    def resolve_rules_path(self, rules_path: str) -> Path:
        """Expand ``~`` and anchor relative paths at the config directory."""
        path = Path(rules_path).expanduser()
        if not path.is_absolute():
            path = self._config_dir / path
        return path

    def exists(self) -> bool:
        return self.get_config_path().is_file()

    def get_config_path(self) -> Path:
        return self._config_dir / _CONFIG_FILE


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge *override* into a copy of *base*, section by section."""
    merged: dict[str, Any] = {}
    for key in {*base, *override}:
        base_val = base.get(key)
        over_val = override.get(key)
        if isinstance(base_val, dict) and isinstance(over_val, dict):
            merged[key] = _deep_merge(base_val, over_val)
        elif key in override:
            merged[key] = over_val
        elif isinstance(base_val, dict):
            merged[key] = dict(base_val)
        else:
            merged[key] = base_val
    return merged
