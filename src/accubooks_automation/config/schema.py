"""Pydantic models for automation engine configuration.

Nested section models use plain ``BaseModel`` so that pydantic-settings
only reads environment variables for the top-level
:class:`AutomationConfig` (``ACCUBOOKS_ENGINE__ENVIRONMENT=development``).
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSection(BaseModel):
    """Core engine settings."""

    # Anything other than "development" is treated as production.
    environment: Literal["production", "development"] = "production"
    history_limit: int = Field(default=100, ge=1)
    allow_expressions: bool = False
    timezone: str = "UTC"
    seed_default_rules: bool = False
    rules_path: str = ""


class SchedulerSection(BaseModel):
    """Scheduler/dispatcher loop settings."""

    enabled: bool = True
    tick_seconds: float = Field(default=60.0, gt=0)
    max_concurrent_executions: int = Field(default=8, ge=1)
    drain_timeout_seconds: float = Field(default=10.0, ge=0)


class HttpSection(BaseModel):
    """Outbound HTTP settings for ``api`` actions."""

    timeout_seconds: float = Field(default=30.0, gt=0)
    user_agent: str = "accubooks-automation/0.1.0"


class LoggingSection(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    format: Literal["text", "json"] = "text"


class AutomationConfig(BaseSettings):
    """Top-level automation configuration model.

    Maps to the TOML structure:
        [engine] / [scheduler] / [http] / [logging]

    All fields are optional with sensible defaults. The config file lives
    at ``~/.config/accubooks/automation.toml``.
    """

    model_config = SettingsConfigDict(
        env_prefix="ACCUBOOKS_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    engine: EngineSection = Field(default_factory=EngineSection)
    scheduler: SchedulerSection = Field(default_factory=SchedulerSection)
    http: HttpSection = Field(default_factory=HttpSection)
    logging: LoggingSection = Field(default_factory=LoggingSection)

    @property
    def is_production(self) -> bool:
        """Whether dev-only capabilities (scripts, expressions) are locked."""
        return self.engine.environment != "development"

    def get_rules_path(self) -> Path | None:
        """Return the resolved rules file path, if one is configured."""
        if not self.engine.rules_path:
            return None
        return Path(self.engine.rules_path).expanduser()
