"""Default configuration values for the automation engine."""

from __future__ import annotations

DEFAULT_CONFIG: dict[str, dict[str, object]] = {
    "engine": {
        "environment": "production",
        "history_limit": 100,
        "allow_expressions": False,
        "timezone": "UTC",
        "seed_default_rules": False,
        "rules_path": "",
    },
    "scheduler": {
        "enabled": True,
        "tick_seconds": 60.0,
        "max_concurrent_executions": 8,
        "drain_timeout_seconds": 10.0,
    },
    "http": {
        "timeout_seconds": 30.0,
        "user_agent": "accubooks-automation/0.1.0",
    },
    "logging": {
        "level": "INFO",
        "format": "text",
    },
}
