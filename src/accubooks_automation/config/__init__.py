"""Automation engine configuration system."""

from accubooks_automation.config.logging import configure_logging
from accubooks_automation.config.manager import ConfigManager
from accubooks_automation.config.schema import AutomationConfig

__all__ = ["AutomationConfig", "ConfigManager", "configure_logging"]
