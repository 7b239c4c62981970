"""HTTP surface for the automation engine."""

from accubooks_automation.api.app import create_app

__all__ = ["create_app"]
