"""Automation error hierarchy.

Structured exception types for the rule engine. Every error carries a
stable ``code`` so hosts can map failures to HTTP statuses or dashboard
alerts without string matching.
"""

from __future__ import annotations


class AutomationError(Exception):
    """Base error for all automation engine exceptions."""

    code = "AUTOMATION_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


# Rule Store Errors
class ValidationError(AutomationError):
    """A rule definition is malformed."""

    code = "VALIDATION"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, {"field": field})
        self.field = field


class NotFoundError(AutomationError):
    """Unknown rule or execution id."""

    code = "NOT_FOUND"

    def __init__(self, message: str, kind: str = "rule", identifier: str | None = None):
        super().__init__(message, {"kind": kind, "id": identifier})
        self.kind = kind
        self.identifier = identifier


# Action Errors
class ActionError(AutomationError):
    """Base error for a single action failing."""

    code = "ACTION_ERROR"


class MissingParameterError(ActionError):
    """Action config is missing a required field."""

    code = "MISSING_PARAMETER"

    def __init__(self, message: str, action_type: str | None = None, parameter: str | None = None):
        super().__init__(message, {"action_type": action_type, "parameter": parameter})
        self.action_type = action_type
        self.parameter = parameter


class UnsupportedOperationError(ActionError):
    """Unknown action sub-operation or action type."""

    code = "UNSUPPORTED_OPERATION"

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message, {"operation": operation})
        self.operation = operation


class ScriptsDisabledError(ActionError):
    """Script execution attempted outside development mode."""

    code = "SCRIPTS_DISABLED"


# Configuration Errors
class ConfigurationError(AutomationError):
    """The engine is wired incorrectly for the requested work."""

    code = "CONFIGURATION_ERROR"


class CollaboratorMissingError(ConfigurationError):
    """An action needs an external collaborator that was not provided."""

    code = "COLLABORATOR_MISSING"

    def __init__(self, message: str, collaborator: str | None = None):
        super().__init__(message, {"collaborator": collaborator})
        self.collaborator = collaborator
