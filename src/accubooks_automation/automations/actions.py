"""Action execution: run a rule's actions in order, isolating failures."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from string import Template
from typing import Any

from accubooks_automation.automations.collaborators import (
    ApiClient,
    DataBackend,
    NotificationSender,
    WorkflowInvoker,
)
from accubooks_automation.automations.expressions import ExpressionEvaluator
from accubooks_automation.automations.models import ActionConfig, ActionType
from accubooks_automation.errors import (
    AutomationError,
    CollaboratorMissingError,
    MissingParameterError,
    ScriptsDisabledError,
    UnsupportedOperationError,
)

logger = logging.getLogger(__name__)

ActionResult = dict[str, Any]
_Handler = Callable[[ActionConfig, Any], Awaitable[ActionResult]]

_DEFAULT_NOTIFICATION = "Default notification"
_HTTP_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})


class ActionExecutor:
    """Dispatches each action type to its collaborator.

    ``execute`` always returns exactly one result per action, in order; a
    failing action becomes ``{"error": message, "type": ...}`` and the
    remaining actions still run. The one exception is a ``script`` action
    in production, which fails the whole batch before anything runs.
    """

    def __init__(
        self,
        *,
        production: bool = True,
        notifier: NotificationSender | None = None,
        api_client: ApiClient | None = None,
        workflow_invoker: WorkflowInvoker | None = None,
        data_backend: DataBackend | None = None,
        script_evaluator: ExpressionEvaluator | None = None,
    ) -> None:
        self._production = production
        self._notifier = notifier
        self._api_client = api_client
        self._workflow_invoker = workflow_invoker
        self._data_backend = data_backend
        self._script_evaluator = script_evaluator
        self._handlers: dict[ActionType, _Handler] = {
            ActionType.NOTIFICATION: self._action_notification,
            ActionType.EMAIL: self._action_email,
            ActionType.WORKFLOW: self._action_workflow,
            ActionType.DATA: self._action_data,
            ActionType.API: self._action_api,
            ActionType.SCRIPT: self._action_script,
        }

    async def execute(self, actions: list[ActionConfig], context: Any = None) -> list[ActionResult]:
        """Run actions strictly in order.

        Raises:
            ScriptsDisabledError: If any action is a script in production.
        """
        if self._production:
            for action in actions:
                if action.type == ActionType.SCRIPT:
                    raise ScriptsDisabledError("Script actions are disabled in production")

        results: list[ActionResult] = []
        for index, action in enumerate(actions):
            try:
                results.append(await self.execute_action(action, context))
            except ScriptsDisabledError:
                raise
            except AutomationError as exc:
                logger.warning("Action %d (%s) failed: %s", index, action.type.value, exc)
                results.append({"error": exc.message, "type": action.type.value, "code": exc.code})
            except Exception as exc:
                logger.warning("Action %d (%s) raised: %s", index, action.type.value, exc)
                results.append({"error": str(exc) or type(exc).__name__, "type": action.type.value})
        return results

    async def execute_action(self, action: ActionConfig, context: Any = None) -> ActionResult:
        """Execute a single action. Errors propagate to the caller."""
        handler = self._handlers.get(action.type)
        if handler is None:
            raise UnsupportedOperationError(
                f"Unknown action type: {action.type}", operation=str(action.type)
            )
        return await handler(action, context)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _action_notification(self, action: ActionConfig, context: Any) -> ActionResult:
        """Render the template and hand it to the notification sender.

        config: template (str), parameters (dict)
        """
        template = action.config.get("template") or _DEFAULT_NOTIFICATION
        parameters = dict(action.config.get("parameters") or {})
        notifier = self._require(self._notifier, "notification sender")
        message = render_template(template, parameters, context)
        await notifier.send(message, parameters)
        return {"sent": True, "template": template, "parameters": parameters, "message": message}

    async def _action_email(self, action: ActionConfig, context: Any) -> ActionResult:
        """Render the template and send it as email.

        config: template (str), parameters (dict, ``to`` recipient)
        """
        template = action.config.get("template") or _DEFAULT_NOTIFICATION
        parameters = dict(action.config.get("parameters") or {})
        notifier = self._require(self._notifier, "notification sender")
        message = render_template(template, parameters, context)
        await notifier.send_email(message, parameters)
        return {"sent": True, "template": template, "parameters": parameters, "message": message}

    async def _action_workflow(self, action: ActionConfig, context: Any) -> ActionResult:
        """Start a workflow.

        config: workflow_id (str), or parameters.workflow_id / parameters.workflowId
        """
        workflow_id = _lookup(action, "workflow_id", "workflowId")
        if not workflow_id:
            raise MissingParameterError(
                "Workflow ID required for workflow action",
                action_type="workflow",
                parameter="workflow_id",
            )
        invoker = self._require(self._workflow_invoker, "workflow invoker")
        outcome = await invoker.trigger(str(workflow_id), context)
        return {"workflow_id": workflow_id, "triggered": True, "outcome": outcome}

    async def _action_data(self, action: ActionConfig, context: Any) -> ActionResult:
        """Create, update or delete a record.

        config: operation (create|update|delete), parameters (dict)
        """
        operation = _lookup(action, "operation")
        parameters = dict(action.config.get("parameters") or {})
        backend = self._require(self._data_backend, "data backend")
        if operation == "create":
            return await backend.create(parameters, context)
        if operation == "update":
            return await backend.update(parameters, context)
        if operation == "delete":
            return await backend.delete(parameters, context)
        raise UnsupportedOperationError(f"Unknown data operation: {operation}", operation=operation)

    async def _action_api(self, action: ActionConfig, context: Any) -> ActionResult:
        """Call an outbound HTTP endpoint.

        config: endpoint (str), method (default POST), headers (dict), body
        """
        endpoint = action.config.get("endpoint")
        if not endpoint:
            raise MissingParameterError(
                "Endpoint required for API action", action_type="api", parameter="endpoint"
            )
        method = str(action.config.get("method") or "POST").upper()
        if method not in _HTTP_METHODS:
            raise UnsupportedOperationError(f"Unsupported HTTP method: {method}", operation=method)
        headers = dict(action.config.get("headers") or {})
        body = action.config.get("body")
        client = self._require(self._api_client, "API client")
        status_code = await client.request(method, endpoint, headers=headers, body=body)
        return {"endpoint": endpoint, "method": method, "status_code": status_code, "success": True}

    async def _action_script(self, action: ActionConfig, context: Any) -> ActionResult:
        """Evaluate a script expression. Development deployments only.

        config: script (str)
        """
        script = action.config.get("script")
        if not script:
            raise MissingParameterError(
                "Script required for script action", action_type="script", parameter="script"
            )
        if self._production:
            raise ScriptsDisabledError("Script actions are disabled in production")
        evaluator = self._require(self._script_evaluator, "script evaluator")
        scope = {"data": context, **context} if isinstance(context, dict) else {"data": context}
        return {"script": script, "result": evaluator.evaluate(str(script), scope)}

    @staticmethod
    def _require(collaborator: Any, name: str) -> Any:
        if collaborator is None:
            raise CollaboratorMissingError(f"No {name} configured", collaborator=name)
        return collaborator


def render_template(template: str, parameters: dict[str, Any], context: Any) -> str:
    """Fill ``$name`` / ``${name}`` slots from parameters, then top-level context keys."""
    values: dict[str, Any] = {}
    if isinstance(context, dict):
        values.update({k: v for k, v in context.items() if isinstance(k, str)})
    values.update(parameters)
    return Template(template).safe_substitute(values)


def _lookup(action: ActionConfig, *keys: str) -> Any:
    """Find a value in the action config, falling back to its parameters."""
    parameters = action.config.get("parameters") or {}
    for key in keys:
        if action.config.get(key):
            return action.config[key]
        if isinstance(parameters, dict) and parameters.get(key):
            return parameters[key]
    return None
