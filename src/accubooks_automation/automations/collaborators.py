"""External collaborators reached through the action executor.

The engine only defines these contracts. Hosts inject real
implementations; the defaults here log or keep state in memory.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    """Delivers rendered notification and email messages."""

    async def send(self, message: str, parameters: dict[str, Any]) -> None: ...

    async def send_email(self, message: str, parameters: dict[str, Any]) -> None: ...


class WorkflowInvoker(Protocol):
    """Starts a workflow by id."""

    async def trigger(self, workflow_id: str, data: Any) -> Any: ...


class DataBackend(Protocol):
    """Creates, updates and deletes business records."""

    async def create(self, parameters: dict[str, Any], data: Any) -> dict[str, Any]: ...

    async def update(self, parameters: dict[str, Any], data: Any) -> dict[str, Any]: ...

    async def delete(self, parameters: dict[str, Any], data: Any) -> dict[str, Any]: ...


class ApiClient(Protocol):
    """Makes outbound HTTP calls for ``api`` actions."""

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        headers: dict[str, str],
        body: Any,
    ) -> int: ...


class LoggingNotificationSender:
    """Writes notifications to the log instead of delivering them."""

    async def send(self, message: str, parameters: dict[str, Any]) -> None:
        logger.info("Notification: %s %s", message, parameters)

    async def send_email(self, message: str, parameters: dict[str, Any]) -> None:
        logger.info("Email to %s: %s", parameters.get("to", "<unset>"), message)


class InMemoryDataBackend:
    """Keeps records in a dict keyed by id."""

    def __init__(self) -> None:
        self.records: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    async def create(self, parameters: dict[str, Any], data: Any) -> dict[str, Any]:
        record_id = str(parameters.get("id") or uuid.uuid4())
        record = {k: v for k, v in parameters.items() if k not in ("operation", "id")}
        with self._lock:
            self.records[record_id] = record
        logger.debug("Created data record %s", record_id)
        return {"created": True, "id": record_id}

    async def update(self, parameters: dict[str, Any], data: Any) -> dict[str, Any]:
        record_id = parameters.get("id")
        changes = {k: v for k, v in parameters.items() if k not in ("operation", "id")}
        with self._lock:
            if record_id in self.records:
                self.records[record_id].update(changes)
        logger.debug("Updated data record %s", record_id)
        return {"updated": True, "id": record_id}

    async def delete(self, parameters: dict[str, Any], data: Any) -> dict[str, Any]:
        record_id = parameters.get("id")
        with self._lock:
            self.records.pop(record_id, None)
        logger.debug("Deleted data record %s", record_id)
        return {"deleted": True, "id": record_id}


class HttpxApiClient:
    """``ApiClient`` over :class:`httpx.AsyncClient`.

    A shared client may be injected; otherwise one is opened per call.
    Non-2xx responses raise :class:`httpx.HTTPStatusError`.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = "accubooks-automation",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._timeout = timeout
        self._user_agent = user_agent
        self._client = client

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        headers: dict[str, str],
        body: Any,
    ) -> int:
        merged_headers = {"User-Agent": self._user_agent, **headers}
        if self._client is not None:
            resp = await self._client.request(method, endpoint, headers=merged_headers, json=body)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.request(method, endpoint, headers=merged_headers, json=body)
        resp.raise_for_status()
        logger.debug("API %s %s -> %s", method, endpoint, resp.status_code)
        return resp.status_code
