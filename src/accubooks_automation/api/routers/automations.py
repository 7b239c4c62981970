"""Automation rules, executions, events and webhooks."""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Body, Query, Request
from pydantic import BaseModel

from accubooks_automation.automations.engine import AutomationEngine
from accubooks_automation.errors import ValidationError

router = APIRouter()


class ExecuteRequest(BaseModel):
    """Body for a manual rule run."""

    data: Any = None


class EventRequest(BaseModel):
    """An event to publish on the engine's bus."""

    name: str
    payload: Any = None


def _get_engine(request: Request) -> AutomationEngine:
    return request.app.state.engine


# ------------------------------------------------------------------
# Rules
# ------------------------------------------------------------------


@router.get("/rules")
async def list_rules(request: Request) -> list[dict[str, Any]]:
    return [rule.to_dict() for rule in _get_engine(request).list_rules()]


@router.post("/rules", status_code=201)
async def create_rule(request: Request, body: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Create a rule from a JSON definition."""
    return _get_engine(request).create_rule(body).to_dict()


@router.get("/rules/{rule_id}")
async def get_rule(request: Request, rule_id: str) -> dict[str, Any]:
    return _get_engine(request).get_rule(rule_id).to_dict()


@router.patch("/rules/{rule_id}")
async def update_rule(
    request: Request, rule_id: str, body: dict[str, Any] = Body(...)
) -> dict[str, Any]:
    """Merge the given fields into a rule."""
    return _get_engine(request).update_rule(rule_id, body).to_dict()


@router.delete("/rules/{rule_id}")
async def delete_rule(request: Request, rule_id: str) -> dict[str, Any]:
    return {"id": rule_id, "deleted": _get_engine(request).delete_rule(rule_id)}


@router.post("/rules/{rule_id}/enable")
async def enable_rule(request: Request, rule_id: str) -> dict[str, Any]:
    return _get_engine(request).enable_rule(rule_id).to_dict()


@router.post("/rules/{rule_id}/disable")
async def disable_rule(request: Request, rule_id: str) -> dict[str, Any]:
    return _get_engine(request).disable_rule(rule_id).to_dict()


@router.post("/rules/{rule_id}/execute")
async def execute_rule(
    request: Request, rule_id: str, body: ExecuteRequest | None = None
) -> dict[str, Any]:
    """Run a rule now and return its execution record."""
    data = body.data if body is not None else None
    execution = await _get_engine(request).execute_rule(rule_id, "manual", data)
    return execution.to_dict()


@router.get("/rules/{rule_id}/statistics")
async def rule_statistics(request: Request, rule_id: str) -> dict[str, Any]:
    stats = _get_engine(request).get_rule_statistics(rule_id)
    return {
        "rule_id": stats.rule_id,
        "executions": stats.executions,
        "completed": stats.completed,
        "failed": stats.failed,
        "cancelled": stats.cancelled,
        "success_rate": stats.success_rate,
        "average_execution_time_ms": stats.average_execution_time_ms,
    }


# ------------------------------------------------------------------
# Executions
# ------------------------------------------------------------------


@router.get("/executions")
async def list_executions(
    request: Request,
    rule_id: str | None = None,
    limit: int = Query(50, ge=0, le=1000),
) -> list[dict[str, Any]]:
    """Most recent executions first."""
    history = _get_engine(request).get_execution_history(rule_id=rule_id, limit=limit)
    return [execution.to_dict() for execution in history]


@router.get("/executions/{execution_id}")
async def get_execution(request: Request, execution_id: str) -> dict[str, Any]:
    return _get_engine(request).get_execution(execution_id).to_dict()


@router.post("/executions/{execution_id}/cancel")
async def cancel_execution(request: Request, execution_id: str) -> dict[str, Any]:
    engine = _get_engine(request)
    cancelled = engine.cancel_execution(execution_id)
    return {"id": execution_id, "cancelled": cancelled}


@router.get("/statistics")
async def statistics(request: Request) -> dict[str, Any]:
    return _get_engine(request).get_statistics().to_dict()


# ------------------------------------------------------------------
# Stimuli
# ------------------------------------------------------------------


@router.post("/events", status_code=202)
async def emit_event(request: Request, event: EventRequest) -> dict[str, Any]:
    """Publish an event; event rules fire asynchronously."""
    delivered = _get_engine(request).emit(event.name, event.payload)
    return {"event": event.name, "delivered": delivered}


@router.post("/webhooks/{path:path}")
async def receive_webhook(request: Request, path: str) -> dict[str, Any]:
    """Run every webhook rule bound to *path* with the request body as data."""
    raw = await request.body()
    try:
        payload = json.loads(raw) if raw else None
    except ValueError as exc:
        raise ValidationError(f"Webhook body is not valid JSON: {exc}", field="body") from exc
    executions = await _get_engine(request).handle_webhook(path, payload)
    return {"path": path, "executions": [e.to_dict() for e in executions]}
