"""AccuBooks automation API: FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

import accubooks_automation
from accubooks_automation.api.routers import automations
from accubooks_automation.automations.engine import AutomationEngine
from accubooks_automation.errors import AutomationError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def _status_for(exc: AutomationError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ValidationError):
        return 422
    return 400


async def automation_exception_handler(request: Request, exc: AutomationError) -> JSONResponse:
    """Render engine errors as ``{"error", "message", "details"}``."""
    status = _status_for(exc)
    if status != 404:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content=exc.to_dict())


def create_app(engine: AutomationEngine | None = None, *, manage_engine: bool = True) -> FastAPI:
    """Build an app bound to *engine* (a fresh default engine if omitted).

    With ``manage_engine`` the app starts the engine's dispatcher on
    startup and drains it on shutdown.
    """
    engine = engine or AutomationEngine()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if manage_engine:
            await engine.start()
        yield
        if manage_engine:
            await engine.stop()

    app = FastAPI(
        title="AccuBooks Automation",
        version=accubooks_automation.__version__,
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.add_exception_handler(AutomationError, automation_exception_handler)
    app.include_router(automations.router)

    @app.get("/health")
    async def health(request: Request) -> JSONResponse:
        """Return JSON health status of the engine."""
        current: AutomationEngine = request.app.state.engine
        return JSONResponse(
            {
                "status": "ok",
                "version": accubooks_automation.__version__,
                "scheduler_running": current.running,
                "rules": len(current.store),
            }
        )

    return app
