"""
FastAPI application entrypoint for the workspace agent.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from workspace_agent.api.routes import auth_router, router as api_router, workspace_error_handler
from workspace_agent.core.config import get_settings
from workspace_agent.core.errors import WorkspaceAgentError
from workspace_agent.core.logging import configure_logging
from workspace_agent.dependencies import get_store_connection


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    # uvicorn runs shutdown on SIGINT and SIGTERM.
    await get_store_connection().close()


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Workspace Agent",
        version="0.1.0",
        description="Google sign-in and resilient Gmail, Drive and Calendar access.",
        lifespan=lifespan,
    )
    app.add_exception_handler(WorkspaceAgentError, workspace_error_handler)
    app.include_router(auth_router, prefix="/auth")
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]
