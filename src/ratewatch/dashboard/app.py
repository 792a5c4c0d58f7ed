"""FastAPI application factory for the rates dashboard API."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from ratewatch.dashboard.routes import actions, api


def create_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the FastAPI dashboard application.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  Used by main.py to inject startup/shutdown logic.

    Returns:
        Configured FastAPI application with the JSON API and action routes.
        Components (reconciler, ranger, store, scheduler...) are expected on
        ``app.state`` before the first request.
    """
    app = FastAPI(
        title="VES Rate Watch",
        lifespan=lifespan,
    )

    app.include_router(api.router, prefix="/api")
    app.include_router(actions.router, prefix="/actions")

    return app
