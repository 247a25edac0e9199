"""
Admin API.

FastAPI-based REST surface for runtime rule updates and inspection.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from usbgate import __version__
from usbgate.api.auth import init_auth, key_store, require_api_key
from usbgate.api.routes import deps, router

if TYPE_CHECKING:
    from usbgate.audit.database import AuditDatabase
    from usbgate.policy.engine import AuthorizationEngine
    from usbgate.policy.store import PolicyStore

logger = logging.getLogger(__name__)


def create_app(debug: bool = False) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        debug: Enable debug mode

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="USB Gate API",
        description="Admin API for USB Gate device authorization",
        version=__version__,
        debug=debug,
        docs_url="/api/docs",
        openapi_url="/api/openapi.json",
    )

    app.include_router(router)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.error("Unhandled exception: %s", exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if debug else None,
            },
        )

    return app


def configure_services(
    store: "PolicyStore | None" = None,
    engine: "AuthorizationEngine | None" = None,
    db: "AuditDatabase | None" = None,
    api_key: str | None = None,
) -> str:
    """
    Inject services into the routes.

    Args:
        store: Policy store instance
        engine: Authorization engine instance
        db: Audit database instance
        api_key: Admin API key (generated if None)

    Returns:
        The active admin API key
    """
    deps.store = store if store is not None else (engine.store if engine else None)
    deps.engine = engine
    deps.db = db

    key = init_auth(api_key)
    logger.info("API services configured")
    return key


__all__ = [
    "create_app",
    "configure_services",
    "deps",
    "router",
    "init_auth",
    "key_store",
    "require_api_key",
]
