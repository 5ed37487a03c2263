"""Sello Hub API.

FastAPI application exposing imports and the derived views.

Endpoints:
    GET    /health
    GET    /imports
    POST   /imports/{kind}
    GET    /products
    GET    /products/export
    POST   /products/simulate
    PUT    /products/velocity
    GET    /strategy
    GET    /skus/{sku}/deep-dive
    GET    /settings/thresholds   (also PUT, DELETE)
    GET    /settings/pricing-rules (also PUT)
    GET    /backup
    POST   /backup/restore
"""

from __future__ import annotations

import logging
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api_models import ErrorResponse
from .config import HubSettings, get_settings
from .routes import (
    AppState,
    create_health_router,
    create_imports_router,
    create_products_router,
    create_settings_router,
)
from .store import StateError, load_state
from .thresholds import load_hub_config, load_pricing_rules

logger = logging.getLogger("sello.api")


def create_app(settings: HubSettings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="Sello Hub",
        version=__version__,
        description="Inventory and pricing data layer for a multi-channel retailer.",
    )

    origins = ["*"] if settings.dev_mode else ["http://localhost:3000"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    hub = load_state(settings.state_path, load_pricing_rules(settings.pricing_rules_path))
    if not Path(settings.state_path).exists():
        hub.velocity_setting = settings.velocity_lookback
    state = AppState(settings=settings, hub=hub, config=load_hub_config(settings.thresholds_path))

    # -----------------------------------------------------------------
    # Exception handlers
    # -----------------------------------------------------------------

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(
                code="INVALID_INPUT",
                message=str(exc),
            ).model_dump(),
        )

    @app.exception_handler(StateError)
    async def state_error_handler(request: Request, exc: StateError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(
                code="INVALID_STATE",
                message=str(exc),
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def general_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error: %s", exc)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                code="INTERNAL_ERROR",
                message="An unexpected error occurred",
                detail=str(exc) if settings.dev_mode else None,
            ).model_dump(),
        )

    app.include_router(create_health_router(state))
    app.include_router(create_imports_router(state))
    app.include_router(create_products_router(state))
    app.include_router(create_settings_router(state))
    app.state.hub = state

    logger.info(
        "Sello Hub API ready: %d products, state at %s",
        len(state.hub.products),
        settings.state_path,
    )
    return app
