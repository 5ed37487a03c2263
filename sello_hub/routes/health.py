"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from .. import __version__
from ..api_models import HealthResponse
from .state import AppState


def create_health_router(state: AppState) -> APIRouter:
    router = APIRouter(tags=["health"])

    @router.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Liveness plus the size of the loaded state."""
        return HealthResponse(
            version=__version__,
            products=len(state.hub.products),
            history_logs=len(state.hub.price_history),
            dev_mode=state.settings.dev_mode,
        )

    return router
