"""API route modules. Each exposes a ``create_*_router(state)`` factory."""

from .health import create_health_router
from .imports import create_imports_router
from .products import create_products_router
from .settings import create_settings_router
from .state import AppState

__all__ = [
    "AppState",
    "create_health_router",
    "create_imports_router",
    "create_products_router",
    "create_settings_router",
]
