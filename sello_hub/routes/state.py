"""Shared application state for route modules.

Created once in ``api.create_app()`` and injected into each router
factory.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from ..config import HubSettings
from ..models import HubState
from ..product_list import PriceSimulator
from ..store import save_state
from ..thresholds import HubConfig

logger = logging.getLogger("sello.routes.state")


@dataclass
class AppState:
    """Shared state created during app startup."""

    settings: HubSettings
    hub: HubState
    config: HubConfig
    simulator: PriceSimulator = field(default_factory=PriceSimulator)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def persist(self) -> None:
        save_state(self.hub, self.settings.state_path)
