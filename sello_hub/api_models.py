"""Request and response models for the hub API."""

from __future__ import annotations

import datetime as dt
from typing import Any

from pydantic import BaseModel, Field

from .config import VelocityLookback


class ErrorResponse(BaseModel):
    """Standard error envelope."""

    code: str
    message: str
    detail: str | None = None


class HealthResponse(BaseModel):
    """Response for GET /health."""

    status: str = "ok"
    version: str
    products: int = 0
    history_logs: int = 0
    dev_mode: bool = False


# ---------------------------------------------------------------------------
# Imports
# ---------------------------------------------------------------------------


class ImporterInfo(BaseModel):
    kind: str
    name: str


class ImportResponse(BaseModel):
    """Preview of an upload, plus what changed when it was applied."""

    kind: str
    importer: str
    summary: str
    item_count: int
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    preview: dict[str, Any] = Field(default_factory=dict)
    applied: dict[str, int] | None = None


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


class SimulateRequest(BaseModel):
    intensity: float | None = None
    allow_out_of_stock: bool | None = None
    overrides: dict[str, float | None] = Field(default_factory=dict)
    confirm: bool = False
    reset: bool = False


class SimulatedPrice(BaseModel):
    id: str
    sku: str
    current_price: float
    simulated_price: float


class SimulateResponse(BaseModel):
    intensity: float
    allow_out_of_stock: bool
    confirmed: bool
    prices: list[SimulatedPrice]


class VelocityRequest(BaseModel):
    lookback: VelocityLookback


class PriceChangeRequest(BaseModel):
    sku: str
    new_price: float
    old_price: float | None = None
    date: dt.date | None = None
