"""Hub configuration.

Loads from environment variables and .env file (prefix ``SELLO_``).
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

VelocityLookback = Literal["7", "30", "60", "90", "ALL"]


class HubSettings(BaseSettings):
    """Configuration for the hub library, CLI and API.

    All values can be set via environment variables or .env file, e.g.
    ``SELLO_STATE_PATH=/srv/hub/state.json``.
    """

    # ----- Storage -----
    state_path: str = Field(
        default="data/hub_state.json",
        description="JSON file holding products, histories and aliases.",
    )
    thresholds_path: str = Field(
        default="config/thresholds.yaml",
        description="YAML file with alert thresholds and the pricing strategy.",
    )
    pricing_rules_path: str = Field(
        default="config/pricing_rules.yaml",
        description="YAML file with the default per-platform pricing rules.",
    )

    # ----- Analysis -----
    app_timezone: str = Field(
        default="Australia/Melbourne",
        description="Business timezone used to bucket sales by day.",
    )
    velocity_lookback: VelocityLookback = Field(
        default="30",
        description="Days of history behind average daily sales.",
    )
    default_period_days: int = Field(
        default=30,
        description="Sales period assumed when a report has no dates.",
    )

    # ----- Uploads -----
    max_upload_mb: int = Field(default=20, description="Largest accepted upload.")

    # ----- Server -----
    host: str = Field(default="0.0.0.0", description="Bind host.")
    port: int = Field(default=8010, description="Bind port.")
    dev_mode: bool = Field(
        default=False,
        description="Dev mode: enables CORS wildcard and auto-reload.",
    )
    log_level: str = Field(default="INFO", description="Root log level.")

    model_config = {
        "env_prefix": "SELLO_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> HubSettings:
    """Get cached settings singleton."""
    return HubSettings()
