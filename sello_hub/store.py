"""Hub state persistence and backups.

The working state lives in one JSON file written atomically (temp file
plus rename). Backups use the dashboard's export layout:

    {
      "products": [...], "rules": {...}, "history": [...],
      "refunds": [...], "shipmentHistory": [...],
      "priceChangeHistory": [...], "learnedAliases": {...},
      "logistics": [...],
      "velocitySetting": "30", "timestamp": "2025-12-22T01:00:00.000Z"
    }

Restoring fills any missing section with its default and recomputes each
product's optimal price from the restored history.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .dates import iso_timestamp
from .logistics import default_logistics_rules
from .metrics import optimal_price
from .models import HubState, PlatformConfig

logger = logging.getLogger("sello.store")

_BACKUP_KEYS = {
    "products": "products",
    "rules": "pricing_rules",
    "history": "price_history",
    "refunds": "refund_history",
    "shipmentHistory": "shipment_history",
    "priceChangeHistory": "price_change_history",
    "learnedAliases": "learned_aliases",
    "velocitySetting": "velocity_setting",
    "logistics": "logistics_rules",
}


class StateError(Exception):
    """Raised when a state file or backup cannot be read."""


# ---------------------------------------------------------------------------
# State file
# ---------------------------------------------------------------------------


def load_state(
    path: str | Path,
    default_rules: dict[str, PlatformConfig] | None = None,
) -> HubState:
    """Load the state file, or a fresh state with ``default_rules``.

    Raises:
        StateError: If the file exists but is not a valid state.
    """
    path = Path(path)
    if not path.exists():
        logger.info("No state at %s, starting empty", path)
        return HubState(
            pricing_rules=dict(default_rules or {}),
            logistics_rules=default_logistics_rules(),
        )

    try:
        state = HubState.model_validate_json(path.read_text(encoding="utf-8"))
    except ValidationError as e:
        raise StateError(f"Invalid state file {path}: {e.error_count()} errors") from e

    if not state.pricing_rules and default_rules:
        state.pricing_rules = dict(default_rules)
    if not state.logistics_rules:
        state.logistics_rules = default_logistics_rules()
    logger.info(
        "Loaded state from %s: %d products, %d history logs",
        path,
        len(state.products),
        len(state.price_history),
    )
    return state


def save_state(state: HubState, path: str | Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    state.timestamp = datetime.now(UTC)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(state.model_dump_json(indent=2), encoding="utf-8")
    os.replace(tmp, path)
    logger.info("Saved state to %s (%d products)", path, len(state.products))


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------


def export_backup(state: HubState, now: datetime | None = None) -> dict[str, Any]:
    """The state in backup layout, stamped with ``now``."""
    dumped = state.model_dump(mode="json")
    payload = {key: dumped[field] for key, field in _BACKUP_KEYS.items()}
    payload["timestamp"] = iso_timestamp(now or datetime.now(UTC))
    return payload


def backup_filename(now: datetime | None = None) -> str:
    day = (now or datetime.now(UTC)).date().isoformat()
    return f"sello_hub_backup_{day}.json"


def restore_backup(
    payload: dict[str, Any] | str | bytes,
    default_rules: dict[str, PlatformConfig] | None = None,
) -> HubState:
    """Build a state from a backup.

    Missing sections fall back to empty collections, default pricing and
    logistics rules and a ``"30"`` velocity setting.

    Raises:
        StateError: If the payload is not valid JSON or not a valid backup.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            raise StateError("Invalid backup file format.") from e
    if not isinstance(payload, dict):
        raise StateError("Invalid backup file format.")

    data: dict[str, Any] = {}
    for key, field in _BACKUP_KEYS.items():
        value = payload.get(key)
        if value:
            data[field] = value
    data.setdefault("pricing_rules", {k: v.model_dump() for k, v in (default_rules or {}).items()})
    data.setdefault("velocity_setting", "30")
    data.setdefault("logistics_rules", [r.model_dump() for r in default_logistics_rules()])
    if payload.get("timestamp"):
        data["timestamp"] = payload["timestamp"]

    try:
        state = HubState.model_validate(data)
    except ValidationError as e:
        raise StateError(f"Invalid backup: {e.error_count()} errors") from e

    for product in state.products:
        product.optimal_price = optimal_price(product.sku, state.price_history)
    logger.info(
        "Restored backup: %d products, %d history logs, %d refunds",
        len(state.products),
        len(state.price_history),
        len(state.refund_history),
    )
    return state
