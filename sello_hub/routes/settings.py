"""Threshold, pricing rule and backup endpoints.

GET    /settings/thresholds     - current thresholds and strategy
PUT    /settings/thresholds     - validate and save
DELETE /settings/thresholds     - reset to defaults
GET    /settings/pricing-rules  - per-platform rules in the state
PUT    /settings/pricing-rules  - replace them
GET    /settings/logistics      - courier rate card
PUT    /settings/logistics      - replace it
POST   /settings/logistics/calibrate - rates from shipping history
GET    /backup                  - download a JSON backup
POST   /backup/restore          - replace the state from a backup
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, File, HTTPException, UploadFile
from fastapi.responses import JSONResponse

from ..logistics import calibrate_logistics
from ..models import LogisticsRule, PlatformConfig
from ..store import StateError, backup_filename, export_backup, restore_backup
from ..thresholds import (
    HubConfig,
    PricingRulesFile,
    load_pricing_rules,
    reset_hub_config,
    save_hub_config,
)
from .state import AppState

logger = logging.getLogger("sello.routes.settings")


def create_settings_router(state: AppState) -> APIRouter:
    router = APIRouter(tags=["settings"])

    @router.get("/settings/thresholds", response_model=HubConfig)
    async def get_thresholds() -> HubConfig:
        return state.config

    @router.put("/settings/thresholds", response_model=HubConfig)
    async def put_thresholds(config: HubConfig) -> HubConfig:
        save_hub_config(config, state.settings.thresholds_path)
        state.config = config
        return config

    @router.delete("/settings/thresholds", response_model=HubConfig)
    async def delete_thresholds() -> HubConfig:
        state.config = reset_hub_config(state.settings.thresholds_path)
        return state.config

    @router.get("/settings/pricing-rules", response_model=dict[str, PlatformConfig])
    async def get_pricing_rules():
        return state.hub.pricing_rules

    @router.put("/settings/pricing-rules", response_model=dict[str, PlatformConfig])
    async def put_pricing_rules(rules: PricingRulesFile):
        with state.lock:
            state.hub.pricing_rules = rules.platforms
            state.persist()
        return rules.platforms

    @router.get("/settings/logistics", response_model=list[LogisticsRule])
    async def get_logistics():
        return state.hub.logistics_rules

    @router.put("/settings/logistics", response_model=list[LogisticsRule])
    async def put_logistics(rules: list[LogisticsRule]):
        with state.lock:
            state.hub.logistics_rules = rules
            state.persist()
        return rules

    @router.post("/settings/logistics/calibrate")
    async def calibrate():
        with state.lock:
            updated = calibrate_logistics(state.hub)
            state.persist()
        return {
            "updated": updated,
            "shipments": len(state.hub.shipment_history),
            "rules": [r.model_dump(mode="json") for r in state.hub.logistics_rules],
        }

    @router.get("/backup")
    async def backup() -> JSONResponse:
        return JSONResponse(
            content=export_backup(state.hub),
            headers={"Content-Disposition": f'attachment; filename="{backup_filename()}"'},
        )

    @router.post("/backup/restore")
    async def restore(file: UploadFile = File(...)):
        contents = await file.read()
        try:
            restored = restore_backup(
                contents, load_pricing_rules(state.settings.pricing_rules_path)
            )
        except StateError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        with state.lock:
            state.hub = restored
            state.simulator.reset()
            state.persist()
        logger.info("State restored from %s", file.filename)
        return {
            "products": len(restored.products),
            "history_logs": len(restored.price_history),
            "refunds": len(restored.refund_history),
        }

    return router
