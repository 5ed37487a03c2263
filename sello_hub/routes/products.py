"""Product list, price simulator, strategy and deep dive endpoints.

GET  /products              - filtered product view
GET  /products/export       - product view as CSV
POST /products/simulate     - adjust the bulk price simulator
PUT  /products/velocity     - change the lookback and recalculate
POST /products/price-changes - lodge a manual price change
GET  /strategy              - pricing strategy rows (JSON or CSV)
GET  /skus/{sku}/deep-dive  - per-SKU analytics bundle
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import Response

from ..api_models import (
    PriceChangeRequest,
    SimulatedPrice,
    SimulateRequest,
    SimulateResponse,
    VelocityRequest,
)
from ..dates import now_in
from ..deep_dive import DeepDive, LedgerFilter, SkuNotFoundError, build_deep_dive
from ..models import PriceChangeRecord
from ..product_list import ProductFilters, build_product_view, export_products_csv
from ..reconcile import recalculate_velocities, record_price_change
from ..strategy import StrategyRow, build_strategy, export_strategy_csv
from .state import AppState

logger = logging.getLogger("sello.routes.products")


def _csv_response(body: str, filename: str) -> Response:
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def create_products_router(state: AppState) -> APIRouter:
    router = APIRouter(tags=["products"])

    def _filters(
        search: str,
        status: str,
        platform: str,
        manager: str,
        sort: str | None,
        desc: bool,
    ) -> ProductFilters:
        return ProductFilters(
            search=search,
            status=status,
            platform=platform,
            manager=manager,
            sort_key=sort,
            descending=desc,
        )

    @router.get("/products")
    async def list_products(
        search: str = "",
        status: str = "All",
        platform: str = "All",
        manager: str = "All",
        sort: str | None = None,
        desc: bool = False,
    ):
        filters = _filters(search, status, platform, manager, sort, desc)
        view = build_product_view(state.hub.products, filters, state.simulator)
        return [p.model_dump(mode="json") for p in view]

    @router.get("/products/export")
    async def export_products(
        search: str = "",
        status: str = "All",
        platform: str = "All",
        manager: str = "All",
    ) -> Response:
        filters = _filters(search, status, platform, manager, None, False)
        view = build_product_view(state.hub.products, filters, state.simulator)
        return _csv_response(export_products_csv(view, state.simulator), "products.csv")

    @router.post("/products/simulate", response_model=SimulateResponse)
    async def simulate(request: SimulateRequest) -> SimulateResponse:
        sim = state.simulator
        with state.lock:
            if request.reset:
                sim.reset()
            if request.intensity is not None:
                sim.set_intensity(request.intensity)
            if request.allow_out_of_stock is not None:
                sim.allow_out_of_stock = request.allow_out_of_stock
            for product_id, price in request.overrides.items():
                sim.set_override(product_id, price)

            view = build_product_view(state.hub.products)
            if request.confirm:
                sim.confirm(view)
            prices = [
                SimulatedPrice(
                    id=p.id,
                    sku=p.sku,
                    current_price=p.current_price,
                    simulated_price=sim.simulated_price(p),
                )
                for p in view
            ]
        return SimulateResponse(
            intensity=sim.intensity,
            allow_out_of_stock=sim.allow_out_of_stock,
            confirmed=sim.confirmed,
            prices=prices,
        )

    @router.put("/products/velocity")
    async def set_velocity(request: VelocityRequest):
        with state.lock:
            state.hub.velocity_setting = request.lookback
            changed = recalculate_velocities(state.hub, tz=state.settings.app_timezone)
            state.persist()
        return {"lookback": request.lookback, "changed": changed}

    @router.post("/products/price-changes", response_model=PriceChangeRecord)
    async def add_price_change(request: PriceChangeRequest) -> PriceChangeRecord:
        day = request.date or now_in(state.settings.app_timezone).date()
        with state.lock:
            record = record_price_change(
                state.hub, request.sku, request.new_price, day, request.old_price
            )
            state.persist()
        return record

    @router.get("/strategy", response_model=list[StrategyRow])
    async def get_strategy(
        search: str = "",
        include_incoming: bool = False,
        fmt: str = Query("json", alias="format", pattern="^(json|csv)$"),
        platform: str | None = None,
    ):
        rows = build_strategy(
            state.hub.products,
            state.hub.pricing_rules,
            state.config.strategy,
            include_incoming=include_incoming,
            search=search,
        )
        if fmt == "csv":
            body = export_strategy_csv(rows, state.hub.products, platform)
            suffix = f"_{platform}" if platform else ""
            return _csv_response(body, f"strategy{suffix}.csv")
        return rows

    @router.get("/skus/{sku}/deep-dive", response_model=DeepDive)
    async def deep_dive(
        sku: str,
        days: int = Query(7, ge=1, le=3650),
        platform: str = "All",
        tx_type: LedgerFilter = Query(LedgerFilter.ALL, alias="type"),
        limit: int = Query(50, ge=1, le=1000),
    ) -> DeepDive:
        try:
            return build_deep_dive(
                state.hub,
                sku,
                state.config.thresholds,
                days=days,
                platform=platform,
                tx_type=tx_type,
                limit=limit,
                tz=state.settings.app_timezone,
            )
        except SkuNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e

    return router
