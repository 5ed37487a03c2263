"""Rule-based pricing strategy.

For each product the engine computes a velocity-weighted price over the
platforms that count towards global figures, the stock runway in weeks
and the net margin at that price, then suggests INCREASE, DECREASE or
MAINTAIN according to ``StrategyConfig``. A suggestion below the floor
price (cost plus postage plus the safety margin) is flagged as a safety
violation but still reported.
"""

from __future__ import annotations

import csv
import io
import math
from collections.abc import Iterable
from datetime import date
from enum import Enum

from pydantic import BaseModel

from .metrics import margin_at_price
from .models import PlatformConfig, Product
from .thresholds import StrategyConfig

NEW_PRODUCT_STATUS = "New Product"
NEW_PRODUCT_DAYS = 14
NO_SALES_WEEKS = 999.0

EXPORT_COLUMNS = [
    "SKU",
    "Master SKU",
    "Name",
    "Filtered Price",
    "Runway (Wks)",
    "Margin %",
    "Is New",
    "Action",
    "Suggested Price",
    "Floor Price",
    "Safety Alert",
    "Reason",
]


class StrategyAction(str, Enum):
    INCREASE = "INCREASE"
    DECREASE = "DECREASE"
    MAINTAIN = "MAINTAIN"

    @property
    def priority(self) -> int:
        return {
            StrategyAction.INCREASE: 0,
            StrategyAction.DECREASE: 1,
            StrategyAction.MAINTAIN: 2,
        }[self]


class StrategyRow(BaseModel):
    sku: str
    name: str
    filtered_price: float
    weekly_velocity: float
    effective_stock: float
    runway_weeks: float
    margin_percent: float
    floor_price: float
    is_new: bool
    action: StrategyAction
    adjusted_price: float
    reasoning: str
    safety_violation: bool


def filtered_price(product: Product, rules: dict[str, PlatformConfig]) -> float:
    """Velocity-weighted channel price, ignoring excluded platforms."""
    channels = [
        c for c in product.channels
        if not (c.platform in rules and rules[c.platform].is_excluded)
    ]
    if not channels:
        return product.current_price

    velocity = sum(c.velocity for c in channels)
    if velocity <= 0:
        return product.current_price
    revenue = sum((c.price or product.current_price) * c.velocity for c in channels)
    return revenue / velocity


def psychological_price(price: float) -> float:
    """Round up to the next whole unit minus a penny (12.30 -> 12.99)."""
    return round(math.ceil(price) - 0.01, 2)


def is_new_product(product: Product, today: date | None = None) -> bool:
    if product.inventory_status == NEW_PRODUCT_STATUS:
        return True
    if product.last_updated is None:
        return False
    today = today or date.today()
    return (today - product.last_updated).days < NEW_PRODUCT_DAYS


def evaluate(
    product: Product,
    rules: dict[str, PlatformConfig],
    config: StrategyConfig,
    include_incoming: bool = False,
    today: date | None = None,
) -> StrategyRow:
    price = filtered_price(product, rules)
    weekly_velocity = product.average_daily_sales * 7
    effective_stock = product.stock_level + (product.incoming_stock if include_incoming else 0)
    runway_weeks = effective_stock / weekly_velocity if weekly_velocity > 0 else NO_SALES_WEEKS
    margin = margin_at_price(product, price)
    floor = (product.cost_price + product.postage) * (1 + config.safety.min_margin_percent / 100)
    is_new = is_new_product(product, today)

    inc = config.increase
    dec = config.decrease
    action = StrategyAction.MAINTAIN
    adjusted = price
    reasoning = "Stable"

    if (
        runway_weeks < inc.min_runway_weeks
        and effective_stock > inc.min_stock
        and weekly_velocity >= inc.min_velocity_7_days
    ):
        action = StrategyAction.INCREASE
        step = max(price * inc.adjustment_percent / 100, inc.adjustment_fixed)
        adjusted = psychological_price(price + step)
        reasoning = f"Runway < {inc.min_runway_weeks:g} wks & Vel > {inc.min_velocity_7_days:g}"
    elif not is_new or dec.include_new_products:
        high_stock = runway_weeks > dec.high_stock_weeks
        med_stock_high_margin = (
            runway_weeks > dec.med_stock_weeks and margin > dec.min_margin_percent
        )
        if high_stock or med_stock_high_margin:
            action = StrategyAction.DECREASE
            adjusted = psychological_price(price * (1 - dec.adjustment_percent / 100))
            if high_stock:
                reasoning = f"Runway > {dec.high_stock_weeks:g} wks"
            else:
                reasoning = (
                    f"Runway > {dec.med_stock_weeks:g} wks & "
                    f"Margin > {dec.min_margin_percent:g}%"
                )

    return StrategyRow(
        sku=product.sku,
        name=product.name,
        filtered_price=price,
        weekly_velocity=weekly_velocity,
        effective_stock=effective_stock,
        runway_weeks=runway_weeks,
        margin_percent=margin,
        floor_price=floor,
        is_new=is_new,
        action=action,
        adjusted_price=adjusted,
        reasoning=reasoning,
        safety_violation=adjusted < floor,
    )


def build_strategy(
    products: Iterable[Product],
    rules: dict[str, PlatformConfig],
    config: StrategyConfig | None = None,
    include_incoming: bool = False,
    search: str = "",
    today: date | None = None,
) -> list[StrategyRow]:
    """Strategy rows, INCREASE first, then DECREASE, then MAINTAIN."""
    config = config or StrategyConfig()
    needle = search.lower()
    rows = [
        evaluate(p, rules, config, include_incoming, today)
        for p in products
        if needle in p.sku.lower()
    ]
    rows.sort(key=lambda r: r.action.priority)
    return rows


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def _platform_aliases(product: Product, platform: str) -> list[str]:
    target = platform.strip().lower()
    channel = next((c for c in product.channels if c.platform.strip().lower() == target), None)
    if channel is None:
        channel = next(
            (
                c for c in product.channels
                if target in c.platform.strip().lower() or c.platform.strip().lower() in target
            ),
            None,
        )
    return channel.aliases if channel else []


def export_strategy_csv(
    rows: Iterable[StrategyRow],
    products: Iterable[Product],
    platform: str | None = None,
) -> str:
    """Strategy matrix as CSV.

    Without ``platform`` there is one row per master SKU. With a platform,
    each of that platform's SKU aliases gets its own row (falling back to
    the master SKU when the product has none).
    """
    by_sku = {p.sku: p for p in products}
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(EXPORT_COLUMNS)

    for r in rows:
        common = [
            " ".join(r.name.splitlines()),
            f"{r.filtered_price:.2f}",
            f"{r.runway_weeks:.1f}",
            f"{r.margin_percent:.1f}",
            "Yes" if r.is_new else "No",
            r.action.value,
            f"{r.adjusted_price:.2f}",
            f"{r.floor_price:.2f}",
            "VIOLATION" if r.safety_violation else "",
            r.reasoning,
        ]
        skus = [r.sku]
        if platform and platform != "All" and r.sku in by_sku:
            skus = _platform_aliases(by_sku[r.sku], platform) or [r.sku]
        for sku in skus:
            writer.writerow([sku, r.sku, *common])
    return buf.getvalue()
