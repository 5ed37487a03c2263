"""Shared metric helpers.

Every view that shows revenue, profit, margin or TACoS goes through these
functions so the product list, strategy page and deep dive agree on the
numbers. None of them raise on missing values or zero denominators.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from typing import Any

from .models import PriceLog, Product


def to_number(x: Any, default: float = 0.0) -> float:
    """Coerce ``x`` to float, returning ``default`` for None/NaN/garbage."""
    if x is None:
        return default
    if isinstance(x, bool):
        return float(x)
    if isinstance(x, str):
        x = x.strip()
        if not x:
            return 0.0
    try:
        num = float(x)
    except (TypeError, ValueError):
        return default
    return default if math.isnan(num) else num


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(x, hi))


def safe_div(numerator: float, denominator: float, fallback: float = 0.0) -> float:
    if not denominator:
        return fallback
    result = numerator / denominator
    return fallback if math.isnan(result) else result


# ---------------------------------------------------------------------------
# Per-log helpers
# ---------------------------------------------------------------------------


def calc_revenue(log: PriceLog) -> float:
    return to_number(log.price) * to_number(log.velocity)


def calc_units(log: PriceLog) -> float:
    return to_number(log.velocity)


def calc_ad_spend(log: PriceLog) -> float:
    """Ad spend on the row. Ad-only rows (price 0) are valid."""
    return to_number(log.ads_spend)


def calc_profit(log: PriceLog) -> float:
    """Explicit profit when the report carried one, else revenue x margin."""
    if log.profit is not None:
        return to_number(log.profit)
    return calc_revenue(log) * (to_number(log.margin) / 100)


def calc_margin_pct(revenue: float, profit: float) -> float:
    return safe_div(profit, revenue) * 100


def calc_tacos_pct(ad_spend: float, revenue: float) -> float:
    """Total advertising cost of sales. 0 when there is no revenue."""
    return safe_div(ad_spend, revenue) * 100


# ---------------------------------------------------------------------------
# Product-level helpers
# ---------------------------------------------------------------------------


def margin_at_price(product: Product | None, price: float) -> float:
    """Net margin percentage if ``product`` sold at ``price``.

    Extra freight is income charged to the buyer, so it is added to the
    price rather than the costs.
    """
    if product is None or not price or math.isnan(price) or price <= 0:
        return 0.0
    income = price + to_number(product.extra_freight)
    net = income - product.total_unit_cost
    return (net / price) * 100


def optimal_price(sku: str, history: Iterable[PriceLog]) -> float:
    """Historical price with the highest daily profit for ``sku``."""
    logs = [log for log in history if log.sku == sku]
    if not logs:
        return 0.0

    best_price = 0.0
    best_profit = -math.inf
    for log in logs:
        price = to_number(log.price)
        daily_profit = price * (to_number(log.margin) / 100) * to_number(log.velocity)
        if daily_profit > best_profit:
            best_profit = daily_profit
            best_price = price

    return best_price if best_price > 0 else to_number(logs[0].price)
