"""Product list: runway, status banding, filtering and the price simulator.

When the list is narrowed to a platform or manager, each product's
velocity and price are recomputed from the matching channels only, and
runway/status follow from those figures.
"""

from __future__ import annotations

import csv
import io
import math
from collections.abc import Iterable

from pydantic import BaseModel, Field

from .metrics import clamp
from .models import Product, ProductStatus, Recommendation

NO_SALES_RUNWAY = 999.0
MAX_INTENSITY = 50.0
ALL = "All"

EXPORT_COLUMNS = [
    "SKU",
    "Name",
    "Subcategory",
    "Current Price",
    "Est. New Price",
    "Old Price",
    "Stock",
    "Velocity",
    "Lead Time",
    "Days Remaining",
    "Status",
    "Cost",
]


# ---------------------------------------------------------------------------
# Runway and status
# ---------------------------------------------------------------------------


def runway_days(stock: float, velocity: float) -> float:
    """Days of stock left. No stock -> 0; no sales -> 999."""
    if stock <= 0:
        return 0.0
    if velocity > 0:
        return stock / velocity
    return NO_SALES_RUNWAY


def classify(stock: float, runway: float, lead_time: float) -> tuple[ProductStatus, Recommendation]:
    """Status band and action for a runway against the supplier lead time."""
    if stock <= 0:
        return ProductStatus.CRITICAL, Recommendation.OUT_OF_STOCK
    if runway < lead_time:
        return ProductStatus.CRITICAL, Recommendation.INCREASE_PRICE
    if runway > lead_time * 4:
        return ProductStatus.OVERSTOCK, Recommendation.DECREASE_PRICE
    if runway < lead_time * 1.5:
        return ProductStatus.WARNING, Recommendation.MAINTAIN
    return ProductStatus.HEALTHY, Recommendation.MAINTAIN


_RUNWAY_BINS = [
    (14, "2 Weeks"),
    (28, "4 Weeks"),
    (84, "12 Weeks"),
    (168, "24 Weeks"),
]


def runway_bin(days: float, stock: float) -> str:
    if stock <= 0:
        return "Out of Stock"
    for limit, label in _RUNWAY_BINS:
        if days <= limit:
            return label
    return "24 Weeks +"


# ---------------------------------------------------------------------------
# Filtered view
# ---------------------------------------------------------------------------


class ProductFilters(BaseModel):
    search: str = ""
    status: str = ALL
    platform: str = ALL
    manager: str = ALL
    velocity_min: float | None = None
    velocity_max: float | None = None
    runway_min: float | None = None
    runway_max: float | None = None
    sort_key: str | None = None
    descending: bool = False


def _channel_figures(product: Product, platform: str, manager: str) -> tuple[bool, float, float]:
    """(visible, velocity, price) for the channels matching the filter."""
    if platform == ALL and manager == ALL:
        return True, product.average_daily_sales, product.current_price

    matching = [
        c
        for c in product.channels
        if (platform == ALL or c.platform == platform)
        and (manager == ALL or c.manager == manager)
    ]
    if not matching:
        return False, 0.0, product.current_price

    velocity = sum(c.velocity for c in matching)
    price = product.current_price
    weighted = sum((c.price or product.current_price) * c.velocity for c in matching)
    if velocity > 0:
        price = round(weighted / velocity, 2)
    else:
        price = round(
            sum(c.price or product.current_price for c in matching) / len(matching), 2
        )
    return True, velocity, price


def _in_range(value: float, lo: float | None, hi: float | None) -> bool:
    return (lo is None or value >= lo) and (hi is None or value <= hi)


def _sort_value(product: Product, key: str, simulator: PriceSimulator | None):
    if key == "est_new_price":
        return simulator.simulated_price(product) if simulator else product.current_price
    value = getattr(product, key, None)
    if isinstance(value, str):
        return value.lower()
    if value is None:
        return ""
    return value


def build_product_view(
    products: Iterable[Product],
    filters: ProductFilters | None = None,
    simulator: PriceSimulator | None = None,
) -> list[Product]:
    """Products as the list shows them.

    Returns copies whose ``average_daily_sales``, ``current_price``,
    ``days_remaining``, ``status`` and ``recommendation`` reflect the
    platform/manager filter. Default order: Critical first, then SKU.
    """
    filters = filters or ProductFilters()
    search = filters.search.lower()
    view: list[Product] = []

    for product in products:
        visible, velocity, price = _channel_figures(product, filters.platform, filters.manager)
        if not visible:
            continue

        runway = runway_days(product.stock_level, velocity)
        status, rec = classify(product.stock_level, runway, product.lead_time_days)
        row = product.model_copy(
            update={
                "average_daily_sales": velocity,
                "current_price": price,
                "days_remaining": runway,
                "status": status,
                "recommendation": rec.value,
            }
        )

        if search and search not in row.sku.lower() and search not in row.name.lower():
            continue
        if filters.status != ALL and row.status.value != filters.status:
            continue
        if not _in_range(velocity, filters.velocity_min, filters.velocity_max):
            continue
        if not _in_range(runway, filters.runway_min, filters.runway_max):
            continue
        view.append(row)

    if filters.sort_key:
        view.sort(
            key=lambda p: _sort_value(p, filters.sort_key, simulator),
            reverse=filters.descending,
        )
    else:
        view.sort(key=lambda p: (p.status != ProductStatus.CRITICAL, p.sku))
    return view


def unique_managers(products: Iterable[Product]) -> list[str]:
    return sorted({c.manager for p in products for c in p.channels})


def unique_platforms(products: Iterable[Product]) -> list[str]:
    return sorted({c.platform for p in products for c in p.channels})


# ---------------------------------------------------------------------------
# Bulk price simulator
# ---------------------------------------------------------------------------


class PriceSimulator(BaseModel):
    """What-if pricing over the product list.

    Critical products are raised and overstock lowered by ``intensity``
    percent. Manual overrides always win. Products without stock keep
    their price unless ``allow_out_of_stock`` is set.
    """

    intensity: float = 0.0
    allow_out_of_stock: bool = False
    overrides: dict[str, float] = Field(default_factory=dict)
    confirmed: bool = False

    def set_intensity(self, value: float) -> None:
        """Change the slider; manual overrides are discarded."""
        self.intensity = clamp(value, 0.0, MAX_INTENSITY)
        self.confirmed = False
        self.overrides.clear()

    def set_override(self, product_id: str, price: float | None) -> None:
        self.confirmed = False
        if price is None or math.isnan(price):
            self.overrides.pop(product_id, None)
        else:
            self.overrides[product_id] = price

    def simulated_price(self, product: Product) -> float:
        if product.id in self.overrides:
            return self.overrides[product.id]
        if product.stock_level <= 0 and not self.allow_out_of_stock:
            return product.current_price

        multiplier = 1.0
        if product.status == ProductStatus.CRITICAL:
            multiplier = 1 + self.intensity / 100
        elif product.status == ProductStatus.OVERSTOCK:
            multiplier = 1 - self.intensity / 100
        return round(product.current_price * multiplier, 2)

    def confirm(self, products: Iterable[Product]) -> dict[str, float]:
        """Lock in the simulated prices as ``.99`` overrides.

        Each price is rounded up to the next whole unit minus a penny (0.99
        for anything that would go negative). Only changed rows are stored.
        The slider resets to zero. Returns the overrides.
        """
        overrides = dict(self.overrides)
        changed = False
        for product in products:
            final = math.ceil(self.simulated_price(product)) - 0.01
            if final < 0:
                final = 0.99
            if abs(final - product.current_price) > 0.001:
                overrides[product.id] = round(final, 2)
                changed = True

        if changed or self.overrides:
            self.overrides = overrides
            self.intensity = 0.0
            self.confirmed = True
        return self.overrides

    def reset(self) -> None:
        self.intensity = 0.0
        self.overrides.clear()
        self.confirmed = False


# ---------------------------------------------------------------------------
# CSV export
# ---------------------------------------------------------------------------


def export_products_csv(
    products: Iterable[Product],
    simulator: PriceSimulator | None = None,
) -> str:
    """Product list as CSV. ``Est. New Price`` is blank when unchanged."""
    simulator = simulator or PriceSimulator()
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(EXPORT_COLUMNS)
    for p in products:
        simulated = simulator.simulated_price(p)
        new_price = f"{simulated:.2f}" if abs(simulated - p.current_price) > 0.001 else ""
        writer.writerow(
            [
                p.sku,
                p.name,
                p.subcategory or "",
                f"{p.current_price:.2f}",
                new_price,
                f"{p.old_price:.2f}" if p.old_price else "",
                f"{p.stock_level:g}",
                f"{p.average_daily_sales:.2f}",
                f"{p.lead_time_days:g}",
                f"{p.days_remaining:.0f}",
                p.status.value,
                f"{p.cost_price:.2f}" if p.cost_price else "0.00",
            ]
        )
    return buf.getvalue()
