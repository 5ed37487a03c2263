"""Pydantic models for the hub state.

These models are the single source of truth for everything the importers
produce and the reconcile layer mutates. The whole dataset round-trips
through ``HubState.model_dump_json()`` / ``HubState.model_validate_json()``
for backups and the on-disk state file.

Conventions:
    - Sales history dates are calendar days (``date``); refunds keep the
      full timestamp from the marketplace report (``datetime``).
    - Prices and fees are per unit, in the store currency.
    - ``ChannelData.sku_alias`` is a comma-separated list of the SKUs a
      marketplace uses for the product.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field


class ProductStatus(str, Enum):
    """Stock health band shown on the product list."""

    CRITICAL = "Critical"
    WARNING = "Warning"
    HEALTHY = "Healthy"
    OVERSTOCK = "Overstock"

    @property
    def sort_rank(self) -> int:
        return {
            ProductStatus.CRITICAL: 0,
            ProductStatus.WARNING: 1,
            ProductStatus.OVERSTOCK: 2,
            ProductStatus.HEALTHY: 3,
        }[self]


class Recommendation(str, Enum):
    """Action attached to a status band."""

    OUT_OF_STOCK = "Out of Stock"
    INCREASE_PRICE = "Increase Price"
    DECREASE_PRICE = "Decrease Price"
    MAINTAIN = "Maintain"


class ChangeType(str, Enum):
    """Direction of a recorded CA price change."""

    INCREASE = "INCREASE"
    DECREASE = "DECREASE"


# ---------------------------------------------------------------------------
# Product
# ---------------------------------------------------------------------------


class ChannelData(BaseModel):
    """Per-platform sales figures and SKU aliases for a product."""

    platform: str
    manager: str = "Unassigned"
    velocity: float = 0.0
    price: float | None = None
    sku_alias: str | None = None

    @property
    def aliases(self) -> list[str]:
        if not self.sku_alias:
            return []
        return [a.strip() for a in self.sku_alias.split(",") if a.strip()]


class ShipmentDetail(BaseModel):
    """One inbound container line for a product."""

    container_id: str
    status: str = "Pending"
    quantity: float = 0.0
    eta: date | None = None
    customs_date: date | None = None


class CartonDimensions(BaseModel):
    length: float = 0.0
    width: float = 0.0
    height: float = 0.0
    weight: float = 0.0


class SkuCostDetail(BaseModel):
    """Cost breakdown from the ERP SKU profit report.

    Amount fields are period totals; ``*_pct`` fields are percentages of
    sales (already scaled to 0-100).
    """

    unit_price: float = 0.0
    sales_amt: float = 0.0
    sku_qty: float = 0.0
    extra_freight: float = 0.0
    promo_rebate: float = 0.0
    cogs: float = 0.0
    cogs_pct: float = 0.0
    postage: float = 0.0
    postage_pct: float = 0.0
    selling_fee: float = 0.0
    selling_fee_pct: float = 0.0
    ads_fee: float = 0.0
    ads_fee_pct: float = 0.0
    other_fee: float = 0.0
    other_fee_pct: float = 0.0
    subscription_fee: float = 0.0
    subscription_fee_pct: float = 0.0
    wms_fee: float = 0.0
    wms_fee_pct: float = 0.0
    resend_qty: float = 0.0
    resend_amt: float = 0.0
    refund_qty: float = 0.0
    refund_amt: float = 0.0
    return_amt_pct: float = 0.0
    profit_incl_rn: float = 0.0
    profit_incl_rn_pct: float = 0.0
    last_updated: datetime | None = None


class Product(BaseModel):
    """A master SKU and everything the dashboard knows about it."""

    id: str
    sku: str
    name: str = ""
    channels: list[ChannelData] = Field(default_factory=list)

    # Pricing
    current_price: float = 0.0
    ca_price: float = 0.0
    old_price: float = 0.0
    floor_price: float | None = None
    ceiling_price: float | None = None
    optimal_price: float = 0.0

    # Stock
    stock_level: float = 0.0
    incoming_stock: float = 0.0
    shipments: list[ShipmentDetail] = Field(default_factory=list)
    average_daily_sales: float = 0.0
    previous_daily_sales: float = 0.0
    lead_time_days: float = 30.0

    # Per-unit costs
    cost_price: float = 0.0
    selling_fee: float = 0.0
    ads_fee: float = 0.0
    postage: float = 0.0
    extra_freight: float = 0.0
    other_fee: float = 0.0
    subscription_fee: float = 0.0
    wms_fee: float = 0.0

    # Derived
    status: ProductStatus = ProductStatus.HEALTHY
    recommendation: str = Recommendation.MAINTAIN.value
    days_remaining: float = 999.0
    return_rate: float = 0.0
    total_refunded: float = 0.0

    # Catalogue
    category: str = "Uncategorized"
    subcategory: str | None = None
    brand: str | None = None
    inventory_status: str | None = None
    carton_dimensions: CartonDimensions | None = None
    cost_detail: SkuCostDetail | None = None
    last_updated: date | None = None

    @property
    def all_aliases(self) -> list[str]:
        """Every channel alias, in channel order."""
        out: list[str] = []
        for channel in self.channels:
            out.extend(channel.aliases)
        return out

    @property
    def total_unit_cost(self) -> float:
        """Landed cost per unit excluding extra freight (which is income)."""
        return (
            self.cost_price
            + self.selling_fee
            + self.ads_fee
            + self.postage
            + self.other_fee
            + self.subscription_fee
            + self.wms_fee
        )

    @property
    def stock_value(self) -> float:
        return self.stock_level * self.cost_price

    def channel(self, platform: str) -> ChannelData | None:
        for ch in self.channels:
            if ch.platform == platform:
                return ch
        return None


# ---------------------------------------------------------------------------
# Logs
# ---------------------------------------------------------------------------


class PriceLog(BaseModel):
    """One sales-history row: a day (or an order) on a platform.

    ``velocity`` is the unit count for the bucket, ``margin`` a percentage.
    Ad-only rows carry ``price == 0`` and a positive ``ads_spend``.
    """

    id: str
    sku: str
    date: date
    price: float = 0.0
    velocity: float = 0.0
    margin: float = 0.0
    profit: float | None = None
    ads_spend: float | None = None
    platform: str | None = None
    order_id: str | None = None

    @property
    def revenue(self) -> float:
        return self.price * self.velocity


class HistoryPayload(BaseModel):
    """Daily bucket emitted by the sales importer before it becomes a PriceLog."""

    sku: str
    date: date
    price: float = 0.0
    velocity: float = 0.0
    margin: float | None = None
    profit: float | None = None
    platform: str = "General"
    order_id: str | None = None


class RefundLog(BaseModel):
    id: str
    sku: str
    date: datetime
    quantity: float = 1.0
    amount: float = 0.0
    platform: str | None = None
    reason: str | None = None
    order_id: str | None = None


class PriceChangeRecord(BaseModel):
    """A CA price movement detected on import."""

    id: str
    sku: str
    product_name: str = ""
    date: date
    old_price: float
    new_price: float
    change_type: ChangeType
    percent_change: float


class ShipmentLog(BaseModel):
    """Single-unit postage observation used to calibrate courier costs."""

    id: str
    sku: str
    service: str
    cost: float
    date: datetime


class PlatformConfig(BaseModel):
    markup: float = 0.0
    commission: float = 0.0
    manager: str = "Unassigned"
    color: str = "#374151"
    is_excluded: bool = False


class LogisticsRule(BaseModel):
    """Courier service with its flat rate and optional parcel limits."""

    id: str
    name: str
    carrier: str = ""
    price: float = 0.0
    max_weight: float | None = None
    max_volume: float | None = None
    max_length: float | None = None


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class HubState(BaseModel):
    """Everything persisted between sessions."""

    products: list[Product] = Field(default_factory=list)
    pricing_rules: dict[str, PlatformConfig] = Field(default_factory=dict)
    price_history: list[PriceLog] = Field(default_factory=list)
    refund_history: list[RefundLog] = Field(default_factory=list)
    shipment_history: list[ShipmentLog] = Field(default_factory=list)
    price_change_history: list[PriceChangeRecord] = Field(default_factory=list)
    logistics_rules: list[LogisticsRule] = Field(default_factory=list)
    learned_aliases: dict[str, str] = Field(default_factory=dict)
    velocity_setting: str = "30"
    timestamp: datetime | None = None

    def product_by_sku(self, sku: str) -> Product | None:
        for p in self.products:
            if p.sku == sku:
                return p
        return None

    def is_excluded(self, platform: str | None) -> bool:
        """Case-insensitive lookup of the platform's exclusion flag."""
        if not platform:
            return False
        rule = self.pricing_rules.get(platform)
        if rule is not None and rule.is_excluded:
            return True
        wanted = platform.strip().lower()
        for name, cfg in self.pricing_rules.items():
            if name.strip().lower() == wanted:
                return cfg.is_excluded
        return False
