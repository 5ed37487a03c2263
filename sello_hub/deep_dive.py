"""Per-SKU deep dive.

Combines a product's sales history and refunds into a single ledger and
derives everything the deep-dive page shows: diagnostics against the
alert thresholds, box statistics over 7/30/90 days, TACoS, price
deviation from the CA reference price, the sales impact of the latest
price change, and per-platform subtotals.

Refunds enter the ledger as negative-quantity rows whose profit is minus
the refunded amount, so platform profit totals already net them off.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from collections.abc import Iterable
from datetime import date, datetime, timedelta
from enum import Enum

from pydantic import BaseModel, Field

from .dates import now_in, to_date
from .metrics import calc_profit, safe_div
from .models import HubState, PriceChangeRecord, PriceLog, Product, RefundLog
from .product_list import runway_days
from .thresholds import ThresholdConfig

logger = logging.getLogger("sello.deep_dive")

PERIODS = (7, 30, 90)
TACOS_CAP = 300.0
BAND_SIZE = 0.5
AMBER_PCT = 0.05
RED_PCT = 0.15
IMPACT_WINDOW_DAYS = 7
MOMENTUM_PCT = 20.0
ALL = "All"


class SkuNotFoundError(LookupError):
    """No product with the requested SKU."""


# ---------------------------------------------------------------------------
# Quantiles
# ---------------------------------------------------------------------------


class Quantiles(BaseModel):
    min: float
    q1: float
    median: float
    q3: float
    max: float
    n: int


def quantiles(values: Iterable[float]) -> Quantiles | None:
    """Five-number summary with linear interpolation; None for no data."""
    data = sorted(values)
    n = len(data)
    if n == 0:
        return None

    def at(pos: float) -> float:
        base = math.floor(pos)
        rest = pos - base
        if base + 1 < n:
            return data[base] + rest * (data[base + 1] - data[base])
        return data[base]

    return Quantiles(
        min=data[0],
        q1=at((n - 1) * 0.25),
        median=at((n - 1) * 0.5),
        q3=at((n - 1) * 0.75),
        max=data[-1],
        n=n,
    )


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class TransactionType(str, Enum):
    SALE = "SALE"
    REFUND = "REFUND"


class Transaction(BaseModel):
    id: str
    sku: str
    date: date
    type: TransactionType = TransactionType.SALE
    price: float = 0.0
    velocity: float = 0.0
    margin: float = 0.0
    profit: float = 0.0
    ads_spend: float = 0.0
    platform: str | None = None
    order_id: str | None = None
    reason: str | None = None

    @property
    def revenue(self) -> float:
        return self.price * self.velocity

    @property
    def is_ad_only(self) -> bool:
        return self.price == 0 and self.ads_spend > 0

    @property
    def is_refund(self) -> bool:
        return self.type == TransactionType.REFUND or self.velocity < 0


def build_transactions(
    logs: Iterable[PriceLog],
    refunds: Iterable[RefundLog],
    tz: str | None = None,
) -> list[Transaction]:
    """Sales logs and refunds as one ledger, newest first."""
    ledger = [
        Transaction(
            id=log.id,
            sku=log.sku,
            date=log.date,
            price=log.price,
            velocity=log.velocity,
            margin=log.margin,
            profit=calc_profit(log),
            ads_spend=log.ads_spend or 0.0,
            platform=log.platform,
            order_id=log.order_id,
        )
        for log in logs
    ]
    for r in refunds:
        if r.amount > 0:
            price = r.amount / r.quantity if r.quantity > 0 else r.amount
        else:
            price = 0.0
        ledger.append(
            Transaction(
                id=r.id,
                sku=r.sku,
                date=to_date(r.date, tz) or r.date.date(),
                type=TransactionType.REFUND,
                price=price,
                velocity=-r.quantity if r.quantity > 0 else 0.0,
                profit=-r.amount,
                platform=r.platform,
                order_id=r.order_id,
                reason=r.reason,
            )
        )
    ledger.sort(key=lambda t: t.date, reverse=True)
    return ledger


def all_time_margin_pct(
    logs: list[PriceLog],
    refunds: list[RefundLog],
    all_time_sales: float,
) -> float:
    """(profit - refunds) / (gross sales - refunds) x 100."""
    if not logs:
        return 0.0
    refunded = sum(r.amount for r in refunds)
    profit = sum(calc_profit(log) for log in logs) - refunded
    net_sales = all_time_sales - refunded
    return profit / net_sales * 100 if net_sales > 0 else 0.0


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


class Severity(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class Signal(BaseModel):
    id: str
    label: str
    severity: Severity
    description: str


def velocity_trend_pct(product: Product) -> float:
    """Change of daily sales against the previous window, in percent."""
    if product.previous_daily_sales > 0:
        return (
            (product.average_daily_sales - product.previous_daily_sales)
            / product.previous_daily_sales
            * 100
        )
    return 0.0


def diagnose(product: Product, thresholds: ThresholdConfig) -> list[Signal]:
    signals: list[Signal] = []
    runway = runway_days(product.stock_level, product.average_daily_sales)

    if product.stock_level > 0:
        buffer_days = product.lead_time_days * thresholds.stockout_runway_multiplier
        if runway < buffer_days:
            signals.append(
                Signal(
                    id="STOCKOUT_RISK",
                    label="Stockout Risk",
                    severity=Severity.HIGH,
                    description=(
                        f"Stock covers {runway:.0f} days, which is less than the lead "
                        f"time buffer ({buffer_days:.0f} days)."
                    ),
                )
            )
        elif runway > thresholds.overstock_days:
            signals.append(
                Signal(
                    id="OVERSTOCK_RISK",
                    label="Overstock",
                    severity=Severity.MEDIUM,
                    description=(
                        f"Stock covers {runway:.0f} days, exceeding the "
                        f"{thresholds.overstock_days:g}-day efficiency target."
                    ),
                )
            )

    if product.return_rate > thresholds.return_rate_pct:
        signals.append(
            Signal(
                id="HIGH_RETURN_RATE",
                label="Elevated Returns",
                severity=Severity.HIGH,
                description=(
                    f"Return rate is {product.return_rate:.1f}%, which is above the "
                    f"{thresholds.return_rate_pct:g}% alert threshold."
                ),
            )
        )

    if product.cost_detail is not None:
        ad_pct = product.cost_detail.ads_fee_pct
    else:
        ad_pct = safe_div(product.ads_fee, product.current_price) * 100
    if ad_pct > thresholds.high_ad_dependency_pct:
        signals.append(
            Signal(
                id="HIGH_AD_DEPENDENCY",
                label="High Ad Dependency",
                severity=Severity.MEDIUM,
                description=(
                    f"Advertising costs consume {ad_pct:.1f}% of the selling price "
                    f"(Target: < {thresholds.high_ad_dependency_pct:g}%)."
                ),
            )
        )

    if product.cost_detail is not None:
        margin = product.cost_detail.profit_incl_rn_pct
        if margin < thresholds.margin_below_target_pct:
            signals.append(
                Signal(
                    id="BELOW_TARGET",
                    label="Margin Compression",
                    severity=Severity.HIGH,
                    description=(
                        f"Net profit margin is {margin:.1f}%, falling below the "
                        f"{thresholds.margin_below_target_pct:g}% sustainability target."
                    ),
                )
            )

    trend = velocity_trend_pct(product)
    if trend < -thresholds.velocity_drop_pct:
        signals.append(
            Signal(
                id="VELOCITY_DROP_WOW",
                label="Velocity Drop",
                severity=Severity.HIGH,
                description=(
                    f"Sales velocity has declined by {abs(trend):.0f}% compared to "
                    "the prior period."
                ),
            )
        )
    elif trend > MOMENTUM_PCT:
        signals.append(
            Signal(
                id="POSITIVE_MOMENTUM",
                label="Momentum Spike",
                severity=Severity.LOW,
                description=(
                    f"Sales velocity has increased by {trend:.0f}% compared to the "
                    "prior period."
                ),
            )
        )

    if product.stock_value > thresholds.dead_stock_min_value and product.average_daily_sales == 0:
        signals.append(
            Signal(
                id="DORMANT_NO_SALES",
                label="Dead Stock",
                severity=Severity.HIGH,
                description=(
                    f"High value dormant stock ({product.stock_value:.0f}) with 0 "
                    "velocity detected."
                ),
            )
        )
    return signals


# ---------------------------------------------------------------------------
# Box statistics and TACoS
# ---------------------------------------------------------------------------


class PeriodQuantiles(BaseModel):
    d7: Quantiles | None = None
    d30: Quantiles | None = None
    d90: Quantiles | None = None


class BoxStats(BaseModel):
    revenue: PeriodQuantiles
    margin: PeriodQuantiles
    qty: PeriodQuantiles
    tacos: PeriodQuantiles


class TacosSummary(BaseModel):
    total_ad_spend: float = 0.0
    total_revenue: float = 0.0
    tacos_pct: float | str = 0.0
    ad_only_spend: float = 0.0


def _since(ledger: list[Transaction], days: int, today: date) -> list[Transaction]:
    cutoff = today - timedelta(days=days)
    return [t for t in ledger if t.date >= cutoff]


def _sales_values(ledger, days, today, value_fn) -> Quantiles | None:
    values = []
    for t in _since(ledger, days, today):
        if t.velocity <= 0:
            continue
        v = value_fn(t)
        if v is not None:
            values.append(v)
    return quantiles(values)


def _revenue_value(t: Transaction) -> float | None:
    return t.revenue if t.revenue > 0.01 else None


def _margin_value(t: Transaction) -> float | None:
    return t.margin if t.revenue > 0.01 else None


def _tacos_value(t: Transaction) -> float | None:
    if t.revenue > 0:
        return min(t.ads_spend / t.revenue * 100, TACOS_CAP)
    return None


def _daily_qty(ledger: list[Transaction], days: int, today: date) -> Quantiles | None:
    per_day: dict[date, float] = defaultdict(float)
    for t in _since(ledger, days, today):
        if t.velocity > 0:
            per_day[t.date] += t.velocity
    return quantiles(per_day.values())


def box_stats(ledger: list[Transaction], today: date) -> BoxStats:
    def by_period(fn) -> PeriodQuantiles:
        return PeriodQuantiles(**{f"d{d}": fn(d) for d in PERIODS})

    return BoxStats(
        revenue=by_period(lambda d: _sales_values(ledger, d, today, _revenue_value)),
        margin=by_period(lambda d: _sales_values(ledger, d, today, _margin_value)),
        qty=by_period(lambda d: _daily_qty(ledger, d, today)),
        tacos=by_period(lambda d: _sales_values(ledger, d, today, _tacos_value)),
    )


def tacos_summary(ledger: list[Transaction], days: int, today: date) -> TacosSummary:
    total_ads = 0.0
    revenue = 0.0
    ad_only = 0.0
    for t in _since(ledger, days, today):
        total_ads += t.ads_spend
        if t.type != TransactionType.REFUND and t.price > 0 and t.velocity > 0:
            revenue += t.revenue
        elif t.is_ad_only:
            ad_only += t.ads_spend

    if revenue > 0:
        pct: float | str = total_ads / revenue * 100
    elif total_ads > 0:
        pct = "N/A (0 sales)"
    else:
        pct = 0.0
    return TacosSummary(
        total_ad_spend=total_ads,
        total_revenue=revenue,
        tacos_pct=pct,
        ad_only_spend=ad_only,
    )


# ---------------------------------------------------------------------------
# Price deviation
# ---------------------------------------------------------------------------


class PriceBand(BaseModel):
    period: str
    delta: float
    total_qty: float
    actual_avg_delta: float
    avg_price: float


class PeriodDelta(BaseModel):
    period: str
    avg_delta: float


class PricePoint(BaseModel):
    price: float
    qty: float


class PriceDeviation(BaseModel):
    reference_price: float
    amber_threshold: float
    red_threshold: float
    bands: list[PriceBand] = Field(default_factory=list)
    period_stats: list[PeriodDelta] = Field(default_factory=list)
    points: list[PricePoint] = Field(default_factory=list)


def effective_ca_price(
    changes: list[PriceChangeRecord],
    on: date,
    reference: float,
) -> float:
    """CA price in force on ``on``.

    ``changes`` must be newest first. Before the first recorded change the
    old price of that change applies.
    """
    for change in changes:
        if change.date <= on:
            return change.new_price
    if changes:
        return changes[-1].old_price
    return reference


def _band(delta: float) -> float:
    # round half away from zero, like the UI's band labels
    scaled = delta / BAND_SIZE
    snapped = math.floor(scaled + 0.5) if scaled >= 0 else -math.floor(-scaled + 0.5)
    return round(snapped * BAND_SIZE, 2)


def price_deviation(
    product: Product,
    ledger: list[Transaction],
    price_changes: Iterable[PriceChangeRecord],
    today: date,
) -> PriceDeviation:
    """Sold prices against the CA reference, banded in 0.50 steps."""
    reference = product.ca_price or product.current_price or 1.0
    changes = sorted(
        (c for c in price_changes if c.sku == product.sku),
        key=lambda c: c.date,
        reverse=True,
    )
    sales = [t for t in ledger if t.velocity > 0 and t.price > 0]
    result = PriceDeviation(
        reference_price=reference,
        amber_threshold=-(reference * AMBER_PCT),
        red_threshold=-(reference * RED_PCT),
    )
    points: dict[float, float] = defaultdict(float)

    for days in sorted(PERIODS, reverse=True):
        label = f"{days} Days"
        groups: dict[float, list[float]] = {}
        period_qty = 0.0
        period_delta = 0.0
        for t in _since(sales, days, today):
            delta = t.price - effective_ca_price(changes, t.date, reference)
            g = groups.setdefault(_band(delta), [0.0, 0.0, 0.0])
            g[0] += t.velocity
            g[1] += delta * t.velocity
            g[2] += t.price * t.velocity
            period_qty += t.velocity
            period_delta += delta * t.velocity
            if days == max(PERIODS):
                points[round(t.price, 2)] += t.velocity

        for band, (qty, sum_delta, sum_price) in groups.items():
            result.bands.append(
                PriceBand(
                    period=label,
                    delta=band,
                    total_qty=qty,
                    actual_avg_delta=sum_delta / qty,
                    avg_price=round(sum_price / qty, 2) if qty > 0 else 0.0,
                )
            )
        if period_qty > 0:
            result.period_stats.append(PeriodDelta(period=label, avg_delta=period_delta / period_qty))

    result.points = sorted(
        (PricePoint(price=p, qty=q) for p, q in points.items()),
        key=lambda pt: pt.qty,
        reverse=True,
    )
    return result


# ---------------------------------------------------------------------------
# Price change impact
# ---------------------------------------------------------------------------


class PriceImpact(BaseModel):
    """Daily volume either side of the latest price change."""

    date: date
    old_price: float
    new_price: float
    price_change_pct: float
    pre_qty: float
    post_qty: float
    qty_change_pct: float


def price_impact(
    sku: str,
    logs: Iterable[PriceLog],
    price_changes: Iterable[PriceChangeRecord],
    window: int = IMPACT_WINDOW_DAYS,
) -> PriceImpact | None:
    """Average daily units sold before and after the SKU's latest price change.

    Logs are summed per day across platforms. The before window is the
    ``window`` days up to (not including) the change date, the after window
    the ``window`` days following it. Averages divide by the days that have
    logs, not by ``window``. None when the SKU has no recorded change.
    """
    changes = sorted((c for c in price_changes if c.sku == sku), key=lambda c: c.date)
    if not changes:
        return None
    latest = changes[-1]
    changed_on = latest.date

    daily: dict[date, float] = defaultdict(float)
    for log in logs:
        if log.sku == sku:
            daily[log.date] += log.velocity

    pre = [q for d, q in daily.items() if changed_on - timedelta(days=window) <= d < changed_on]
    post = [q for d, q in daily.items() if changed_on < d <= changed_on + timedelta(days=window)]
    pre_qty = sum(pre) / (len(pre) or 1)
    post_qty = sum(post) / (len(post) or 1)

    return PriceImpact(
        date=changed_on,
        old_price=latest.old_price,
        new_price=latest.new_price,
        price_change_pct=latest.percent_change,
        pre_qty=pre_qty,
        post_qty=post_qty,
        qty_change_pct=(post_qty - pre_qty) / pre_qty * 100 if pre_qty > 0 else 0.0,
    )


# ---------------------------------------------------------------------------
# Ledger filters and subtotals
# ---------------------------------------------------------------------------


class LedgerFilter(str, Enum):
    ALL = "All"
    SALE = "Sale"
    AD_COST = "Ad Cost"
    REFUND = "Refund"


class PlatformSubtotal(BaseModel):
    platform: str
    sold_qty: float = 0.0
    ad_spend: float = 0.0
    revenue: float = 0.0
    profit: float = 0.0
    margin: float = 0.0
    revenue_share_pct: float = 0.0


class LedgerStats(BaseModel):
    sales_rows: int = 0
    total_units: float = 0.0
    ad_only_spend: float = 0.0
    refund_count: int = 0
    refund_value: float = 0.0


class AdStats(BaseModel):
    total: float = 0.0
    ad_only: float = 0.0
    pct: float = 0.0


def filter_ledger(
    ledger: list[Transaction],
    days: int,
    today: date,
    platform: str = ALL,
    tx_type: LedgerFilter | str = LedgerFilter.ALL,
) -> list[Transaction]:
    tx_type = LedgerFilter(tx_type)
    rows = _since(ledger, days, today)
    if platform != ALL:
        rows = [t for t in rows if t.platform == platform]
    if tx_type == LedgerFilter.SALE:
        rows = [t for t in rows if t.velocity > 0]
    elif tx_type == LedgerFilter.AD_COST:
        rows = [t for t in rows if t.is_ad_only]
    elif tx_type == LedgerFilter.REFUND:
        rows = [t for t in rows if t.velocity < 0]
    return rows


def platform_subtotals(rows: Iterable[Transaction]) -> list[PlatformSubtotal]:
    groups: dict[str, PlatformSubtotal] = {}
    total_revenue = 0.0
    for t in rows:
        platform = t.platform or "Unknown"
        group = groups.setdefault(platform, PlatformSubtotal(platform=platform))
        if not t.is_refund and not t.is_ad_only:
            group.sold_qty += t.velocity
            group.revenue += t.revenue
            total_revenue += t.revenue
        group.ad_spend += t.ads_spend
        group.profit += t.profit

    for group in groups.values():
        group.margin = safe_div(group.profit, group.revenue) * 100
        group.revenue_share_pct = safe_div(group.revenue, total_revenue) * 100
    return sorted(groups.values(), key=lambda g: g.revenue, reverse=True)


def ledger_stats(rows: Iterable[Transaction]) -> LedgerStats:
    stats = LedgerStats()
    for t in rows:
        if t.velocity > 0:
            stats.sales_rows += 1
            stats.total_units += t.velocity
        elif t.is_ad_only:
            stats.ad_only_spend += t.ads_spend
        elif t.velocity < 0 or t.price < 0:
            stats.refund_count += 1
            stats.refund_value += abs(t.revenue)
    return stats


def ad_stats(rows: Iterable[Transaction]) -> AdStats:
    total = 0.0
    ad_only = 0.0
    for t in rows:
        total += t.ads_spend
        if t.is_ad_only:
            ad_only += t.ads_spend
    return AdStats(total=total, ad_only=ad_only, pct=safe_div(ad_only, total) * 100)


# ---------------------------------------------------------------------------
# Bundle
# ---------------------------------------------------------------------------


class DeepDive(BaseModel):
    product: Product
    all_time_sales: float
    all_time_qty: float
    all_time_margin_pct: float
    period_sales_qty: float
    signals: list[Signal]
    box_stats: BoxStats
    tacos: dict[str, TacosSummary]
    ad_stats: AdStats
    price_deviation: PriceDeviation
    price_impact: PriceImpact | None = None
    platforms: list[str]
    platform_subtotals: list[PlatformSubtotal]
    ledger_stats: LedgerStats
    transactions: list[Transaction]


def find_product(state: HubState, sku: str) -> Product:
    wanted = sku.strip().lower()
    for product in state.products:
        if product.sku.lower() == wanted:
            return product
    raise SkuNotFoundError(f"No product with SKU '{sku}'")


def build_deep_dive(
    state: HubState,
    sku: str,
    thresholds: ThresholdConfig | None = None,
    days: int = 7,
    platform: str = ALL,
    tx_type: LedgerFilter | str = LedgerFilter.ALL,
    limit: int | None = 50,
    now: datetime | None = None,
    tz: str | None = None,
) -> DeepDive:
    """Everything the deep-dive page shows for one SKU.

    ``days``, ``platform`` and ``tx_type`` filter the ledger, subtotals
    and ad statistics; box statistics and price deviation always cover
    7/30/90 days.

    Raises:
        SkuNotFoundError: If no product matches ``sku`` (case-insensitive).
    """
    thresholds = thresholds or ThresholdConfig()
    product = find_product(state, sku)
    today = to_date(now, tz) if now else now_in(tz).date()

    logs = [log for log in state.price_history if log.sku == product.sku]
    refunds = [r for r in state.refund_history if r.sku == product.sku]
    ledger = build_transactions(logs, refunds, tz)
    all_time_sales = sum(log.price * log.velocity for log in logs)

    window = _since(ledger, days, today)
    platform_rows = window if platform == ALL else [t for t in window if t.platform == platform]
    filtered = filter_ledger(ledger, days, today, platform, tx_type)

    logger.info(
        "Deep dive %s: %d logs, %d refunds, %d rows in %d-day window",
        product.sku,
        len(logs),
        len(refunds),
        len(filtered),
        days,
    )
    return DeepDive(
        product=product,
        all_time_sales=all_time_sales,
        all_time_qty=sum(log.velocity for log in logs),
        all_time_margin_pct=all_time_margin_pct(logs, refunds, all_time_sales),
        period_sales_qty=sum(t.velocity for t in window if t.velocity > 0),
        signals=diagnose(product, thresholds),
        box_stats=box_stats(ledger, today),
        tacos={f"d{d}": tacos_summary(ledger, d, today) for d in PERIODS},
        ad_stats=ad_stats(platform_rows),
        price_deviation=price_deviation(product, ledger, state.price_change_history, today),
        price_impact=price_impact(product.sku, logs, state.price_change_history),
        platforms=sorted({t.platform or "Unknown" for t in ledger}),
        platform_subtotals=platform_subtotals(filtered),
        ledger_stats=ledger_stats(filtered),
        transactions=filtered[:limit] if limit else filtered,
    )
