"""ERP sales transaction report importer.

Parses transaction-level sales lines (one row per order line) and turns
them into three things:

    1. **Product updates**: average daily sales over the report period,
       weighted average selling price, per-unit fees and per-platform
       channel figures.
    2. **History payloads**: one bucket per ``sku|day|platform`` (or per
       order when the report carries order IDs) for the sales history.
    3. **Shipment logs**: single-unit postage observations used to
       calibrate courier rates.

Column detection:
    Headers and candidates are compared with everything but ``[a-z0-9]``
    removed. When SKU, quantity and revenue all resolve the mapping is
    used as-is; otherwise the caller supplies a ``SalesColumnMapping``.

Row rules:
    - Rows with revenue <= 0.001 are replacements/transfers and ignored.
    - SKUs resolve via master SKU, channel aliases, learned aliases and
      explicit resolutions; anything else is tallied as unknown.
    - Rows on excluded platforms (pricing rules) still update that
      platform's channel but never the product totals.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections import defaultdict
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field

from ..columns import cell, cell_str, find_mapped, parse_percent, parse_val
from ..dates import now_in, parse_datetime, to_date, zone
from ..models import ChannelData, HistoryPayload, HubState, Product, ShipmentLog
from .base import BaseImporter, ImportResult, Rows, TemplateError, header_cells

logger = logging.getLogger("sello.adapters.sales")

MIN_REVENUE = 0.001

# ---------------------------------------------------------------------------
# Column candidates (field -> (candidates, fuzzy))
# ---------------------------------------------------------------------------

_CANDIDATES: dict[str, tuple[list[str], bool]] = {
    "sku": (["skucode", "sku", "sellersku", "itemnumber"], False),
    "qty": (["skuquantity", "qty", "quantity", "units", "sold"], False),
    "revenue": (["salesamt", "revenue", "totalprice", "price", "grosssales"], False),
    "date": (["ordertime", "date", "orderdate", "created"], False),
    "platform": (["platformnamelevel1", "platform", "source", "channel", "marketplace"], False),
    "platform_level2": (["platformnamelevel2", "fulfillment", "subsource"], False),
    "category": (["category", "maincategory"], False),
    "cogs": (["cogs", "cost", "unitcost"], False),
    "selling_fee": (["sellingfee", "commission", "referralfee"], False),
    "ads_fee": (["adsfee", "adspend", "ppc", "sponsored"], False),
    "postage": (["postage", "shipping", "freight", "delivery"], False),
    "logistics_service": (
        ["logisticsname", "logistics_name", "service", "courier", "shippingmethod"],
        False,
    ),
    "extra_freight": (["extrafreight", "shippingincome", "shippingcharge"], False),
    "other_fee": (["otherfee"], False),
    "subscription_fee": (["subscriptionfee"], False),
    "wms_fee": (["wmsfee", "fulfillment", "pickpack"], False),
    "profit": (["profit_excl_rn", "netprofit", "profitamount"], False),
    "profit_pct": (["profit_excl_rn%", "netpm", "profit%", "margin%"], True),
    "order_id": (["outer_order_id", "order_id", "orderid", "order_no", "ordernumber"], False),
}

_FEE_FIELDS = (
    "selling_fee",
    "ads_fee",
    "postage",
    "extra_freight",
    "other_fee",
    "subscription_fee",
    "wms_fee",
    "cogs",
)


class SalesColumnMapping(BaseModel):
    """Logical field -> original header name (None when unmapped)."""

    sku: str | None = None
    qty: str | None = None
    revenue: str | None = None
    date: str | None = None
    platform: str | None = None
    platform_level2: str | None = None
    category: str | None = None
    cogs: str | None = None
    selling_fee: str | None = None
    ads_fee: str | None = None
    postage: str | None = None
    logistics_service: str | None = None
    extra_freight: str | None = None
    other_fee: str | None = None
    subscription_fee: str | None = None
    wms_fee: str | None = None
    profit: str | None = None
    profit_pct: str | None = None
    order_id: str | None = None

    @property
    def is_complete(self) -> bool:
        return bool(self.sku and self.qty and self.revenue)

    def indices(self, headers: list[str]) -> dict[str, int | None]:
        out: dict[str, int | None] = {}
        for field in type(self).model_fields:
            col = getattr(self, field)
            out[field] = headers.index(col) if col and col in headers else None
        return out


def detect_mapping(headers: list[str]) -> SalesColumnMapping:
    return SalesColumnMapping(
        **{
            field: find_mapped(headers, candidates, fuzzy)
            for field, (candidates, fuzzy) in _CANDIDATES.items()
        }
    )


def platform_name(level1: str, level2: str) -> str:
    """Combine platform level 1/2 (``Amazon`` + ``FBA`` -> ``Amazon FBA``)."""
    if level2 and level2 != "-" and level2.lower() != "unknown":
        if level1 and level1.lower() not in level2.lower() and len(level2) < 5:
            return f"{level1} {level2}"
        return level2
    if level1:
        return level1
    return "Unknown"


def build_alias_map(state: HubState, resolutions: dict[str, str] | None = None) -> dict[str, str]:
    """Uppercase SKU/alias -> master SKU.

    Learned aliases and explicit resolutions never override a product's
    own SKU or channel aliases.
    """
    aliases: dict[str, str] = {}
    for product in state.products:
        aliases[product.sku.upper()] = product.sku
        for alias in product.all_aliases:
            aliases[alias.upper()] = product.sku
    known = {p.sku for p in state.products}
    extra = dict(state.learned_aliases)
    for file_sku, master in (resolutions or {}).items():
        if master in known:
            extra[file_sku] = master
    for alias, master in extra.items():
        aliases.setdefault(alias.upper(), master)
    return aliases


# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------


class UnknownSku(BaseModel):
    count: int = 0
    revenue: float = 0.0
    master_sku: str | None = None


class SalesStats(BaseModel):
    matched_skus: int = 0
    total_revenue: float = 0.0
    period: float = 30
    date_label: str = "Manual Period"
    shipment_count: int = 0
    discovered_platforms: list[str] = Field(default_factory=list)


class SalesImportResult(ImportResult):
    headers: list[str] = Field(default_factory=list)
    mapping: SalesColumnMapping = Field(default_factory=SalesColumnMapping)
    updates: list[Product] = Field(default_factory=list)
    history: list[HistoryPayload] = Field(default_factory=list)
    shipment_logs: list[ShipmentLog] = Field(default_factory=list)
    unknown_skus: dict[str, UnknownSku] = Field(default_factory=dict)
    resolved_aliases: dict[str, str] = Field(default_factory=dict)
    features: dict[str, bool] = Field(default_factory=dict)
    stats: SalesStats = Field(default_factory=SalesStats)

    @property
    def item_count(self) -> int:
        return len(self.updates)

    @property
    def needs_mapping(self) -> bool:
        return not self.mapping.is_complete

    @property
    def needs_resolution(self) -> bool:
        return len(self.unknown_skus) > 0

    def summary_lines(self) -> list[str]:
        lines = [
            f"Products matched: {self.stats.matched_skus}",
            f"Total revenue: {self.stats.total_revenue:,.2f}",
            f"Period: {self.stats.period:g} days ({self.stats.date_label})",
            f"History buckets: {len(self.history)}",
            f"Shipment logs: {self.stats.shipment_count}",
        ]
        if self.stats.discovered_platforms:
            lines.append(f"Platforms: {', '.join(self.stats.discovered_platforms)}")
        if self.unknown_skus:
            lines.append(f"Unknown SKUs: {len(self.unknown_skus)}")
        return lines


# ---------------------------------------------------------------------------
# Aggregation buckets
# ---------------------------------------------------------------------------


class _SkuTotals:
    __slots__ = ("qty", "revenue", "count", "dates", "fees", "net_pm_sum", "profit_sum",
                 "category", "platform_stats")

    def __init__(self) -> None:
        self.qty = 0.0
        self.revenue = 0.0
        self.count = 0
        self.dates: set[date] = set()
        self.fees: dict[str, float] = dict.fromkeys(_FEE_FIELDS, 0.0)
        self.net_pm_sum = 0.0
        self.profit_sum = 0.0
        self.category = ""
        # platform -> [qty, revenue]; insertion order is first-seen order
        self.platform_stats: dict[str, list[float]] = {}


class _DailyBucket:
    __slots__ = ("sku", "day", "platform", "order_id", "qty", "revenue", "net_pm_sum", "profit")

    def __init__(self, sku: str, day: date, platform: str, order_id: str | None) -> None:
        self.sku = sku
        self.day = day
        self.platform = platform
        self.order_id = order_id
        self.qty = 0.0
        self.revenue = 0.0
        self.net_pm_sum = 0.0
        self.profit = 0.0


# ---------------------------------------------------------------------------
# Sales Importer
# ---------------------------------------------------------------------------


class SalesImporter(BaseImporter):
    """Sales transaction report -> product updates, history and shipment logs."""

    kind = "sales"
    result_cls = SalesImportResult

    def __init__(
        self,
        mapping: SalesColumnMapping | None = None,
        period_days: float = 30,
        resolutions: dict[str, str] | None = None,
        tz: str | None = None,
        now: datetime | None = None,
    ):
        self.mapping = mapping
        self.period_days = period_days
        self.resolutions = resolutions or {}
        self.tz = tz
        self.now = now

    @property
    def name(self) -> str:
        return "Sales Transactions"

    def can_handle(self, headers: list[str]) -> bool:
        return detect_mapping(headers).is_complete

    def _local(self, value: Any) -> datetime | None:
        """Parse a date cell into naive local (business timezone) time."""
        dt = parse_datetime(value)
        if dt is None:
            return None
        if dt.tzinfo is not None:
            dt = dt.astimezone(zone(self.tz)).replace(tzinfo=None)
        return dt

    def parse_rows(self, rows: Rows, state: HubState) -> SalesImportResult:
        if len(rows) < 2:
            raise TemplateError("File empty or missing headers")

        headers = header_cells(rows)
        mapping = self.mapping or detect_mapping(headers)
        logger.info(
            "Sales: mapped columns %s",
            {k: v for k, v in mapping.model_dump().items() if v},
        )
        if not mapping.is_complete:
            return SalesImportResult(
                headers=headers,
                mapping=mapping,
                rows_read=len(rows) - 1,
                errors=["Please map at least SKU, Quantity, and Revenue."],
            )

        idx = mapping.indices(headers)
        if idx["sku"] is None or idx["qty"] is None or idx["revenue"] is None:
            raise TemplateError("Mapped SKU, Quantity or Revenue column not found in file.")

        now = self.now or now_in(self.tz)
        today = to_date(now, self.tz) or now.date()
        alias_map = build_alias_map(state, self.resolutions)
        products_by_upper = {p.sku.upper(): p.sku for p in state.products}

        aggregated: dict[str, _SkuTotals] = {}
        daily: dict[str, _DailyBucket] = {}
        discovered: dict[str, None] = {}
        unknown: dict[str, UnknownSku] = {}
        shipment_logs: list[ShipmentLog] = []
        min_dt: datetime | None = None
        max_dt: datetime | None = None
        has_dates = False
        ignored = 0

        for row in rows[1:]:
            raw_sku = cell_str(cell(row, idx["sku"]))
            if not raw_sku:
                continue

            def val(field: str) -> float:
                return parse_val(cell(row, idx[field]))

            rev = val("revenue")
            if rev <= MIN_REVENUE:
                ignored += 1
                continue

            upper = raw_sku.upper()
            master = alias_map.get(upper) or products_by_upper.get(upper)
            if master is None:
                entry = unknown.setdefault(raw_sku, UnknownSku())
                entry.count += 1
                entry.revenue += rev
                continue

            qty = val("qty")
            profit = val("profit")
            net_pm = parse_percent(cell(row, idx["profit_pct"]))
            platform = platform_name(
                cell_str(cell(row, idx["platform"])),
                cell_str(cell(row, idx["platform_level2"])),
            )
            order_id = cell_str(cell(row, idx["order_id"])) or None
            discovered[platform] = None
            excluded = state.is_excluded(platform)

            raw_date = cell(row, idx["date"])
            row_dt = self._local(raw_date) if cell_str(raw_date) else None

            totals = aggregated.setdefault(master, _SkuTotals())
            if not excluded:
                totals.qty += qty
                totals.revenue += rev
                totals.count += 1
                totals.net_pm_sum += net_pm * (abs(qty) or 1)
                totals.profit_sum += profit

                postage = val("postage")
                for field in _FEE_FIELDS:
                    totals.fees[field] += postage if field == "postage" else val(field)

                category = cell_str(cell(row, idx["category"]))
                if category:
                    totals.category = category

                service = cell_str(cell(row, idx["logistics_service"]))
                if qty == 1 and service and postage > 0:
                    logged_at = row_dt.replace(tzinfo=zone(self.tz)) if row_dt else now
                    shipment_logs.append(
                        ShipmentLog(
                            id=uuid.uuid4().hex[:9],
                            sku=master,
                            service=service,
                            cost=postage,
                            date=logged_at,
                        )
                    )

            stats = totals.platform_stats.setdefault(platform, [0.0, 0.0])
            stats[0] += qty
            stats[1] += rev

            if row_dt is None:
                continue

            has_dates = True
            min_dt = row_dt if min_dt is None or row_dt < min_dt else min_dt
            max_dt = row_dt if max_dt is None or row_dt > max_dt else max_dt
            day = row_dt.date()

            key = f"{master}|{day.isoformat()}|{platform}"
            if order_id:
                key = f"{key}|{order_id}"
            bucket = daily.get(key)
            if bucket is None:
                bucket = daily[key] = _DailyBucket(master, day, platform, order_id)
            bucket.qty += qty
            bucket.revenue += rev
            bucket.net_pm_sum += net_pm * abs(qty)
            if profit == 0 and net_pm != 0:
                bucket.profit += rev * (net_pm / 100)
            else:
                bucket.profit += profit

            if not excluded:
                totals.dates.add(day)

        # Period
        period = self.period_days
        date_label = "Manual Period"
        if has_dates and min_dt is not None and max_dt is not None and max_dt > min_dt:
            period = math.ceil((max_dt - min_dt).total_seconds() / 86400) + 1
            date_label = f"{min_dt.date().isoformat()} - {max_dt.date().isoformat()}"

        history = self._history(daily, has_profit=idx["profit"] is not None)
        updates = self._product_updates(aggregated, state, period, today, has_dates, history)

        by_sku = {p.sku: p for p in state.products}
        features = {
            "ads": bool(mapping.ads_fee) and any(u.ads_fee > 0 for u in updates),
            "fees": bool(mapping.selling_fee) and any(u.selling_fee > 0 for u in updates),
            "logistics": bool(mapping.postage or mapping.wms_fee)
            and any(u.postage + u.wms_fee > 0 for u in updates),
            "category": bool(mapping.category)
            and any(u.category != by_sku[u.sku].category for u in updates),
        }

        result = SalesImportResult(
            headers=headers,
            mapping=mapping,
            updates=updates,
            history=history,
            shipment_logs=shipment_logs,
            unknown_skus=unknown,
            resolved_aliases={
                k.upper(): v for k, v in self.resolutions.items() if v in by_sku
            },
            features=features,
            stats=SalesStats(
                matched_skus=len(updates),
                total_revenue=sum(t.revenue for t in aggregated.values()),
                period=period,
                date_label=date_label,
                shipment_count=len(shipment_logs),
                discovered_platforms=list(discovered),
            ),
            rows_read=len(rows) - 1,
            rows_skipped=ignored + sum(u.count for u in unknown.values()),
        )
        if ignored:
            result.warnings.append(f"Ignored {ignored} rows with zero or negative revenue")
        if unknown:
            result.warnings.append(
                f"{len(unknown)} SKUs did not match any product "
                f"({sum(u.count for u in unknown.values())} rows)"
            )
        return result

    def _history(self, daily: dict[str, _DailyBucket], has_profit: bool) -> list[HistoryPayload]:
        history: list[HistoryPayload] = []
        for bucket in daily.values():
            if bucket.qty == 0:
                continue
            avg_price = bucket.revenue / bucket.qty if bucket.qty > 0 else 0.0
            if has_profit and bucket.revenue > 0:
                margin = bucket.profit / bucket.revenue * 100
            else:
                margin = bucket.net_pm_sum / bucket.qty if bucket.qty > 0 else 0.0

            history.append(
                HistoryPayload(
                    sku=bucket.sku,
                    date=bucket.day,
                    price=avg_price,
                    velocity=bucket.qty,
                    margin=round(margin, 4),
                    profit=round(bucket.profit, 4) if has_profit else None,
                    platform=bucket.platform,
                    order_id=bucket.order_id,
                )
            )
        return history

    def _product_updates(
        self,
        aggregated: dict[str, _SkuTotals],
        state: HubState,
        period: float,
        today: date,
        has_dates: bool,
        history: list[HistoryPayload],
    ) -> list[Product]:
        updates: list[Product] = []
        for sku, data in aggregated.items():
            product = state.product_by_sku(sku)
            if product is None:
                continue

            valid_qty = data.qty if data.qty > 0 else 1
            new_velocity = data.qty / period
            current_price = product.current_price or 0.0
            raw_avg = data.revenue / data.qty if data.qty > 0 else current_price
            avg_price = round(raw_avg or 0.0, 2)

            channels = [ch.model_copy() for ch in product.channels]
            for platform, (qty, revenue) in data.platform_stats.items():
                velocity = qty / period
                price = revenue / qty if qty > 0 else 0.0
                existing = next((c for c in channels if c.platform == platform), None)
                if existing is not None:
                    existing.velocity = velocity
                    existing.price = price
                else:
                    rule = state.pricing_rules.get(platform)
                    channels.append(
                        ChannelData(
                            platform=platform,
                            manager=rule.manager if rule and rule.manager else "Unassigned",
                            velocity=velocity,
                            price=price,
                            sku_alias="",
                        )
                    )

            def unit_fee(field: str, current: float) -> float:
                return (data.fees[field] / valid_qty) or current

            updates.append(
                product.model_copy(
                    update={
                        "average_daily_sales": new_velocity,
                        "previous_daily_sales": product.average_daily_sales,
                        "current_price": avg_price,
                        "old_price": current_price,
                        "last_updated": today,
                        "selling_fee": unit_fee("selling_fee", product.selling_fee),
                        "ads_fee": unit_fee("ads_fee", product.ads_fee),
                        "postage": unit_fee("postage", product.postage),
                        "extra_freight": unit_fee("extra_freight", product.extra_freight),
                        "other_fee": unit_fee("other_fee", product.other_fee),
                        "subscription_fee": unit_fee("subscription_fee", product.subscription_fee),
                        "wms_fee": unit_fee("wms_fee", product.wms_fee),
                        "category": data.category or product.category,
                        "channels": channels,
                    }
                )
            )

            if not has_dates and new_velocity > 0:
                history.append(
                    HistoryPayload(
                        sku=sku,
                        date=today,
                        price=avg_price,
                        velocity=new_velocity,
                        margin=0.0,
                        platform=next(iter(data.platform_stats), "General"),
                    )
                )
        return updates
