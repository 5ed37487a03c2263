"""Apply importer previews to the hub state.

Importers only read. Every function here takes the ``HubState`` and a
preview (or part of one) and mutates the state in place. Recalculation
helpers at the bottom derive velocities and prices from the sales history
and are safe to run repeatedly.
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from collections import defaultdict
from collections.abc import Iterable
from datetime import date, datetime, timedelta
from enum import Enum

from .adapters.base import ImportResult
from .adapters.ca_prices import CAPriceImportResult, CAPriceItem, RowStatus
from .adapters.costs import CostImportResult, CostUpdate
from .adapters.inventory import InventoryImportResult, InventoryItem
from .adapters.mappings import MappingImportResult, SkuMapping
from .adapters.returns import ReturnsImportResult
from .adapters.sales import SalesImportResult
from .adapters.shipments import ShipmentImportResult, ShipmentUpdate
from .adapters.sku_detail import SkuDetailImportResult, SkuDetailItem
from .dates import friday_week_ranges, now_in, to_date, zone
from .metrics import margin_at_price, optimal_price, to_number
from .models import (
    ChangeType,
    ChannelData,
    HistoryPayload,
    HubState,
    PlatformConfig,
    PriceChangeRecord,
    PriceLog,
    Product,
    ProductStatus,
    Recommendation,
    RefundLog,
)

logger = logging.getLogger("sello.reconcile")

GENERAL_PLATFORM = "General"
ALL_LOOKBACK_DAYS = 9999


class MappingMode(str, Enum):
    MERGE = "merge"
    REPLACE = "replace"


def _today(tz: str | None = None) -> date:
    return now_in(tz).date()


def _short_id(n: int = 5) -> str:
    return uuid.uuid4().hex[:n]


# ---------------------------------------------------------------------------
# Catalogue imports
# ---------------------------------------------------------------------------


def apply_inventory_import(
    state: HubState,
    items: Iterable[InventoryItem],
    today: date | None = None,
) -> tuple[int, int]:
    """Create new products and refresh existing ones from ERP rows.

    Returns ``(updated, created)``.
    """
    today = today or _today()
    by_sku = {item.sku: item for item in items}
    existing = {p.sku for p in state.products}
    updated = 0

    for product in state.products:
        item = by_sku.get(product.sku)
        if item is None:
            continue
        product.name = item.name or product.name
        product.brand = item.brand or product.brand
        product.category = item.category or product.category
        product.subcategory = item.subcategory or product.subcategory
        if item.stock is not None:
            product.stock_level = item.stock
        if item.cost is not None:
            product.cost_price = item.cost
        product.inventory_status = item.inventory_status or product.inventory_status
        product.carton_dimensions = item.carton_dimensions
        product.last_updated = today
        updated += 1

    stamp = int(time.time() * 1000)
    created: list[Product] = []
    for sku, item in by_sku.items():
        if sku in existing:
            continue
        created.append(
            Product(
                id=f"p-{sku}-{stamp}",
                sku=sku,
                name=item.name or sku,
                brand=item.brand,
                category=item.category or "Uncategorized",
                subcategory=item.subcategory,
                stock_level=item.stock or 0.0,
                cost_price=item.cost or 0.0,
                inventory_status=item.inventory_status,
                carton_dimensions=item.carton_dimensions,
                lead_time_days=30,
                status=ProductStatus.HEALTHY,
                recommendation=Recommendation.MAINTAIN.value,
                days_remaining=999,
                last_updated=today,
            )
        )
    state.products.extend(created)

    logger.info("Inventory applied: %d updated, %d created", updated, len(created))
    return updated, len(created)


def apply_cost_updates(state: HubState, updates: Iterable[CostUpdate]) -> int:
    """Overwrite cost, floor and ceiling with the values the sheet provides."""
    by_sku = {u.sku: u for u in updates}
    changed = 0
    for product in state.products:
        update = by_sku.get(product.sku)
        if update is None:
            continue
        if update.cost is not None:
            product.cost_price = update.cost
        if update.floor_price is not None:
            product.floor_price = update.floor_price
        if update.ceiling_price is not None:
            product.ceiling_price = update.ceiling_price
        changed += 1
    logger.info("Costs applied to %d products", changed)
    return changed


def apply_sku_details(state: HubState, items: Iterable[SkuDetailItem]) -> int:
    details = {item.master_sku: item.detail for item in items}
    changed = 0
    for product in state.products:
        detail = details.get(product.sku)
        if detail is not None:
            product.cost_detail = detail
            changed += 1
    logger.info("Cost details applied to %d products", changed)
    return changed


# ---------------------------------------------------------------------------
# CA prices
# ---------------------------------------------------------------------------


def _find_ca_price(product: Product, price_map: dict[str, float]) -> float | None:
    """Report price for ``product``.

    Tried in order: master SKU, channel aliases, a report SKU of the form
    ``<master>_<anything>``, the master SKU with a trailing ``_<digits>``
    removed.
    """
    master = product.sku.strip().upper()
    if master in price_map:
        return price_map[master]

    for alias in product.all_aliases:
        if alias.upper() in price_map:
            return price_map[alias.upper()]

    prefix = master + "_"
    for report_sku, price in price_map.items():
        if report_sku.startswith(prefix):
            return price

    head, sep, tail = master.rpartition("_")
    if sep and head and tail.isdigit() and head in price_map:
        return price_map[head]
    return None


def apply_ca_prices(
    state: HubState,
    updates: Iterable[CAPriceItem],
    report_date: date | None = None,
) -> list[PriceChangeRecord]:
    """Set ``ca_price`` on matching products and record significant moves.

    A move is recorded when the previous CA price was positive and the
    difference exceeds one cent. New records go to the front of the
    history, dated ``report_date``.
    """
    report_date = report_date or _today()
    price_map: dict[str, float] = {}
    for item in updates:
        if item.status == RowStatus.VALID:
            price_map[item.sku.strip().upper()] = item.ca_price

    changes: list[PriceChangeRecord] = []
    matched = 0
    for product in state.products:
        new_price = _find_ca_price(product, price_map)
        if new_price is None:
            continue
        matched += 1
        old_price = product.ca_price or 0.0
        if old_price > 0 and abs(new_price - old_price) > 0.01:
            changes.append(
                PriceChangeRecord(
                    id=f"pc-{product.sku}-{report_date.isoformat()}-{_short_id()}",
                    sku=product.sku,
                    product_name=product.name,
                    date=report_date,
                    old_price=old_price,
                    new_price=new_price,
                    change_type=ChangeType.INCREASE if new_price > old_price else ChangeType.DECREASE,
                    percent_change=(new_price - old_price) / old_price * 100,
                )
            )
        product.ca_price = new_price

    if changes:
        state.price_change_history = changes + state.price_change_history
    logger.info("CA prices: %d products matched, %d price changes", matched, len(changes))
    return changes


def record_price_change(
    state: HubState,
    sku: str,
    new_price: float,
    day: date | None = None,
    old_price: float | None = None,
) -> PriceChangeRecord:
    """Lodge a price change made outside the CA report.

    ``old_price`` defaults to the product's CA price. The record goes to
    the front of the history; the product itself is left unchanged.

    Raises:
        ValueError: If no product matches ``sku`` or a price is not a number.
    """
    wanted = sku.strip().upper()
    product = next((p for p in state.products if p.sku.upper() == wanted), None)
    if product is None:
        raise ValueError(f"Unknown SKU: {sku}")
    if old_price is None:
        old_price = product.ca_price or None
    if old_price is None or math.isnan(old_price) or math.isnan(new_price):
        raise ValueError("Prices must be valid numbers.")

    day = day or _today()
    record = PriceChangeRecord(
        id=f"pc-{product.sku}-{day.isoformat()}-{_short_id()}",
        sku=product.sku,
        product_name=product.name,
        date=day,
        old_price=old_price,
        new_price=new_price,
        change_type=ChangeType.INCREASE if new_price > old_price else ChangeType.DECREASE,
        percent_change=(new_price - old_price) / old_price * 100 if old_price else 0.0,
    )
    state.price_change_history.insert(0, record)
    logger.info("Manual price change for %s: %.2f -> %.2f", product.sku, old_price, new_price)
    return record


# ---------------------------------------------------------------------------
# Refunds, mappings, shipments
# ---------------------------------------------------------------------------


def merge_refunds(state: HubState, refunds: Iterable[RefundLog]) -> int:
    """Append refunds whose ID is not already in the history."""
    known = {r.id for r in state.refund_history}
    added = 0
    for refund in refunds:
        if refund.id in known:
            continue
        known.add(refund.id)
        state.refund_history.append(refund)
        added += 1
    logger.info("Refunds merged: %d new", added)
    return added


def apply_mappings(
    state: HubState,
    mappings: list[SkuMapping],
    mode: MappingMode | str = MappingMode.MERGE,
    platform: str | None = None,
) -> int:
    """Write aliases onto each product's ``platform`` channel.

    ``replace`` clears the platform's aliases on every product first;
    ``merge`` keeps them. Every alias that differs from its master SKU is
    also learned for future sales imports.
    """
    mode = MappingMode(mode)
    if platform is None:
        platforms = {m.platform for m in mappings}
        if len(platforms) != 1:
            raise ValueError("A single platform is required to apply SKU mappings")
        platform = platforms.pop()

    if mode == MappingMode.REPLACE:
        for product in state.products:
            for channel in product.channels:
                if channel.platform == platform:
                    channel.sku_alias = None

    by_master: dict[str, list[str]] = defaultdict(list)
    for m in mappings:
        by_master[m.master_sku].append(m.alias)

    changed = 0
    for product in state.products:
        aliases = by_master.get(product.sku)
        if not aliases:
            continue
        merged = dict.fromkeys(aliases)
        channel = product.channel(platform)
        if channel is None:
            product.channels.append(
                ChannelData(platform=platform, sku_alias=", ".join(merged))
            )
        else:
            if mode == MappingMode.MERGE:
                merged.update(dict.fromkeys(channel.aliases))
            channel.sku_alias = ", ".join(merged)
        changed += 1

    learned = 0
    for m in mappings:
        alias = m.alias.upper()
        if alias != m.master_sku.upper() and state.learned_aliases.get(alias) != m.master_sku:
            state.learned_aliases[alias] = m.master_sku
            learned += 1

    logger.info(
        "Mappings (%s) on %s: %d products, %d aliases learned",
        mode.value,
        platform,
        changed,
        learned,
    )
    return changed


def apply_shipments(
    state: HubState,
    updates: Iterable[ShipmentUpdate],
    now: datetime | None = None,
    tz: str | None = None,
) -> int:
    """Merge container lines by container ID and refresh incoming stock.

    Lead time becomes the whole days until the nearest ETA on or after
    today; products without a future ETA keep their lead time.
    """
    tzinfo = zone(tz)
    now = now or now_in(tz)
    today = to_date(now, tz) or now.date()
    by_sku = {u.sku: u.shipments for u in updates}
    changed = 0

    for product in state.products:
        incoming = by_sku.get(product.sku)
        if incoming is None:
            continue
        shipments = list(product.shipments)
        for new in incoming:
            idx = next(
                (i for i, s in enumerate(shipments) if s.container_id == new.container_id),
                None,
            )
            if idx is None:
                shipments.append(new)
            else:
                shipments[idx] = new

        product.shipments = shipments
        product.incoming_stock = sum(s.quantity for s in shipments)

        future = sorted(s.eta for s in shipments if s.eta and s.eta >= today)
        if future:
            arrival = datetime.combine(future[0], datetime.min.time(), tzinfo)
            current = now if now.tzinfo else now.replace(tzinfo=tzinfo)
            seconds = abs((arrival - current).total_seconds())
            product.lead_time_days = math.ceil(seconds / 86400)
        changed += 1

    logger.info("Shipments applied to %d products", changed)
    return changed


# ---------------------------------------------------------------------------
# Sales history
# ---------------------------------------------------------------------------


def _history_key(log: PriceLog) -> str:
    return f"{log.sku}|{log.date.isoformat()}|{log.platform}|{log.order_id or ''}"


def merge_sales_history(history: list[PriceLog], new_logs: list[PriceLog]) -> list[PriceLog]:
    """Merge ``new_logs`` into ``history`` and return the merged list.

    Logs with the same ``sku|date|platform|order`` key are replaced. When
    the new logs carry order IDs for a SKU and day, older logs for that
    day without an order ID are dropped as superseded daily totals.
    """
    if not new_logs:
        return list(history)
    new_keys = {_history_key(log) for log in new_logs}
    days_with_orders = {(log.sku, log.date) for log in new_logs if log.order_id}

    kept = [
        log
        for log in history
        if _history_key(log) not in new_keys
        and (log.order_id or (log.sku, log.date) not in days_with_orders)
    ]
    return kept + list(new_logs)


def history_to_logs(
    payloads: Iterable[HistoryPayload],
    products: dict[str, Product],
) -> list[PriceLog]:
    logs: list[PriceLog] = []
    for item in payloads:
        if not item.sku:
            continue
        price = to_number(item.price)
        margin = (
            to_number(item.margin)
            if item.margin is not None
            else margin_at_price(products.get(item.sku), price)
        )
        logs.append(
            PriceLog(
                id=f"hist-{item.sku}-{item.date.isoformat()}-{_short_id()}",
                sku=item.sku,
                date=item.date,
                price=price,
                velocity=to_number(item.velocity),
                margin=round(margin, 2),
                profit=round(item.profit, 2) if item.profit else None,
                platform=item.platform or GENERAL_PLATFORM,
                order_id=item.order_id,
            )
        )
    return logs


def _inherit_rule(rules: dict[str, PlatformConfig], platform: str) -> PlatformConfig:
    parent_key = next((k for k in rules if k in platform), None)
    if parent_key is None:
        return PlatformConfig()
    parent = rules[parent_key]
    return PlatformConfig(
        markup=parent.markup,
        commission=parent.commission,
        manager=parent.manager or "Unassigned",
        color=parent.color or "#374151",
        is_excluded=parent.is_excluded,
    )


def apply_sales_import(
    state: HubState,
    result: SalesImportResult,
    today: date | None = None,
) -> int:
    """Apply a sales preview: history, shipment logs, products and platforms.

    Returns the number of products updated.
    """
    today = today or _today()
    by_sku = {p.sku: p for p in state.products}
    for update in result.updates:
        by_sku.setdefault(update.sku, update)

    new_logs = history_to_logs(result.history, by_sku)
    if new_logs:
        state.price_history = merge_sales_history(state.price_history, new_logs)
    if result.shipment_logs:
        state.shipment_history.extend(result.shipment_logs)

    updates = {u.sku: u for u in result.updates}
    for i, existing in enumerate(state.products):
        update = updates.get(existing.sku)
        if update is None:
            continue
        channels = [ch.model_copy() for ch in existing.channels]
        for new_channel in update.channels:
            idx = next(
                (j for j, c in enumerate(channels) if c.platform == new_channel.platform),
                None,
            )
            if idx is None:
                channels.append(new_channel.model_copy())
            else:
                channels[idx] = new_channel.model_copy()
        state.products[i] = update.model_copy(
            update={
                "channels": channels,
                "optimal_price": optimal_price(existing.sku, state.price_history),
                "last_updated": today,
            }
        )

    added_rules = []
    for platform in result.stats.discovered_platforms:
        if platform and platform not in state.pricing_rules:
            state.pricing_rules[platform] = _inherit_rule(state.pricing_rules, platform)
            added_rules.append(platform)

    for alias, master in result.resolved_aliases.items():
        state.learned_aliases[alias] = master

    logger.info(
        "Sales applied: %d products, %d history logs, %d shipment logs, new platforms %s",
        len(updates),
        len(new_logs),
        len(result.shipment_logs),
        added_rules or "none",
    )
    return len(updates)


def cleanup_general_logs(state: HubState) -> int:
    """Drop ``General`` logs for days that also have platform-specific logs."""
    platforms: dict[tuple[str, date], set[str]] = defaultdict(set)
    for log in state.price_history:
        platforms[(log.sku, log.date)].add(log.platform or GENERAL_PLATFORM)

    before = len(state.price_history)
    state.price_history = [
        log
        for log in state.price_history
        if not (
            len(platforms[(log.sku, log.date)]) > 1
            and (not log.platform or log.platform == GENERAL_PLATFORM)
        )
    ]
    removed = before - len(state.price_history)
    if removed:
        logger.info("Removed %d duplicate General history logs", removed)
    return removed


# ---------------------------------------------------------------------------
# Recalculation
# ---------------------------------------------------------------------------


def latest_history_date(state: HubState) -> date | None:
    if not state.price_history:
        return None
    return max(log.date for log in state.price_history)


def lookback_days(setting: str) -> int:
    """``"7"``/``"30"``/... -> days; ``"ALL"`` -> a window covering everything."""
    if str(setting).upper() == "ALL":
        return ALL_LOOKBACK_DAYS
    try:
        return int(setting)
    except (TypeError, ValueError):
        return 30


def _counted(state: HubState, log: PriceLog) -> bool:
    if not log.platform:
        return True
    rule = state.pricing_rules.get(log.platform)
    return not (rule and rule.is_excluded)


def _logs_by_sku(state: HubState) -> dict[str, list[PriceLog]]:
    out: dict[str, list[PriceLog]] = defaultdict(list)
    for log in state.price_history:
        if _counted(state, log):
            out[log.sku].append(log)
    return out


def recalculate_velocities(
    state: HubState,
    lookback: str | None = None,
    tz: str | None = None,
) -> int:
    """Refresh daily sales, previous-window sales and return figures.

    Windows are anchored on the latest history date so an old export still
    shows the velocities of its own period. Returns the number of products
    whose figures changed.
    """
    anchor = latest_history_date(state)
    if anchor is None:
        return 0

    days = lookback_days(lookback or state.velocity_setting)
    current_start = anchor - timedelta(days=days)
    previous_start = anchor - timedelta(days=days * 2)
    logs_by_sku = _logs_by_sku(state)

    refunds_by_sku: dict[str, list[RefundLog]] = defaultdict(list)
    for refund in state.refund_history:
        refunds_by_sku[refund.sku].append(refund)

    def avg_daily(logs: list[PriceLog], start: date, end: date) -> float:
        relevant = [log for log in logs if start <= log.date <= end]
        if not relevant:
            return 0.0
        window = max(1, (end - start).days)
        return sum(to_number(log.velocity) for log in relevant) / window

    changed = 0
    for product in state.products:
        logs = logs_by_sku.get(product.sku, [])
        total_refunded = 0.0
        refunded_qty = 0.0
        for refund in refunds_by_sku.get(product.sku, []):
            day = to_date(refund.date, tz)
            if day is not None and current_start <= day <= anchor:
                total_refunded += to_number(refund.amount)
                refunded_qty += to_number(refund.quantity)

        new_avg = avg_daily(logs, current_start, anchor)
        new_prev = avg_daily(logs, previous_start, current_start)
        estimated_sold = (new_avg or product.average_daily_sales or 0.0) * days
        return_rate = refunded_qty / estimated_sold * 100 if estimated_sold > 0 else 0.0

        if (
            abs(new_avg - product.average_daily_sales) > 0.001
            or abs(new_prev - product.previous_daily_sales) > 0.001
            or abs(return_rate - product.return_rate) > 0.01
            or abs(total_refunded - product.total_refunded) > 0.01
        ):
            product.average_daily_sales = round(new_avg, 2)
            product.previous_daily_sales = round(new_prev, 2)
            product.return_rate = round(return_rate, 2)
            product.total_refunded = round(total_refunded, 2)
            changed += 1

    logger.info("Velocities recalculated (lookback %s): %d products changed", days, changed)
    return changed


def recalculate_weekly_prices(state: HubState) -> int:
    """Current/old price from the last two Friday-Thursday trading weeks."""
    anchor = latest_history_date(state)
    if anchor is None:
        return 0
    weeks = friday_week_ranges(anchor)
    logs_by_sku = _logs_by_sku(state)

    def weighted_avg(logs: list[PriceLog], start: date, end: date) -> float | None:
        relevant = [log for log in logs if start <= log.date <= end]
        if not relevant:
            return None
        qty = sum(to_number(log.velocity) for log in relevant)
        if qty <= 0:
            return None
        revenue = sum(to_number(log.price) * to_number(log.velocity) for log in relevant)
        return revenue / qty

    changed = 0
    for product in state.products:
        logs = logs_by_sku.get(product.sku, [])
        current = weighted_avg(logs, weeks.current.start, weeks.current.end)
        last = weighted_avg(logs, weeks.last.start, weeks.last.end)

        new_current = round(current, 2) if current is not None else product.current_price
        new_old = round(last, 2) if last is not None else product.old_price
        if (
            abs(new_current - product.current_price) > 0.001
            or abs(new_old - product.old_price) > 0.001
        ):
            product.current_price = new_current
            product.old_price = new_old
            changed += 1

    logger.info("Weekly prices recalculated: %d products changed", changed)
    return changed


def reset_sales_data(state: HubState) -> None:
    """Clear all histories and the sales-derived product figures."""
    state.price_history = []
    state.shipment_history = []
    state.refund_history = []
    state.price_change_history = []
    for product in state.products:
        product.average_daily_sales = 0.0
        product.previous_daily_sales = 0.0
        product.return_rate = 0.0
        product.total_refunded = 0.0
        product.current_price = 0.0
        product.old_price = 0.0
        product.optimal_price = 0.0
    logger.info("Sales data reset for %d products", len(state.products))


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def refresh_derived(state: HubState, tz: str | None = None) -> None:
    """Re-derive velocities and weekly prices after the history changed."""
    cleanup_general_logs(state)
    recalculate_velocities(state, tz=tz)
    recalculate_weekly_prices(state)


def apply_import(
    state: HubState,
    result: ImportResult,
    mapping_mode: MappingMode | str = MappingMode.MERGE,
    platform: str | None = None,
    tz: str | None = None,
) -> dict[str, int]:
    """Apply any importer preview to ``state``.

    Sales and returns imports also refresh the derived figures. Returns
    counters describing what changed.

    Raises:
        ValueError: If the preview was rejected or cannot be applied.
    """
    if result.has_errors and result.item_count == 0:
        raise ValueError(f"{result.importer_name or 'Import'} was rejected: {result.errors[0]}")

    if isinstance(result, InventoryImportResult):
        updated, created = apply_inventory_import(state, result.items, _today(tz))
        return {"updated": updated, "created": created}
    if isinstance(result, CostImportResult):
        return {"updated": apply_cost_updates(state, result.items)}
    if isinstance(result, SkuDetailImportResult):
        return {"updated": apply_sku_details(state, result.items)}
    if isinstance(result, CAPriceImportResult):
        changes = apply_ca_prices(state, result.items, result.report_date)
        return {"updated": len(result.valid_items), "price_changes": len(changes)}
    if isinstance(result, ReturnsImportResult):
        added = merge_refunds(state, result.refunds)
        recalculate_velocities(state, tz=tz)
        return {"added": added}
    if isinstance(result, MappingImportResult):
        mappings = result.to_mappings(platform)
        return {"updated": apply_mappings(state, mappings, mapping_mode, platform or result.platform)}
    if isinstance(result, ShipmentImportResult):
        return {"updated": apply_shipments(state, result.updates, tz=tz)}
    if isinstance(result, SalesImportResult):
        if result.needs_mapping:
            raise ValueError("Sales columns are not fully mapped")
        if result.needs_resolution:
            logger.warning("Applying sales with %d unresolved SKUs skipped", len(result.unknown_skus))
        updated = apply_sales_import(state, result, _today(tz))
        refresh_derived(state, tz)
        return {"updated": updated, "history": len(result.history)}
    raise ValueError(f"Cannot apply {type(result).__name__}")
