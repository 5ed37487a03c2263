"""Tests for applying previews to the hub state and re-deriving figures."""

from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest
from sello_hub.adapters import (
    CAPriceImporter,
    InventoryImportResult,
    ReturnsImporter,
    SalesImporter,
)
from sello_hub.adapters.ca_prices import CAPriceItem
from sello_hub.adapters.inventory import InventoryItem
from sello_hub.adapters.mappings import SkuMapping
from sello_hub.adapters.shipments import ShipmentUpdate
from sello_hub.models import (
    ChangeType,
    ChannelData,
    HubState,
    PlatformConfig,
    PriceLog,
    Product,
    RefundLog,
    ShipmentDetail,
)
from sello_hub.reconcile import (
    MappingMode,
    apply_ca_prices,
    apply_import,
    apply_inventory_import,
    apply_mappings,
    apply_shipments,
    cleanup_general_logs,
    lookback_days,
    merge_refunds,
    merge_sales_history,
    recalculate_velocities,
    recalculate_weekly_prices,
    record_price_change,
    reset_sales_data,
)

LONDON = "Europe/London"
LONDON_TZ = ZoneInfo(LONDON)


def _make_product(sku: str, **kwargs) -> Product:
    return Product(id=f"id-{sku}", sku=sku, **kwargs)


def _make_log(day: date, velocity: float, price: float = 10.0, **kwargs) -> PriceLog:
    defaults = dict(
        id=f"h-{day.isoformat()}-{kwargs.get('platform', 'eBay')}",
        sku="A1",
        date=day,
        price=price,
        velocity=velocity,
        margin=20.0,
        platform="eBay",
    )
    defaults.update(kwargs)
    return PriceLog(**defaults)


# ---------------------------------------------------------------------------
# Catalogue imports
# ---------------------------------------------------------------------------


class TestInventory:
    def test_update_and_create(self):
        state = HubState(products=[_make_product("A1", name="Old", stock_level=1)])
        items = [
            InventoryItem(sku="A1", name=None, stock=12, cost=3.0),
            InventoryItem(sku="B2", name="Gadget", stock=None, cost=None),
        ]
        updated, created = apply_inventory_import(state, items, today=date(2025, 3, 10))

        assert (updated, created) == (1, 1)
        a1, b2 = state.products
        assert a1.name == "Old"
        assert a1.stock_level == 12
        assert a1.cost_price == 3.0
        assert a1.last_updated == date(2025, 3, 10)
        assert b2.id.startswith("p-B2-")
        assert b2.name == "Gadget"
        assert b2.stock_level == 0.0

    def test_rejected_preview_is_not_applied(self):
        result = InventoryImportResult(importer_name="ERP Inventory", errors=["Invalid Template"])
        with pytest.raises(ValueError, match="rejected"):
            apply_import(HubState(), result)


class TestCAPrices:
    def test_matching_and_change_records(self):
        state = HubState(
            products=[
                _make_product("A1", name="Widget", ca_price=10.0),
                _make_product("BF10_2", ca_price=5.0),
                _make_product("C3"),
                _make_product("D4", ca_price=8.0),
            ]
        )
        items = [
            CAPriceItem(sku="a1", ca_price=12.5),
            CAPriceItem(sku="BF10", ca_price=5.0),
            CAPriceItem(sku="C3_UK", ca_price=7.0),
        ]
        changes = apply_ca_prices(state, items, report_date=date(2025, 12, 1))

        assert len(changes) == 1
        change = changes[0]
        assert change.sku == "A1"
        assert change.change_type == ChangeType.INCREASE
        assert change.percent_change == pytest.approx(25.0)
        assert change.date == date(2025, 12, 1)
        assert state.price_change_history == changes
        assert [p.ca_price for p in state.products] == [12.5, 5.0, 7.0, 8.0]

    def test_partial_sheet_still_applies(self):
        state = HubState(products=[_make_product("A1", ca_price=10.0)])
        rows = [["sku", "price"], ["A1", "9"], ["B2", "oops"]]
        result = CAPriceImporter(report_date=date(2025, 12, 1)).ingest_rows(rows, state)
        applied = apply_import(state, result)
        assert applied == {"updated": 1, "price_changes": 1}
        assert state.price_change_history[0].change_type == ChangeType.DECREASE

    def test_manual_price_change(self):
        state = HubState(products=[_make_product("A1", name="Widget", ca_price=10.0)])
        apply_ca_prices(state, [CAPriceItem(sku="A1", ca_price=12.0)], date(2025, 12, 1))

        record = record_price_change(state, "a1", 9.0, day=date(2025, 12, 5))
        assert record.sku == "A1"
        assert record.product_name == "Widget"
        assert (record.old_price, record.new_price) == (12.0, 9.0)
        assert record.change_type == ChangeType.DECREASE
        assert record.percent_change == pytest.approx(-25.0)
        assert state.price_change_history[0] is record
        assert len(state.price_change_history) == 2
        assert state.products[0].ca_price == 12.0

    def test_manual_price_change_needs_old_price(self):
        state = HubState(products=[_make_product("A1")])
        with pytest.raises(ValueError, match="valid numbers"):
            record_price_change(state, "A1", 9.0)
        record = record_price_change(state, "A1", 9.0, old_price=6.0)
        assert record.change_type == ChangeType.INCREASE
        with pytest.raises(ValueError, match="Unknown SKU"):
            record_price_change(state, "ZZ", 9.0, old_price=6.0)


# ---------------------------------------------------------------------------
# Refunds, mappings, shipments
# ---------------------------------------------------------------------------


class TestRefunds:
    def test_duplicates_are_dropped(self):
        state = HubState(products=[_make_product("A1")])
        rows = [
            ["Product SKU", "Refund Amount", "Creation Time"],
            ["A1", "5", "05/03/2025 10:00"],
        ]
        result = ReturnsImporter(tz=LONDON).ingest_rows(rows, state)
        assert apply_import(state, result, tz=LONDON) == {"added": 1}
        assert apply_import(state, result, tz=LONDON) == {"added": 0}
        assert merge_refunds(state, result.refunds) == 0
        assert len(state.refund_history) == 1


class TestMappings:
    def _state(self) -> HubState:
        return HubState(
            products=[
                _make_product("A1", channels=[ChannelData(platform="eBay", sku_alias="OLD-1")]),
                _make_product("B2"),
            ]
        )

    def test_merge_keeps_existing_aliases(self):
        state = self._state()
        mappings = [SkuMapping(master_sku="A1", platform="eBay", alias="A1-UK")]
        assert apply_mappings(state, mappings, MappingMode.MERGE) == 1
        assert state.products[0].channel("eBay").sku_alias == "A1-UK, OLD-1"
        assert state.learned_aliases == {"A1-UK": "A1"}

    def test_replace_clears_platform(self):
        state = self._state()
        mappings = [SkuMapping(master_sku="B2", platform="eBay", alias="B2")]
        apply_mappings(state, mappings, "replace")
        assert state.products[0].channel("eBay").sku_alias is None
        assert state.products[1].channel("eBay").sku_alias == "B2"
        assert state.learned_aliases == {}

    def test_mixed_platforms_need_explicit_platform(self):
        mappings = [
            SkuMapping(master_sku="A1", platform="eBay", alias="x"),
            SkuMapping(master_sku="A1", platform="Amazon", alias="y"),
        ]
        with pytest.raises(ValueError, match="single platform"):
            apply_mappings(self._state(), mappings)


class TestShipments:
    def test_merge_by_container(self):
        state = HubState(
            products=[
                _make_product(
                    "A1",
                    shipments=[ShipmentDetail(container_id="C1", quantity=100, eta=date(2025, 3, 25))],
                )
            ]
        )
        update = ShipmentUpdate(
            sku="A1",
            shipments=[
                ShipmentDetail(container_id="C1", quantity=120, eta=date(2025, 4, 1)),
                ShipmentDetail(container_id="C2", quantity=50, eta=date(2025, 3, 20)),
            ],
        )
        now = datetime(2025, 3, 10, 12, 0, tzinfo=LONDON_TZ)
        assert apply_shipments(state, [update], now=now, tz=LONDON) == 1

        product = state.products[0]
        assert [s.container_id for s in product.shipments] == ["C1", "C2"]
        assert product.incoming_stock == 170
        assert product.lead_time_days == 10


# ---------------------------------------------------------------------------
# Sales history
# ---------------------------------------------------------------------------


class TestSalesHistory:
    def test_order_logs_supersede_daily_totals(self):
        day = date(2025, 3, 1)
        daily = _make_log(day, 3, id="daily")
        other_day = _make_log(date(2025, 3, 2), 1, id="other")
        order = _make_log(day, 1, id="order", order_id="ORD-1")
        merged = merge_sales_history([daily, other_day], [order])
        assert [log.id for log in merged] == ["other", "order"]

    def test_same_key_is_replaced(self):
        old = _make_log(date(2025, 3, 1), 3, id="old")
        new = _make_log(date(2025, 3, 1), 5, id="new")
        assert [log.id for log in merge_sales_history([old], [new])] == ["new"]

    def test_general_logs_removed_when_platform_logs_exist(self):
        day = date(2025, 3, 1)
        state = HubState(
            price_history=[
                _make_log(day, 2, platform="General"),
                _make_log(day, 2, platform="eBay"),
                _make_log(date(2025, 3, 2), 1, platform="General"),
            ]
        )
        assert cleanup_general_logs(state) == 1
        assert [log.platform for log in state.price_history] == ["eBay", "General"]

    def test_apply_sales_import(self):
        state = HubState(
            products=[_make_product("A1", current_price=9.0)],
            pricing_rules={"Amazon": PlatformConfig(manager="Team B", commission=15)},
        )
        rows = [
            ["sku_code", "sku_quantity", "sales_amt", "order_time", "platform_name_level1",
             "platform_name_level2", "postage", "logistics_name"],
            ["A1", "3", "31", "2025-03-01 10:00", "eBay", "", "2", "EVRI"],
            ["A1", "1", "10", "2025-03-03 09:00", "Amazon", "FBA", "2", "EVRI"],
        ]
        now = datetime(2025, 3, 10, 12, 0, tzinfo=LONDON_TZ)
        result = SalesImporter(tz=LONDON, now=now).ingest_rows(rows, state)
        applied = apply_import(state, result, tz=LONDON)

        assert applied == {"updated": 1, "history": 2}
        assert len(state.price_history) == 2
        assert len(state.shipment_history) == 1
        assert state.pricing_rules["Amazon FBA"].manager == "Team B"
        assert state.pricing_rules["Amazon FBA"].commission == 15
        assert "eBay" in state.pricing_rules
        product = state.products[0]
        assert product.average_daily_sales == pytest.approx(0.13)
        assert product.current_price == 10.25

    def test_unmapped_sales_are_not_applied(self):
        state = HubState(products=[_make_product("A1")])
        rows = [["Item", "Units", "Amount"], ["A1", "5", "50"]]
        result = SalesImporter().ingest_rows(rows, state)
        with pytest.raises(ValueError, match="rejected"):
            apply_import(state, result)


# ---------------------------------------------------------------------------
# Recalculation
# ---------------------------------------------------------------------------


class TestRecalculation:
    def _state(self) -> HubState:
        return HubState(
            products=[_make_product("A1", current_price=5.0, old_price=5.0)],
            pricing_rules={"B&Q": PlatformConfig(is_excluded=True)},
            price_history=[
                _make_log(date(2025, 3, 10), 7, price=11.0),
                _make_log(date(2025, 3, 5), 7, price=9.0),
                _make_log(date(2025, 2, 28), 7, price=9.0),
                _make_log(date(2025, 3, 9), 100, price=1.0, platform="B&Q"),
            ],
            refund_history=[
                RefundLog(
                    id="ref-1",
                    sku="A1",
                    date=datetime(2025, 3, 6, 12, 0, tzinfo=LONDON_TZ),
                    quantity=1,
                    amount=10.0,
                )
            ],
            velocity_setting="7",
        )

    def test_lookback_days(self):
        assert lookback_days("7") == 7
        assert lookback_days("ALL") == 9999
        assert lookback_days("junk") == 30

    def test_velocities(self):
        state = self._state()
        assert recalculate_velocities(state, tz=LONDON) == 1
        product = state.products[0]
        assert product.average_daily_sales == 2.0
        assert product.previous_daily_sales == 1.0
        assert product.return_rate == 7.14
        assert product.total_refunded == 10.0
        assert recalculate_velocities(state, tz=LONDON) == 0

    def test_no_history_changes_nothing(self):
        assert recalculate_velocities(HubState(products=[_make_product("A1")])) == 0

    def test_weekly_prices(self):
        state = self._state()
        assert recalculate_weekly_prices(state) == 1
        product = state.products[0]
        assert product.current_price == 11.0
        assert product.old_price == 9.0

    def test_reset(self):
        state = self._state()
        recalculate_velocities(state, tz=LONDON)
        reset_sales_data(state)
        assert state.price_history == []
        assert state.refund_history == []
        assert state.products[0].average_daily_sales == 0.0
        assert state.products[0].return_rate == 0.0
