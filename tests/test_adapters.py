"""Tests for the spreadsheet importers (sales has its own module)."""

from datetime import date

import pytest
from sello_hub.adapters import (
    CAPriceImporter,
    CostImporter,
    InventoryImporter,
    MappingImporter,
    ReturnsImporter,
    ShipmentImporter,
    SkuDetailImporter,
    detect_and_ingest,
    detect_importer,
    get_importer,
)
from sello_hub.adapters.mappings import MatchMethod, match_master_sku
from sello_hub.adapters.returns import refund_id
from sello_hub.adapters.shipments import ContainerChange, clean_status
from sello_hub.models import ChannelData, HubState, Product, ShipmentDetail


def _make_state(*products: Product) -> HubState:
    return HubState(products=list(products))


def _make_product(sku: str, **kwargs) -> Product:
    return Product(id=f"id-{sku}", sku=sku, **kwargs)


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


class TestInventoryImporter:
    HEADERS = [
        "Product SKU/SKU编码",
        "Product Name/SKU名称",
        "Total Inventory Qty/库存总量",
        "COGS/成本价",
        "Inventory Status/库存状态",
        "Carton Weight/外箱重量",
    ]

    def test_new_and_existing_products(self):
        state = _make_state(_make_product("A1", stock_level=4, cost_price=2.5))
        rows = [
            self.HEADERS,
            ["A1", "Widget", "10", "3.2", "Active", "1.5"],
            ["B2", "Gadget", "", "", "", ""],
            ["", "blank row", "", "", "", ""],
        ]
        result = InventoryImporter().ingest_rows(rows, state)

        assert not result.has_errors
        assert result.item_count == 2
        a1, b2 = result.items
        assert a1.stock == 10.0
        assert a1.old_stock == 4
        assert a1.old_cost == 2.5
        assert a1.inventory_status == "Active"
        assert a1.carton_dimensions.weight == 1.5
        assert not a1.is_new_product
        assert b2.is_new_product
        assert b2.stock is None
        assert result.new_product_count == 1
        assert result.rows_skipped == 1

    def test_missing_sku_column_is_rejected(self):
        rows = [["SKU", "Name"], ["A1", "Widget"]]
        result = InventoryImporter().ingest_rows(rows, _make_state())
        assert result.has_errors
        assert "Invalid Template" in result.errors[0]
        assert result.item_count == 0


# ---------------------------------------------------------------------------
# Costs and CA prices
# ---------------------------------------------------------------------------


class TestCostImporter:
    def test_blank_cells_are_none(self):
        rows = [["SKU", "Cost", "Floor_Price"], ["A1", "4.5", ""], ["B2", "", "9"]]
        result = CostImporter().ingest_rows(rows, _make_state())
        assert [(i.sku, i.cost, i.floor_price) for i in result.items] == [
            ("A1", 4.5, None),
            ("B2", None, 9.0),
        ]
        assert result.items[0].ceiling_price is None


class TestCAPriceImporter:
    def test_parents_and_invalid_prices(self):
        rows = [
            ["sku", "price"],
            ["A1", "12.5"],
            ["A1-UK-ALL", "9"],
            ["B2", "abc"],
            ["", ""],
        ]
        importer = CAPriceImporter(report_date=date(2025, 12, 1))
        result = importer.ingest_rows(rows, _make_state())

        assert result.report_date == date(2025, 12, 1)
        assert [i.sku for i in result.valid_items] == ["A1"]
        assert result.item_count == 1
        assert result.parent_skipped == 1
        assert result.errors == ["Row 4: invalid price for B2"]
        assert result.rows_skipped == 3

    def test_missing_price_column(self):
        result = CAPriceImporter().ingest_rows([["sku", "cost"], ["A1", "1"]], _make_state())
        assert result.errors == ["Missing required column: 'price'"]


# ---------------------------------------------------------------------------
# Returns
# ---------------------------------------------------------------------------


class TestReturnsImporter:
    HEADERS = [
        "Product SKU",
        "Refund Amount",
        "Refund Qty",
        "Creation Time",
        "Platform",
        "Platform After-sales Reason",
    ]

    def test_parses_refunds(self):
        rows = [
            self.HEADERS,
            ["A1", "12.50", "2", "05/03/2025 14:30", "eBay", "Damaged"],
            ["", "1", "1", "05/03/2025", "eBay", ""],
        ]
        result = ReturnsImporter(tz="Europe/London").ingest_rows(rows, _make_state())

        assert result.item_count == 1
        refund = result.refunds[0]
        assert refund.sku == "A1"
        assert refund.amount == 12.5
        assert refund.quantity == 2.0
        assert refund.platform == "eBay"
        assert refund.reason == "Damaged"
        assert (refund.date.day, refund.date.month, refund.date.hour) == (5, 3, 14)
        assert refund.id.startswith("ref-")
        assert result.total_value == 12.5

    def test_same_report_gives_same_ids(self):
        rows = [self.HEADERS, ["A1", "5", "1", "05/03/2025 10:00", "eBay", "Late"]]
        first = ReturnsImporter(tz="Europe/London").ingest_rows(rows, _make_state())
        second = ReturnsImporter(tz="Europe/London").ingest_rows(rows, _make_state())
        assert first.refunds[0].id == second.refunds[0].id

    def test_refund_id_depends_on_content(self):
        base = refund_id("A1", "2025-03-05T10:00:00.000Z", 5.0, 1, "late")
        assert base == refund_id("a1", "2025-03-05T10:00:00.000Z", 5.0, 1.0, "LATE")
        assert base != refund_id("A1", "2025-03-05T10:00:00.000Z", 6.0, 1, "late")

    def test_missing_date_column(self):
        rows = [["Product SKU", "Refund Amount"], ["A1", "5"]]
        result = ReturnsImporter().ingest_rows(rows, _make_state())
        assert result.errors == ["Could not detect 'Creation Time' column."]


# ---------------------------------------------------------------------------
# SKU mappings
# ---------------------------------------------------------------------------


class TestMappingImporter:
    def test_match_rules(self):
        masters = ["BF10", "BF100", "ABC"]
        assert match_master_sku("ABC", masters) == ("ABC", MatchMethod.EXACT)
        assert match_master_sku("ABC-UK", masters) == ("ABC", MatchMethod.FUZZY)
        assert match_master_sku("BF100-X", masters) == ("BF100", MatchMethod.FUZZY)
        assert match_master_sku("BF1000", masters) == (None, MatchMethod.NONE)

    def test_rows_and_mappings(self):
        state = _make_state(_make_product("ABC"), _make_product("BF10"))
        rows = [["Seller SKU", "Title"], ["ABC-UK", "x"], ["ABC-UK", "dup"], ["ZZZ", "y"]]
        result = MappingImporter(platform="eBay").ingest_rows(rows, state)

        assert result.item_count == 2
        assert result.rows_skipped == 1
        mappings = result.to_mappings()
        assert [(m.master_sku, m.platform, m.alias) for m in mappings] == [
            ("ABC", "eBay", "ABC-UK")
        ]

    def test_platform_required_to_save(self):
        state = _make_state(_make_product("ABC"))
        result = MappingImporter().ingest_rows([["SKU"], ["ABC"]], state)
        with pytest.raises(ValueError, match="platform"):
            result.to_mappings()
        assert result.to_mappings("Amazon")[0].platform == "Amazon"


# ---------------------------------------------------------------------------
# Container tracker
# ---------------------------------------------------------------------------


class TestShipmentImporter:
    HEADERS = [
        "Product SKU",
        "Container No.1",
        "Container No.1 Stock Qty",
        "Container No.1 Status",
        "Container No.1 Expected ETA",
    ]

    def test_clean_status(self):
        assert clean_status("In Transit/运输中") == "In Transit"
        assert clean_status("") == "Pending"
        assert clean_status("已到港Arrived") == "Arrived"

    def test_container_changes(self):
        known = _make_product(
            "A1",
            shipments=[
                ShipmentDetail(container_id="C1", status="Pending", eta=date(2025, 3, 25))
            ],
        )
        rows = [
            self.HEADERS,
            ["A1", "C2", "50", "", ""],
            ["A1-UK", "C1", "100", "In Transit/运输中", "2025-04-01"],
            ["B2", "C1", "20", "In Transit", "2025-04-01"],
            ["C3", "", "", "", ""],
        ]
        result = ShipmentImporter().ingest_rows(rows, _make_state(known))

        assert result.item_count == 3
        first, second = result.containers
        assert first.id == "C1"
        assert first.change_type == ContainerChange.DELAYED
        assert first.days_diff == 7
        assert first.sku_count == 2
        assert first.total_qty == 120.0
        assert second.id == "C2"
        assert second.change_type == ContainerChange.NEW
        assert second.status == "Pending"

        by_sku = {u.sku: u.shipments for u in result.updates}
        assert by_sku["A1-UK"][0].eta == date(2025, 4, 1)
        assert by_sku["A1-UK"][0].status == "In Transit"


# ---------------------------------------------------------------------------
# SKU profit detail
# ---------------------------------------------------------------------------


class TestSkuDetailImporter:
    def test_matches_aliases(self):
        product = _make_product("A1", channels=[ChannelData(platform="eBay", sku_alias="A1-EB")])
        rows = [
            ["sku_code", "sku_qty", "sales_amt", "cogs%", "profit_incl_rn"],
            ["a1-eb", "4", "40", "31%", "8"],
            ["ZZ9", "1", "5", "10%", "1"],
        ]
        result = SkuDetailImporter().ingest_rows(rows, _make_state(product))

        assert result.item_count == 1
        assert result.unmatched == 1
        item = result.items[0]
        assert item.master_sku == "A1"
        assert item.detail.unit_price == 10.0
        assert item.detail.cogs_pct == 31.0
        assert item.detail.profit_incl_rn == 8.0
        assert item.detail.last_updated is not None


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


class TestDetection:
    @pytest.mark.parametrize(
        "headers,kind",
        [
            (["Product SKU/SKU编码", "COGS/成本价"], "inventory"),
            (["sku_code", "sku_qty", "cogs"], "sku_detail"),
            (["Product SKU", "Container No.1"], "shipments"),
            (["Product SKU", "Refund Amount"], "returns"),
            (["sku_code", "sku_quantity", "sales_amt"], "sales"),
            (["sku", "cost"], "costs"),
            (["sku", "price"], "ca_prices"),
            (["Custom Label", "Title"], "mappings"),
            (["Seller SKU", "Quantity Available"], "mappings"),
            (["SKU", "ASIN", "Status"], "mappings"),
        ],
    )
    def test_detects_kind(self, headers, kind):
        assert detect_importer(headers).kind == kind

    def test_nothing_matches(self):
        assert detect_importer(["foo", "bar"]) is None

    def test_plain_sku_sheet_is_not_a_mapping(self):
        assert not MappingImporter().can_handle(["SKU", "Name"])
        assert detect_importer(["SKU", "Name"]) is None

    def test_detected_importer_gets_options(self):
        mapping = detect_importer(["Custom Label", "Title"], platform="eBay", tz="Europe/London")
        assert mapping.platform == "eBay"

        sales = detect_importer(
            ["sku_code", "sku_quantity", "sales_amt"], tz="Europe/London", period_days=10
        )
        assert sales.tz == "Europe/London"
        assert sales.period_days == 10

    def test_detect_and_ingest_unknown(self):
        result = detect_and_ingest(b"foo,bar\n1,2\n", HubState(), filename="x.csv")
        assert result.importer_name == "unknown"
        assert result.has_errors

    def test_detect_and_ingest_costs(self):
        result = detect_and_ingest(b"sku,cost\nA1,3\n", HubState(), filename="costs.csv")
        assert result.importer_name == "Cost Sheet"
        assert result.item_count == 1
        assert result.source == "costs.csv"

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown import type"):
            get_importer("nope")
