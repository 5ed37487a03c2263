"""Tests for runway banding, the filtered product view and the simulator."""

import pytest
from sello_hub.models import ChannelData, Product, ProductStatus, Recommendation
from sello_hub.product_list import (
    PriceSimulator,
    ProductFilters,
    build_product_view,
    classify,
    export_products_csv,
    runway_bin,
    runway_days,
    unique_managers,
)


def _make_product(sku: str, stock: float, velocity: float = 1.0, **kwargs) -> Product:
    defaults = dict(
        id=f"id-{sku}",
        sku=sku,
        stock_level=stock,
        average_daily_sales=velocity,
        current_price=10.0,
        lead_time_days=30,
    )
    defaults.update(kwargs)
    return Product(**defaults)


def _make_products() -> list[Product]:
    return [
        _make_product("OVER", 1000),
        _make_product("CRIT", 10),
        _make_product("OK", 60),
        _make_product("OOS", 0),
    ]


class TestRunway:
    def test_runway_days(self):
        assert runway_days(0, 5) == 0.0
        assert runway_days(10, 0) == 999.0
        assert runway_days(10, 2) == 5.0

    @pytest.mark.parametrize(
        "stock,runway,expected",
        [
            (0, 0, (ProductStatus.CRITICAL, Recommendation.OUT_OF_STOCK)),
            (10, 10, (ProductStatus.CRITICAL, Recommendation.INCREASE_PRICE)),
            (40, 40, (ProductStatus.WARNING, Recommendation.MAINTAIN)),
            (60, 60, (ProductStatus.HEALTHY, Recommendation.MAINTAIN)),
            (200, 200, (ProductStatus.OVERSTOCK, Recommendation.DECREASE_PRICE)),
        ],
    )
    def test_classify(self, stock, runway, expected):
        assert classify(stock, runway, 30) == expected

    def test_runway_bins(self):
        assert runway_bin(10, 5) == "2 Weeks"
        assert runway_bin(28, 5) == "4 Weeks"
        assert runway_bin(200, 5) == "24 Weeks +"
        assert runway_bin(0, 0) == "Out of Stock"


class TestProductView:
    def test_default_order_is_critical_first(self):
        view = build_product_view(_make_products())
        assert [p.sku for p in view] == ["CRIT", "OOS", "OK", "OVER"]
        assert view[0].recommendation == "Increase Price"
        assert view[0].days_remaining == 10.0

    def test_status_and_search(self):
        products = _make_products()
        view = build_product_view(products, ProductFilters(status="Overstock"))
        assert [p.sku for p in view] == ["OVER"]
        view = build_product_view(products, ProductFilters(search="ov"))
        assert [p.sku for p in view] == ["OVER"]

    def test_sort_key(self):
        filters = ProductFilters(sort_key="stock_level", descending=True)
        view = build_product_view(_make_products(), filters)
        assert [p.sku for p in view] == ["OVER", "OK", "CRIT", "OOS"]

    def test_channel_filters_recompute_figures(self):
        product = _make_product(
            "CH",
            40,
            velocity=3.0,
            channels=[
                ChannelData(platform="eBay", manager="Team A", velocity=2.0, price=10.0),
                ChannelData(platform="Amazon", manager="Team B", velocity=1.0, price=13.0),
            ],
        )
        ebay = build_product_view([product], ProductFilters(platform="eBay"))[0]
        assert ebay.average_daily_sales == 2.0
        assert ebay.current_price == 10.0
        assert ebay.days_remaining == 20.0
        assert ebay.status == ProductStatus.CRITICAL

        team_b = build_product_view([product], ProductFilters(manager="Team B"))[0]
        assert team_b.current_price == 13.0
        assert team_b.days_remaining == 40.0

        assert build_product_view([product], ProductFilters(platform="Etsy")) == []
        assert unique_managers([product]) == ["Team A", "Team B"]

    def test_source_products_untouched(self):
        products = _make_products()
        build_product_view(products)
        assert products[1].status == ProductStatus.HEALTHY


class TestPriceSimulator:
    def test_intensity(self):
        sim = PriceSimulator()
        sim.set_intensity(10)
        prices = {p.sku: sim.simulated_price(p) for p in build_product_view(_make_products())}
        assert prices == {"CRIT": 11.0, "OOS": 10.0, "OK": 10.0, "OVER": 9.0}

    def test_intensity_is_capped(self):
        sim = PriceSimulator()
        sim.set_intensity(80)
        assert sim.intensity == 50.0

    def test_out_of_stock_allowed(self):
        sim = PriceSimulator(allow_out_of_stock=True)
        sim.set_intensity(20)
        oos = build_product_view([_make_product("OOS", 0)])[0]
        assert sim.simulated_price(oos) == 12.0

    def test_override_wins_and_slider_clears_it(self):
        sim = PriceSimulator()
        view = build_product_view(_make_products())
        sim.set_override("id-OK", 14.5)
        assert sim.simulated_price(view[2]) == 14.5
        sim.set_intensity(5)
        assert sim.overrides == {}

    def test_confirm_rounds_to_99(self):
        sim = PriceSimulator()
        sim.set_intensity(10)
        view = build_product_view(_make_products())
        overrides = sim.confirm(view)

        assert overrides["id-CRIT"] == 10.99
        assert overrides["id-OVER"] == 8.99
        assert overrides["id-OK"] == 9.99
        assert sim.confirmed
        assert sim.intensity == 0.0

    def test_export_csv(self):
        sim = PriceSimulator()
        sim.set_intensity(10)
        view = build_product_view(_make_products())
        lines = export_products_csv(view, sim).splitlines()
        assert lines[0].startswith("SKU,Name,Subcategory,Current Price,Est. New Price")
        assert lines[1] == "CRIT,,,10.00,11.00,,10,1.00,30,10,Critical,0.00"
        assert lines[3].split(",")[4] == ""
