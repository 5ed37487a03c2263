"""Tests for the rule-based pricing strategy."""

from datetime import date

import pytest
from sello_hub.models import ChannelData, PlatformConfig, Product
from sello_hub.strategy import (
    StrategyAction,
    build_strategy,
    evaluate,
    export_strategy_csv,
    filtered_price,
    is_new_product,
    psychological_price,
)
from sello_hub.thresholds import DecreaseRule, StrategyConfig


def _make_product(sku: str, **kwargs) -> Product:
    return Product(id=f"id-{sku}", sku=sku, name=f"Product {sku}", **kwargs)


def _fast_seller() -> Product:
    return _make_product("FAST", current_price=10.0, average_daily_sales=1.0, stock_level=20)


def _slow_seller(**kwargs) -> Product:
    return _make_product(
        "SLOW", current_price=20.0, average_daily_sales=0.1, stock_level=100, **kwargs
    )


class TestHelpers:
    def test_psychological_price(self):
        assert psychological_price(12.30) == 12.99
        assert psychological_price(11.0) == 10.99

    def test_filtered_price_skips_excluded_platforms(self):
        product = _make_product(
            "A1",
            current_price=8.0,
            channels=[
                ChannelData(platform="eBay", velocity=2.0, price=10.0),
                ChannelData(platform="B&Q", velocity=10.0, price=1.0),
            ],
        )
        rules = {"B&Q": PlatformConfig(is_excluded=True)}
        assert filtered_price(product, rules) == 10.0
        assert filtered_price(product, {}) == pytest.approx(30 / 12)

    def test_filtered_price_without_sales(self):
        product = _make_product("A1", current_price=8.0, channels=[ChannelData(platform="eBay")])
        assert filtered_price(product, {}) == 8.0

    def test_new_product(self):
        assert is_new_product(_make_product("A1", inventory_status="New Product"))
        recent = _make_product("A1", last_updated=date(2025, 3, 1))
        assert is_new_product(recent, today=date(2025, 3, 10))
        assert not is_new_product(recent, today=date(2025, 4, 10))


class TestEvaluate:
    def test_increase(self):
        row = evaluate(_fast_seller(), {}, StrategyConfig())
        assert row.action == StrategyAction.INCREASE
        assert row.weekly_velocity == 7.0
        assert row.runway_weeks == pytest.approx(20 / 7)
        assert row.adjusted_price == 10.99
        assert row.reasoning == "Runway < 6 wks & Vel > 2"

    def test_decrease_with_safety_violation(self):
        row = evaluate(_slow_seller(cost_price=18.0), {}, StrategyConfig())
        assert row.action == StrategyAction.DECREASE
        assert row.adjusted_price == 18.99
        assert row.floor_price == pytest.approx(19.8)
        assert row.safety_violation
        assert row.reasoning == "Runway > 48 wks"

    def test_new_products_are_not_discounted(self):
        row = evaluate(_slow_seller(inventory_status="New Product"), {}, StrategyConfig())
        assert row.action == StrategyAction.MAINTAIN
        assert row.reasoning == "Stable"

        config = StrategyConfig(decrease=DecreaseRule(include_new_products=True))
        row = evaluate(_slow_seller(inventory_status="New Product"), {}, config)
        assert row.action == StrategyAction.DECREASE

    def test_incoming_stock_extends_runway(self):
        product = _fast_seller()
        product.incoming_stock = 500
        assert evaluate(product, {}, StrategyConfig()).action == StrategyAction.INCREASE
        row = evaluate(product, {}, StrategyConfig(), include_incoming=True)
        assert row.effective_stock == 520
        assert row.action != StrategyAction.INCREASE


class TestBuildAndExport:
    def test_order_and_search(self):
        idle = _make_product("IDLE", current_price=5.0, average_daily_sales=1.0, stock_level=70)
        products = [idle, _slow_seller(), _fast_seller()]
        rows = build_strategy(products, {})
        assert [r.action for r in rows] == [
            StrategyAction.INCREASE,
            StrategyAction.DECREASE,
            StrategyAction.MAINTAIN,
        ]
        assert [r.sku for r in build_strategy(products, {}, search="slo")] == ["SLOW"]

    def test_export_one_row_per_alias(self):
        product = _fast_seller()
        product.channels = [ChannelData(platform="eBay", sku_alias="FAST-UK, FAST-EB")]
        rows = build_strategy([product], {})

        master = export_strategy_csv(rows, [product]).splitlines()
        assert len(master) == 2
        assert master[1].startswith("FAST,FAST,Product FAST,10.00,")

        by_alias = export_strategy_csv(rows, [product], "ebay").splitlines()
        assert [line.split(",")[0] for line in by_alias[1:]] == ["FAST-UK", "FAST-EB"]

        fallback = export_strategy_csv(rows, [product], "Amazon").splitlines()
        assert fallback[1].split(",")[0] == "FAST"
