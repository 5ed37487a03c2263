"""Tests for the shared metric helpers."""

from datetime import date

import pytest
from sello_hub.metrics import (
    calc_ad_spend,
    calc_margin_pct,
    calc_profit,
    calc_tacos_pct,
    clamp,
    margin_at_price,
    optimal_price,
    safe_div,
    to_number,
)
from sello_hub.models import PriceLog, Product


def _make_log(**kwargs) -> PriceLog:
    defaults = dict(id="h1", sku="A1", date=date(2025, 3, 1), price=10.0, velocity=2.0, margin=25.0)
    defaults.update(kwargs)
    return PriceLog(**defaults)


class TestCoercion:
    def test_to_number(self):
        assert to_number("3.5") == 3.5
        assert to_number("abc") == 0.0
        assert to_number(None, 5.0) == 5.0
        assert to_number(float("nan")) == 0.0
        assert to_number("") == 0.0

    def test_safe_div_and_clamp(self):
        assert safe_div(1, 0) == 0.0
        assert safe_div(1, 0, fallback=-1) == -1
        assert safe_div(6, 3) == 2.0
        assert clamp(80, 0, 50) == 50


class TestLogMetrics:
    def test_profit_from_margin(self):
        assert calc_profit(_make_log()) == pytest.approx(5.0)

    def test_explicit_profit_wins(self):
        assert calc_profit(_make_log(profit=1.25)) == 1.25

    def test_ad_only_row(self):
        log = _make_log(price=0.0, velocity=0.0, ads_spend=3.0)
        assert calc_ad_spend(log) == 3.0
        assert calc_profit(log) == 0.0

    def test_ratios(self):
        assert calc_margin_pct(0, 5) == 0.0
        assert calc_tacos_pct(5, 50) == pytest.approx(10.0)


class TestProductMetrics:
    def test_margin_counts_extra_freight_as_income(self):
        product = Product(
            id="p1", sku="A1", cost_price=4.0, selling_fee=1.0, postage=2.0, extra_freight=1.0
        )
        assert margin_at_price(product, 10.0) == pytest.approx(40.0)

    def test_margin_without_price(self):
        assert margin_at_price(Product(id="p1", sku="A1"), 0) == 0.0
        assert margin_at_price(None, 10) == 0.0

    def test_optimal_price_maximises_daily_profit(self):
        history = [
            _make_log(id="h1", price=10.0, margin=20.0, velocity=1.0),
            _make_log(id="h2", price=12.0, margin=10.0, velocity=3.0),
            _make_log(id="h3", sku="B2", price=50.0, margin=50.0, velocity=9.0),
        ]
        assert optimal_price("A1", history) == 12.0
        assert optimal_price("ZZ", history) == 0.0
