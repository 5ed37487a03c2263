"""Tests for courier rate calibration."""

from datetime import UTC, datetime

import pytest
from sello_hub.logistics import calibrate_logistics, default_logistics_rules
from sello_hub.models import CartonDimensions, HubState, LogisticsRule, Product, ShipmentLog

WHEN = datetime(2025, 3, 1, 10, 0, tzinfo=UTC)


def _make_log(i: int, sku: str, service: str, cost: float) -> ShipmentLog:
    return ShipmentLog(id=f"s{i}", sku=sku, service=service, cost=cost, date=WHEN)


def _make_state(logs, rules=None) -> HubState:
    products = [
        Product(id="p1", sku="A1", carton_dimensions=CartonDimensions(weight=1.5, length=30)),
        Product(id="p2", sku="B2", carton_dimensions=CartonDimensions(weight=4.25, length=20)),
        Product(id="p3", sku="C3"),
    ]
    return HubState(
        products=products,
        shipment_history=[_make_log(i, *log) for i, log in enumerate(logs)],
        logistics_rules=default_logistics_rules() if rules is None else rules,
    )


def _rule(state: HubState, name: str) -> LogisticsRule:
    return next(r for r in state.logistics_rules if r.name == name)


class TestDefaults:
    def test_rate_card(self):
        rules = default_logistics_rules()
        assert len(rules) == 19
        assert len({r.id for r in rules}) == 19
        assert all(r.price == 0.0 for r in rules)
        assert (rules[0].id, rules[0].name, rules[0].carrier) == ("evri", "EVRI", "Evri")


class TestCalibrate:
    def test_median_and_largest_carton(self):
        state = _make_state(
            [
                ("A1", "evri", 2.0),
                ("B2", "Evri", 3.5),
                ("A1", "EVRI", 9.0),
                ("C3", "EVRI", 1.0),
            ]
        )
        assert calibrate_logistics(state) == 1

        evri = _rule(state, "EVRI")
        assert evri.price == 2.75
        assert evri.max_weight == 4.25
        assert evri.max_length == 30.0
        assert evri.carrier == "Evri"
        assert len(state.logistics_rules) == 19

    def test_existing_limits_kept_without_cartons(self):
        rules = [LogisticsRule(id="dpd", name=" its-dpd ", price=5.0, max_weight=20.0)]
        state = _make_state([("C3", "ITS-DPD", 6.0)], rules)
        calibrate_logistics(state)
        assert state.logistics_rules[0].price == 6.0
        assert state.logistics_rules[0].max_weight == 20.0
        assert state.logistics_rules[0].max_length is None

    def test_unknown_service_gets_a_rule(self):
        state = _make_state([("A1", "Royal Mail 24", 4.0), ("A1", "royal mail 24", 5.0)], [])
        assert calibrate_logistics(state) == 1

        rule = state.logistics_rules[0]
        assert rule.id == "auto-royal-mail-24"
        assert rule.name == "ROYAL MAIL 24"
        assert rule.carrier == "Auto-Detected"
        assert rule.price == 4.5
        assert (rule.max_weight, rule.max_length) == (1.5, 30.0)

    def test_unknown_skus_are_ignored(self):
        state = _make_state([("ZZ9", "EVRI", 4.0)])
        assert calibrate_logistics(state) == 0
        assert _rule(state, "EVRI").price == 0.0

    def test_no_history(self):
        with pytest.raises(ValueError, match="No shipping history"):
            calibrate_logistics(_make_state([]))
