"""Tests for the command line entry point."""

from __future__ import annotations

import sys
from datetime import UTC, datetime

import pytest
from sello_hub.__main__ import main
from sello_hub.config import get_settings
from sello_hub.models import Product, ShipmentLog
from sello_hub.store import load_state, save_state

INVENTORY_CSV = (
    "Product SKU/SKU编码,Product Name/SKU名称,Total Inventory Qty/库存总量,COGS/成本价\n"
    "NEW1,New Widget,40,2.5\n"
)


@pytest.fixture
def hub_env(tmp_path, monkeypatch):
    """Point the settings at a scratch directory."""
    state_path = tmp_path / "state.json"
    monkeypatch.setenv("SELLO_STATE_PATH", str(state_path))
    monkeypatch.setenv("SELLO_THRESHOLDS_PATH", str(tmp_path / "thresholds.yaml"))
    monkeypatch.setenv("SELLO_PRICING_RULES_PATH", str(tmp_path / "pricing_rules.yaml"))
    get_settings.cache_clear()
    yield state_path
    get_settings.cache_clear()


def _run(monkeypatch, *argv: str) -> None:
    monkeypatch.setattr(sys, "argv", ["sello_hub", *argv])
    main()


class TestImporters:
    def test_lists_importers(self, hub_env, monkeypatch, capsys):
        _run(monkeypatch, "importers")
        out = capsys.readouterr().out
        assert "inventory" in out
        assert "ERP Inventory" in out


class TestImport:
    def test_preview_leaves_state_alone(self, hub_env, tmp_path, monkeypatch, capsys):
        source = tmp_path / "stock.csv"
        source.write_text(INVENTORY_CSV, encoding="utf-8")

        _run(monkeypatch, "import", "auto", str(source))
        assert "ERP Inventory" in capsys.readouterr().out
        assert not hub_env.exists()

    def test_apply_writes_state(self, hub_env, tmp_path, monkeypatch, capsys):
        source = tmp_path / "stock.csv"
        source.write_text(INVENTORY_CSV, encoding="utf-8")

        _run(monkeypatch, "import", "inventory", str(source), "--apply")
        assert "created=1" in capsys.readouterr().out
        state = load_state(hub_env)
        assert [p.sku for p in state.products] == ["NEW1"]
        assert state.products[0].cost_price == 2.5

    def test_missing_file(self, hub_env, tmp_path, monkeypatch, capsys):
        with pytest.raises(SystemExit) as exc:
            _run(monkeypatch, "import", "auto", str(tmp_path / "missing.csv"))
        assert exc.value.code == 1
        assert "Path not found" in capsys.readouterr().err

    def test_unknown_kind(self, hub_env, tmp_path, monkeypatch, capsys):
        source = tmp_path / "stock.csv"
        source.write_text(INVENTORY_CSV, encoding="utf-8")
        with pytest.raises(SystemExit):
            _run(monkeypatch, "import", "nope", str(source))
        assert "Unknown import type 'nope'" in capsys.readouterr().err

    def test_rejected_apply(self, hub_env, tmp_path, monkeypatch, capsys):
        source = tmp_path / "stock.csv"
        source.write_text("SKU,Name\nA1,x\n", encoding="utf-8")
        with pytest.raises(SystemExit):
            _run(monkeypatch, "import", "inventory", str(source), "--apply")
        assert "Not applied" in capsys.readouterr().err
        assert not hub_env.exists()


class TestExports:
    @pytest.fixture(autouse=True)
    def _seed(self, hub_env, tmp_path, monkeypatch, capsys):
        source = tmp_path / "stock.csv"
        source.write_text(INVENTORY_CSV, encoding="utf-8")
        _run(monkeypatch, "import", "inventory", str(source), "--apply")
        capsys.readouterr()

    def test_export_products_to_file(self, tmp_path, monkeypatch):
        output = tmp_path / "products.csv"
        _run(monkeypatch, "export-products", "-o", str(output))
        lines = output.read_text(encoding="utf-8").splitlines()
        assert lines[0].startswith("SKU,Name")
        assert lines[1].startswith("NEW1,New Widget")

    def test_strategy_to_stdout(self, monkeypatch, capsys):
        _run(monkeypatch, "strategy")
        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 2
        assert lines[1].startswith("NEW1,NEW1,New Widget")


class TestCalibrateLogistics:
    def test_no_history(self, hub_env, monkeypatch, capsys):
        with pytest.raises(SystemExit) as exc:
            _run(monkeypatch, "calibrate-logistics")
        assert exc.value.code == 1
        assert "No shipping history" in capsys.readouterr().err

    def test_rates_saved(self, hub_env, monkeypatch, capsys):
        when = datetime(2025, 3, 1, 10, 0, tzinfo=UTC)
        state = load_state(hub_env)
        state.products = [Product(id="p1", sku="A1")]
        state.shipment_history = [
            ShipmentLog(id=f"s{i}", sku="A1", service="evri", cost=cost, date=when)
            for i, cost in enumerate([2.0, 3.0, 9.0])
        ]
        save_state(state, hub_env)

        _run(monkeypatch, "calibrate-logistics")
        assert "Updated rates for 1 services based on 3 shipments" in capsys.readouterr().out
        evri = next(r for r in load_state(hub_env).logistics_rules if r.name == "EVRI")
        assert evri.price == 3.0
