"""Sello Hub: inventory and pricing data layer.

Spreadsheets from the ERP, the marketplaces and the freight forwarder are
previewed by importers and merged into a ``HubState`` by the reconcile
layer. Product list, pricing strategy and per-SKU deep dive views are
computed from that state.

Usage:
    from sello_hub import HubState, detect_and_ingest, apply_import

    state = HubState()
    result = detect_and_ingest("erp_inventory.xlsx", state)
    print(result.summary)
    apply_import(state, result)
"""

__version__ = "0.4.0"

from .adapters import detect_and_ingest, get_importer
from .deep_dive import build_deep_dive
from .models import HubState, PriceLog, Product, RefundLog
from .product_list import PriceSimulator, ProductFilters, build_product_view
from .reconcile import apply_import, recalculate_velocities, recalculate_weekly_prices
from .store import export_backup, load_state, restore_backup, save_state
from .strategy import build_strategy

__all__ = [
    "__version__",
    "HubState",
    "PriceLog",
    "PriceSimulator",
    "Product",
    "ProductFilters",
    "RefundLog",
    "apply_import",
    "build_deep_dive",
    "build_product_view",
    "build_strategy",
    "detect_and_ingest",
    "export_backup",
    "get_importer",
    "load_state",
    "recalculate_velocities",
    "recalculate_weekly_prices",
    "restore_backup",
    "save_state",
]
