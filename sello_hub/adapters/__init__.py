"""Spreadsheet importers for Sello Hub.

Each export the business works with gets its own importer that resolves
the columns, coerces the cells and returns a preview result. Importers
never touch the state; ``sello_hub.reconcile`` applies their results.

Supported sources:
    - ERP inventory export (stock, cost, carton dimensions)
    - Cost sheet (cost, floor and ceiling prices)
    - CA price report
    - Marketplace returns report
    - SKU mapping sheet (platform aliases)
    - Freight forwarder container tracker
    - ERP SKU profit detail
    - Sales transaction report

Usage:
    from sello_hub.adapters import detect_and_ingest

    result = detect_and_ingest("/path/to/export.xlsx", state)
    print(result.summary)
"""

from .base import BaseImporter, ImportResult, TemplateError
from .ca_prices import CAPriceImporter, CAPriceImportResult
from .costs import CostImporter, CostImportResult
from .detection import (
    build_importer,
    detect_and_ingest,
    detect_importer,
    get_importer,
    importer_kinds,
    list_importers,
)
from .inventory import InventoryImporter, InventoryImportResult
from .mappings import MappingImporter, MappingImportResult
from .returns import ReturnsImporter, ReturnsImportResult
from .sales import SalesColumnMapping, SalesImporter, SalesImportResult
from .shipments import ShipmentImporter, ShipmentImportResult
from .sku_detail import SkuDetailImporter, SkuDetailImportResult

__all__ = [
    "BaseImporter",
    "CAPriceImportResult",
    "CAPriceImporter",
    "CostImportResult",
    "CostImporter",
    "ImportResult",
    "InventoryImportResult",
    "InventoryImporter",
    "MappingImportResult",
    "MappingImporter",
    "ReturnsImportResult",
    "ReturnsImporter",
    "SalesColumnMapping",
    "SalesImportResult",
    "SalesImporter",
    "ShipmentImportResult",
    "ShipmentImporter",
    "SkuDetailImportResult",
    "SkuDetailImporter",
    "TemplateError",
    "build_importer",
    "detect_and_ingest",
    "detect_importer",
    "get_importer",
    "importer_kinds",
    "list_importers",
]
