"""Auto-detection of spreadsheet type.

Given the header row of a sheet, determines which importer to use.

Detection order (first match wins):
1. ERP inventory: exact ``Product SKU/SKU编码`` header
2. SKU profit detail: ``sku_code`` and ``sku_qty`` headers
3. Container tracker: ``Container No.1`` / ``1号柜`` headers
4. Returns report: refund amount/value header
5. Sales transactions: SKU, quantity and revenue resolve
6. Cost sheet: ``sku`` plus cost/floor/ceiling
7. CA prices: ``sku`` plus ``price``
8. SKU mapping: a listing SKU header (Seller SKU, Custom Label...), or
   ``SKU`` next to a listing column such as ASIN or Title
"""

from __future__ import annotations

import time
from datetime import date
from pathlib import Path
from typing import Any

from ..models import HubState
from ..reader import MAX_FILE_SIZE_MB, read_sheet
from .base import BaseImporter, ImportResult, header_cells, source_label
from .ca_prices import CAPriceImporter
from .costs import CostImporter
from .inventory import InventoryImporter
from .mappings import MappingImporter
from .returns import ReturnsImporter
from .sales import SalesColumnMapping, SalesImporter
from .shipments import ShipmentImporter
from .sku_detail import SkuDetailImporter

# Registry of all importers, ordered by detection priority
_IMPORTER_REGISTRY: list[type[BaseImporter]] = [
    InventoryImporter,
    SkuDetailImporter,
    ShipmentImporter,
    ReturnsImporter,
    SalesImporter,
    CostImporter,
    CAPriceImporter,
    MappingImporter,
]

_BY_KIND: dict[str, type[BaseImporter]] = {cls.kind: cls for cls in _IMPORTER_REGISTRY}


def importer_kinds() -> list[str]:
    return list(_BY_KIND)


def get_importer(kind: str, **options: Any) -> BaseImporter:
    """Instantiate the importer registered under ``kind``.

    Raises:
        ValueError: If no importer is registered under ``kind``.
    """
    cls = _BY_KIND.get(kind)
    if cls is None:
        raise ValueError(
            f"Unknown import type '{kind}'. Supported: {', '.join(_BY_KIND)}"
        )
    return cls(**options)


def build_importer(
    kind: str,
    tz: str | None = None,
    platform: str | None = None,
    report_date: date | None = None,
    period_days: float = 30,
    mapping: SalesColumnMapping | None = None,
    resolutions: dict[str, str] | None = None,
) -> BaseImporter:
    """``get_importer`` with the options each importer understands picked out."""
    options: dict[str, Any] = {}
    if kind in (CAPriceImporter.kind, ReturnsImporter.kind, SalesImporter.kind):
        options["tz"] = tz
    if kind == CAPriceImporter.kind:
        options["report_date"] = report_date
    elif kind == MappingImporter.kind:
        options["platform"] = platform
    elif kind == SalesImporter.kind:
        options.update(period_days=period_days, mapping=mapping, resolutions=resolutions)
    return get_importer(kind, **options)


def detect_importer(headers: list[str], **options: Any) -> BaseImporter | None:
    """The first importer whose header signature matches, or None.

    ``options`` are the ``build_importer`` keyword arguments; the matching
    importer is built with the ones it understands.
    """
    for cls in _IMPORTER_REGISTRY:
        importer = build_importer(cls.kind, **options)
        if importer.can_handle(headers):
            return importer
    return None


def detect_and_ingest(
    source: str | Path | bytes,
    state: HubState,
    filename: str | None = None,
    max_size_mb: int = MAX_FILE_SIZE_MB,
    **options: Any,
) -> ImportResult:
    """Detect the importer from the header row and ingest in one step.

    ``options`` (tz, platform, report_date, period_days, mapping,
    resolutions) are passed on as for ``build_importer``.
    """
    start = time.monotonic()
    rows = read_sheet(source, filename=filename, max_size_mb=max_size_mb)
    label = source_label(source, filename)
    if not rows:
        return ImportResult(source=label, importer_name="unknown", errors=["File is empty"])

    importer = detect_importer(header_cells(rows), **options)
    if importer is None:
        return ImportResult(
            source=label,
            importer_name="unknown",
            errors=[
                f"No importer recognised the columns of {label}. "
                f"Supported: {', '.join(_BY_KIND)}"
            ],
        )
    return importer.ingest_rows(rows, state, label, start)


def list_importers() -> list[dict[str, str]]:
    """List all registered importers."""
    return [
        {"kind": cls.kind, "name": cls().name, "class": cls.__name__}
        for cls in _IMPORTER_REGISTRY
    ]
