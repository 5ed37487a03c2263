"""Freight forwarder container tracker importer.

Each row is a SKU with up to two inbound containers (id, quantity,
status, ETA). Besides the per-SKU shipment lines, the preview compares
every container with what the products already know about it so delays
surface first.
"""

from __future__ import annotations

import re
from datetime import date
from enum import Enum

from pydantic import BaseModel, Field

from ..columns import (
    cell,
    cell_str,
    compact,
    find_containing,
    find_exact_then_containing,
    parse_float_or_none,
)
from ..dates import to_date
from ..models import HubState, ShipmentDetail
from .base import BaseImporter, ImportResult, Rows, TemplateError

_CJK_RE = re.compile("[\u4e00-\u9fff]")

_SKU_TERMS = ["sku", "productsku"]

# (container, qty, status, eta) header terms per container slot
_CONTAINER_TERMS = [
    (
        ["containerno.1", "1号柜"],
        ["containerno.1stockqty", "1号柜装柜数量"],
        ["containerno.1status", "1号柜状态"],
        ["containerno.1expectedeta", "1号柜预计eta"],
    ),
    (
        ["containerno.2", "2号柜"],
        ["containerno.2stockqty", "2号柜装柜数量"],
        ["containerno.2status", "2号柜状态"],
        ["containerno.2expectedeta", "2号柜预计eta"],
    ),
]


class ContainerChange(str, Enum):
    DELAYED = "DELAYED"
    EARLIER = "EARLIER"
    STATUS_CHANGE = "STATUS_CHANGE"
    NEW = "NEW"
    UNCHANGED = "UNCHANGED"

    @property
    def priority(self) -> int:
        return {
            ContainerChange.DELAYED: 0,
            ContainerChange.EARLIER: 1,
            ContainerChange.STATUS_CHANGE: 2,
            ContainerChange.NEW: 3,
            ContainerChange.UNCHANGED: 4,
        }[self]


class ContainerSummary(BaseModel):
    id: str
    status: str
    eta: date | None = None
    sku_count: int = 0
    total_qty: float = 0.0
    change_type: ContainerChange = ContainerChange.NEW
    old_eta: date | None = None
    old_status: str | None = None
    days_diff: int = 0


class ShipmentUpdate(BaseModel):
    sku: str
    shipments: list[ShipmentDetail] = Field(default_factory=list)


class ShipmentImportResult(ImportResult):
    updates: list[ShipmentUpdate] = Field(default_factory=list)
    containers: list[ContainerSummary] = Field(default_factory=list)

    @property
    def item_count(self) -> int:
        return len(self.updates)

    def summary_lines(self) -> list[str]:
        lines = [f"Containers: {len(self.containers)}"]
        for change in ContainerChange:
            n = sum(1 for c in self.containers if c.change_type == change)
            if n:
                lines.append(f"  {change.value}: {n}")
        return lines


def clean_status(value) -> str:
    """``"In Transit/运输中"`` -> ``"In Transit"``; blank -> ``"Pending"``."""
    text = cell_str(value)
    if not text or text in ("undefined", "null"):
        return "Pending"
    if "/" in text:
        return text.split("/")[0].strip()
    return _CJK_RE.sub("", text).strip()


def existing_containers(state: HubState) -> dict[str, tuple[str, date | None]]:
    known: dict[str, tuple[str, date | None]] = {}
    for product in state.products:
        for s in product.shipments:
            if s.container_id:
                known[s.container_id.strip()] = (s.status, s.eta)
    return known


def _compare(
    container_id: str,
    status: str,
    eta: date | None,
    known: dict[str, tuple[str, date | None]],
) -> ContainerSummary:
    previous = known.get(container_id)
    if previous is None:
        return ContainerSummary(id=container_id, status=status, eta=eta)

    old_status, old_eta = previous
    change = ContainerChange.UNCHANGED
    days_diff = 0
    if eta and old_eta and eta != old_eta:
        days_diff = (eta - old_eta).days
        if days_diff > 0:
            change = ContainerChange.DELAYED
        elif days_diff < 0:
            change = ContainerChange.EARLIER
    if status != old_status and change == ContainerChange.UNCHANGED:
        change = ContainerChange.STATUS_CHANGE

    return ContainerSummary(
        id=container_id,
        status=status,
        eta=eta,
        change_type=change,
        old_eta=old_eta,
        old_status=old_status,
        days_diff=days_diff,
    )


class ShipmentImporter(BaseImporter):
    kind = "shipments"
    result_cls = ShipmentImportResult

    @property
    def name(self) -> str:
        return "Container Tracker"

    def can_handle(self, headers: list[str]) -> bool:
        compacted = [compact(h) for h in headers]
        return find_containing(compacted, _CONTAINER_TERMS[0][0]) is not None

    def parse_rows(self, rows: Rows, state: HubState) -> ShipmentImportResult:
        if len(rows) < 2:
            raise TemplateError("File empty.")

        headers = [compact(h) for h in rows[0]]
        sku_idx = find_containing(headers, _SKU_TERMS)
        if sku_idx is None:
            raise TemplateError("Could not detect 'Product SKU' column.")

        slots = [
            tuple(find_exact_then_containing(headers, terms) for terms in group)
            for group in _CONTAINER_TERMS
        ]

        known = existing_containers(state)
        updates: dict[str, list[ShipmentDetail]] = {}
        summaries: dict[str, ContainerSummary] = {}
        skipped = 0

        for row in rows[1:]:
            raw_sku = cell_str(cell(row, sku_idx))
            if not raw_sku:
                skipped += 1
                continue

            shipments: list[ShipmentDetail] = []
            for id_idx, qty_idx, status_idx, eta_idx in slots:
                container_id = cell_str(cell(row, id_idx))
                if not container_id:
                    continue
                qty = parse_float_or_none(cell(row, qty_idx)) or 0.0
                status = clean_status(cell(row, status_idx)) if status_idx is not None else "Pending"
                eta = to_date(cell(row, eta_idx))

                shipments.append(
                    ShipmentDetail(container_id=container_id, quantity=qty, status=status, eta=eta)
                )
                if container_id not in summaries:
                    summaries[container_id] = _compare(container_id, status, eta, known)
                summaries[container_id].sku_count += 1
                summaries[container_id].total_qty += qty

            if shipments:
                updates[raw_sku] = shipments

        containers = sorted(summaries.values(), key=lambda c: c.change_type.priority)
        return ShipmentImportResult(
            updates=[ShipmentUpdate(sku=sku, shipments=s) for sku, s in updates.items()],
            containers=containers,
            rows_read=len(rows) - 1,
            rows_skipped=skipped,
        )
