"""Cost sheet importer (``sku, cost, floor_price, ceiling_price``)."""

from __future__ import annotations

from pydantic import BaseModel, Field

from ..columns import cell, cell_str, find_exact, lower_strip, parse_float_or_none
from ..models import HubState
from .base import BaseImporter, ImportResult, Rows, TemplateError


class CostUpdate(BaseModel):
    sku: str
    cost: float | None = None
    floor_price: float | None = None
    ceiling_price: float | None = None


class CostImportResult(ImportResult):
    items: list[CostUpdate] = Field(default_factory=list)

    @property
    def item_count(self) -> int:
        return len(self.items)


class CostImporter(BaseImporter):
    kind = "costs"
    result_cls = CostImportResult

    @property
    def name(self) -> str:
        return "Cost Sheet"

    def can_handle(self, headers: list[str]) -> bool:
        lowered = [lower_strip(h) for h in headers]
        return "sku" in lowered and (
            "cost" in lowered or "floor_price" in lowered or "ceiling_price" in lowered
        )

    def parse_rows(self, rows: Rows, state: HubState) -> CostImportResult:
        if len(rows) < 2:
            raise TemplateError("File empty.")

        headers = [lower_strip(h) for h in rows[0]]
        sku_idx = find_exact(headers, "sku")
        if sku_idx is None:
            raise TemplateError("Missing required column: 'sku'")
        cost_idx = find_exact(headers, "cost")
        floor_idx = find_exact(headers, "floor_price")
        ceiling_idx = find_exact(headers, "ceiling_price")

        items: list[CostUpdate] = []
        skipped = 0
        for row in rows[1:]:
            sku = cell_str(cell(row, sku_idx))
            if not sku:
                skipped += 1
                continue
            items.append(
                CostUpdate(
                    sku=sku,
                    cost=parse_float_or_none(cell(row, cost_idx)),
                    floor_price=parse_float_or_none(cell(row, floor_idx)),
                    ceiling_price=parse_float_or_none(cell(row, ceiling_idx)),
                )
            )

        return CostImportResult(items=items, rows_read=len(rows) - 1, rows_skipped=skipped)
