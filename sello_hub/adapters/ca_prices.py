"""ChannelAdvisor price report importer.

Parent listings (``*-UK-ALL``) carry no sellable price and are skipped.
The report date is recorded on every detected price change, so it is
part of the result rather than the apply step.
"""

from __future__ import annotations

import re
from datetime import date
from enum import Enum

from pydantic import BaseModel, Field

from ..columns import cell, cell_str, find_exact, lower_strip, parse_float_or_none
from ..dates import today_key
from ..models import HubState
from .base import BaseImporter, ImportResult, Rows, TemplateError, add_row_error

_PARENT_SKU_RE = re.compile(r"-UK-ALL$", re.IGNORECASE)


class RowStatus(str, Enum):
    VALID = "valid"
    ERROR = "error"
    SKIPPED = "skipped"


class CAPriceItem(BaseModel):
    sku: str
    ca_price: float = 0.0
    status: RowStatus = RowStatus.VALID


class CAPriceImportResult(ImportResult):
    report_date: date | None = None
    items: list[CAPriceItem] = Field(default_factory=list)

    @property
    def valid_items(self) -> list[CAPriceItem]:
        return [i for i in self.items if i.status == RowStatus.VALID]

    @property
    def item_count(self) -> int:
        return len(self.valid_items)

    @property
    def parent_skipped(self) -> int:
        return sum(1 for i in self.items if i.status == RowStatus.SKIPPED)

    def summary_lines(self) -> list[str]:
        invalid = sum(1 for i in self.items if i.status == RowStatus.ERROR)
        return [
            f"Report date: {self.report_date.isoformat() if self.report_date else '-'}",
            f"Parent SKUs skipped: {self.parent_skipped}",
            f"Invalid prices: {invalid}",
        ]


class CAPriceImporter(BaseImporter):
    kind = "ca_prices"
    result_cls = CAPriceImportResult

    def __init__(self, report_date: date | None = None, tz: str | None = None):
        self.report_date = report_date
        self.tz = tz

    @property
    def name(self) -> str:
        return "CA Prices"

    def _report_date(self) -> date:
        return self.report_date or date.fromisoformat(today_key(tz=self.tz))

    def can_handle(self, headers: list[str]) -> bool:
        lowered = [lower_strip(h) for h in headers]
        return "sku" in lowered and "price" in lowered

    def parse_rows(self, rows: Rows, state: HubState) -> CAPriceImportResult:
        if len(rows) < 2:
            raise TemplateError("File empty.")

        headers = [lower_strip(h) for h in rows[0]]
        sku_idx = find_exact(headers, "sku")
        price_idx = find_exact(headers, "price")
        if sku_idx is None:
            raise TemplateError("Missing required column: 'sku'")
        if price_idx is None:
            raise TemplateError("Missing required column: 'price'")

        items: list[CAPriceItem] = []
        errors: list[str] = []
        blank = 0
        for row_num, row in enumerate(rows[1:], start=2):
            sku = cell_str(cell(row, sku_idx))
            if not sku:
                blank += 1
                continue

            if _PARENT_SKU_RE.search(sku):
                items.append(CAPriceItem(sku=sku, ca_price=0.0, status=RowStatus.SKIPPED))
                continue

            price = parse_float_or_none(cell(row, price_idx))
            if price is None:
                add_row_error(errors, row_num, f"invalid price for {sku}")
            items.append(
                CAPriceItem(
                    sku=sku,
                    ca_price=price if price is not None else 0.0,
                    status=RowStatus.VALID if price is not None else RowStatus.ERROR,
                )
            )

        result = CAPriceImportResult(
            report_date=self._report_date(),
            items=items,
            errors=errors,
            rows_read=len(rows) - 1,
            rows_skipped=blank + sum(1 for i in items if i.status != RowStatus.VALID),
        )
        if result.parent_skipped:
            result.warnings.append(
                f"Skipped {result.parent_skipped} parent SKUs (-UK-ALL)"
            )
        return result
