"""Marketplace after-sales (refund) report importer.

The report has no order ID, so each refund gets a deterministic ID built
from its content. Importing the same report twice therefore yields the
same IDs and the merge step drops the duplicates.
"""

from __future__ import annotations

import logging
from datetime import datetime

from pydantic import Field

from ..columns import cell, cell_str, compact, find_containing, parse_float_or_none
from ..dates import iso_timestamp, parse_uk_datetime
from ..models import HubState, RefundLog
from .base import BaseImporter, ImportResult, Rows, TemplateError

logger = logging.getLogger("sello.adapters.returns")

_SKU_TERMS = ["productsku", "sku"]
_AMOUNT_TERMS = ["refundamount", "refundvalue"]
_QTY_TERMS = ["refundqty", "quantity", "returnqty"]
_DATE_TERMS = ["creationtime", "date", "applicationtime"]
_PLATFORM_TERMS = ["channel", "platform"]
_REASON_TERMS = ["platformaftersalesreason", "reason", "aftersalesreason", "returnreason"]

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(n: int) -> str:
    if n == 0:
        return "0"
    out = []
    while n:
        n, rem = divmod(n, 36)
        out.append(_BASE36[rem])
    return "".join(reversed(out))


def _format_qty(qty: float) -> str:
    # 1.0 -> "1", 1.5 -> "1.5"
    return str(int(qty)) if float(qty).is_integer() else repr(float(qty))


def refund_id(sku: str, date_iso: str, amount: float, qty: float, reason: str | None) -> str:
    """Stable refund ID from the row content.

    The signature ``SKU|date|amount|qty|reason`` is hashed with a 32-bit
    ``h * 31 + c`` rolling hash and rendered as ``ref-<base36(|h|)>``.
    """
    safe_reason = (reason or "unknown").strip().lower()[:20]
    signature = f"{sku.strip().upper()}|{date_iso}|{amount:.2f}|{_format_qty(qty)}|{safe_reason}"

    h = 0
    for ch in signature:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return f"ref-{_to_base36(abs(h))}"


class ReturnsImportResult(ImportResult):
    refunds: list[RefundLog] = Field(default_factory=list)

    @property
    def item_count(self) -> int:
        return len(self.refunds)

    @property
    def total_value(self) -> float:
        return sum(r.amount for r in self.refunds)

    def summary_lines(self) -> list[str]:
        return [f"Refund value: {self.total_value:,.2f}"]


class ReturnsImporter(BaseImporter):
    kind = "returns"
    result_cls = ReturnsImportResult

    def __init__(self, tz: str | None = None, now: datetime | None = None):
        self.tz = tz
        self.now = now

    @property
    def name(self) -> str:
        return "Returns Report"

    def can_handle(self, headers: list[str]) -> bool:
        compacted = [compact(h) for h in headers]
        return find_containing(compacted, _AMOUNT_TERMS) is not None

    def parse_rows(self, rows: Rows, state: HubState) -> ReturnsImportResult:
        if len(rows) < 2:
            raise TemplateError("File empty.")

        headers = [compact(h) for h in rows[0]]
        sku_idx = find_containing(headers, _SKU_TERMS)
        amount_idx = find_containing(headers, _AMOUNT_TERMS)
        qty_idx = find_containing(headers, _QTY_TERMS)
        date_idx = find_containing(headers, _DATE_TERMS)
        platform_idx = find_containing(headers, _PLATFORM_TERMS)
        reason_idx = find_containing(headers, _REASON_TERMS)

        if sku_idx is None:
            raise TemplateError("Could not detect 'Product SKU' column.")
        if amount_idx is None:
            raise TemplateError("Could not detect 'Refund Amount' column.")
        if date_idx is None:
            raise TemplateError("Could not detect 'Creation Time' column.")

        refunds: list[RefundLog] = []
        skipped = 0
        for row in rows[1:]:
            sku = cell_str(cell(row, sku_idx))
            if not sku:
                skipped += 1
                continue

            refunded_at = parse_uk_datetime(cell(row, date_idx), tz=self.tz, now=self.now)
            amount = parse_float_or_none(cell(row, amount_idx)) or 0.0
            quantity = 1.0
            if qty_idx is not None:
                quantity = parse_float_or_none(cell(row, qty_idx)) or 1.0
            reason = cell_str(cell(row, reason_idx)) or None
            platform = cell_str(cell(row, platform_idx)) or None

            refunds.append(
                RefundLog(
                    id=refund_id(sku, iso_timestamp(refunded_at), amount, quantity, reason),
                    sku=sku,
                    date=refunded_at,
                    quantity=quantity,
                    amount=amount,
                    platform=platform,
                    reason=reason,
                )
            )

        logger.info("Returns: parsed %d refunds (skipped %d)", len(refunds), skipped)
        return ReturnsImportResult(
            refunds=refunds, rows_read=len(rows) - 1, rows_skipped=skipped
        )
