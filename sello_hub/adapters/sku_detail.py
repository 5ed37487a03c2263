"""ERP SKU profit report importer (``sku_code`` plus fee/percent columns)."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from ..columns import cell, cell_str, find_exact, lower_strip, parse_float_or_none, parse_percent
from ..models import HubState, SkuCostDetail
from .base import BaseImporter, ImportResult, Rows, TemplateError

# SkuCostDetail field -> report header
_AMOUNT_COLUMNS = {
    "sku_qty": "sku_qty",
    "sales_amt": "sales_amt",
    "extra_freight": "extra_freight",
    "promo_rebate": "promo_rebate",
    "cogs": "cogs",
    "postage": "postage",
    "selling_fee": "selling_fee",
    "ads_fee": "ads_fee",
    "other_fee": "other_fee",
    "subscription_fee": "subscription_fee",
    "wms_fee": "wms_fee",
    "resend_qty": "resend_qty",
    "resend_amt": "resend_amt",
    "refund_qty": "refund_qty",
    "refund_amt": "refund_amt",
    "profit_incl_rn": "profit_incl_rn",
}

_PERCENT_COLUMNS = {
    "cogs_pct": "cogs%",
    "postage_pct": "postage%",
    "selling_fee_pct": "selling_fee%",
    "ads_fee_pct": "ads_fee%",
    "other_fee_pct": "other_fee%",
    "subscription_fee_pct": "subscription_fee%",
    "wms_fee_pct": "wms_fee%",
    "return_amt_pct": "return_amt%",
    "profit_incl_rn_pct": "profit_incl_rn%",
}


class SkuDetailItem(BaseModel):
    master_sku: str
    detail: SkuCostDetail


class SkuDetailImportResult(ImportResult):
    items: list[SkuDetailItem] = Field(default_factory=list)
    unmatched: int = 0

    @property
    def item_count(self) -> int:
        return len(self.items)

    def summary_lines(self) -> list[str]:
        return [f"Matched: {len(self.items)}", f"Unmatched: {self.unmatched}"]


def build_alias_map(state: HubState) -> dict[str, str]:
    """Lowercase master SKU and channel alias -> master SKU."""
    aliases: dict[str, str] = {}
    for product in state.products:
        aliases[product.sku.lower()] = product.sku
        for alias in product.all_aliases:
            aliases[alias.lower()] = product.sku
    return aliases


class SkuDetailImporter(BaseImporter):
    kind = "sku_detail"
    result_cls = SkuDetailImportResult

    @property
    def name(self) -> str:
        return "SKU Profit Detail"

    def can_handle(self, headers: list[str]) -> bool:
        # the sales report also keys on sku_code but has sku_quantity instead
        lowered = [lower_strip(h) for h in headers]
        return "sku_code" in lowered and "sku_qty" in lowered

    def parse_rows(self, rows: Rows, state: HubState) -> SkuDetailImportResult:
        if len(rows) < 2:
            raise TemplateError("File empty.")

        headers = [lower_strip(h) for h in rows[0]]
        sku_idx = find_exact(headers, "sku_code")
        if sku_idx is None:
            raise TemplateError("Missing 'sku_code' column.")

        amount_idx = {field: find_exact(headers, col) for field, col in _AMOUNT_COLUMNS.items()}
        percent_idx = {field: find_exact(headers, col) for field, col in _PERCENT_COLUMNS.items()}

        alias_map = build_alias_map(state)
        now = datetime.now(UTC)
        items: list[SkuDetailItem] = []
        unmatched = 0
        blank = 0

        for row in rows[1:]:
            sku = cell_str(cell(row, sku_idx))
            if not sku:
                blank += 1
                continue
            master = alias_map.get(sku.lower())
            if master is None:
                unmatched += 1
                continue

            values = {
                field: parse_float_or_none(cell(row, idx)) or 0.0
                for field, idx in amount_idx.items()
            }
            values.update(
                {
                    field: parse_percent(cell(row, idx), fraction_strings=True)
                    if idx is not None
                    else 0.0
                    for field, idx in percent_idx.items()
                }
            )
            qty = values["sku_qty"]
            values["unit_price"] = values["sales_amt"] / qty if qty != 0 else 0.0

            items.append(
                SkuDetailItem(
                    master_sku=master,
                    detail=SkuCostDetail(last_updated=now, **values),
                )
            )

        result = SkuDetailImportResult(
            items=items,
            unmatched=unmatched,
            rows_read=len(rows) - 1,
            rows_skipped=blank + unmatched,
        )
        if unmatched:
            result.warnings.append(f"{unmatched} SKUs did not match any product")
        return result
