"""ERP inventory report importer.

The ERP exports bilingual headers (``English/中文``) and the import only
trusts exact header text: a renamed column means the template changed and
the import is rejected rather than guessed.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from ..columns import cell, cell_str, find_exact, parse_num
from ..models import CartonDimensions, HubState
from .base import BaseImporter, ImportResult, Rows, TemplateError, header_cells

logger = logging.getLogger("sello.adapters.inventory")

SKU_COL = "Product SKU/SKU编码"
NAME_COL = "Product Name/SKU名称"
BRAND_COL = "Brand/品牌"
MAIN_CATEGORY_COL = "Main Category/主分类"
SUBCATEGORY_COL = "Subcategory/子分类"
STOCK_COL = "Total Inventory Qty/库存总量"
COGS_COL = "COGS/成本价"
STATUS_COL = "Inventory Status/库存状态"
CARTON_LENGTH_COL = "Carton Length/外箱长度"
CARTON_WIDTH_COL = "Carton Width/外箱宽度"
CARTON_HEIGHT_COL = "Carton Height/外箱高度"
CARTON_WEIGHT_COL = "Carton Weight/外箱重量"


class InventoryItem(BaseModel):
    """One ERP row, with the current values for comparison."""

    sku: str
    name: str | None = None
    brand: str | None = None
    category: str | None = None
    subcategory: str | None = None
    inventory_status: str | None = None
    stock: float | None = None
    cost: float | None = None
    carton_dimensions: CartonDimensions = Field(default_factory=CartonDimensions)
    old_stock: float | None = None
    old_cost: float | None = None
    is_new_product: bool = False
    status: str = "valid"


class InventoryImportResult(ImportResult):
    items: list[InventoryItem] = Field(default_factory=list)

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def new_product_count(self) -> int:
        return sum(1 for i in self.items if i.is_new_product)

    def summary_lines(self) -> list[str]:
        return [f"New products: {self.new_product_count:,}"]


def _optional_str(value) -> str | None:
    return cell_str(value) or None


class InventoryImporter(BaseImporter):
    """ERP batch update: names, categories, stock, COGS and carton sizes."""

    kind = "inventory"
    result_cls = InventoryImportResult

    @property
    def name(self) -> str:
        return "ERP Inventory"

    def can_handle(self, headers: list[str]) -> bool:
        return SKU_COL in [h.strip() for h in headers]

    def parse_rows(self, rows: Rows, state: HubState) -> InventoryImportResult:
        if len(rows) < 2:
            raise TemplateError("File is empty or contains only headers.")

        headers = header_cells(rows)
        sku_idx = find_exact(headers, SKU_COL)
        if sku_idx is None:
            raise TemplateError(f'Invalid Template. Could not find column: "{SKU_COL}"')

        idx = {col: find_exact(headers, col) for col in (
            NAME_COL, BRAND_COL, MAIN_CATEGORY_COL, SUBCATEGORY_COL, STOCK_COL,
            COGS_COL, STATUS_COL, CARTON_LENGTH_COL, CARTON_WIDTH_COL,
            CARTON_HEIGHT_COL, CARTON_WEIGHT_COL,
        )}
        logger.info(
            "Inventory: mapped %d of %d known columns",
            sum(1 for v in idx.values() if v is not None) + 1,
            len(idx) + 1,
        )

        existing = {p.sku: p for p in state.products}
        items: list[InventoryItem] = []
        skipped = 0

        for row in rows[1:]:
            sku = cell_str(cell(row, sku_idx))
            if not sku:
                skipped += 1
                continue

            def num(col: str) -> float | None:
                return parse_num(cell(row, idx[col]))

            def text(col: str) -> str | None:
                return _optional_str(cell(row, idx[col]))

            product = existing.get(sku)
            items.append(
                InventoryItem(
                    sku=sku,
                    name=text(NAME_COL),
                    brand=text(BRAND_COL),
                    category=text(MAIN_CATEGORY_COL),
                    subcategory=text(SUBCATEGORY_COL),
                    inventory_status=text(STATUS_COL),
                    stock=num(STOCK_COL),
                    cost=num(COGS_COL),
                    carton_dimensions=CartonDimensions(
                        length=num(CARTON_LENGTH_COL) or 0.0,
                        width=num(CARTON_WIDTH_COL) or 0.0,
                        height=num(CARTON_HEIGHT_COL) or 0.0,
                        weight=num(CARTON_WEIGHT_COL) or 0.0,
                    ),
                    old_stock=product.stock_level if product else None,
                    old_cost=product.cost_price if product else None,
                    is_new_product=product is None,
                )
            )

        result = InventoryImportResult(
            items=items,
            rows_read=len(rows) - 1,
            rows_skipped=skipped,
        )
        if skipped:
            result.warnings.append(f"Skipped {skipped} rows with an empty SKU")
        return result
