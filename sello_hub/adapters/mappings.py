"""Marketplace listing export -> master SKU alias mapping.

Marketplaces list the same product under their own SKUs (``ABC-UK``,
``ABC_2``...). This importer finds the SKU column of any listing export
and proposes the master SKU each listing belongs to.
"""

from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel, Field

from ..columns import cell, cell_str, compact, find_by_keywords
from ..models import HubState
from .base import BaseImporter, ImportResult, Rows, TemplateError

SKU_KEYWORDS = [
    "sellersku",
    "sku",
    "merchantlinesku",
    "customlabel",
    "itemnumber",
    "productcode",
    "referenceno",
]

# Headers that only listing exports use for their SKU column
LISTING_SKU_KEYWORDS = [
    "sellersku",
    "merchantlinesku",
    "customlabel",
    "itemnumber",
    "referenceno",
]

# Listing columns that accompany a plain ``SKU`` header
LISTING_KEYWORDS = ["asin", "fnsku", "listingid", "itemid", "title", "platform", "marketplace"]

_MARKET_SUFFIX_RE = re.compile(r"[_ \-](UK|US|DE|FR|IT|ES|[0-9]+)$", re.IGNORECASE)


class MatchMethod(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    NONE = "none"


class DetectedRow(BaseModel):
    file_sku: str
    master_sku: str | None = None
    method: MatchMethod = MatchMethod.NONE


class SkuMapping(BaseModel):
    master_sku: str
    platform: str
    alias: str


def match_master_sku(file_sku: str, master_skus: list[str]) -> tuple[str | None, MatchMethod]:
    """Exact match, then market-suffix strip, then longest ``master-``/``master_`` prefix."""
    known = set(master_skus)
    if file_sku in known:
        return file_sku, MatchMethod.EXACT

    stripped = _MARKET_SUFFIX_RE.sub("", file_sku)
    if stripped in known:
        return stripped, MatchMethod.FUZZY

    best = ""
    for sku in master_skus:
        if not file_sku.startswith(sku):
            continue
        remaining = file_sku[len(sku):]
        # a separator must follow so BF10 never claims BF100
        if (not remaining or remaining[0] in "-_") and len(sku) > len(best):
            best = sku
    if best:
        return best, MatchMethod.FUZZY
    return None, MatchMethod.NONE


class MappingImportResult(ImportResult):
    rows: list[DetectedRow] = Field(default_factory=list)
    platform: str | None = None

    @property
    def item_count(self) -> int:
        return len(self.rows)

    @property
    def matched(self) -> list[DetectedRow]:
        return [r for r in self.rows if r.master_sku is not None]

    def to_mappings(self, platform: str | None = None) -> list[SkuMapping]:
        """Mappings to save; unmatched rows are dropped."""
        target = platform or self.platform
        if not target:
            raise ValueError("A platform is required to save SKU mappings")
        return [
            SkuMapping(master_sku=r.master_sku, platform=target, alias=r.file_sku)
            for r in self.matched
        ]

    def summary_lines(self) -> list[str]:
        exact = sum(1 for r in self.rows if r.method == MatchMethod.EXACT)
        fuzzy = sum(1 for r in self.rows if r.method == MatchMethod.FUZZY)
        return [
            f"Platform: {self.platform or '-'}",
            f"Exact matches: {exact}",
            f"Fuzzy matches: {fuzzy}",
            f"Unmatched: {len(self.rows) - exact - fuzzy}",
        ]


class MappingImporter(BaseImporter):
    kind = "mappings"
    result_cls = MappingImportResult

    def __init__(self, platform: str | None = None):
        self.platform = platform

    @property
    def name(self) -> str:
        return "SKU Mapping"

    def can_handle(self, headers: list[str]) -> bool:
        compacted = [compact(h) for h in headers]
        if find_by_keywords(compacted, LISTING_SKU_KEYWORDS) is not None:
            return True
        return "sku" in compacted and find_by_keywords(compacted, LISTING_KEYWORDS) is not None

    def parse_rows(self, rows: Rows, state: HubState) -> MappingImportResult:
        if len(rows) < 2:
            raise TemplateError("File appears empty.")

        headers = [compact(h) for h in rows[0]]
        sku_idx = find_by_keywords(headers, SKU_KEYWORDS)
        if sku_idx is None:
            raise TemplateError(
                "Could not auto-detect a SKU column. Please ensure the file has a "
                "header like 'Seller SKU', 'SKU', or 'Custom Label'."
            )

        master_skus = [p.sku for p in state.products]
        detected: list[DetectedRow] = []
        seen: set[str] = set()
        skipped = 0

        for row in rows[1:]:
            if sku_idx >= len(row):
                skipped += 1
                continue
            file_sku = cell_str(cell(row, sku_idx)).strip('"')
            if not file_sku or file_sku in seen:
                skipped += 1
                continue
            seen.add(file_sku)

            master, method = match_master_sku(file_sku, master_skus)
            detected.append(DetectedRow(file_sku=file_sku, master_sku=master, method=method))

        if not detected:
            raise TemplateError("No SKUs found in the file.")

        return MappingImportResult(
            rows=detected,
            platform=self.platform,
            rows_read=len(rows) - 1,
            rows_skipped=skipped,
        )
