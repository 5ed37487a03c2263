"""Base importer and shared result model.

Every spreadsheet importer inherits from BaseImporter. Importers only
*read*: they turn a grid of cells into a preview result and never touch
the hub state. Applying a result is the job of ``sello_hub.reconcile``.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, ClassVar

from pydantic import BaseModel, Field

from ..columns import cell_str
from ..models import HubState
from ..reader import MAX_FILE_SIZE_MB, read_sheet

logger = logging.getLogger("sello.adapters")

MAX_ROW_ERRORS = 50

Rows = list[list[Any]]


class TemplateError(ValueError):
    """The file does not look like the export this importer expects."""


# ---------------------------------------------------------------------------
# Import Result
# ---------------------------------------------------------------------------


class ImportResult(BaseModel):
    """Result of running an importer on a spreadsheet."""

    source: str = ""
    importer_name: str = ""
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    rows_read: int = 0
    rows_skipped: int = 0
    processing_time_ms: int = 0

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    @property
    def item_count(self) -> int:
        return 0

    def summary_lines(self) -> list[str]:
        """Importer-specific lines for ``summary``."""
        return []

    @property
    def summary(self) -> str:
        """Human-readable summary of the import preview."""
        parts: list[str] = []
        parts.append(f"Importer: {self.importer_name}")
        if self.source:
            parts.append(f"Source: {self.source}")
        parts.append(f"Rows read: {self.rows_read:,}")
        parts.append(f"Items: {self.item_count:,}")
        if self.rows_skipped:
            parts.append(f"Rows skipped: {self.rows_skipped:,}")
        parts.extend(self.summary_lines())

        if self.errors:
            parts.append(f"Errors: {len(self.errors)}")
            parts.extend(f"  - {e}" for e in self.errors[:5])
        if self.warnings:
            parts.append(f"Warnings: {len(self.warnings)}")

        return "\n".join(parts)


def header_cells(rows: Rows) -> list[str]:
    return [cell_str(h) for h in rows[0]]


def source_label(source: str | Path | bytes, filename: str | None = None) -> str:
    if filename:
        return filename
    return "upload" if isinstance(source, bytes) else str(source)


def add_row_error(errors: list[str], row_num: int, message: str) -> None:
    if len(errors) < MAX_ROW_ERRORS:
        errors.append(f"Row {row_num}: {message}")
    logger.warning("Row %d: %s", row_num, message)


# ---------------------------------------------------------------------------
# Abstract Base Importer
# ---------------------------------------------------------------------------


class BaseImporter(ABC):
    """Abstract base class for all spreadsheet importers.

    To add a new import:
    1. Subclass BaseImporter and set ``kind`` and ``result_cls``
    2. Implement can_handle() for header-based detection
    3. Implement parse_rows() to build the preview result
    4. Register the class in detection.py
    """

    kind: ClassVar[str]
    result_cls: ClassVar[type[ImportResult]] = ImportResult

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable importer name."""
        ...

    @abstractmethod
    def can_handle(self, headers: list[str]) -> bool:
        """Return True if a sheet with these headers belongs to this importer."""
        ...

    @abstractmethod
    def parse_rows(self, rows: Rows, state: HubState) -> ImportResult:
        """Build a preview from rows (header first).

        Raises:
            TemplateError: If the sheet is empty or required columns are missing.
        """
        ...

    def ingest(
        self,
        source: str | Path | bytes,
        state: HubState,
        filename: str | None = None,
        max_size_mb: int = MAX_FILE_SIZE_MB,
    ) -> ImportResult:
        """Read a file and parse it.

        Template problems become ``errors`` on the result; unreadable files
        raise ValueError from the reader.
        """
        start = time.monotonic()
        rows = read_sheet(source, filename=filename, max_size_mb=max_size_mb)
        return self.ingest_rows(rows, state, source_label(source, filename), start)

    def ingest_rows(
        self,
        rows: Rows,
        state: HubState,
        label: str = "",
        start: float | None = None,
    ) -> ImportResult:
        """``parse_rows`` with template errors captured on the result."""
        if start is None:
            start = time.monotonic()
        try:
            result = self.parse_rows(rows, state)
        except TemplateError as e:
            logger.warning("%s: rejected %s: %s", self.name, label, e)
            result = self.result_cls(errors=[str(e)])

        result.source = label
        result.importer_name = self.name
        result.processing_time_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "%s: %d items from %s (%d rows, %d skipped)",
            self.name,
            result.item_count,
            label,
            result.rows_read,
            result.rows_skipped,
        )
        return result
