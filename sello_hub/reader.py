"""Spreadsheet reader.

Every importer consumes a plain grid: a list of rows, header row first,
exactly what the ERP or marketplace export contains. CSV cells stay as
strings; Excel cells keep their native type (numbers, datetimes) so the
importers can tell a fractional percent cell from a typed-in ``"31%"``.
"""

from __future__ import annotations

import io
import logging
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd
from xlrd import XLRDError
from xlrd.compdoc import CompDocError

logger = logging.getLogger("sello.reader")

ALLOWED_EXTENSIONS = (".csv", ".xlsx", ".xls")
MAX_FILE_SIZE_MB = 20

_EXCEL_ENGINES = {".xlsx": "openpyxl", ".xls": "xlrd"}


def _validate_magic_bytes(content: bytes, extension: str) -> tuple[bool, str]:
    """Validate file content matches expected magic bytes."""
    if not content:
        return False, "File is empty"

    if extension == ".xlsx":
        if not content.startswith(b"PK\x03\x04"):
            return False, "Invalid XLSX file: not a valid Office Open XML format"
        return True, ""

    if extension == ".xls":
        if not content.startswith(b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"):
            return False, "Invalid XLS file: not a valid legacy Excel format"
        return True, ""

    sample = content[:1000]
    non_printable = sum(1 for byte in sample if byte < 32 and byte not in (9, 10, 13))
    if non_printable > len(sample) * 0.1:
        return False, "Invalid CSV file: contains binary content"
    return True, ""


def _to_python(value: Any) -> Any:
    """Turn pandas/numpy cell values into plain Python ones."""
    if value is None or value is pd.NaT:
        return ""
    if isinstance(value, pd.Timestamp):
        return "" if pd.isna(value) else value.to_pydatetime()
    if isinstance(value, datetime):
        return value
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and pd.isna(value):
        return ""
    return value


def _frame_to_rows(df: pd.DataFrame) -> list[list[Any]]:
    rows = [[_to_python(v) for v in record] for record in df.itertuples(index=False, name=None)]
    # drop fully blank trailing rows (Excel "used range" padding)
    while rows and all(c == "" for c in rows[-1]):
        rows.pop()
    return rows


def _read_csv(contents: bytes, encoding: str) -> pd.DataFrame:
    """Read a CSV grid, cutting rows wider than the header row down to it."""
    read_kwargs: dict = {
        "header": None,
        "dtype": str,
        "keep_default_na": False,
        "encoding": encoding,
    }
    width = pd.read_csv(io.BytesIO(contents), nrows=1, **read_kwargs).shape[1]
    truncated = 0

    def fit_row(line: list[str]) -> list[str]:
        nonlocal truncated
        truncated += 1
        return line[:width]

    df = pd.read_csv(
        io.BytesIO(contents), engine="python", on_bad_lines=fit_row, **read_kwargs
    )
    if truncated:
        logger.warning("Truncated %d rows wider than the header row", truncated)
    return df


def read_sheet(
    source: str | Path | bytes,
    filename: str | None = None,
    max_size_mb: int = MAX_FILE_SIZE_MB,
) -> list[list[Any]]:
    """Read the first sheet of a CSV/XLSX/XLS file into rows.

    Args:
        source: Path to the file, or its raw bytes.
        filename: Original filename; required when ``source`` is bytes.
        max_size_mb: Upload size limit.

    Raises:
        ValueError: Unsupported extension, oversize or undecodable content.
    """
    if isinstance(source, (str, Path)):
        path = Path(source)
        filename = filename or path.name
        contents = path.read_bytes()
    else:
        contents = source
        if not filename:
            raise ValueError("filename is required when reading raw bytes")

    extension = Path(filename).suffix.lower()
    if extension not in ALLOWED_EXTENSIONS:
        raise ValueError(
            f"Unsupported file type '{extension or filename}'. "
            f"Allowed: {', '.join(ALLOWED_EXTENSIONS)}"
        )

    size_mb = len(contents) / (1024 * 1024)
    if size_mb > max_size_mb:
        raise ValueError(
            f"File too large ({size_mb:.1f}MB). Maximum allowed size is {max_size_mb}MB."
        )

    is_valid, error_msg = _validate_magic_bytes(contents, extension)
    if not is_valid:
        raise ValueError(error_msg)

    if extension == ".csv":
        try:
            try:
                df = _read_csv(contents, "utf-8-sig")
            except UnicodeDecodeError:
                df = _read_csv(contents, "latin1")
        except pd.errors.EmptyDataError as e:
            raise ValueError("File is empty") from e
        except pd.errors.ParserError as e:
            raise ValueError(f"Could not parse CSV: {e}") from e
    else:
        try:
            df = pd.read_excel(
                io.BytesIO(contents),
                sheet_name=0,
                header=None,
                engine=_EXCEL_ENGINES[extension],
            )
        except (zipfile.BadZipFile, KeyError, OSError, ValueError, XLRDError, CompDocError) as e:
            raise ValueError(f"Could not read spreadsheet: {e}") from e

    rows = _frame_to_rows(df)
    logger.info("Read %d rows from %s", len(rows), filename)
    return rows
