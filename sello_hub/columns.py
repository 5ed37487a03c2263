"""Header matching and cell coercion shared by the importers.

ERP and marketplace exports rename, translate and re-case their columns
between releases, so every importer resolves its columns through one of
the matchers here instead of by position. All matchers return the column
index (or header) of the first match and are deterministic: candidate
order first, then header order.
"""

from __future__ import annotations

import math
import re
from collections.abc import Sequence
from typing import Any

_COMPACT_RE = re.compile(r"[\s_\-/]")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
_NON_NUMERIC_RE = re.compile(r"[^\d.\-]")
_LEADING_FLOAT_RE = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


# ---------------------------------------------------------------------------
# Header normalizers
# ---------------------------------------------------------------------------


def lower_strip(header: Any) -> str:
    return str(header).strip().lower()


def compact(header: Any) -> str:
    """Lowercase and drop whitespace, underscores, hyphens and slashes."""
    return _COMPACT_RE.sub("", lower_strip(header))


def alnum(header: Any) -> str:
    """Lowercase and keep only ``[a-z0-9]``."""
    return _NON_ALNUM_RE.sub("", str(header).lower())


def _is_percent_header(header: str) -> bool:
    return "%" in header or "percent" in header.lower()


# ---------------------------------------------------------------------------
# Matchers
# ---------------------------------------------------------------------------


def find_exact(headers: Sequence[str], name: str) -> int | None:
    try:
        return list(headers).index(name)
    except ValueError:
        return None


def find_containing(headers: Sequence[str], terms: Sequence[str]) -> int | None:
    """First header equal to, or containing, any of ``terms``."""
    for i, h in enumerate(headers):
        if any(h == t or t in h for t in terms):
            return i
    return None


def find_by_keywords(headers: Sequence[str], keywords: Sequence[str]) -> int | None:
    """Like ``find_containing`` but keyword priority wins over header order."""
    for kw in keywords:
        for i, h in enumerate(headers):
            if h == kw or kw in h:
                return i
    return None


def find_exact_then_containing(headers: Sequence[str], terms: Sequence[str]) -> int | None:
    """Exact match on any term first, containment only as a fallback."""
    for t in terms:
        idx = find_exact(headers, t)
        if idx is not None:
            return idx
    return find_containing(headers, terms)


def find_mapped(
    headers: Sequence[str],
    candidates: Sequence[str],
    fuzzy: bool = False,
) -> str | None:
    """Resolve a logical field to an original header name.

    Headers and candidates are compared after ``alnum`` normalization, which
    erases ``%``; a candidate is therefore only allowed to match a header of
    the same percent-ness (``profit%`` must not land on ``profit``).

    Passes, each walking ``candidates`` in order:
        1. equality with percent agreement
        2. containment with percent agreement (only when ``fuzzy``)
        3. plain equality
    """
    normalized = [(h, alnum(h), _is_percent_header(h)) for h in headers]

    for raw in candidates:
        cand = alnum(raw)
        want_pct = _is_percent_header(raw)
        for original, norm, has_pct in normalized:
            if want_pct == has_pct and norm == cand:
                return original

    if fuzzy:
        for raw in candidates:
            cand = alnum(raw)
            want_pct = _is_percent_header(raw)
            for original, norm, has_pct in normalized:
                if want_pct == has_pct and cand in norm:
                    return original

    for raw in candidates:
        cand = alnum(raw)
        for original, norm, _ in normalized:
            if norm == cand:
                return original

    return None


# ---------------------------------------------------------------------------
# Cell coercion
# ---------------------------------------------------------------------------


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and value == ""


def cell(row: Sequence[Any], idx: int | None) -> Any:
    """Cell at ``idx``, or None for an unmapped column or a short row."""
    if idx is None or idx >= len(row):
        return None
    return row[idx]


def cell_str(value: Any) -> str:
    """Trimmed string form of a cell; blank cells become ``""``."""
    if is_blank(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def parse_float_or_none(value: Any) -> float | None:
    """Leading-number parse: ``"12.5kg"`` is 12.5, ``"abc"`` is None."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return None if math.isnan(value) else float(value)
    if value is None:
        return None
    match = _LEADING_FLOAT_RE.match(str(value))
    if not match:
        return None
    return float(match.group(1))


def parse_num(value: Any) -> float | None:
    """Missing cell is None, unparseable is 0."""
    if is_blank(value):
        return None
    num = parse_float_or_none(value)
    return 0.0 if num is None else num


def parse_val(value: Any) -> float:
    """Currency-tolerant parse: ``"£1,234.50"`` is 1234.5, garbage is 0."""
    if is_blank(value):
        return 0.0
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return 0.0 if math.isnan(value) else float(value)
    cleaned = _NON_NUMERIC_RE.sub("", str(value)).strip()
    try:
        num = float(cleaned)
    except ValueError:
        num = parse_float_or_none(cleaned)
    if num is None or math.isnan(num):
        return 0.0
    return num


def parse_percent(value: Any, fraction_strings: bool = False) -> float:
    """Percentage on a 0-100 scale.

    Spreadsheet percent cells arrive as fractions, so a non-zero numeric
    cell with ``|v| <= 1`` is multiplied by 100. Text is taken as written
    unless ``fraction_strings`` is set, in which case text without an
    explicit ``%`` gets the same scaling.
    """
    if is_blank(value):
        return 0.0
    if isinstance(value, str):
        explicit = "%" in value
        num = parse_val(value.replace("%", ""))
        if explicit or not fraction_strings:
            return num
    else:
        num = parse_val(value)
    if num != 0 and abs(num) <= 1.0:
        return num * 100
    return num
