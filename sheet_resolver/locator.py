"""
Header Locator: find the header row and data-start column among the
decorative preamble rows, and pull the sheet title out of that preamble.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from sheet_resolver.config import ResolverConfig
from sheet_resolver.errors import HeaderNotFoundError
from sheet_resolver.fields import header_tokens, looks_like_identity, matches_alias, normalize_header
from sheet_resolver.tokenizer import NumberedRow

TITLE_HINT_RE = re.compile(r"\b(agency|district|branch|region)\b", re.IGNORECASE)
TITLE_SKIP_RE = re.compile(r"\b(um|leader|name|anp|fyc|fyp)\b", re.IGNORECASE)


@dataclass(frozen=True)
class HeaderLocation:
    row_index: int
    row_number: int
    data_start: int
    headers: tuple[str, ...]
    confidence: float
    fallback: bool
    anchor: str | None
    title: str | None = None

    def to_dict(self) -> dict:
        return {
            "row_number": self.row_number,
            "data_start_column": self.data_start,
            "headers": list(self.headers),
            "confidence": self.confidence,
            "fallback": self.fallback,
            "anchor": self.anchor,
            "title": self.title,
        }


def find_anchor(cells: list[str], config: ResolverConfig) -> tuple[int, str] | None:
    """Leftmost column at or after the minimum offset holding an alias of an anchor field."""
    anchors = [config.field(name) for name in config.anchor_fields]
    for index in range(config.min_anchor_column, len(cells)):
        for spec in anchors:
            if matches_alias(cells[index], spec):
                return index, spec.name
    return None


def identity_start(cells: list[str], column: int, anchor: str, config: ResolverConfig) -> int:
    """
    Data-start column for an anchor hit.

    The identity column must sit at or right of the data start. When the
    anchor is another field, walk left from it to the nearest identity-like
    header; with none, start at the minimum anchor column.
    """
    identity = config.identity_field()
    if anchor == identity.name:
        return max(column, config.min_anchor_column)
    for index in range(column - 1, config.min_anchor_column - 1, -1):
        if looks_like_identity(cells[index], identity):
            return index
    return config.min_anchor_column


def extract_title(rows: list[NumberedRow], header_index: int, data_start: int) -> str | None:
    """Best-effort sheet title (usually the agency name) from the preamble."""
    preamble = [cells for _, cells in rows[:header_index]]
    if preamble:
        first = preamble[0][0] if preamble[0] else ""
        if first and not TITLE_SKIP_RE.search(first):
            return first

    header = rows[header_index][1]
    if header_index + 1 < len(rows):
        first_data = rows[header_index + 1][1]
        for index in range(min(data_start, len(header))):
            tokens = header_tokens(header[index])
            if "agency" in tokens and "name" in tokens and index < len(first_data) and first_data[index]:
                return first_data[index]

    for _, cells in rows[:5]:
        first = cells[0] if cells else ""
        if len(first) > 3 and TITLE_HINT_RE.search(first) and not TITLE_SKIP_RE.search(first):
            return first
    return None


def locate_header(rows: list[NumberedRow], config: ResolverConfig) -> HeaderLocation:
    for index, (number, cells) in enumerate(rows):
        if number > config.header_scan_rows:
            break
        hit = find_anchor(cells, config)
        if hit is None:
            continue
        column, anchor = hit
        data_start = identity_start(cells, column, anchor, config)
        return HeaderLocation(
            row_index=index,
            row_number=number,
            data_start=data_start,
            headers=tuple(cells[data_start:]),
            confidence=1.0,
            fallback=False,
            anchor=anchor,
            title=extract_title(rows, index, data_start),
        )

    fallback_row = config.fallback_header_row
    if fallback_row is not None and fallback_row <= config.header_scan_rows:
        for index, (number, cells) in enumerate(rows):
            if number != fallback_row:
                continue
            data_start = config.min_anchor_column
            headers = tuple(cells[data_start:])
            if any(normalize_header(cell) for cell in headers):
                return HeaderLocation(
                    row_index=index,
                    row_number=number,
                    data_start=data_start,
                    headers=headers,
                    confidence=config.fallback_confidence,
                    fallback=True,
                    anchor=None,
                    title=extract_title(rows, index, data_start),
                )

    raise HeaderNotFoundError(
        f"No header row with an alias for {', '.join(config.anchor_fields)} "
        f"in the first {config.header_scan_rows} rows, and fallback row "
        f"{fallback_row if fallback_row is not None else '[disabled]'} is blank or missing"
    )
