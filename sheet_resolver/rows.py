from __future__ import annotations

import math
import re

from sheet_resolver.config import ResolverConfig
from sheet_resolver.fields import normalize_header

BLANK = "blank"
REPEATED_HEADER = "repeated_header"
AGGREGATE = "aggregate"
DATA = "data"
MISSING_IDENTITY = "missing_identity"

ROW_KINDS = (BLANK, REPEATED_HEADER, AGGREGATE, DATA)

SKIP_REASONS = {
    BLANK: "Row is blank from the data-start column onwards",
    REPEATED_HEADER: "Structural row (header repeat)",
    AGGREGATE: "Aggregate/total row (cross-validated, not aggregated)",
    MISSING_IDENTITY: "Identity cell is blank",
}

_WORD_SEPARATOR_RE = re.compile(r"[\s_]+")


def _fold(value: str) -> str:
    return _WORD_SEPARATOR_RE.sub(" ", value.strip().casefold())


def slice_row(cells: list[str], data_start: int, width: int) -> list[str]:
    """Cells from the data-start column, padded or cut to the header width."""
    sliced = cells[data_start : data_start + width]
    return sliced + [""] * (width - len(sliced))


def header_signature(headers: list[str] | tuple[str, ...]) -> tuple[str, ...]:
    return tuple(normalize_header(header) for header in headers)


def first_cell_is_header_word(cell: str, words: tuple[str, ...]) -> bool:
    text = _fold(cell)
    if not text:
        return False
    for word in words:
        folded = _fold(word)
        if text == folded or text.startswith(folded + " "):
            return True
    return False


def total_label_re(words: tuple[str, ...]) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(_fold(word)).replace(r"\ ", r"\s+") for word in words)
    return re.compile(rf"^({alternatives})\b", re.IGNORECASE)


def header_overlap(cells: list[str], header_sig: tuple[str, ...]) -> tuple[int, int]:
    """(matching cells, non-empty header cells) for a cell-wise comparison."""
    compared = 0
    matches = 0
    for cell, header in zip(cells, header_sig):
        if not header:
            continue
        compared += 1
        if normalize_header(cell) == header:
            matches += 1
    return matches, compared


def is_header_like(cells: list[str], header_sig: tuple[str, ...], config: ResolverConfig) -> bool:
    signature = header_signature(cells)
    if signature == header_sig:
        return True
    if cells and first_cell_is_header_word(cells[0], config.header_words):
        return True
    matches, compared = header_overlap(cells, header_sig)
    if compared == 0:
        return False
    needed = max(min(2, compared), math.ceil(compared * config.header_repeat_ratio))
    return matches >= needed


def classify_row(
    cells: list[str],
    header_sig: tuple[str, ...],
    config: ResolverConfig,
    total_re: re.Pattern[str] | None = None,
) -> str:
    """Tag a data-start-sliced row as blank, repeated header, aggregate total or data."""
    if not any(cell.strip() for cell in cells):
        return BLANK
    if is_header_like(cells, header_sig, config):
        return REPEATED_HEADER
    total_re = total_re or total_label_re(config.total_words)
    first = cells[0].strip() if cells else ""
    if total_re.match(first):
        return AGGREGATE
    return DATA
