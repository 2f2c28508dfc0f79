"""
tokenizer.py: raw delimited text to ordered rows of trimmed string cells.

Quoted fields may contain delimiters and line breaks; CR, LF and CRLF line
endings are all accepted. Every cell is trimmed, quoted or not. Rows that
are empty after trimming are dropped, but every kept row remembers its
1-based record number in the source so diagnostics can point back at it.
"""

from __future__ import annotations

import csv
import io
from collections import Counter
from typing import Iterable

from sheet_resolver.errors import EmptySourceError, SheetResolverError

DELIMITER_CANDIDATES = (",", ";", "\t", "|")

NumberedRow = tuple[int, list[str]]


def detect_delimiter(text: str) -> str:
    """
    Infer the delimiter from sample lines.

    Uses csv.Sniffer first; falls back to scoring each candidate by
    column-count consistency and column width.
    """
    sample_lines = [line for line in text.splitlines() if line.strip()][:120]
    sample = "\n".join(sample_lines[:25])

    if sample:
        try:
            return csv.Sniffer().sniff(sample, delimiters="".join(DELIMITER_CANDIDATES)).delimiter
        except csv.Error:
            pass

    best_delim = ","
    best_score = float("-inf")
    best_width = 0
    sample_text = "\n".join(sample_lines)

    for delim in DELIMITER_CANDIDATES:
        rows = [
            row
            for row in csv.reader(io.StringIO(sample_text), delimiter=delim)
            if any(cell.strip() for cell in row)
        ]
        if len(rows) < 2:
            continue

        widths = [len(row) for row in rows]
        mode_width, mode_count = Counter(widths).most_common(1)[0]
        consistency = mode_count / len(widths)

        score = (mode_width * 2.0) + (consistency * mode_width)
        if len(rows[0]) == mode_width:
            score += 1.0
        if mode_width == 1:
            score -= 10.0

        if score > best_score or (score == best_score and mode_width > best_width):
            best_score = score
            best_width = mode_width
            best_delim = delim

    return best_delim


def keep_nonblank(rows: Iterable[Iterable[object]]) -> list[NumberedRow]:
    """
    Trim every cell and drop rows that end up empty, keeping source record numbers.

    Quoted cells are trimmed too, so "  Ana  " and Ana are the same entity.
    """
    kept: list[NumberedRow] = []
    for number, row in enumerate(rows, start=1):
        cells = ["" if cell is None else str(cell).replace("\x00", "").strip() for cell in row]
        if any(cells):
            kept.append((number, cells))
    return kept


def tokenize_numbered(text: str, delimiter: str | None = ",") -> list[NumberedRow]:
    if delimiter is None:
        delimiter = detect_delimiter(text)
    text = text.lstrip("\ufeff").replace("\x00", "")
    reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter, skipinitialspace=True)
    try:
        rows = keep_nonblank(reader)
    except csv.Error as exc:
        raise SheetResolverError(f"Could not tokenize delimited text: {exc}") from exc
    if not rows:
        raise EmptySourceError("Source contains no non-blank rows")
    return rows


def tokenize(text: str, delimiter: str | None = ",") -> list[list[str]]:
    return [cells for _, cells in tokenize_numbered(text, delimiter)]
