"""
Field Locator: header normalization and alias/vocabulary membership.

Two headers are the same when they agree after case-folding, collapsing
whitespace, treating `_`, `-`, `&` and spaces as one separator, and
dropping trailing punctuation. The first alias (in configured order) that
matches an unclaimed column wins.
"""

from __future__ import annotations

import re
from typing import Collection, Iterable

from sheet_resolver.config import FieldSpec

SEPARATOR_RE = re.compile(r"[\s_\-&]+")
TRAILING_PUNCT_RE = re.compile(r"[\s.,:;!?'\"`*]+$")


def normalize_header(value: str | None) -> str:
    text = (value or "").replace("\ufeff", "").replace("\x00", "").strip().casefold()
    text = TRAILING_PUNCT_RE.sub("", text)
    return SEPARATOR_RE.sub(" ", text).strip()


def header_tokens(value: str | None) -> list[str]:
    return normalize_header(value).split()


def normalized_aliases(spec: FieldSpec) -> set[str]:
    return {alias for alias in (normalize_header(item) for item in spec.aliases) if alias}


def matches_alias(header: str | None, spec: FieldSpec) -> bool:
    normalized = normalize_header(header)
    return bool(normalized) and normalized in normalized_aliases(spec)


def locate_field(
    headers: list[str],
    spec: FieldSpec,
    claimed: Collection[int] = (),
) -> tuple[int, str] | None:
    """Return (column index, matched alias) for the first alias with an unclaimed exact match."""
    normalized = [normalize_header(header) for header in headers]
    for alias in spec.aliases:
        target = normalize_header(alias)
        if not target:
            continue
        for index, value in enumerate(normalized):
            if value == target and index not in claimed:
                return index, alias
    return None


def _has_marker(tokens: Iterable[str], markers: Iterable[str]) -> bool:
    markers = tuple(markers)
    return any(token.startswith(marker) for token in tokens for marker in markers)


def marker_conflict(header: str | None, spec: FieldSpec, fields: Iterable[FieldSpec]) -> str | None:
    """Name of another field family whose distinct markers appear in ``header``."""
    tokens = header_tokens(header)
    if not tokens:
        return None
    own = set(spec.markers)
    for other in fields:
        if other.name == spec.name:
            continue
        distinct = [marker for marker in other.markers if marker not in own]
        if distinct and _has_marker(tokens, distinct):
            return other.name
    return None


def foreign_owner(header: str | None, spec: FieldSpec, fields: Iterable[FieldSpec]) -> str | None:
    """
    Name of a different field whose vocabulary claims ``header``, or None.

    An exact alias of another field always claims the header. Otherwise the
    header is claimed when it carries a marker that belongs to another
    field family and not to ``spec``'s own ("FYC" headers are never
    volume candidates, but "ANP YTD" stays eligible for the MTD volume).
    """
    fields = list(fields)
    normalized = normalize_header(header)
    if not normalized or normalized in normalized_aliases(spec):
        return None
    for other in fields:
        if other.name != spec.name and normalized in normalized_aliases(other):
            return other.name
    return marker_conflict(header, spec, fields)


def looks_like_identity(header: str | None, identity: FieldSpec) -> bool:
    if matches_alias(header, identity):
        return True
    return _has_marker(header_tokens(header), identity.markers)
