"""
Exceptions and the shared issue taxonomy.

Fatal problems (nothing usable can be produced for the sheet) are raised.
Everything that is recovered locally becomes an issue dict built here, so
the resolver stages and the CLI agree on ids and severities.
"""

from __future__ import annotations

from typing import Any


class SheetResolverError(ValueError):
    """Base class for failures that stop a sheet from being ingested."""


class HeaderNotFoundError(SheetResolverError):
    """No anchor header row inside the scan window and no usable fallback row."""


class EmptySourceError(HeaderNotFoundError):
    """Every row was blank after trimming, so there is no header either."""


class ConfigError(SheetResolverError):
    pass


class SourceFetchError(SheetResolverError):
    pass


class ResolutionTimedOut(SheetResolverError):
    """Raised inside the resolution phase when the caller's deadline passes."""


SEVERITIES = ("info", "warning", "critical")

ISSUE_DEFINITIONS = {
    "field_unresolved": {"severity": "warning", "label": "FieldUnresolvedWarning"},
    "row_rejected": {"severity": "info", "label": "RowRejectedWarning"},
    "conflict_detected": {"severity": "warning", "label": "ConflictDetectedWarning"},
    "ordering_violated": {"severity": "warning", "label": "ConflictDetectedWarning"},
    "heuristic_override": {"severity": "warning", "label": "ConflictDetectedWarning"},
    "exact_match_kept": {"severity": "warning", "label": "ConflictDetectedWarning"},
    "header_fallback": {"severity": "warning", "label": "HeaderFallback"},
    "aggregate_mismatch": {"severity": "warning", "label": "AggregateMismatch"},
    "derived_metric_defaulted": {"severity": "info", "label": "FieldUnresolvedWarning"},
    "resolution_timed_out": {"severity": "critical", "label": "ResolutionTimedOut"},
}


def build_issue(
    *,
    issue_id: str,
    plain_english: str,
    field: str | None = None,
    rows: list[int] | None = None,
    severity: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    definition = ISSUE_DEFINITIONS[issue_id]
    chosen = severity or definition["severity"]
    if chosen not in SEVERITIES:
        raise ValueError(f"Unknown severity: {chosen}")
    return {
        "id": issue_id,
        "label": definition["label"],
        "severity": chosen,
        "plain_english": plain_english,
        "field": field,
        "rows": list(rows or []),
        "rows_affected": len(rows or []),
        "details": details or {},
    }
