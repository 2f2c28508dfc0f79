"""Result types shared by the resolver stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping

import pandas as pd

from sheet_resolver.locator import HeaderLocation

EXACT_NAME = "exact-name"
HEURISTIC = "heuristic"
POSITIONAL_FALLBACK = "positional-fallback"
UNRESOLVED = "unresolved"
RESOLUTION_METHODS = (EXACT_NAME, HEURISTIC, POSITIONAL_FALLBACK, UNRESOLVED)


@dataclass(frozen=True)
class ColumnCandidate:
    index: int
    header: str
    values: tuple[float, ...]
    score: float = 0.0
    confidence: float = 0.0
    reasons: tuple[str, ...] = ()

    def mean(self) -> float:
        return sum(self.values) / len(self.values) if self.values else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "header": self.header,
            "score": round(self.score, 2),
            "confidence": round(self.confidence, 4),
            "reasons": list(self.reasons),
            "sampled_values": list(self.values[:5]),
        }


@dataclass(frozen=True)
class FieldResolution:
    field: str
    method: str
    index: int | None = None
    header: str | None = None
    confidence: float = 0.0
    rationale: str = ""
    alternates: tuple[ColumnCandidate, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def resolved(self) -> bool:
        return self.method != UNRESOLVED and self.index is not None

    def to_dict(self, data_start: int = 0) -> dict[str, Any]:
        return {
            "field": self.field,
            "method": self.method,
            "column_index": self.index,
            "source_column": None if self.index is None else self.index + data_start,
            "header": self.header,
            "confidence": round(self.confidence, 4),
            "rationale": self.rationale,
            "alternates": [candidate.to_dict() for candidate in self.alternates],
            "warnings": list(self.warnings),
        }


class HeaderMap(Mapping[str, FieldResolution]):
    """Logical field name to resolution. Built once per sheet, read-only afterwards."""

    def __init__(self, resolutions: Mapping[str, FieldResolution], data_start: int = 0) -> None:
        self._resolutions = dict(resolutions)
        self.data_start = data_start

    def __getitem__(self, name: str) -> FieldResolution:
        return self._resolutions[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._resolutions)

    def __len__(self) -> int:
        return len(self._resolutions)

    def __repr__(self) -> str:
        return f"HeaderMap({self._resolutions!r})"

    def column(self, name: str) -> int | None:
        resolution = self._resolutions.get(name)
        if resolution is None or not resolution.resolved:
            return None
        return resolution.index

    def claimed_columns(self) -> dict[int, str]:
        return {
            resolution.index: name
            for name, resolution in self._resolutions.items()
            if resolution.resolved and resolution.index is not None
        }

    def to_dict(self) -> dict[str, Any]:
        return {name: resolution.to_dict(self.data_start) for name, resolution in self._resolutions.items()}


@dataclass(frozen=True)
class EntityRecord:
    identity: str
    values: dict[str, float]
    derived: dict[str, float] = field(default_factory=dict)
    attributes: dict[str, str] = field(default_factory=dict)
    source_row: int = 0
    warnings: tuple[str, ...] = ()
    unparsed: tuple[str, ...] = ()

    @property
    def slug(self) -> str:
        return "-".join(self.identity.lower().split())

    def __getitem__(self, name: str) -> float:
        return self.values[name]

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "slug": self.slug,
            "source_row": self.source_row,
            "values": dict(self.values),
            "derived": dict(self.derived),
            "attributes": dict(self.attributes),
            "warnings": list(self.warnings),
            "unparsed": list(self.unparsed),
        }


@dataclass(frozen=True)
class AggregateCheck:
    row_number: int
    label: str
    field: str
    reported: float
    computed: float
    matched: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "row_number": self.row_number,
            "label": self.label,
            "field": self.field,
            "reported": self.reported,
            "computed": self.computed,
            "matched": self.matched,
        }


@dataclass
class AggregateSummary:
    totals: dict[str, float] = field(default_factory=dict)
    accepted: int = 0
    skipped: dict[str, int] = field(default_factory=dict)
    counts: dict[str, int] = field(default_factory=dict)
    checks: list[AggregateCheck] = field(default_factory=list)

    def __getitem__(self, name: str) -> float:
        return self.totals[name]

    @property
    def manpower(self) -> int:
        return self.accepted

    @property
    def producing_count(self) -> int:
        return self.counts.get("producing", 0)

    @property
    def skipped_total(self) -> int:
        return sum(self.skipped.values())

    @property
    def validated(self) -> bool:
        return all(check.matched for check in self.checks)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totals": dict(self.totals),
            "accepted": self.accepted,
            "manpower": self.manpower,
            "skipped": dict(self.skipped),
            "skipped_total": self.skipped_total,
            "counts": dict(self.counts),
            "producing_count": self.producing_count,
            "checks": [check.to_dict() for check in self.checks],
            "validated": self.validated,
        }


@dataclass
class Diagnostics:
    header: HeaderLocation | None = None
    fields: dict[str, FieldResolution] = field(default_factory=dict)
    issues: list[dict[str, Any]] = field(default_factory=list)
    delimiter: str | None = None
    timed_out: bool = False

    @property
    def title(self) -> str | None:
        return self.header.title if self.header else None

    def method_for(self, name: str) -> str:
        return self.fields[name].method

    def issues_for(self, name: str) -> list[dict[str, Any]]:
        return [issue for issue in self.issues if issue["field"] == name]

    def issue_ids(self) -> list[str]:
        return [issue["id"] for issue in self.issues]

    def has_warnings(self) -> bool:
        return any(issue["severity"] in {"warning", "critical"} for issue in self.issues)

    def to_dict(self) -> dict[str, Any]:
        data_start = self.header.data_start if self.header else 0
        return {
            "header": self.header.to_dict() if self.header else None,
            "delimiter": self.delimiter,
            "timed_out": self.timed_out,
            "fields": {name: resolution.to_dict(data_start) for name, resolution in self.fields.items()},
            "issues": list(self.issues),
            "issue_count": len(self.issues),
        }


@dataclass
class IngestResult:
    records: list[EntityRecord]
    summary: AggregateSummary
    diagnostics: Diagnostics
    header_map: HeaderMap

    def to_dict(self) -> dict[str, Any]:
        return {
            "records": [record.to_dict() for record in self.records],
            "summary": self.summary.to_dict(),
            "diagnostics": self.diagnostics.to_dict(),
        }

    def to_frame(self) -> pd.DataFrame:
        """One row per accepted record: identity, attributes, field values, derived metrics."""
        rows = []
        for record in self.records:
            row: dict[str, Any] = {"source_row": record.source_row, "identity": record.identity}
            row.update(record.attributes)
            row.update(record.values)
            row.update(record.derived)
            row["warnings"] = "; ".join(record.warnings)
            rows.append(row)
        columns = ["source_row", "identity"]
        if self.records:
            first = self.records[0]
            columns += list(first.attributes) + list(first.values) + list(first.derived)
        columns.append("warnings")
        return pd.DataFrame(rows, columns=columns)
