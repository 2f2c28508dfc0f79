"""
Record Assembler.

Drives one ingestion run: tokenize, locate the header, classify rows,
resolve every logical field once for the sheet, then build one
EntityRecord per accepted data row and the aggregate summary. Aggregate
(total) rows never contribute to the totals; they are compared against
them instead.
"""

from __future__ import annotations

import time
from collections import defaultdict
from typing import Any, Callable, Iterable

from sheet_resolver.config import ResolverConfig
from sheet_resolver.conflicts import row_warnings
from sheet_resolver.errors import EmptySourceError, build_issue
from sheet_resolver.locator import locate_header
from sheet_resolver.models import (
    AggregateCheck,
    AggregateSummary,
    Diagnostics,
    EntityRecord,
    HeaderMap,
    IngestResult,
)
from sheet_resolver.numbers import SENTINEL_NULLS, parse_amount
from sheet_resolver.resolution import resolve_header_map
from sheet_resolver.rows import (
    AGGREGATE,
    BLANK,
    DATA,
    MISSING_IDENTITY,
    REPEATED_HEADER,
    SKIP_REASONS,
    classify_row,
    header_signature,
    slice_row,
    total_label_re,
)
from sheet_resolver.tokenizer import NumberedRow, detect_delimiter, keep_nonblank, tokenize_numbered

SKIP_ORDER = (BLANK, REPEATED_HEADER, AGGREGATE, MISSING_IDENTITY)


def ingest_text(
    text: str,
    config: ResolverConfig | None = None,
    *,
    deadline: float | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> IngestResult:
    """Ingest raw delimited text. ``deadline`` is an absolute ``clock()`` reading."""
    config = config or ResolverConfig()
    delimiter = config.delimiter or detect_delimiter(text)
    rows = tokenize_numbered(text, delimiter)
    return _ingest(rows, config, delimiter=delimiter, deadline=deadline, clock=clock)


def ingest_rows(
    rows: Iterable[Iterable[object]],
    config: ResolverConfig | None = None,
    *,
    deadline: float | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> IngestResult:
    """Ingest already-split rows (e.g. workbook cells) with the same blank-row rule as text."""
    config = config or ResolverConfig()
    numbered = keep_nonblank(rows)
    if not numbered:
        raise EmptySourceError("Source contains no non-blank rows")
    return _ingest(numbered, config, delimiter=None, deadline=deadline, clock=clock)


def _ingest(
    rows: list[NumberedRow],
    config: ResolverConfig,
    *,
    delimiter: str | None,
    deadline: float | None,
    clock: Callable[[], float],
) -> IngestResult:
    location = locate_header(rows, config)
    headers = list(location.headers)
    width = len(headers)
    header_sig = header_signature(headers)
    total_re = total_label_re(config.total_words)
    identity = config.identity_field()
    issues: list[dict[str, Any]] = []

    if location.fallback:
        issues.append(
            build_issue(
                issue_id="header_fallback",
                plain_english=(
                    f"No anchor header found in the first {config.header_scan_rows} rows; "
                    f"using row {location.row_number} as the header (confidence {location.confidence:g})."
                ),
                rows=[location.row_number],
            )
        )

    classified: list[tuple[int, str, list[str]]] = []
    for number, cells in rows[location.row_index + 1 :]:
        sliced = slice_row(cells, location.data_start, width)
        classified.append((number, classify_row(sliced, header_sig, config, total_re), sliced))

    data_rows = [cells for _, kind, cells in classified if kind == DATA]
    run = resolve_header_map(
        headers,
        data_rows,
        config,
        data_start=location.data_start,
        deadline=deadline,
        clock=clock,
    )
    header_map = run.header_map
    issues.extend(run.issues)

    identity_index = header_map.column(identity.name)
    records: list[EntityRecord] = []
    skipped: dict[str, list[int]] = defaultdict(list)
    numeric = config.numeric_fields()
    totals = {spec.name: 0.0 for spec in numeric}
    since_last_aggregate = {spec.name: 0.0 for spec in numeric}
    checks: list[AggregateCheck] = []
    row_conflicts: dict[tuple[str, str], list[int]] = defaultdict(list)

    for number, kind, cells in classified:
        if kind == AGGREGATE:
            skipped[AGGREGATE].append(number)
            checks.extend(_check_aggregate(number, cells, header_map, totals, since_last_aggregate, config))
            since_last_aggregate = {name: 0.0 for name in since_last_aggregate}
            continue
        if kind != DATA:
            skipped[kind].append(number)
            continue
        name = cells[identity_index].strip() if identity_index is not None else ""
        if not name:
            skipped[MISSING_IDENTITY].append(number)
            continue

        record = _build_record(number, name, cells, header_map, config, row_conflicts)
        records.append(record)
        for field_name, value in record.values.items():
            totals[field_name] += value
            since_last_aggregate[field_name] += value

    issues.extend(_row_issues(skipped))
    issues.extend(_conflict_issues(row_conflicts))
    issues.extend(_derived_issues(header_map, config))
    mismatched = [check for check in checks if not check.matched]
    if mismatched:
        issues.append(
            build_issue(
                issue_id="aggregate_mismatch",
                plain_english=(
                    f"{len(mismatched)} total-row value(s) disagree with the sum of accepted records: "
                    + ", ".join(
                        f"{check.field} row {check.row_number} reported {check.reported:,.2f} vs {check.computed:,.2f}"
                        for check in mismatched
                    )
                ),
                rows=sorted({check.row_number for check in mismatched}),
            )
        )

    counts = {
        metric.name: sum(1 for record in records if record.derived.get(metric.name, 0) > 0)
        for metric in config.derived
        if metric.op == "positive"
    }
    summary = AggregateSummary(
        totals=totals,
        accepted=len(records),
        skipped={reason: len(skipped[reason]) for reason in SKIP_ORDER if skipped.get(reason)},
        counts=counts,
        checks=checks,
    )
    diagnostics = Diagnostics(
        header=location,
        fields=dict(header_map),
        issues=issues,
        delimiter=delimiter,
        timed_out=run.timed_out,
    )
    return IngestResult(records=records, summary=summary, diagnostics=diagnostics, header_map=header_map)


def _build_record(
    number: int,
    name: str,
    cells: list[str],
    header_map: HeaderMap,
    config: ResolverConfig,
    row_conflicts: dict[tuple[str, str], list[int]],
) -> EntityRecord:
    values: dict[str, float] = {}
    unparsed: list[str] = []
    for spec in config.numeric_fields():
        index = header_map.column(spec.name)
        if index is None:
            values[spec.name] = 0.0
            continue
        raw = cells[index].strip()
        parsed = parse_amount(raw)
        if parsed is None:
            if raw.lower() not in SENTINEL_NULLS:
                unparsed.append(f"{spec.name}={raw}")
            parsed = 0.0
        values[spec.name] = parsed

    warnings: list[str] = []
    for spec in config.numeric_fields():
        if spec.reference is None or header_map.column(spec.name) is None:
            continue
        if header_map.column(spec.reference) is None:
            continue
        for issue_id, message in row_warnings(
            spec, values[spec.name], {spec.reference: values[spec.reference]}, config.epsilon
        ):
            warnings.append(message)
            row_conflicts[(issue_id, spec.name)].append(number)

    attributes: dict[str, str] = {}
    for spec in config.text_fields():
        index = header_map.column(spec.name)
        text = cells[index].strip() if index is not None else ""
        attributes[spec.name] = text or spec.default

    return EntityRecord(
        identity=name,
        values=values,
        derived=_derived_values(values, header_map, config),
        attributes=attributes,
        source_row=number,
        warnings=tuple(warnings),
        unparsed=tuple(unparsed),
    )


def _derived_values(values: dict[str, float], header_map: HeaderMap, config: ResolverConfig) -> dict[str, float]:
    derived: dict[str, float] = {}
    for metric in config.derived:
        if any(header_map.column(name) is None for name in metric.inputs):
            derived[metric.name] = 0.0
        elif metric.op == "positive":
            derived[metric.name] = 1.0 if values[metric.inputs[0]] > 0 else 0.0
        else:
            numerator, denominator = (values[name] for name in metric.inputs)
            derived[metric.name] = numerator / denominator if denominator else 0.0
    return derived


def _check_aggregate(
    number: int,
    cells: list[str],
    header_map: HeaderMap,
    totals: dict[str, float],
    since_last_aggregate: dict[str, float],
    config: ResolverConfig,
) -> list[AggregateCheck]:
    """A total row matches either the grand running total or the subtotal since the previous total row."""
    label = cells[0].strip() if cells else ""
    checks = []
    for name, total in totals.items():
        index = header_map.column(name)
        if index is None:
            continue
        reported = parse_amount(cells[index])
        if reported is None:
            continue
        computed = total
        matched = False
        for candidate in (total, since_last_aggregate[name]):
            tolerance = max(config.epsilon, abs(candidate) * config.aggregate_tolerance_ratio)
            if abs(reported - candidate) <= tolerance:
                computed = candidate
                matched = True
                break
        checks.append(
            AggregateCheck(
                row_number=number,
                label=label,
                field=name,
                reported=reported,
                computed=computed,
                matched=matched,
            )
        )
    return checks


def _row_issues(skipped: dict[str, list[int]]) -> list[dict[str, Any]]:
    issues = []
    for reason in SKIP_ORDER:
        numbers = skipped.get(reason)
        if not numbers:
            continue
        issues.append(
            build_issue(
                issue_id="row_rejected",
                plain_english=f"{len(numbers)} row(s) skipped: {SKIP_REASONS[reason]}.",
                rows=numbers,
                severity="warning" if reason == MISSING_IDENTITY else None,
                details={"reason": reason},
            )
        )
    return issues


def _conflict_issues(row_conflicts: dict[tuple[str, str], list[int]]) -> list[dict[str, Any]]:
    issues = []
    for (issue_id, name), numbers in sorted(row_conflicts.items()):
        verb = "equals its reference" if issue_id == "conflict_detected" else "is below its reference"
        issues.append(
            build_issue(
                issue_id=issue_id,
                plain_english=f"{name} {verb} on {len(numbers)} accepted row(s).",
                field=name,
                rows=numbers,
            )
        )
    return issues


def _derived_issues(header_map: HeaderMap, config: ResolverConfig) -> list[dict[str, Any]]:
    issues = []
    for metric in config.derived:
        missing = [name for name in metric.inputs if header_map.column(name) is None]
        if missing:
            issues.append(
                build_issue(
                    issue_id="derived_metric_defaulted",
                    plain_english=f"{metric.name} defaults to 0 because {', '.join(missing)} is unresolved.",
                    field=metric.name,
                    details={"missing_inputs": missing},
                )
            )
    return issues
