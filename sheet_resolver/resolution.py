"""
Per-field resolution: exact name -> conflict check -> heuristic -> positional
fallback, with one code path for every logical field. Produces the sheet's
HeaderMap plus the issues raised along the way.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable

import pandas as pd

from sheet_resolver.config import FieldSpec, ResolverConfig
from sheet_resolver.conflicts import check_assignment
from sheet_resolver.errors import ResolutionTimedOut, build_issue
from sheet_resolver.fields import foreign_owner, locate_field
from sheet_resolver.heuristics import build_sample, column_values, rank_candidates
from sheet_resolver.models import (
    EXACT_NAME,
    HEURISTIC,
    POSITIONAL_FALLBACK,
    UNRESOLVED,
    FieldResolution,
    HeaderMap,
)

ALTERNATES_KEPT = 3


@dataclass
class ResolutionRun:
    header_map: HeaderMap
    issues: list[dict[str, Any]] = field(default_factory=list)
    timed_out: bool = False


def positional_fallback(
    spec: FieldSpec,
    headers: list[str],
    sample: pd.DataFrame,
    claimed: dict[int, str],
    references: dict[str, list[float]],
    config: ResolverConfig,
) -> tuple[int | None, str]:
    """Return (column, reason). Column is None when the fixed offset is unusable."""
    offset = spec.positional_offset
    if offset is None:
        return None, "no fixed offset configured"
    if offset >= len(headers):
        return None, f"offset {offset} is beyond the {len(headers)} header columns"
    if offset in claimed:
        return None, f"offset {offset} is already claimed by {claimed[offset]}"
    owner = foreign_owner(headers[offset], spec, config.fields)
    if owner is not None:
        return None, f"header '{headers[offset]}' at offset {offset} belongs to {owner}"
    if spec.kind != "numeric":
        return offset, f"fixed offset {offset} from the data start"
    values = column_values(sample, offset)
    if not any(abs(value) > 0 for value in values):
        return None, f"sampled values at offset {offset} are all zero"
    check = check_assignment(spec, values, references, config)
    if not check.accepted:
        return None, f"offset {offset} rejected: {'; '.join(check.reasons)}"
    return offset, f"fixed offset {offset} from the data start"


def _unresolved(spec: FieldSpec, reason: str, warnings: list[str], alternates=()) -> FieldResolution:
    return FieldResolution(
        field=spec.name,
        method=UNRESOLVED,
        rationale=reason,
        alternates=tuple(alternates)[:ALTERNATES_KEPT],
        warnings=tuple(warnings),
    )


def _unresolved_issue(spec: FieldSpec, reason: str, escalated: bool) -> dict[str, Any]:
    severity = "warning" if spec.required or escalated else "info"
    return build_issue(
        issue_id="field_unresolved",
        plain_english=f"No column could be resolved for {spec.name}: {reason}. Values default to 0.",
        field=spec.name,
        severity=severity,
    )


def resolve_label_field(
    spec: FieldSpec,
    headers: list[str],
    sample: pd.DataFrame,
    claimed: dict[int, str],
    config: ResolverConfig,
) -> tuple[FieldResolution, list[dict[str, Any]]]:
    """Identity and text fields: alias lookup, then the fixed offset."""
    exact = locate_field(headers, spec, claimed)
    if exact is not None:
        index, alias = exact
        return FieldResolution(
            field=spec.name,
            method=EXACT_NAME,
            index=index,
            header=headers[index],
            confidence=1.0,
            rationale=f"header '{headers[index]}' matches alias '{alias}'",
        ), []
    index, reason = positional_fallback(spec, headers, sample, claimed, {}, config)
    if index is not None:
        return FieldResolution(
            field=spec.name,
            method=POSITIONAL_FALLBACK,
            index=index,
            header=headers[index],
            confidence=config.positional_confidence,
            rationale=reason,
        ), []
    if spec.kind == "text":
        reason = f"no alias matched; using default '{spec.default}'"
    return _unresolved(spec, reason, []), [_unresolved_issue(spec, reason, escalated=False)]


def resolve_numeric_field(
    spec: FieldSpec,
    headers: list[str],
    sample: pd.DataFrame,
    claimed: dict[int, str],
    references: dict[str, list[float]],
    config: ResolverConfig,
    expired: Callable[[], bool] | None = None,
) -> tuple[FieldResolution, list[dict[str, Any]]]:
    issues: list[dict[str, Any]] = []
    warnings: list[str] = []
    excluded = set(claimed)
    exact_index: int | None = None
    exact_rationale = ""
    conflict_rejected = False

    exact = locate_field(headers, spec, claimed)
    if exact is not None:
        index, alias = exact
        check = check_assignment(spec, column_values(sample, index), references, config)
        exact_rationale = f"header '{headers[index]}' matches alias '{alias}'"
        if not check.accepted:
            conflict_rejected = True
            excluded.add(index)
            message = f"exact match '{headers[index]}' rejected: {'; '.join(check.reasons)}"
            warnings.append(message)
            issues.append(
                build_issue(
                    issue_id="conflict_detected",
                    plain_english=f"{spec.name}: {message}. Re-resolving heuristically.",
                    field=spec.name,
                    details={"column_index": index, "reference": check.reference},
                )
            )
        elif check.suspicious:
            exact_index = index
            excluded.add(index)
            message = f"exact match '{headers[index]}' is {'; '.join(check.reasons)}"
            warnings.append(message)
            issues.append(
                build_issue(
                    issue_id="ordering_violated",
                    plain_english=f"{spec.name}: {message}.",
                    field=spec.name,
                    details={"column_index": index, "reference": check.reference},
                )
            )
        else:
            return FieldResolution(
                field=spec.name,
                method=EXACT_NAME,
                index=index,
                header=headers[index],
                confidence=1.0,
                rationale=exact_rationale,
            ), issues

    candidates = rank_candidates(headers, sample, spec, references, config, excluded, expired)
    top = candidates[0] if candidates else None

    if exact_index is not None:
        exact_mean = sum(column_values(sample, exact_index)) / max(len(sample), 1)
        if (
            config.heuristic_override
            and top is not None
            and top.confidence > config.override_confidence
            and abs(top.mean() - exact_mean) > config.override_min_delta
        ):
            issues.append(
                build_issue(
                    issue_id="heuristic_override",
                    plain_english=(
                        f"{spec.name}: column '{top.header}' (confidence {top.confidence:.2f}) "
                        f"replaces suspicious exact match '{headers[exact_index]}'."
                    ),
                    field=spec.name,
                    details={"column_index": top.index, "replaced_index": exact_index},
                )
            )
            return FieldResolution(
                field=spec.name,
                method=HEURISTIC,
                index=top.index,
                header=top.header,
                confidence=top.confidence,
                rationale="; ".join(top.reasons) or "highest scoring candidate",
                alternates=tuple(candidates[1 : ALTERNATES_KEPT + 1]),
                warnings=tuple(warnings),
            ), issues
        issues.append(
            build_issue(
                issue_id="exact_match_kept",
                plain_english=f"{spec.name}: kept exact match '{headers[exact_index]}'; no confident alternative.",
                field=spec.name,
                details={"column_index": exact_index},
            )
        )
        return FieldResolution(
            field=spec.name,
            method=EXACT_NAME,
            index=exact_index,
            header=headers[exact_index],
            confidence=1.0,
            rationale=exact_rationale,
            alternates=tuple(candidates[:ALTERNATES_KEPT]),
            warnings=tuple(warnings),
        ), issues

    if top is not None and top.confidence > config.adopt_floor:
        return FieldResolution(
            field=spec.name,
            method=HEURISTIC,
            index=top.index,
            header=top.header,
            confidence=top.confidence,
            rationale=f"best of {len(candidates)} candidate(s): " + ("; ".join(top.reasons) or "no signals"),
            alternates=tuple(candidates[1 : ALTERNATES_KEPT + 1]),
            warnings=tuple(warnings),
        ), issues
    if top is not None:
        warnings.append(f"best candidate '{top.header}' confidence {top.confidence:.2f} is below {config.adopt_floor:g}")

    blocked = dict(claimed)
    blocked.update({index: "a rejected match" for index in excluded if index not in claimed})
    index, reason = positional_fallback(spec, headers, sample, blocked, references, config)
    if index is not None:
        return FieldResolution(
            field=spec.name,
            method=POSITIONAL_FALLBACK,
            index=index,
            header=headers[index],
            confidence=config.positional_confidence,
            rationale=reason,
            alternates=tuple(candidates[:ALTERNATES_KEPT]),
            warnings=tuple(warnings),
        ), issues

    if exact is None and not candidates:
        summary = f"no alias matched, no eligible candidates, {reason}"
    else:
        summary = f"no accepted column ({reason})"
    warnings.append(summary)
    issues.append(_unresolved_issue(spec, summary, escalated=conflict_rejected))
    return _unresolved(spec, summary, warnings, candidates), issues


def resolve_header_map(
    headers: list[str],
    data_rows: list[list[str]],
    config: ResolverConfig,
    *,
    data_start: int = 0,
    deadline: float | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> ResolutionRun:
    """Resolve every configured field once for the sheet."""

    def expired() -> bool:
        return deadline is not None and clock() >= deadline

    resolutions: dict[str, FieldResolution] = {}
    claimed: dict[int, str] = {}
    issues: list[dict[str, Any]] = []
    width = len(headers)
    identity = config.identity_field()
    order = config.resolution_order()
    timed_out = False
    sample = build_sample([], width, config.sample_size)

    for position, spec in enumerate(order):
        if expired():
            timed_out = True
        if not timed_out and spec.kind == "numeric" and len(sample) == 0 and data_rows:
            identity_index = claimed_index(resolutions, identity.name)
            sampled_rows = [
                cells for cells in data_rows
                if identity_index is None or (identity_index < len(cells) and cells[identity_index].strip())
            ]
            sample = build_sample(sampled_rows, width, config.sample_size)
            if expired():
                timed_out = True
        if timed_out:
            for remaining in order[position:]:
                resolutions[remaining.name] = _unresolved(remaining, "resolution timed out", ["resolution timed out"])
            break

        if spec.kind == "numeric":
            references = {}
            if spec.reference is not None:
                reference_index = claimed_index(resolutions, spec.reference)
                if reference_index is not None:
                    references[spec.reference] = column_values(sample, reference_index)
            try:
                resolution, field_issues = resolve_numeric_field(
                    spec, headers, sample, claimed, references, config, expired
                )
            except ResolutionTimedOut:
                timed_out = True
                for remaining in order[position:]:
                    resolutions[remaining.name] = _unresolved(remaining, "resolution timed out", ["resolution timed out"])
                break
        else:
            resolution, field_issues = resolve_label_field(spec, headers, sample, claimed, config)

        resolutions[spec.name] = resolution
        issues.extend(field_issues)
        if resolution.resolved and resolution.index is not None:
            claimed[resolution.index] = spec.name

    if timed_out:
        issues.append(
            build_issue(
                issue_id="resolution_timed_out",
                plain_english="Deadline passed during column resolution; remaining fields were left unresolved.",
                details={"unresolved": [name for name, item in resolutions.items() if item.rationale == "resolution timed out"]},
            )
        )
    ordered = {spec.name: resolutions[spec.name] for spec in config.fields if spec.name in resolutions}
    return ResolutionRun(header_map=HeaderMap(ordered, data_start), issues=issues, timed_out=timed_out)


def claimed_index(resolutions: dict[str, FieldResolution], name: str) -> int | None:
    resolution = resolutions.get(name)
    if resolution is None or not resolution.resolved:
        return None
    return resolution.index
