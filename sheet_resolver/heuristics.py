"""
Heuristic Resolver.

Scores every still-eligible column for a logical field from three signals
and ranks them:

  Semantic (40)  token overlap between the header and the field's target
                 vocabulary, plus a bonus for substring containment
  Pattern  (35)  share of strictly positive sampled values, magnitude,
                 coefficient of variation, and the ratio of the column
                 average to the reference field's average
  Context  (25)  identity-like previous header, companion (e.g. YTD)
                 next header, commonly-correct fixed offset

Empty-header columns that already clear a minimum combined score get a
small bonus, since merged-cell exports often blank the real header.
Confidence is the total on a 0-100 scale, normalised to [0, 1].
"""

from __future__ import annotations

from typing import Callable, Collection, Iterable, Mapping

import pandas as pd

from sheet_resolver.config import FieldSpec, ResolverConfig
from sheet_resolver.conflicts import values_collide
from sheet_resolver.errors import ResolutionTimedOut
from sheet_resolver.fields import (
    foreign_owner,
    header_tokens,
    looks_like_identity,
    marker_conflict,
    normalize_header,
)
from sheet_resolver.models import ColumnCandidate
from sheet_resolver.numbers import cell_amount


def build_sample(rows: Iterable[list[str]], width: int, size: int) -> pd.DataFrame:
    """Parse up to ``size`` data rows into a numeric frame whose columns are header indices."""
    parsed = []
    for cells in rows:
        if len(parsed) >= size:
            break
        parsed.append([cell_amount(cells[index]) if index < len(cells) else 0.0 for index in range(width)])
    return pd.DataFrame(parsed, columns=list(range(width)), dtype=float)


def column_values(sample: pd.DataFrame, index: int) -> list[float]:
    if index not in sample.columns:
        return []
    return [float(value) for value in sample[index].tolist()]


def token_similarity(left: str, right: str) -> float:
    left_tokens = set(header_tokens(left))
    right_tokens = set(header_tokens(right))
    if not left_tokens or not right_tokens:
        return 0.0
    return len(left_tokens & right_tokens) / len(left_tokens | right_tokens)


def semantic_score(header: str, spec: FieldSpec, config: ResolverConfig) -> tuple[float, list[str]]:
    normalized = normalize_header(header)
    if not normalized:
        return 0.0, []
    compact = normalized.replace(" ", "")
    best = 0.0
    best_target = ""
    for target in spec.targets:
        target_norm = normalize_header(target)
        if not target_norm:
            continue
        similarity = token_similarity(normalized, target_norm)
        target_compact = target_norm.replace(" ", "")
        if target_compact in compact or compact in target_compact:
            similarity += config.containment_bonus
        similarity = min(similarity, 1.0)
        if similarity > best:
            best = similarity
            best_target = target
    if best <= 0:
        return 0.0, []
    return best * config.semantic_weight, [f"header resembles '{best_target}' ({best:.2f})"]


def pattern_score(
    values: list[float],
    spec: FieldSpec,
    references: Mapping[str, list[float]],
    config: ResolverConfig,
) -> tuple[float, list[str], bool]:
    """Return (weighted score, reasons, collided). ``collided`` zeroes the whole candidate."""
    if not values:
        return 0.0, ["no sampled values"], False
    series = pd.Series(values, dtype=float)
    positive = series[series > 0]
    points = 0.0
    reasons: list[str] = []

    ratio = len(positive) / len(series)
    for threshold, tier_points in config.positive_ratio_tiers:
        if ratio >= threshold:
            points += tier_points
            reasons.append(f"{ratio:.0%} of sampled values are positive")
            break

    average = float(positive.mean()) if len(positive) else 0.0
    for floor, tier_points in config.magnitude_tiers:
        if average > floor:
            points += tier_points
            reasons.append(f"average {average:,.0f} above {floor:,.0f}")
            break

    if len(positive) > 1 and average > 0:
        cv = float(positive.std(ddof=0)) / average
        low, high = config.cv_range
        if low < cv < high:
            points += config.cv_points
            reasons.append(f"plausible spread (cv {cv:.2f})")

    for name, reference in references.items():
        if values_collide(values, reference, config):
            return 0.0, [f"values match {name} within {config.epsilon:g}; likely the same column"], True
        if not spec.expects_greater:
            continue
        ref_series = pd.Series(reference, dtype=float)
        ref_positive = ref_series[ref_series > 0]
        if not len(ref_positive) or average <= 0:
            continue
        ref_average = float(ref_positive.mean())
        scale = average / ref_average
        if scale >= config.healthy_ratio:
            points += config.healthy_ratio_points
            reasons.append(f"{scale:.1f}x {name} (expected >= {config.healthy_ratio:g}x)")
        elif scale >= config.margin_ratio:
            points += config.margin_ratio_points
            reasons.append(f"{scale:.1f}x {name}")
        elif scale < 1.0:
            points += config.inverted_ratio_penalty
            reasons.append(f"below {name} ({scale:.2f}x), ordering inverted")

    normalised = max(points, 0.0) / config.pattern_max if config.pattern_max else 0.0
    return min(normalised, 1.0) * config.pattern_weight, reasons, False


def context_score(
    index: int,
    headers: list[str],
    spec: FieldSpec,
    fields: list[FieldSpec],
    identity: FieldSpec,
    config: ResolverConfig,
) -> tuple[float, list[str]]:
    points = 0.0
    reasons: list[str] = []
    if index > 0 and looks_like_identity(headers[index - 1], identity):
        points += config.identity_neighbour_points
        reasons.append(f"follows identity-like header '{headers[index - 1]}'")
    if spec.companion_suffix and index + 1 < len(headers):
        following = headers[index + 1]
        if spec.companion_suffix.casefold() in header_tokens(following) and not marker_conflict(following, spec, fields):
            points += config.companion_points
            reasons.append(f"followed by companion header '{following}'")
    if spec.positional_offset is not None and spec.positional_offset == index:
        points += config.offset_points
        reasons.append(f"at the usual offset {index} from the data start")
    normalised = points / config.context_max if config.context_max else 0.0
    return min(normalised, 1.0) * config.context_weight, reasons


def score_candidate(
    index: int,
    headers: list[str],
    sample: pd.DataFrame,
    spec: FieldSpec,
    references: Mapping[str, list[float]],
    config: ResolverConfig,
) -> ColumnCandidate:
    fields = list(config.fields)
    identity = config.identity_field()
    header = headers[index]
    values = column_values(sample, index)

    semantic, semantic_reasons = semantic_score(header, spec, config)
    pattern, pattern_reasons, collided = pattern_score(values, spec, references, config)
    if collided:
        return ColumnCandidate(index=index, header=header, values=tuple(values), reasons=tuple(pattern_reasons))
    context, context_reasons = context_score(index, headers, spec, fields, identity, config)

    total = semantic + pattern + context
    reasons = semantic_reasons + pattern_reasons + context_reasons
    if not normalize_header(header) and total >= config.empty_header_min_score:
        total += config.empty_header_bonus
        reasons.append("empty header (merged-cell export)")
    return ColumnCandidate(
        index=index,
        header=header,
        values=tuple(values),
        score=total,
        confidence=min(max(total, 0.0) / 100.0, 1.0),
        reasons=tuple(reasons),
    )


def eligible_columns(
    headers: list[str],
    spec: FieldSpec,
    config: ResolverConfig,
    excluded: Collection[int] = (),
) -> list[int]:
    """Columns not already claimed and not owned by a different field's vocabulary."""
    fields = list(config.fields)
    return [
        index
        for index, header in enumerate(headers)
        if index not in excluded and foreign_owner(header, spec, fields) is None
    ]


def rank_candidates(
    headers: list[str],
    sample: pd.DataFrame,
    spec: FieldSpec,
    references: Mapping[str, list[float]],
    config: ResolverConfig,
    excluded: Collection[int] = (),
    expired: Callable[[], bool] | None = None,
) -> list[ColumnCandidate]:
    """Score eligible columns, best first. Ties keep the leftmost column."""
    candidates = []
    for index in eligible_columns(headers, spec, config, excluded):
        if expired is not None and expired():
            raise ResolutionTimedOut(f"Deadline passed while scoring candidates for {spec.name}")
        candidates.append(score_candidate(index, headers, sample, spec, references, config))
    return sorted(candidates, key=lambda candidate: (-candidate.score, candidate.index))
