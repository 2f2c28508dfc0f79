"""
Conflict Validator.

A prospective column is rejected when its sampled values equal a reference
field's values within epsilon (the same column read twice). It is flagged,
but kept, when the expected ordering (value >= reference) is inverted on
most informative rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Sequence

from sheet_resolver.config import FieldSpec, ResolverConfig


@dataclass(frozen=True)
class ConflictCheck:
    accepted: bool
    suspicious: bool = False
    reference: str | None = None
    reasons: tuple[str, ...] = field(default_factory=tuple)


def collision_counts(values: Sequence[float], reference: Sequence[float], epsilon: float) -> tuple[int, int]:
    """(rows equal within epsilon, informative rows). Rows where both sides are zero carry no signal."""
    informative = 0
    matched = 0
    for value, other in zip(values, reference):
        if abs(value) < epsilon and abs(other) < epsilon:
            continue
        informative += 1
        if abs(value - other) < epsilon:
            matched += 1
    return matched, informative


def values_collide(values: Sequence[float], reference: Sequence[float], config: ResolverConfig) -> bool:
    matched, informative = collision_counts(values, reference, config.epsilon)
    return informative > 0 and matched / informative >= config.conflict_match_ratio


def ordering_violations(values: Sequence[float], reference: Sequence[float], epsilon: float) -> tuple[int, int]:
    informative = 0
    violations = 0
    for value, other in zip(values, reference):
        if abs(value) < epsilon and abs(other) < epsilon:
            continue
        informative += 1
        if value < other - epsilon:
            violations += 1
    return violations, informative


def check_assignment(
    spec: FieldSpec,
    values: Sequence[float],
    references: Mapping[str, Sequence[float]],
    config: ResolverConfig,
) -> ConflictCheck:
    """Validate sampled ``values`` for ``spec`` against every resolved reference field."""
    reasons: list[str] = []
    suspicious_ref: str | None = None
    for name, reference in references.items():
        matched, informative = collision_counts(values, reference, config.epsilon)
        if informative and matched / informative >= config.conflict_match_ratio:
            return ConflictCheck(
                accepted=False,
                reference=name,
                reasons=(
                    f"values equal {name} within {config.epsilon:g} on {matched}/{informative} sampled rows",
                ),
            )
        if spec.expects_greater:
            violations, informative = ordering_violations(values, reference, config.epsilon)
            if informative and violations / informative > config.ordering_violation_ratio:
                suspicious_ref = suspicious_ref or name
                reasons.append(f"below {name} on {violations}/{informative} sampled rows")
    return ConflictCheck(
        accepted=True,
        suspicious=suspicious_ref is not None,
        reference=suspicious_ref,
        reasons=tuple(reasons),
    )


def row_warnings(
    spec: FieldSpec,
    value: float,
    reference_values: Mapping[str, float],
    epsilon: float,
) -> list[tuple[str, str]]:
    """Per-record (issue id, message) pairs for one resolved field value."""
    warnings: list[tuple[str, str]] = []
    for name, other in reference_values.items():
        if abs(value) < epsilon and abs(other) < epsilon:
            continue
        if abs(value - other) < epsilon:
            warnings.append(("conflict_detected", f"{spec.name} equals {name} ({other:g}) within {epsilon:g}"))
        elif spec.expects_greater and value < other:
            warnings.append(("ordering_violated", f"{spec.name} ({value:g}) is below {name} ({other:g})"))
    return warnings
