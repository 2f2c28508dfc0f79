"""
Resolver configuration: the logical field vocabulary plus every tunable
threshold used by the resolution stages.

Defaults describe the monthly leaders production export (volume = ANP,
premium = FYP, commission = FYC). A JSON config file can override any
scalar, replace the field list, or append aliases to existing fields.
The `agents` profile swaps in the per-advisor export vocabulary.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields as dataclass_fields, replace
from pathlib import Path
from typing import Any

from sheet_resolver.errors import ConfigError

FIELD_KINDS = ("identity", "numeric", "text")
DERIVED_OPS = ("positive", "ratio")
SUPPORTED_CONFIG_SUFFIXES = {".json", ".yml", ".yaml"}


@dataclass(frozen=True)
class FieldSpec:
    name: str
    aliases: tuple[str, ...]
    kind: str = "numeric"
    # Token prefixes that identify the field family ("fyc" claims "FYCMTD").
    markers: tuple[str, ...] = ()
    reference: str | None = None
    expects_greater: bool = False
    positional_offset: int | None = None
    companion_suffix: str | None = None
    required: bool = False
    default: str = ""

    @property
    def targets(self) -> tuple[str, ...]:
        return self.aliases + self.markers


@dataclass(frozen=True)
class DerivedMetric:
    name: str
    op: str
    inputs: tuple[str, ...]


DEFAULT_FIELDS = (
    FieldSpec(
        name="name",
        kind="identity",
        aliases=(
            "LEADER_UM_NAME",
            "LEADER UM NAME",
            "LEADERUMNAME",
            "UM NAME",
            "LEADER NAME",
            "AGENT NAME",
            "ADVISOR NAME",
            "NAME",
        ),
        markers=("name", "leader", "agent", "advisor"),
        positional_offset=0,
        required=True,
    ),
    FieldSpec(
        name="unit",
        kind="text",
        aliases=("UNIT", "UNIT NAME", "UM UNIT", "TEAM"),
        markers=("unit",),
        default="Unknown Unit",
    ),
    FieldSpec(
        name="comm_mtd",
        aliases=("COMM_MTD", "FYC_MTD", "FYC MTD", "FYCMTD", "FYC", "COMMISSION MTD", "COMMISSION"),
        markers=("fyc", "comm"),
        required=True,
    ),
    FieldSpec(
        name="vol_mtd",
        aliases=("VOL_MTD", "ANP_MTD", "ANP MTD", "ANPMTD", "ANP", "VOLUME MTD", "VOLUME"),
        markers=("anp", "vol"),
        reference="comm_mtd",
        expects_greater=True,
        positional_offset=2,
        companion_suffix="ytd",
        required=True,
    ),
    FieldSpec(
        name="prem_mtd",
        aliases=("PREM_MTD", "FYP_MTD", "FYPI_MTD", "FYP MTD", "FYPMTD", "FYPI", "TOTAL FYP MTD", "PREMIUM MTD"),
        markers=("fyp", "prem"),
        reference="comm_mtd",
        expects_greater=True,
    ),
    FieldSpec(
        name="cases_mtd",
        aliases=("CASES_MTD", "CASECNT_MTD", "CASECNT MTD", "CASECNT", "CASE COUNT", "CASES"),
        markers=("case",),
        positional_offset=70,
    ),
    FieldSpec(
        name="recruits_mtd",
        aliases=("RECRUITS_MTD", "NEW_RECRUIT", "NEW RECRUITS", "NEW_RECRUITS", "RECRUITS", "RECRUIT"),
        markers=("recruit",),
    ),
    FieldSpec(
        name="vol_ytd",
        aliases=("VOL_YTD", "ANP_YTD", "ANP YTD", "ANPYTD", "VOLUME YTD"),
        markers=("anp", "vol"),
        reference="vol_mtd",
        expects_greater=True,
        positional_offset=3,
    ),
    FieldSpec(
        name="prem_ytd",
        aliases=("PREM_YTD", "FYP_YTD", "FYPI_YTD", "FYP YTD", "FYPYTD", "PREMIUM YTD"),
        markers=("fyp", "prem"),
        reference="prem_mtd",
        expects_greater=True,
        positional_offset=19,
    ),
    FieldSpec(
        name="comm_ytd",
        aliases=("COMM_YTD", "FYC_YTD", "FYC YTD", "FYCYTD", "COMMISSION YTD"),
        markers=("fyc", "comm"),
        reference="comm_mtd",
        expects_greater=True,
        positional_offset=98,
    ),
)

DEFAULT_DERIVED = (
    DerivedMetric(name="producing", op="positive", inputs=("vol_mtd",)),
    DerivedMetric(name="commission_rate", op="ratio", inputs=("comm_mtd", "prem_mtd")),
    DerivedMetric(name="volume_to_commission", op="ratio", inputs=("vol_mtd", "comm_mtd")),
)

# First cells that mark a row as a repeated header (exact, or as a prefix
# followed by a separator). Total words are routed separately.
HEADER_WORDS = (
    "agency_name",
    "leader_um_name",
    "leader um name",
    "leaderumname",
    "anp_mtd",
    "anpmtd",
    "fypi_mtd",
    "fypmtd",
    "fyc_mtd",
    "fycmtd",
    "casecnt_mtd",
    "casecnt",
    "manpowercn",
    "manpower count",
    "#",
    "no.",
    "number",
    "id",
    "row",
)

TOTAL_WORDS = ("grand total", "sub-total", "subtotal", "total", "summary")

# Per-advisor export: one row per agent with the owning UM as a text column.
AGENT_FIELDS = (
    FieldSpec(
        name="name",
        kind="identity",
        aliases=("AGENT NAME", "AGENT_NAME", "AGENTNAME", "ADVISOR NAME", "NAME", "AGENT"),
        markers=("agent", "advisor"),
        positional_offset=0,
        required=True,
    ),
    FieldSpec(
        name="um_name",
        kind="text",
        aliases=("UM NAME", "UM_NAME", "UMNAME", "LEADER NAME", "LEADER_NAME", "LEADERNAME"),
        markers=("um", "leader"),
        default="Unknown",
    ),
    FieldSpec(
        name="unit",
        kind="text",
        aliases=("UNIT", "UNIT NAME", "UNIT_NAME", "UNITNAME"),
        markers=("unit",),
        default="Unknown Unit",
    ),
    FieldSpec(
        name="vol_mtd",
        aliases=("ANP_MTD", "ANP MTD", "ANPMTD", "ANP", "VOL_MTD"),
        markers=("anp", "vol"),
        required=True,
    ),
    FieldSpec(
        name="prem_mtd",
        aliases=("FYP MTD SP at 10%", "FYP_MTD", "FYP MTD", "FYPMTD", "FYP", "PREM_MTD"),
        markers=("fyp", "prem"),
    ),
    FieldSpec(
        name="cases_mtd",
        aliases=("CASECNT_MTD", "CASECNT MTD", "CASES MTD", "CASES_MTD", "CASECNT", "CASES", "CASECNT_YTD"),
        markers=("case",),
    ),
)

AGENT_DERIVED = (DerivedMetric(name="producing", op="positive", inputs=("vol_mtd",)),)

AGENT_HEADER_WORDS = (
    "agent name",
    "agent_name",
    "agentname",
    "um name",
    "um_name",
    "anp_mtd",
    "fyp_mtd",
    "casecnt_mtd",
    "#",
    "no.",
    "number",
    "id",
)


@dataclass(frozen=True)
class ResolverConfig:
    fields: tuple[FieldSpec, ...] = DEFAULT_FIELDS
    derived: tuple[DerivedMetric, ...] = DEFAULT_DERIVED
    delimiter: str | None = ","

    # header location
    anchor_fields: tuple[str, ...] = ("name", "vol_mtd")
    header_scan_rows: int = 20
    min_anchor_column: int = 0
    fallback_header_row: int | None = 5
    fallback_confidence: float = 0.5

    # row classification
    header_words: tuple[str, ...] = HEADER_WORDS
    total_words: tuple[str, ...] = TOTAL_WORDS
    header_repeat_ratio: float = 0.5

    # conflict validation
    epsilon: float = 1.0
    conflict_match_ratio: float = 0.9
    ordering_violation_ratio: float = 0.5

    # heuristic scoring
    sample_size: int = 200
    semantic_weight: float = 40.0
    pattern_weight: float = 35.0
    context_weight: float = 25.0
    containment_bonus: float = 0.2
    positive_ratio_tiers: tuple[tuple[float, float], ...] = ((0.7, 20.0), (0.5, 10.0))
    magnitude_tiers: tuple[tuple[float, float], ...] = ((10000.0, 15.0), (1000.0, 10.0))
    healthy_ratio: float = 2.0
    healthy_ratio_points: float = 25.0
    margin_ratio: float = 1.5
    margin_ratio_points: float = 15.0
    inverted_ratio_penalty: float = -20.0
    cv_range: tuple[float, float] = (0.1, 2.0)
    cv_points: float = 10.0
    identity_neighbour_points: float = 5.0
    companion_points: float = 15.0
    offset_points: float = 10.0
    empty_header_bonus: float = 10.0
    empty_header_min_score: float = 30.0

    # adoption policy
    adopt_floor: float = 0.3
    override_confidence: float = 0.7
    override_min_delta: float = 1000.0
    heuristic_override: bool = True
    positional_confidence: float = 0.4

    # aggregate cross-validation
    aggregate_tolerance_ratio: float = 0.02

    def __post_init__(self) -> None:
        validate_config(self)

    @property
    def pattern_max(self) -> float:
        return (
            max((points for _, points in self.positive_ratio_tiers), default=0.0)
            + max((points for _, points in self.magnitude_tiers), default=0.0)
            + self.healthy_ratio_points
            + self.cv_points
        )

    @property
    def context_max(self) -> float:
        return self.identity_neighbour_points + self.companion_points + self.offset_points

    def field(self, name: str) -> FieldSpec:
        for spec in self.fields:
            if spec.name == name:
                return spec
        raise KeyError(name)

    def identity_field(self) -> FieldSpec:
        return next(spec for spec in self.fields if spec.kind == "identity")

    def numeric_fields(self) -> list[FieldSpec]:
        return [spec for spec in self.fields if spec.kind == "numeric"]

    def text_fields(self) -> list[FieldSpec]:
        return [spec for spec in self.fields if spec.kind == "text"]

    def resolution_order(self) -> list[FieldSpec]:
        """Identity and text fields first, then numeric fields with every reference ahead of its dependents."""
        ordered = [spec for spec in self.fields if spec.kind != "numeric"]
        done: set[str] = set()
        pending = self.numeric_fields()
        while pending:
            for spec in pending:
                if spec.reference is None or spec.reference in done:
                    ordered.append(spec)
                    done.add(spec.name)
                    pending.remove(spec)
                    break
            else:
                raise ConfigError("Reference cycle between fields: " + ", ".join(spec.name for spec in pending))
        return ordered


def validate_config(config: ResolverConfig) -> None:
    names = [spec.name for spec in config.fields]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate field names: {', '.join(duplicates)}")
    identities = [spec.name for spec in config.fields if spec.kind == "identity"]
    if len(identities) != 1:
        raise ConfigError(f"Exactly one identity field is required, found {len(identities)}")
    numeric = {spec.name for spec in config.fields if spec.kind == "numeric"}
    for spec in config.fields:
        if spec.kind not in FIELD_KINDS:
            raise ConfigError(f"Field '{spec.name}' has unknown kind '{spec.kind}'")
        if not spec.aliases:
            raise ConfigError(f"Field '{spec.name}' needs at least one alias")
        if spec.reference is not None:
            if spec.kind != "numeric" or spec.reference not in numeric:
                raise ConfigError(f"Field '{spec.name}' references unknown numeric field '{spec.reference}'")
            if spec.reference == spec.name:
                raise ConfigError(f"Field '{spec.name}' cannot reference itself")
        if spec.positional_offset is not None and spec.positional_offset < 0:
            raise ConfigError(f"Field '{spec.name}' has a negative positional offset")
    for metric in config.derived:
        if metric.op not in DERIVED_OPS:
            raise ConfigError(f"Derived metric '{metric.name}' has unknown op '{metric.op}'")
        expected_inputs = 1 if metric.op == "positive" else 2
        if len(metric.inputs) != expected_inputs:
            raise ConfigError(f"Derived metric '{metric.name}' needs {expected_inputs} input(s)")
        unknown = [name for name in metric.inputs if name not in numeric]
        if unknown:
            raise ConfigError(f"Derived metric '{metric.name}' uses unknown fields: {', '.join(unknown)}")
    for name in config.anchor_fields:
        if name not in names:
            raise ConfigError(f"Anchor field '{name}' is not configured")
    if config.header_scan_rows < 1:
        raise ConfigError("header_scan_rows must be at least 1")
    if config.sample_size < 1:
        raise ConfigError("sample_size must be at least 1")
    if config.epsilon <= 0:
        raise ConfigError("epsilon must be positive")
    if not 0.0 <= config.adopt_floor <= config.override_confidence <= 1.0:
        raise ConfigError("Expected 0 <= adopt_floor <= override_confidence <= 1")
    if config.delimiter is not None and len(config.delimiter) != 1:
        raise ConfigError("delimiter must be a single character or null for auto-detection")
    config.resolution_order()


PROFILES = ("leaders", "agents")


def profile_config(name: str) -> ResolverConfig:
    """Default config for a named sheet layout."""
    if name == "leaders":
        return ResolverConfig()
    if name == "agents":
        return ResolverConfig(
            fields=AGENT_FIELDS,
            derived=AGENT_DERIVED,
            header_words=AGENT_HEADER_WORDS,
            fallback_header_row=1,
        )
    raise ConfigError(f"Unknown profile '{name}'. Choose from: {', '.join(PROFILES)}")


def _field_from_dict(payload: dict[str, Any]) -> FieldSpec:
    known = {item.name for item in dataclass_fields(FieldSpec)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ConfigError(f"Unknown field keys: {', '.join(unknown)}")
    data = dict(payload)
    for key in ("aliases", "markers"):
        if key in data:
            data[key] = tuple(data[key])
    try:
        return FieldSpec(**data)
    except TypeError as exc:
        raise ConfigError(f"Invalid field definition: {exc}") from exc


def _derived_from_dict(payload: dict[str, Any]) -> DerivedMetric:
    try:
        return DerivedMetric(name=payload["name"], op=payload["op"], inputs=tuple(payload["inputs"]))
    except KeyError as exc:
        raise ConfigError(f"Derived metric is missing key {exc}") from exc


def config_from_dict(payload: dict[str, Any], base: ResolverConfig | None = None) -> ResolverConfig:
    data = dict(payload)
    profile = data.pop("profile", None)
    if profile is not None:
        base = profile_config(profile)
    base = base or ResolverConfig()
    extra_aliases = data.pop("extra_aliases", {}) or {}
    known = {item.name for item in dataclass_fields(ResolverConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")

    overrides: dict[str, Any] = {}
    for key, value in data.items():
        if key == "fields":
            overrides[key] = tuple(_field_from_dict(item) for item in value)
        elif key == "derived":
            overrides[key] = tuple(_derived_from_dict(item) for item in value)
        elif key in {"positive_ratio_tiers", "magnitude_tiers"}:
            overrides[key] = tuple((float(threshold), float(points)) for threshold, points in value)
        elif isinstance(value, list):
            overrides[key] = tuple(value)
        else:
            overrides[key] = value

    config = replace(base, **overrides)
    if extra_aliases:
        field_names = {spec.name for spec in config.fields}
        missing = sorted(set(extra_aliases) - field_names)
        if missing:
            raise ConfigError(f"extra_aliases names unknown fields: {', '.join(missing)}")
        config = replace(
            config,
            fields=tuple(
                replace(spec, aliases=spec.aliases + tuple(extra_aliases.get(spec.name, ())))
                for spec in config.fields
            ),
        )
    return config


def load_config(path: Path, base: ResolverConfig | None = None) -> ResolverConfig:
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config not found: {path}")
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_CONFIG_SUFFIXES:
        raise ConfigError("Config must be .json, .yml, or .yaml")
    if suffix in {".yml", ".yaml"}:
        raise ConfigError("YAML configs are not supported yet. Use JSON for now.")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Could not read config: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError("Config root must be a JSON object.")
    return config_from_dict(payload, base)


def config_to_dict(config: ResolverConfig) -> dict[str, Any]:
    return json.loads(json.dumps(asdict(config)))


