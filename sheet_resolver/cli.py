from __future__ import annotations

import argparse
import json
import sys
import time
from dataclasses import replace
from pathlib import Path
from typing import Any

from sheet_resolver import __version__ as TOOL_VERSION
from sheet_resolver.assembler import ingest_rows, ingest_text
from sheet_resolver.config import PROFILES, ResolverConfig, config_to_dict, load_config, profile_config
from sheet_resolver.contracts import build_ingest_report
from sheet_resolver.errors import ISSUE_DEFINITIONS, ConfigError, SheetResolverError, SourceFetchError
from sheet_resolver.models import IngestResult
from sheet_resolver.sources import (
    DEFAULT_TIMEOUT,
    WORKBOOK_FORMATS,
    fetch_source,
    is_url,
    read_source,
    read_workbook_rows,
)
from sheet_resolver.workbook import write_workbook

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_INGEST_ISSUES = 3
EXIT_PARTIAL = 6

DELIMITER_CHOICES = {
    "auto": None,
    ",": ",",
    ";": ";",
    "tab": "\t",
    "pipe": "|",
}


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class SheetResolverArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def write_text(path: Path, payload: str) -> None:
    ensure_parent(path)
    path.write_text(payload, encoding="utf-8")


def write_json(path: Path, payload: Any) -> None:
    write_text(path, json_dumps(payload))


def remove_generated_at(value: Any) -> Any:
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            if key == "generated_at":
                result[key] = "1970-01-01T00:00:00Z"
            else:
                result[key] = remove_generated_at(item)
        return result
    if isinstance(value, list):
        return [remove_generated_at(item) for item in value]
    return value


def safe_output_path(path: Path) -> Path:
    if path.exists():
        raise CliError(f"Refusing to overwrite existing output: {path}", EXIT_COMMAND_ERROR)
    return path


def classify_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, (ConfigError, SourceFetchError)):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, (SheetResolverError, UnicodeDecodeError, ValueError)):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


def exit_code_for_result(result: IngestResult) -> int:
    if result.diagnostics.timed_out:
        return EXIT_PARTIAL
    if result.diagnostics.has_warnings():
        return EXIT_INGEST_ISSUES
    return EXIT_SUCCESS


EXPLAIN_RULES = {
    "field_unresolved": {
        "description": "No column could be resolved for a logical field; its values default to 0.",
        "evidence": "No alias matched, no heuristic candidate cleared the adoption floor, and the positional offset was unusable.",
        "recovered": True,
        "disable_hint": "Add the sheet's header text for the field under extra_aliases in the config.",
    },
    "row_rejected": {
        "description": "Rows below the header were skipped and counted instead of becoming records.",
        "evidence": "The row was blank, repeated the header, was a total row, or had an empty identity cell.",
        "recovered": True,
        "disable_hint": "Check the listed rows; only missing-identity rows usually need attention.",
    },
    "conflict_detected": {
        "description": "A column's values equal a reference field's values, so it looks like the same column read twice.",
        "evidence": "Sampled values matched the reference column within epsilon on most informative rows.",
        "recovered": True,
        "disable_hint": "Tune epsilon or conflict_match_ratio if the two quantities really can coincide.",
    },
    "ordering_violated": {
        "description": "A field that should be at least its reference field is smaller on most rows.",
        "evidence": "Value < reference (beyond epsilon) on more than ordering_violation_ratio of informative rows.",
        "recovered": True,
        "disable_hint": "Clear expects_greater on the field if the ordering does not hold for your sheets.",
    },
    "heuristic_override": {
        "description": "A suspicious exact-name column was replaced by a high-confidence heuristic candidate.",
        "evidence": "Heuristic confidence above override_confidence and sample means differ by more than override_min_delta.",
        "recovered": True,
        "disable_hint": "Set heuristic_override to false to always keep exact-name matches.",
    },
    "exact_match_kept": {
        "description": "A suspicious exact-name column was kept because no alternative was convincing.",
        "evidence": "The ordering check failed but no candidate cleared the override bar.",
        "recovered": True,
        "disable_hint": "Review the column; lower override_confidence to let the heuristic replace it.",
    },
    "header_fallback": {
        "description": "No anchor header was found, so the configured fallback row was used as the header.",
        "evidence": "No row in the scan window held an alias of an anchor field.",
        "recovered": True,
        "disable_hint": "Add the sheet's identity header text to the identity field's aliases.",
    },
    "aggregate_mismatch": {
        "description": "A total row disagrees with the sum of the accepted records.",
        "evidence": "Reported total differs from the running total by more than the aggregate tolerance.",
        "recovered": True,
        "disable_hint": "Check for rows skipped as missing identity, or raise aggregate_tolerance_ratio.",
    },
    "derived_metric_defaulted": {
        "description": "A derived metric was set to 0 because one of its input fields is unresolved.",
        "evidence": "An input of the metric has resolution method 'unresolved'.",
        "recovered": True,
        "disable_hint": "Resolve the input field, or drop the metric from the config.",
    },
    "resolution_timed_out": {
        "description": "The resolution deadline passed; the remaining fields were left unresolved.",
        "evidence": "The clock passed the caller's deadline while sampling or scoring candidates.",
        "recovered": False,
        "disable_hint": "Raise --deadline or lower sample_size for very wide sheets.",
    },
}


def build_parser() -> argparse.ArgumentParser:
    parser = SheetResolverArgumentParser(
        prog="sheet-resolver",
        description="Resolve loosely structured spreadsheet exports into validated per-entity records.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Ingest a sheet and report records, totals and diagnostics.")
    ingest.add_argument("input", help="Input file path or public URL")
    ingest.add_argument("--config", help="JSON config path (.yml/.yaml rejected honestly for now)")
    ingest.add_argument("--profile", choices=PROFILES, help="Field vocabulary preset (default: leaders)")
    ingest.add_argument("--sheet", dest="sheet_name", help="Worksheet name for .xlsx/.xlsm inputs")
    ingest.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    ingest.add_argument("--output", help="Write the JSON report to this path")
    ingest.add_argument("--records-csv", dest="records_csv", help="Write accepted records as CSV")
    ingest.add_argument("--workbook", help="Write a styled .xlsx with records, summary and resolution trail")
    ingest.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help="Network timeout in seconds for URL inputs")
    ingest.add_argument("--deadline", type=float, help="Seconds allowed for column resolution before a partial result")
    ingest.add_argument("--delimiter", choices=sorted(DELIMITER_CHOICES), help="Field delimiter for text inputs (overrides the config)")
    ingest.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    ingest.add_argument("-v", "--verbose", action="store_true", help="Print the per-field resolution trail")

    config = subparsers.add_parser("config", help="Generate configuration.")
    config_subparsers = config.add_subparsers(dest="config_command", required=True)
    config_init = config_subparsers.add_parser("init", help="Write the default config as JSON.")
    config_init.add_argument("--path", default="sheet-resolver.json", help="Config output path")
    config_init.add_argument("--profile", choices=PROFILES, default="leaders", help="Field vocabulary preset")

    explain = subparsers.add_parser("explain", help="Explain a diagnostics issue id.")
    explain.add_argument("issue_id", help="Issue identifier")
    explain.add_argument("--json", action="store_true", help="Write machine JSON to stdout")

    subparsers.add_parser("version", help="Print version")
    return parser


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def render_ingest_text(result: IngestResult, source: str, *, verbose: bool = False) -> str:
    diagnostics = result.diagnostics
    summary = result.summary
    header = diagnostics.header
    lines = [
        "sheet-resolver ingest",
        f"Source: {source}",
        f"Title: {diagnostics.title or '[none]'}",
        f"Header row: {header.row_number} (data starts at column {header.data_start}"
        + (", fallback" if header.fallback else "")
        + ")",
        f"Accepted records: {summary.accepted}",
        f"Skipped rows: {summary.skipped_total}",
    ]
    lines.extend(f"  {reason}: {count}" for reason, count in summary.skipped.items())
    lines.append("Totals:")
    lines.extend(f"  {name}: {total:,.2f}" for name, total in summary.totals.items())
    for name, count in summary.counts.items():
        lines.append(f"Count {name}: {count}")
    if summary.checks:
        lines.append(f"Total rows validated: {'yes' if summary.validated else 'no'}")
    unresolved = [name for name, item in diagnostics.fields.items() if not item.resolved]
    if unresolved:
        lines.append("Unresolved fields: " + ", ".join(unresolved))
    if diagnostics.timed_out:
        lines.append("Resolution timed out: partial result")
    if verbose:
        lines.append("Resolution trail:")
        for name, item in diagnostics.fields.items():
            column = "-" if item.index is None else str(item.index + header.data_start)
            lines.append(f"- {name}: {item.method} col={column} confidence={item.confidence:.2f} ({item.rationale})")
            lines.extend(f"    ! {warning}" for warning in item.warnings)
    flagged = [issue for issue in diagnostics.issues if issue["severity"] != "info"]
    if flagged:
        lines.append("Warnings:")
        lines.extend(f"- [{issue['id']}] {issue['plain_english']}" for issue in flagged)
    return "\n".join(lines) + "\n"


def load_ingest_result(args: argparse.Namespace, config: ResolverConfig) -> IngestResult:
    deadline = time.monotonic() + args.deadline if args.deadline is not None else None
    if is_url(args.input):
        text = fetch_source(args.input, timeout=args.timeout)
        return ingest_text(text, config, deadline=deadline)

    input_path = Path(args.input)
    if not input_path.exists():
        raise CliError(f"File not found: {input_path}", EXIT_COMMAND_ERROR)
    if input_path.suffix.lower() in WORKBOOK_FORMATS:
        rows = read_workbook_rows(input_path, args.sheet_name)
        return ingest_rows(rows, config, deadline=deadline)
    if args.sheet_name:
        raise CliError("--sheet applies to .xlsx/.xlsm inputs only.", EXIT_COMMAND_ERROR)
    return ingest_text(read_source(input_path), config, deadline=deadline)


def resolve_config(args: argparse.Namespace) -> ResolverConfig:
    """Profile first, then the config file over it, then an explicit --delimiter."""
    base = profile_config(args.profile) if args.profile else ResolverConfig()
    config = load_config(Path(args.config), base) if args.config else base
    if args.delimiter is not None:
        config = replace(config, delimiter=DELIMITER_CHOICES[args.delimiter])
    return config


def run_ingest(args: argparse.Namespace) -> int:
    try:
        config = resolve_config(args)

        output_path = safe_output_path(Path(args.output)) if args.output else None
        records_path = safe_output_path(Path(args.records_csv)) if args.records_csv else None
        workbook_path = safe_output_path(Path(args.workbook)) if args.workbook else None

        result = load_ingest_result(args, config)
        report = remove_generated_at(
            build_ingest_report(result, source=args.input, tool_version=TOOL_VERSION, output_path=output_path)
        )
        if output_path is not None:
            write_json(output_path, report)
            emit_human(f"Report written: {output_path}", quiet=args.quiet or args.json)
        if records_path is not None:
            ensure_parent(records_path)
            result.to_frame().to_csv(records_path, index=False)
            emit_human(f"Records written: {records_path}", quiet=args.quiet or args.json)
        if workbook_path is not None:
            write_workbook(result, workbook_path)
            emit_human(f"Workbook written: {workbook_path}", quiet=args.quiet or args.json)

        if args.json:
            maybe_emit_json_stdout(report, True)
        else:
            emit_human(render_ingest_text(result, args.input, verbose=args.verbose).rstrip(), quiet=args.quiet)
        return exit_code_for_result(result)
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_config_init(args: argparse.Namespace) -> int:
    config_path = Path(args.path)
    if config_path.exists():
        eprint(f"Refusing to overwrite existing config: {config_path}")
        return EXIT_COMMAND_ERROR
    write_json(config_path, config_to_dict(profile_config(args.profile)))
    emit_human(f"Config written: {config_path}")
    return EXIT_SUCCESS


def run_explain(args: argparse.Namespace) -> int:
    rule = EXPLAIN_RULES.get(args.issue_id)
    if rule is None:
        eprint(f"Unknown issue id: {args.issue_id}")
        return EXIT_COMMAND_ERROR
    definition = ISSUE_DEFINITIONS[args.issue_id]
    payload = {
        "issue_id": args.issue_id,
        "label": definition["label"],
        "severity": definition["severity"],
        "description": rule["description"],
        "evidence": rule["evidence"],
        "recovered": rule["recovered"],
        "disable_hint": rule["disable_hint"],
    }
    if args.json:
        maybe_emit_json_stdout(payload, True)
    else:
        print(
            "\n".join(
                [
                    f"Issue: {args.issue_id} ({payload['label']}, {payload['severity']})",
                    f"What it means: {payload['description']}",
                    f"What triggers it: {payload['evidence']}",
                    f"Recovered automatically: {'yes' if payload['recovered'] else 'no'}",
                    f"How to avoid it: {payload['disable_hint']}",
                ]
            )
        )
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        if args.command == "ingest":
            return run_ingest(args)
        if args.command == "config":
            if args.config_command == "init":
                return run_config_init(args)
        if args.command == "explain":
            return run_explain(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
