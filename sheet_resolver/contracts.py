"""Versioned contract for the JSON report produced by an ingest run."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sheet_resolver.models import IngestResult

CONTRACT_VERSIONS = {
    "sheet_resolver.ingest": "1.0.0",
}
SCHEMA_VERSION = "1.0.0"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, str]:
    version = CONTRACT_VERSIONS[name]
    return {"name": name, "version": version}


def build_run_summary(
    *,
    tool: str,
    source: str,
    status: str = "ok",
    output_path: Path | None = None,
    metrics: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "tool": tool,
        "status": status,
        "generated_at": utc_now_iso(),
        "source": source,
        "output_file": str(output_path) if output_path else None,
        "warnings_count": len(warnings or []),
        "warnings": list(warnings or []),
        "metrics": metrics or {},
    }


def result_status(result: IngestResult) -> str:
    if result.diagnostics.timed_out:
        return "timed_out"
    if result.diagnostics.has_warnings():
        return "warnings"
    return "ok"


def build_ingest_report(
    result: IngestResult,
    *,
    source: str,
    tool_version: str,
    output_path: Path | None = None,
) -> dict[str, Any]:
    diagnostics = result.diagnostics
    warnings = [
        issue["plain_english"]
        for issue in diagnostics.issues
        if issue["severity"] in {"warning", "critical"}
    ]
    methods: dict[str, int] = {}
    for resolution in diagnostics.fields.values():
        methods[resolution.method] = methods.get(resolution.method, 0) + 1
    return {
        "contract": build_contract("sheet_resolver.ingest"),
        "schema_version": SCHEMA_VERSION,
        "tool_version": tool_version,
        "run_summary": build_run_summary(
            tool="sheet-resolver",
            source=source,
            status=result_status(result),
            output_path=output_path,
            metrics={
                "accepted_records": result.summary.accepted,
                "skipped_rows": result.summary.skipped_total,
                "resolution_methods": methods,
                "issues": len(diagnostics.issues),
                "aggregate_validated": result.summary.validated,
            },
            warnings=warnings,
        ),
        **result.to_dict(),
    }
