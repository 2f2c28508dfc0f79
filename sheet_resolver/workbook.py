from __future__ import annotations

from pathlib import Path

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from sheet_resolver.models import HEURISTIC, POSITIONAL_FALLBACK, UNRESOLVED, IngestResult

# Accent fills for the resolution trail
FILL_GUESSED = PatternFill("solid", fgColor="FFF2CC")   # soft yellow
FILL_UNRESOLVED = PatternFill("solid", fgColor="FCE4D6")   # soft orange

METHOD_FILLS = {
    HEURISTIC: FILL_GUESSED,
    POSITIONAL_FALLBACK: FILL_GUESSED,
    UNRESOLVED: FILL_UNRESOLVED,
}


def _header_font() -> Font:
    return Font(bold=True, color="FFFFFF")


def _header_fill(hex_color: str) -> PatternFill:
    return PatternFill("solid", fgColor=hex_color)


def _style_sheet(ws, col_widths: list[int], header_color: str):
    """Apply bold header, color, frozen row, and column widths."""
    fill = _header_fill(header_color)
    font = _header_font()
    for cell in ws[1]:
        cell.font = font
        cell.fill = fill
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=False)
    ws.freeze_panes = "A2"
    for i, width in enumerate(col_widths, start=1):
        ws.column_dimensions[get_column_letter(i)].width = width


def _infer_col_widths(rows: list[list], min_width: int = 10, max_width: int = 60, sample: int = 300) -> list[int]:
    if not rows:
        return []
    widths = [max(min_width, min(max_width, len(str(v)) + 2)) for v in rows[0]]
    for row in rows[1 : sample + 1]:
        for i, val in enumerate(row):
            widths[i] = max(widths[i], min(max_width, len(str(val)) + 2))
    return widths


def _append_rows(ws, rows: list[list]) -> None:
    for row in rows:
        ws.append(row)


def write_workbook(result: IngestResult, output_path: Path) -> Path:
    """Write Records, Summary and Resolution Trail sheets for one ingest result."""
    output_path = Path(output_path)
    wb = openpyxl.Workbook()

    # Sheet 1: one row per accepted record
    frame = result.to_frame()
    ws1 = wb.active
    ws1.title = "Records"
    record_rows = [list(frame.columns)] + [
        [value.item() if hasattr(value, "item") else value for value in row]
        for row in frame.itertuples(index=False, name=None)
    ]
    _append_rows(ws1, record_rows)
    _style_sheet(ws1, _infer_col_widths(record_rows), "4CAF50")   # green

    # Sheet 2: totals, counts and skipped rows
    ws2 = wb.create_sheet("Summary")
    summary = result.summary
    summary_rows: list[list] = [["metric", "value"]]
    if result.diagnostics.title:
        summary_rows.append(["title", result.diagnostics.title])
    summary_rows.append(["accepted_records", summary.accepted])
    summary_rows.append(["manpower", summary.manpower])
    summary_rows.extend([f"total_{name}", total] for name, total in summary.totals.items())
    summary_rows.extend([f"count_{name}", count] for name, count in summary.counts.items())
    summary_rows.extend([f"skipped_{reason}", count] for reason, count in summary.skipped.items())
    summary_rows.append(["aggregate_validated", summary.validated])
    _append_rows(ws2, summary_rows)
    _style_sheet(ws2, _infer_col_widths(summary_rows), "1565C0")   # blue

    # Sheet 3: per-field resolution trail
    ws3 = wb.create_sheet("Resolution Trail")
    data_start = result.header_map.data_start
    trail_rows: list[list] = [["field", "method", "source_column", "header", "confidence", "rationale", "warnings"]]
    for name, resolution in result.diagnostics.fields.items():
        trail_rows.append(
            [
                name,
                resolution.method,
                None if resolution.index is None else resolution.index + data_start,
                resolution.header or "",
                round(resolution.confidence, 4),
                resolution.rationale,
                "; ".join(resolution.warnings),
            ]
        )
    _append_rows(ws3, trail_rows)
    _style_sheet(ws3, _infer_col_widths(trail_rows), "E53935")   # red
    for row_number, (_, resolution) in enumerate(result.diagnostics.fields.items(), start=2):
        fill = METHOD_FILLS.get(resolution.method)
        if fill is not None:
            ws3.cell(row_number, 2).fill = fill
    for cell in ws3["F"][1:]:
        cell.alignment = Alignment(wrap_text=True, vertical="top")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(output_path)
    return output_path
