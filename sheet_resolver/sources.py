"""
Source acquisition: everything that happens before tokenization.

Reads local files (delimited text decoded via chardet, or xlsx/xlsm
flattened through openpyxl) and fetches public URLs with a bounded
timeout and at most one retry. The resolver core never imports this
module.
"""

from __future__ import annotations

import re
import time
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qs, urlparse

import chardet
import requests
from openpyxl import load_workbook

from sheet_resolver.errors import SourceFetchError

TEXT_FORMATS = {".csv", ".tsv", ".txt"}
WORKBOOK_FORMATS = {".xlsx", ".xlsm"}
ALL_FORMATS = TEXT_FORMATS | WORKBOOK_FORMATS

DEFAULT_TIMEOUT = 30.0
MAX_REMOTE_FILE_MB = 25
MAX_REMOTE_FILE_BYTES = MAX_REMOTE_FILE_MB * 1024 * 1024
RETRY_BACKOFF_SECONDS = 1.0
ACCEPT_HEADER = "text/csv, text/plain;q=0.9, */*;q=0.5"


def detect_encoding(raw: bytes) -> str:
    result = chardet.detect(raw[:200_000])
    return result.get("encoding") or "utf-8"


def decode_bytes(raw: bytes, preferred_encoding: Optional[str] = None) -> str:
    """
    Decode raw bytes line-by-line.

    Each line tries UTF-8, then the detected encoding, then latin-1, and
    finally CP1252 with replacement, so one bad line never spoils the rest.
    """
    preferred_encoding = preferred_encoding or detect_encoding(raw)
    decoded_lines: list[str] = []
    for raw_line in raw.split(b"\n"):
        decoded: str | None = None
        for enc in ("utf-8", preferred_encoding, "latin-1"):
            if not enc:
                continue
            try:
                decoded = raw_line.decode(enc)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        decoded_lines.append(decoded.replace("\x00", ""))
    return "\n".join(decoded_lines)


def read_source(path: Path) -> str:
    path = Path(path)
    if not path.exists():
        raise SourceFetchError(f"File not found: {path}")
    suffix = path.suffix.lower()
    if suffix not in TEXT_FORMATS:
        raise SourceFetchError(
            f"Unsupported text format '{suffix or '[none]'}'. Use {', '.join(sorted(TEXT_FORMATS))} "
            f"or read workbooks with read_workbook_rows()."
        )
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise SourceFetchError(f"Could not read {path}: {exc}") from exc
    return decode_bytes(raw)


def _cell_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def read_workbook_rows(path: Path, sheet_name: Optional[str] = None) -> list[list[str]]:
    """Cached cell values of one worksheet as rows of strings (the active sheet by default)."""
    path = Path(path)
    if path.suffix.lower() not in WORKBOOK_FORMATS:
        raise SourceFetchError(f"Not a workbook: {path}")
    try:
        workbook = load_workbook(path, read_only=True, data_only=True)
    except (OSError, KeyError, ValueError) as exc:
        raise SourceFetchError(f"Could not open workbook {path}: {exc}") from exc
    try:
        if sheet_name is not None:
            if sheet_name not in workbook.sheetnames:
                raise SourceFetchError(
                    f"Sheet '{sheet_name}' not found. Available: {', '.join(workbook.sheetnames)}"
                )
            worksheet = workbook[sheet_name]
        else:
            worksheet = workbook.active
        return [[_cell_text(value) for value in row] for row in worksheet.iter_rows(values_only=True)]
    finally:
        workbook.close()


def is_url(value: str) -> bool:
    return urlparse(value.strip()).scheme in {"http", "https"}


def normalize_source_url(raw_url: str) -> str:
    """Rewrite spreadsheet share links to a direct CSV download."""
    parsed = urlparse(raw_url.strip())
    if parsed.scheme not in {"http", "https"}:
        raise SourceFetchError("URL must start with http:// or https://")

    host = parsed.netloc.lower()
    query = parse_qs(parsed.query, keep_blank_values=True)
    if host == "docs.google.com":
        sheet_match = re.search(r"/spreadsheets/d/([^/]+)", parsed.path)
        if sheet_match:
            gid = query.get("gid", [None])[0]
            if gid is None:
                fragment = parse_qs(parsed.fragment)
                gid = fragment.get("gid", ["0"])[0]
            return f"https://docs.google.com/spreadsheets/d/{sheet_match.group(1)}/export?format=csv&gid={gid}"
    return raw_url.strip()


def _download(url: str, timeout: float) -> bytes:
    response = requests.get(
        url,
        timeout=timeout,
        allow_redirects=True,
        stream=True,
        headers={"Accept": ACCEPT_HEADER},
    )
    try:
        response.raise_for_status()
        content_length = response.headers.get("Content-Length")
        if content_length:
            try:
                declared_size = int(content_length)
            except ValueError:
                declared_size = None
            if declared_size and declared_size > MAX_REMOTE_FILE_BYTES:
                raise SourceFetchError(f"Remote file is larger than {MAX_REMOTE_FILE_MB} MB.")

        chunks: list[bytes] = []
        downloaded = 0
        for chunk in response.iter_content(chunk_size=1024 * 1024):
            if not chunk:
                continue
            downloaded += len(chunk)
            if downloaded > MAX_REMOTE_FILE_BYTES:
                raise SourceFetchError(f"Remote file is larger than {MAX_REMOTE_FILE_MB} MB.")
            chunks.append(chunk)
        return b"".join(chunks)
    finally:
        response.close()


def _retryable(exc: requests.RequestException) -> bool:
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        return exc.response.status_code >= 500
    return False


def fetch_source(url: str, *, timeout: float = DEFAULT_TIMEOUT, retries: int = 1) -> str:
    """Fetch a public sheet as text. Connection errors, timeouts and 5xx are retried ``retries`` times."""
    target = normalize_source_url(url)
    attempts = max(retries, 0) + 1
    for attempt in range(1, attempts + 1):
        try:
            raw = _download(target, timeout)
            break
        except requests.RequestException as exc:
            if attempt < attempts and _retryable(exc):
                time.sleep(RETRY_BACKOFF_SECONDS)
                continue
            raise SourceFetchError(f"Could not fetch {target}: {exc}") from exc
    if not raw.strip():
        raise SourceFetchError(f"Fetched an empty body from {target}")
    return decode_bytes(raw)
