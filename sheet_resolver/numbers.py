from __future__ import annotations

import re

SENTINEL_NULLS = {
    "",
    "-",
    "--",
    "n/a",
    "na",
    "nan",
    "null",
    "none",
    "#n/a",
    "#value!",
    "#ref!",
    "#div/0!",
}

CURRENCY_CODE_RE = re.compile(r"^(USD|EUR|GBP|INR|PHP|JPY|CAD|AUD|SGD)|(USD|EUR|GBP|INR|PHP|JPY|CAD|AUD|SGD)$", re.I)
CURRENCY_SYMBOLS = ("$", "€", "£", "¥", "₹", "₱")
NUMBER_RE = re.compile(r"[+-]?\d+(?:\.\d+)?")


def parse_amount(value: object) -> float | None:
    """
    Parse a spreadsheet amount cell.

    Handles thousands separators, currency codes/symbols, parenthesised
    negatives and European decimals ("1.200,50"). Returns None when the
    cell is blank or not numeric.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).replace("\x00", "").strip()
    if text.lower() in SENTINEL_NULLS:
        return None

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1].strip()

    text = text.replace(" ", "")
    text = CURRENCY_CODE_RE.sub("", text)
    for symbol in CURRENCY_SYMBOLS:
        text = text.replace(symbol, "")

    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif text.count(",") == 1:
        left, right = text.split(",", 1)
        if len(right) == 3:
            text = left + right
        else:
            text = f"{left}.{right}"
    else:
        text = text.replace(",", "")

    if not NUMBER_RE.fullmatch(text):
        return None
    number = float(text)
    return -number if negative else number


def cell_amount(value: object) -> float:
    parsed = parse_amount(value)
    return 0.0 if parsed is None else parsed
