# parsers.py
# Tolerant cell parsers shared by the normaliser, matcher and history modules:
# amounts with currency noise, dates in user-chosen formats or the ERP
# "/Date(millis+zzzz)/" encoding, day deltas and currency labels for messages.
from __future__ import annotations

import math
import re
import warnings
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import pandas as pd

__all__ = [
    "DEFAULT_DATE_FORMAT",
    "parse_amount",
    "parse_date",
    "to_strptime",
    "days_between",
    "format_currency",
]

DEFAULT_DATE_FORMAT = "DD/MM/YYYY"

_RE_NOT_NUMERIC = re.compile(r"[^\d.\-]")
_RE_FLOAT_PREFIX = re.compile(r"^-?(?:\d+(?:\.\d*)?|\.\d+)")
_RE_EPOCH_DATE = re.compile(r"^/Date\((-?\d+)([+-]\d{4})?\)/$")
_RE_ISO_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")

# longest tokens first so "MMMM" is not read as "MM" + "MM"
_FORMAT_TOKENS = [
    ("YYYY", "%Y"),
    ("MMMM", "%B"),
    ("MMM", "%b"),
    ("YY", "%y"),
    ("MM", "%m"),
    ("DD", "%d"),
    ("HH", "%H"),
    ("mm", "%M"),
    ("ss", "%S"),
    ("M", "%m"),
    ("D", "%d"),
    ("H", "%H"),
]
_RE_FORMAT_TOKEN = re.compile("|".join(re.escape(token) for token, _ in _FORMAT_TOKENS))
_TOKEN_MAP = dict(_FORMAT_TOKENS)


def parse_amount(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
        return 0.0 if math.isnan(number) else number
    if isinstance(value, str):
        cleaned = _RE_NOT_NUMERIC.sub("", value)
        match = _RE_FLOAT_PREFIX.match(cleaned)
        if not match:
            return 0.0
        return float(match.group(0))
    return 0.0


def to_strptime(date_format: str) -> str:
    """Translate a ``DD/MM/YYYY`` style format into ``strptime`` directives."""

    return _RE_FORMAT_TOKEN.sub(lambda m: _TOKEN_MAP[m.group(0)], date_format)


def _parse_epoch(text: str) -> Optional[str]:
    match = _RE_EPOCH_DATE.match(text)
    if not match:
        return None
    try:
        moment = datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    return moment.strftime("%Y-%m-%d")


def _parse_with_format(text: str, date_format: str) -> Optional[str]:
    if not date_format:
        return None
    try:
        return datetime.strptime(text, to_strptime(date_format)).strftime("%Y-%m-%d")
    except ValueError:
        return None


def _parse_free_form(value: Any) -> Optional[str]:
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", UserWarning)
            parsed = pd.to_datetime(value, errors="coerce")
    except (TypeError, ValueError, OverflowError):
        return None
    if parsed is None or pd.isna(parsed):
        return None
    return parsed.strftime("%Y-%m-%d")


def parse_date(value: Any, date_format: str = DEFAULT_DATE_FORMAT) -> Optional[str]:
    """Normalise *value* to ``YYYY-MM-DD`` or return ``None``.

    Order of attempts: the ERP ``/Date(millis)/`` encoding, an ISO prefix, the
    caller supplied format and finally pandas' permissive parser. Numbers are
    read as epoch milliseconds.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (datetime, date)):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return None
        try:
            parsed = pd.to_datetime(value, unit="ms", errors="coerce")
        except (OverflowError, ValueError):
            return None
        return None if pd.isna(parsed) else parsed.strftime("%Y-%m-%d")

    text = str(value).strip()
    if text == "":
        return None

    epoch = _parse_epoch(text)
    if epoch is not None:
        return epoch
    if text.startswith("/Date("):
        return None

    if _RE_ISO_PREFIX.match(text):
        return text[:10]

    return _parse_with_format(text, date_format) or _parse_free_form(text)


def days_between(first: Optional[str], second: Optional[str]) -> Optional[int]:
    if not first or not second:
        return None
    a = pd.to_datetime(first, errors="coerce")
    b = pd.to_datetime(second, errors="coerce")
    if pd.isna(a) or pd.isna(b):
        return None
    return abs(a - b).days


def format_currency(amount: Any) -> str:
    if amount is None or amount == "":
        return "N/A"
    try:
        number = float(amount)
    except (TypeError, ValueError):
        return "N/A"
    if math.isnan(number):
        return "N/A"
    sign = "-" if number < 0 else ""
    return f"{sign}${abs(number):,.2f}"
