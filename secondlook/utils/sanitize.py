"""Field cleaners for connector rows.

Every value that reaches a normalized table passes through one of these.
They never raise: an unusable value comes back as None and the caller
decides whether that rejects the row.
"""

import math
import re
from datetime import date, datetime, timezone

_NON_ALNUM = re.compile(r"[^0-9a-z]")
_NON_MONEY = re.compile(r"[^0-9.\-]")
_WS = re.compile(r"\s+")

POSTAL_PREFIX_LEN = 3


def sanitize_city(value) -> str | None:
    """Trim and lower-case a city name."""
    if value is None:
        return None
    city = _WS.sub(" ", str(value)).strip().lower()
    return city[:120] or None


def sanitize_postal(value) -> str | None:
    """Reduce a postal code to its lower-cased alphanumeric prefix."""
    if value is None:
        return None
    cleaned = _NON_ALNUM.sub("", str(value).lower())
    return cleaned[:POSTAL_PREFIX_LEN] or None


def sanitize_money(value) -> float | None:
    """Parse a money amount ("$1,250.00", 1250, "1250") into a float.

    Returns None when nothing numeric is left or the result is not finite.
    Negative amounts are returned as-is so callers can reject them.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        amount = float(value)
    else:
        cleaned = _NON_MONEY.sub("", str(value))
        if not cleaned:
            return None
        try:
            amount = float(cleaned)
        except ValueError:
            return None
    if not math.isfinite(amount):
        return None
    return amount


def sanitize_job_type(value) -> str | None:
    if value is None:
        return None
    job_type = _WS.sub(" ", str(value)).strip().lower()
    return job_type[:80] or None


def clean_id(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text[:128] or None


def parse_datetime(value) -> datetime | None:
    """Parse an ISO-8601 string, date or datetime into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
