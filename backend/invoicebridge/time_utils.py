from __future__ import annotations

import re
from datetime import date, datetime, time, timezone
from typing import Any, Optional


SQL_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
SQL_DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$")
DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt.replace(tzinfo=None)

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def coerce_datetime(value: Any) -> Optional[datetime]:
    """
    Best-effort conversion of stored timestamp values.

    Accepts datetime, date (midnight), "YYYY-MM-DD HH:MM:SS", "YYYY-MM-DD" and
    ISO-8601. Empty values and the zero date "0000-00-00 ..." return None.
    Raises ValueError for anything else.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    s = str(value).strip()
    if not s or s.startswith("0000-00-00"):
        return None
    if SQL_DATETIME_RE.match(s):
        return datetime.strptime(s, SQL_DATETIME_FORMAT)
    if DATE_ONLY_RE.match(s):
        return datetime.strptime(s, "%Y-%m-%d")
    return parse_iso_datetime(s)


def format_sql_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Render as 'YYYY-MM-DD HH:MM:SS' (the host store's timestamp format)."""
    if dt is None:
        return None
    return dt.strftime(SQL_DATETIME_FORMAT)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
