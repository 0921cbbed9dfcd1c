# Overview: UTC timestamps for ledger rows and ISO-8601 parsing for as-of and date filters.

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """
    Current time as a naive UTC datetime; every stored timestamp uses this form.

    Whole seconds only, matching ``to_utc_z``, so a timestamp the API returned
    can be sent back as an inclusive ``as_of`` and still match its own row.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def _as_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an as-of boundary such as "2026-03-01T18:00:00Z".

    Blank input means "no boundary" and returns None. Offsets are converted
    to UTC; a value without an offset is taken to be UTC already. Raises
    ValueError for anything else.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text[-1] in "zZ":
        text = f"{text[:-1]}+00:00"
    return _as_naive_utc(datetime.fromisoformat(text))


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    text = (value or "").strip()
    return date.fromisoformat(text) if text else None


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize a stored timestamp as whole-second ISO-8601 ending in "Z"."""
    if dt is None:
        return None
    stamp = _as_naive_utc(dt).replace(microsecond=0)
    return f"{stamp.isoformat()}Z"
