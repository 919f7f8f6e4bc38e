"""Timestamps as GitLab sends them"""
from datetime import datetime, timezone
from typing import Optional


def normalize_utc_naive(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to UTC tz-naive (safe for comparisons)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_gitlab_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse REST (``2024-01-02T03:04:05.000Z``) and webhook (``2024-01-02 03:04:05 UTC``) timestamps."""
    if not value:
        return None
    text = value.strip().replace("Z", "+00:00")
    if text.endswith(" UTC"):
        text = text[: -len(" UTC")] + "+00:00"
    return normalize_utc_naive(datetime.fromisoformat(text))
