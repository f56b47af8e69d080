from __future__ import annotations

import os
from datetime import datetime, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# Reference timezone for the daily rollover.
PUZZLE_TIMEZONE = os.getenv("PUZZLE_TIMEZONE", "UTC").strip() or "UTC"


def resolve_timezone(name: Optional[str] = None) -> tzinfo:
    name = (name or PUZZLE_TIMEZONE).strip()
    if name.upper() in {"UTC", "Z"}:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"unknown timezone: {name!r}") from exc


def day_key(now: Optional[datetime] = None, tz: Optional[str] = None) -> str:
    """ISO calendar date (YYYY-MM-DD) of `now` in the reference timezone.

    Naive datetimes are taken as UTC. The key changes exactly at 00:00 in
    the reference timezone.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(resolve_timezone(tz)).date().isoformat()
