from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Optional

# Graph emits up to 7 fractional digits; datetime accepts at most 6.
_EXCESS_FRACTION = re.compile(r"(\.\d{6})\d+")


def ensure_utc(value: datetime) -> datetime:
    """
    Return `value` as an aware UTC datetime.

    Naive values are assumed to already be in UTC; this is also how SQLite
    hands back timestamps stored from aware UTC datetimes.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_utc(value: str) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string (Graph style, `Z` suffix allowed)
    and normalize to UTC.

    Returns None if parsing fails.
    """
    cleaned = _EXCESS_FRACTION.sub(r"\1", value.strip().replace("Z", "+00:00"))
    try:
        dt = datetime.fromisoformat(cleaned)
    except ValueError:
        return None
    return ensure_utc(dt)
