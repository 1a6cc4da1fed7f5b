"""Formatting helpers for CLI output."""

from datetime import datetime, timezone
from typing import Optional

_UNITS = (
    (86400, "day"),
    (3600, "hour"),
    (60, "minute"),
)


def format_time_ago(timestamp: Optional[str], now: Optional[datetime] = None) -> str:
    """Render an ISO timestamp relative to now, e.g. "3 hours ago".

    Args:
        timestamp: ISO 8601 string, "Z" suffix allowed. None gives "Never".
        now: Reference time (defaults to current UTC time).
    """
    if not timestamp:
        return "Never"

    then = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    if then.tzinfo is None:
        then = then.replace(tzinfo=timezone.utc)
    seconds = ((now or datetime.now(timezone.utc)) - then).total_seconds()

    for size, unit in _UNITS:
        if seconds >= size:
            count = int(seconds // size)
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return "Just now"
