"""Formatting helpers for quota figures and reset times."""

import math
import re
import time
from datetime import datetime, timezone
from typing import Optional, Union

_FRACTION_RE = re.compile(r"\.(\d+)")
_EPOCH_MS_THRESHOLD = 10_000_000_000


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives (Python's round() is banker's)."""
    return int(math.floor(value + 0.5))


def parse_timestamp(value: str) -> Optional[float]:
    """Parse an ISO-8601 timestamp to epoch seconds. Naive values are UTC."""
    text = value.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    # fromisoformat accepts at most microseconds
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def format_time_until(target: Union[str, int, float, None], now: Optional[float] = None) -> str:
    """Relative duration until ``target``.

    Strings are ISO timestamps; numbers are epoch seconds, or milliseconds
    when too large to be seconds. Returns "Ready" once the target has passed
    and "-" when it cannot be parsed.

    >>> format_time_until(3600 + 20 * 60 + 5, now=0)
    '1h 20m'
    """
    if isinstance(target, bool) or target is None:
        return "-"
    if isinstance(target, str):
        target_seconds = parse_timestamp(target)
        if target_seconds is None:
            return "-"
    elif isinstance(target, (int, float)):
        if not math.isfinite(target):
            return "-"
        target_seconds = target if target < _EPOCH_MS_THRESHOLD else target / 1000
    else:
        return "-"

    now = time.time() if now is None else now
    return format_duration(target_seconds - now)


def format_duration(seconds: float) -> str:
    """"2d 3h", "4h 20m", "15m", or "Ready" when not positive."""
    if seconds <= 0:
        return "Ready"
    days = int(seconds // 86400)
    hours = int((seconds % 86400) // 3600)
    minutes = int((seconds % 3600) // 60)
    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def format_day_hour(target_epoch_seconds: float, now: Optional[float] = None) -> Optional[str]:
    """Coarse "Xd Yh" / "Yh 0m" label used by Kiro; None once passed."""
    now = time.time() if now is None else now
    remaining = target_epoch_seconds - now
    if remaining <= 0:
        return None
    days = int(remaining // 86400)
    hours = int((remaining % 86400) // 3600)
    return f"{days}d {hours}h" if days > 0 else f"{hours}h 0m"
