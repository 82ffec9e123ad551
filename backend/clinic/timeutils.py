# clinic/timeutils.py
#
# Small helpers for the two clocks the system stores: epoch milliseconds
# (consultation dates, audit entries, session starts) and ISO-8601 UTC strings.
# Guatemala observes no daylight saving, so a fixed offset is used.

import time
from datetime import datetime, timedelta, timezone

GT_TZ = timezone(timedelta(hours=-6), "America/Guatemala")


def now_ms() -> int:
    return int(time.time() * 1000)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def ms_to_gt(ms) -> datetime:
    return datetime.fromtimestamp(int(ms) / 1000, tz=GT_TZ)


def format_gt(ms=None, fmt: str = "%d/%m/%Y %H:%M:%S") -> str:
    """Formats an epoch-ms value (default: now) in Guatemala local time."""
    if ms is None:
        ms = now_ms()
    return ms_to_gt(ms).strftime(fmt)


def parse_to_ms(value) -> int:
    """Accepts epoch ms (int/Decimal/str digits) or an ISO string."""
    if value is None:
        return 0
    if isinstance(value, str) and not value.isdigit():
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp() * 1000)
    return int(value)
