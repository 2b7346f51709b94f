import time
from datetime import datetime, timezone

def now_ms() -> int:
    return int(time.time() * 1000)

def utc_rfc3339(dt: datetime = None) -> str:
    """Second-precision UTC timestamp, e.g. 2024-05-01T12:00:00Z."""
    dt = dt or datetime.now(timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

def parse_timestamp_ms(ts) -> int:
    """
    Normalize timestamps to epoch milliseconds (int).
    Accepts:
    - int/float: treated as epoch ms (or seconds if suspiciously small)
    - ISO-8601 string: parsed via datetime.fromisoformat (supports trailing 'Z')
    Fallback: current time in ms, also for inf/nan and out-of-range values.
    """
    if ts is None or isinstance(ts, bool):
        return now_ms()
    try:
        if isinstance(ts, (int, float)):
            v = int(ts)
            # Readers report unix seconds; anything below 10^12 is not a ms value.
            return v * 1000 if 0 < v < 10**12 else v
        if isinstance(ts, str):
            s = ts.strip()
            if not s:
                return now_ms()
            if s.endswith("Z"):
                s = s[:-1] + "+00:00"
            dt = datetime.fromisoformat(s)
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return int(dt.timestamp() * 1000)
    except (OverflowError, ValueError, OSError):
        pass
    return now_ms()
