"""
In-process Counters & Latency Snapshot
--------------------------------------
Lightweight counters/timers for the hub, consumed by /admin/metrics.
Nothing here survives a restart; the hub keeps no persistent state.
"""
from __future__ import annotations
import threading
import time
from collections import deque
from typing import Deque, Dict, List, Tuple

K_TAP_ACCEPTED = "taps:accepted"
K_TAP_REJECTED = "taps:rejected"
K_VAL_ATT = "validation:attempts"
K_VAL_OK = "validation:succeeded"
K_VAL_FAIL = "validation:failed"
K_MSG_DROPPED = "messages:dropped"
K_DEV_DEMOTED = "devices:demoted"

_MAX_SAMPLES = 500  # cap to bound percentile computation cost

_lock = threading.Lock()
_counters: Dict[str, int] = {}
_validation_latencies: Deque[int] = deque(maxlen=_MAX_SAMPLES)
_started_at = int(time.time())


def _percentile(data: List[float], p: float) -> float:
    """Deterministic percentile (nearest-rank on sorted data)."""
    if not data:
        return 0.0
    d = sorted(data)
    k = max(1, int(round(p * len(d))))
    return float(d[k - 1])


def _incr(key: str, by: int = 1) -> None:
    with _lock:
        _counters[key] = _counters.get(key, 0) + by


def increment_tap_accepted() -> None:
    _incr(K_TAP_ACCEPTED)

def increment_tap_rejected() -> None:
    _incr(K_TAP_REJECTED)

def increment_validation_attempt() -> None:
    _incr(K_VAL_ATT)

def increment_validation_succeeded() -> None:
    _incr(K_VAL_OK)

def increment_validation_failed() -> None:
    _incr(K_VAL_FAIL)

def increment_message_dropped() -> None:
    _incr(K_MSG_DROPPED)

def increment_devices_demoted(count: int) -> None:
    if count > 0:
        _incr(K_DEV_DEMOTED, count)

def record_validation_latency(ms: int) -> None:
    try:
        ms = int(ms)
    except (TypeError, ValueError):
        return
    with _lock:
        _validation_latencies.append(ms)


def _p50_p95(latencies_s: List[float]) -> Tuple[float, float]:
    if not latencies_s:
        return 0.0, 0.0
    return _percentile(latencies_s, 0.50), _percentile(latencies_s, 0.95)


def get_metrics_snapshot() -> dict:
    with _lock:
        counters = dict(_counters)
        lat_s = [v / 1000.0 for v in _validation_latencies]

    p50, p95 = _p50_p95(lat_s)
    attempts = counters.get(K_VAL_ATT, 0)
    ok = counters.get(K_VAL_OK, 0)
    rate = (ok / attempts) * 100.0 if attempts > 0 else 0.0

    return {
        "taps_accepted": counters.get(K_TAP_ACCEPTED, 0),
        "taps_rejected": counters.get(K_TAP_REJECTED, 0),
        "validation_attempts": attempts,
        "validation_succeeded": ok,
        "validation_failed": counters.get(K_VAL_FAIL, 0),
        "validation_success_rate": round(rate, 3),
        "p50_validation_latency": round(p50, 3),
        "p95_validation_latency": round(p95, 3),
        "messages_dropped": counters.get(K_MSG_DROPPED, 0),
        "devices_demoted": counters.get(K_DEV_DEMOTED, 0),
        "uptime_seconds": int(time.time()) - _started_at,
        "snapshot_at": int(time.time()),
    }


def reset_metrics() -> None:
    with _lock:
        _counters.clear()
        _validation_latencies.clear()
