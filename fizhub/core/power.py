"""
Activity / Power Signal
-----------------------
Active -> Idle after POWER_IDLE_TIMEOUT_SEC without activity,
Idle -> DeepSleep after a further POWER_DEEP_SLEEP_DELAY_SEC.

Any recorded activity forces Active immediately. The periodic check only ever
advances the state; it never wakes the hub up.
"""
from __future__ import annotations

import threading
from typing import Callable, List, Optional

from fizhub.observability.logging import log
from fizhub.settings import settings
from fizhub.utils.time import now_ms

ACTIVE = "Active"
IDLE = "Idle"
DEEP_SLEEP = "DeepSleep"

_RANK = {ACTIVE: 0, IDLE: 1, DEEP_SLEEP: 2}
_ORDER = (ACTIVE, IDLE, DEEP_SLEEP)

StateCallback = Callable[[str], None]


def compute_power_state(elapsed_ms: int, idle_timeout_ms: int, deep_sleep_delay_ms: int) -> str:
    if elapsed_ms >= idle_timeout_ms + deep_sleep_delay_ms:
        return DEEP_SLEEP
    if elapsed_ms >= idle_timeout_ms:
        return IDLE
    return ACTIVE


class PowerSignal:
    def __init__(
        self,
        *,
        idle_timeout_sec: Optional[float] = None,
        deep_sleep_delay_sec: Optional[float] = None,
        check_interval_sec: Optional[float] = None,
        clock: Callable[[], int] = now_ms,
    ):
        if idle_timeout_sec is None:
            idle_timeout_sec = settings.POWER_IDLE_TIMEOUT_SEC
        if deep_sleep_delay_sec is None:
            deep_sleep_delay_sec = settings.POWER_DEEP_SLEEP_DELAY_SEC
        if check_interval_sec is None:
            check_interval_sec = settings.POWER_CHECK_INTERVAL_SEC
        self.idle_timeout_ms = int(idle_timeout_sec * 1000)
        self.deep_sleep_delay_ms = int(deep_sleep_delay_sec * 1000)
        self.check_interval_sec = float(check_interval_sec)
        self._clock = clock
        self._lock = threading.Lock()
        self._state = ACTIVE
        self._last_activity = clock()
        self._observers: List[StateCallback] = []

    def on_state_change(self, callback: StateCallback) -> None:
        with self._lock:
            self._observers.append(callback)

    @property
    def state(self) -> str:
        with self._lock:
            return self._state

    @property
    def last_activity(self) -> int:
        with self._lock:
            return self._last_activity

    def record_activity(self) -> None:
        with self._lock:
            self._last_activity = self._clock()
            transitions = self._set_state(ACTIVE)
        self._notify(transitions)

    def wake_up(self) -> bool:
        """Leave DeepSleep. Returns False (and does nothing) in any other state."""
        with self._lock:
            if self._state != DEEP_SLEEP:
                return False
            self._last_activity = self._clock()
            transitions = self._set_state(ACTIVE)
        log(event="power_wake_up")
        self._notify(transitions)
        return True

    def check(self, now: Optional[int] = None) -> str:
        """Advance Active -> Idle -> DeepSleep according to elapsed inactivity."""
        with self._lock:
            now = self._clock() if now is None else now
            target = compute_power_state(
                now - self._last_activity, self.idle_timeout_ms, self.deep_sleep_delay_ms
            )
            transitions: List[str] = []
            # Step through intermediate states so observers see Idle before DeepSleep
            while _RANK[target] > _RANK[self._state]:
                transitions += self._set_state(_ORDER[_RANK[self._state] + 1])
            state = self._state
        self._notify(transitions)
        return state

    def run_ticker(self, stop_event: threading.Event) -> None:
        log(event="power_ticker_started", intervalSec=self.check_interval_sec)
        while not stop_event.wait(self.check_interval_sec):
            self.check()
        log(event="power_ticker_stopped")

    def _set_state(self, state: str) -> List[str]:
        if self._state == state:
            return []
        self._state = state
        return [state]

    def _notify(self, transitions: List[str]) -> None:
        if not transitions:
            return
        with self._lock:
            observers = list(self._observers)
        for state in transitions:
            log(event="power_state_changed", powerState=state)
            for callback in observers:
                try:
                    callback(state)
                except Exception as e:
                    log(event="power_observer_failed", errorType=type(e).__name__, error=str(e)[:300])
