"""
Recorder stand-in. Audio capture itself happens elsewhere; this object holds
the recording lifecycle and emits FINISHED when the recording is stopped,
either explicitly or after the configured maximum duration.
"""
from __future__ import annotations

import threading
from typing import Callable, List, Optional

from fizhub.observability.logging import log
from fizhub.settings import settings

IDLE = "idle"
RECORDING = "recording"
FINISHED = "finished"


class Recorder:
    def __init__(self, *, max_duration_sec: Optional[float] = None):
        if max_duration_sec is None:
            max_duration_sec = settings.RECORDING_MAX_DURATION_SEC
        self.max_duration_sec = float(max_duration_sec)
        self._lock = threading.Lock()
        self._state = IDLE
        self._timer: Optional[threading.Timer] = None
        self._observers: List[Callable[[str], None]] = []

    def on_state_change(self, callback: Callable[[str], None]) -> None:
        with self._lock:
            self._observers.append(callback)

    @property
    def state(self) -> str:
        with self._lock:
            return self._state

    def start_recording(self) -> None:
        with self._lock:
            if self._state == RECORDING:
                raise RuntimeError("recording already in progress")
            self._state = RECORDING
            if self.max_duration_sec > 0:
                self._timer = threading.Timer(self.max_duration_sec, self._on_max_duration)
                self._timer.daemon = True
                self._timer.start()
        log(event="recording_started", maxDurationSec=self.max_duration_sec)
        self._notify(RECORDING)

    def stop_recording(self, *, notify: bool = True) -> bool:
        """Finish the current recording. Returns False if nothing was recording."""
        with self._lock:
            if self._state != RECORDING:
                return False
            self._state = FINISHED
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        log(event="recording_finished", notified=notify)
        if notify:
            self._notify(FINISHED)
        return True

    def _on_max_duration(self) -> None:
        log(event="recording_max_duration_reached", maxDurationSec=self.max_duration_sec)
        self.stop_recording()

    def _notify(self, state: str) -> None:
        with self._lock:
            observers = list(self._observers)
        for callback in observers:
            try:
                callback(state)
            except Exception as e:
                log(event="recorder_observer_failed", errorType=type(e).__name__, error=str(e)[:300])
