import threading

from fizhub.observability.logging import log

# LED ring feedback states
OFF = "off"
IDLE = "idle"
WAITING = "waiting"
SUCCESS = "success"
ERROR = "error"


class Indicator:
    """Holds the LED ring state; rendering the animation is left to the ring firmware."""

    def __init__(self):
        self._lock = threading.Lock()
        self._state = OFF

    @property
    def state(self) -> str:
        with self._lock:
            return self._state

    def set_state(self, state: str) -> None:
        with self._lock:
            prev, self._state = self._state, state
        if prev != state:
            log(event="indicator_state", fromState=prev, toState=state)
