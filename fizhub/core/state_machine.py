"""
Bonding Session State Machine
-----------------------------
Initial -> CollectingTaps -> Validating -> Recording -> Complete

One session per process, re-armed by reset(). Every event is applied under a
single exclusive lock; phase observers are invoked after the lock has been
released, from a copy of the observer list, so an observer may call back
into the machine (read collected_uids(), post a follow-up event).

Error events are forwarded to error observers and never move the phase: a
session stuck in Validating/Recording stays there until reset().
"""
from __future__ import annotations

import hashlib
import threading
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from fizhub.core.errors import DuplicateUID, StaleSession, WrongPhase
from fizhub.observability.logging import log
from fizhub.settings import settings
from fizhub.store.models import SessionSnapshot
from fizhub.utils.time import now_ms, utc_rfc3339

# Phases
INITIAL = "Initial"
COLLECTING_TAPS = "CollectingTaps"
VALIDATING = "Validating"
RECORDING = "Recording"
COMPLETE = "Complete"

PHASES = (INITIAL, COLLECTING_TAPS, VALIDATING, RECORDING, COMPLETE)

# Events
EVENT_NFC_TAP = "nfc_tap"
EVENT_UID_VALIDATED = "uid_validated"
EVENT_RECORDING_STARTED = "recording_started"
EVENT_RECORDING_COMPLETE = "recording_complete"
EVENT_ERROR = "error"

# Number of distinct taps that closes collection
REQUIRED_TAPS = 3
BOND_ID_LENGTH = 16

PhaseCallback = Callable[[str], None]
ErrorCallback = Callable[[Exception], None]


def generate_bond_id(uids: Sequence[str], timestamp: Optional[str] = None) -> str:
    """
    First 16 hex chars of SHA-256 over "<UTC RFC3339 time>-<uid sequence>".
    The same uid set bonded at two different times yields two different ids.
    """
    ts = timestamp or utc_rfc3339()
    combined = f"{ts}-[{' '.join(uids)}]"
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()[:BOND_ID_LENGTH]


class BondingStateMachine:
    def __init__(self, *, clock: Callable[[], int] = now_ms, bond_id_fn=generate_bond_id):
        self._lock = threading.Lock()
        self._clock = clock
        self._bond_id_fn = bond_id_fn
        self._phase = INITIAL
        self._collected_uids: List[str] = []
        self._validated_accounts: List[str] = []
        self._bond_id = ""
        self._last_event_at = 0
        # Bumped by every reset(); results carry the value they were requested under
        self._session_seq = 0
        self._validation_claimed = False
        self._subscribers: Dict[str, List[PhaseCallback]] = {}
        self._error_handlers: List[ErrorCallback] = []

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------
    def subscribe(self, phase: str, callback: PhaseCallback) -> None:
        if phase not in PHASES:
            raise ValueError(f"unknown phase: {phase}")
        with self._lock:
            self._subscribers.setdefault(phase, []).append(callback)

    def subscribe_error(self, handler: ErrorCallback) -> None:
        with self._lock:
            self._error_handlers.append(handler)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Initial -> CollectingTaps. Calling it again later has no effect."""
        with self._lock:
            if self._phase != INITIAL:
                return
            self._phase = COLLECTING_TAPS
            callbacks = self._callbacks_for(COLLECTING_TAPS)
        self._notify(COLLECTING_TAPS, callbacks, prev=INITIAL)

    def reset(self) -> None:
        with self._lock:
            prev = self._phase
            self._phase = COLLECTING_TAPS
            self._collected_uids = []
            self._validated_accounts = []
            self._bond_id = ""
            self._session_seq += 1
            self._validation_claimed = False
            self._last_event_at = self._clock()
            callbacks = self._callbacks_for(COLLECTING_TAPS)
        self._notify(COLLECTING_TAPS, callbacks, prev=prev)

    # ------------------------------------------------------------------
    # Event entry point
    # ------------------------------------------------------------------
    def handle_event(self, event: str, data=None, *, session_seq: Optional[int] = None) -> None:
        """
        Apply one event. Raises WrongPhase / DuplicateUID with the session left
        unchanged; raises ValueError for an unknown event.

        session_seq, when given, pins a validation result or error to the
        session it was requested for. After a reset() the result is stale:
        StaleSession is raised for results, stale errors are dropped.
        """
        if event == EVENT_ERROR:
            self._handle_error(data, session_seq)
            return

        with self._lock:
            prev = self._phase
            if event == EVENT_NFC_TAP:
                new_phase = self._apply_tap(data)
            elif event == EVENT_UID_VALIDATED:
                new_phase = self._apply_validated(data, session_seq)
            elif event == EVENT_RECORDING_STARTED:
                self._require(RECORDING)
                new_phase = None
            elif event == EVENT_RECORDING_COMPLETE:
                self._require(RECORDING)
                self._phase = new_phase = COMPLETE
            else:
                raise ValueError(f"unknown event: {event}")
            self._last_event_at = self._clock()
            callbacks = self._callbacks_for(new_phase) if new_phase else []

        if new_phase:
            self._notify(new_phase, callbacks, prev=prev)

    def tap_received(self, uid: str) -> None:
        self.handle_event(EVENT_NFC_TAP, uid)

    def validation_succeeded(self, accounts: Sequence[str], *, session_seq: Optional[int] = None) -> None:
        self.handle_event(EVENT_UID_VALIDATED, accounts, session_seq=session_seq)

    def recording_started(self) -> None:
        self.handle_event(EVENT_RECORDING_STARTED)

    def recording_completed(self) -> None:
        self.handle_event(EVENT_RECORDING_COMPLETE)

    def report_error(self, err: Exception, *, session_seq: Optional[int] = None) -> None:
        self.handle_event(EVENT_ERROR, err, session_seq=session_seq)

    def claim_validation(self) -> Optional[Tuple[int, List[str]]]:
        """
        Hand out the (session_seq, uids) pair to validate, once per session.
        Returns None outside Validating or when this session was already claimed.
        """
        with self._lock:
            if self._phase != VALIDATING or self._validation_claimed:
                return None
            self._validation_claimed = True
            return self._session_seq, list(self._collected_uids)

    # ------------------------------------------------------------------
    # Transition rules (lock held)
    # ------------------------------------------------------------------
    def _require(self, phase: str) -> None:
        if self._phase != phase:
            raise WrongPhase(phase, self._phase)

    def _apply_tap(self, uid: str) -> Optional[str]:
        self._require(COLLECTING_TAPS)
        if uid in self._collected_uids:
            raise DuplicateUID(uid)
        self._collected_uids.append(uid)
        if len(self._collected_uids) == REQUIRED_TAPS:
            self._phase = VALIDATING
            return VALIDATING
        return None

    def _apply_validated(self, accounts: Sequence[str], session_seq: Optional[int]) -> str:
        self._require(VALIDATING)
        if session_seq is not None and session_seq != self._session_seq:
            raise StaleSession(session_seq, self._session_seq)
        self._validated_accounts = list(accounts or [])
        self._bond_id = self._bond_id_fn(list(self._collected_uids))
        self._phase = RECORDING
        return RECORDING

    def _handle_error(self, err, session_seq: Optional[int]) -> None:
        if not isinstance(err, Exception):
            err = RuntimeError(str(err))
        with self._lock:
            current = self._session_seq
            stale = session_seq is not None and session_seq != current
            if not stale:
                self._last_event_at = self._clock()
            handlers = list(self._error_handlers)
            phase = self._phase
        if stale:
            log(event="stale_error_discarded", sessionSeq=session_seq, currentSeq=current, errorType=type(err).__name__)
            return
        log(event="session_error", phase=phase, errorType=type(err).__name__, error=str(err)[:300])
        for handler in handlers:
            try:
                handler(err)
            except Exception as e:
                log(event="error_observer_failed", errorType=type(e).__name__, error=str(e)[:300])

    # ------------------------------------------------------------------
    # Notification (lock released)
    # ------------------------------------------------------------------
    def _callbacks_for(self, phase: str) -> List[PhaseCallback]:
        return list(self._subscribers.get(phase, ()))

    def _notify(self, phase: str, callbacks: List[PhaseCallback], *, prev: str) -> None:
        log(event="phase_changed", fromPhase=prev, toPhase=phase, observers=len(callbacks))
        for callback in callbacks:
            try:
                callback(phase)
            except Exception as e:
                # A failing observer neither skips the rest nor undoes the transition
                log(
                    event="phase_observer_failed",
                    phase=phase,
                    errorType=type(e).__name__,
                    error=str(e)[:300],
                )

    # ------------------------------------------------------------------
    # Read projections
    # ------------------------------------------------------------------
    @property
    def phase(self) -> str:
        with self._lock:
            return self._phase

    @property
    def bond_id(self) -> str:
        with self._lock:
            return self._bond_id

    @property
    def session_seq(self) -> int:
        with self._lock:
            return self._session_seq

    def collected_uids(self) -> List[str]:
        with self._lock:
            return list(self._collected_uids)

    def validated_accounts(self) -> List[str]:
        with self._lock:
            return list(self._validated_accounts)

    def formatted_uids(self) -> List[str]:
        """Collected uids rendered as verification tap URLs."""
        base = settings.TAP_URL_BASE
        with self._lock:
            return [f"{base}{uid}" for uid in self._collected_uids]

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                phase=self._phase,
                collected_uids=list(self._collected_uids),
                validated_accounts=list(self._validated_accounts),
                bond_id=self._bond_id,
                last_event_at=self._last_event_at,
            )
