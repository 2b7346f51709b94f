import time
from typing import Optional, Sequence

import fizhub.observability.metrics as metrics
from fizhub.clients.validation import ValidationClient
from fizhub.core import power as pw
from fizhub.core import state_machine as sm
from fizhub.core.errors import (
    DuplicateUID,
    RecordingFailure,
    StaleSession,
    ValidationFailure,
    ValidationTransportError,
    WrongPhase,
)
from fizhub.core.power import PowerSignal
from fizhub.core.state_machine import BondingStateMachine
from fizhub.devices import indicator as led
from fizhub.devices import recorder as rec
from fizhub.devices.indicator import Indicator
from fizhub.devices.recorder import Recorder
from fizhub.observability.logging import log
from fizhub.store.device_registry import DeviceRegistry
from fizhub.utils.tasks import BackgroundTasks


def submit_tap(machine: BondingStateMachine, power: PowerSignal, uid: str, *, source: str = "local") -> None:
    """
    Feed one tap into the session. Activity is recorded even when the session
    rejects the tap. Raises WrongPhase / DuplicateUID to the caller.
    """
    power.record_activity()
    try:
        machine.tap_received(uid)
    except (WrongPhase, DuplicateUID) as e:
        metrics.increment_tap_rejected()
        log(event="tap_rejected", source=source, uid=uid, reason=e.kind, phase=machine.phase)
        raise
    metrics.increment_tap_accepted()
    log(event="tap_accepted", source=source, uid=uid, collected=len(machine.collected_uids()))


def _on_registry_tap(machine: BondingStateMachine, power: PowerSignal, device_id: str, uid: str) -> None:
    # Rejections are the reader's problem, not the transport's: log and move on.
    try:
        submit_tap(machine, power, uid, source=device_id or "unknown")
    except (WrongPhase, DuplicateUID):
        pass


def validate_collected(
    machine: BondingStateMachine,
    validator: ValidationClient,
    uids: Sequence[str],
    session_seq: Optional[int] = None,
) -> None:
    """
    Runs on a worker, outside the machine's lock. The outcome is delivered back
    through the normal event entry point, pinned to session_seq so a result
    that outlives a reset() cannot land on the next session.
    """
    metrics.increment_validation_attempt()
    start = time.time()
    log(event="validation_started", uids=list(uids))
    try:
        result = validator.validate_uids(uids)
    except ValidationTransportError as e:
        metrics.increment_validation_failed()
        machine.report_error(ValidationFailure(str(e)), session_seq=session_seq)
        return
    finally:
        metrics.record_validation_latency(int((time.time() - start) * 1000))

    if not result.valid:
        metrics.increment_validation_failed()
        log(event="validation_rejected", reason=result.reason)
        machine.report_error(ValidationFailure(result.reason or "validation rejected"), session_seq=session_seq)
        return

    metrics.increment_validation_succeeded()
    log(event="validation_succeeded", accounts=list(result.accounts))
    try:
        machine.validation_succeeded(result.accounts, session_seq=session_seq)
    except (WrongPhase, StaleSession) as e:
        # Session was reset while the request was in flight
        log(event="validation_result_discarded", reason=e.kind, sessionSeq=session_seq)


def _on_collecting(recorder: Recorder, indicator: Indicator) -> None:
    # A reset abandons the previous session's recording without completing anything
    if recorder.stop_recording(notify=False):
        log(event="recording_abandoned_on_reset")
    indicator.set_state(led.IDLE)


def _on_validating(machine, validator, indicator: Indicator, tasks: BackgroundTasks) -> None:
    claim = machine.claim_validation()
    if claim is None:
        # Reset already, or this session's request is out
        return
    session_seq, uids = claim
    indicator.set_state(led.WAITING)
    tasks.submit(validate_collected, machine, validator, uids, session_seq)


def _on_recording(machine: BondingStateMachine, recorder: Recorder, indicator: Indicator) -> None:
    indicator.set_state(led.SUCCESS)
    try:
        recorder.start_recording()
    except Exception as e:
        machine.report_error(RecordingFailure(f"recorder start failed: {e}"))
        return
    try:
        machine.recording_started()
    except WrongPhase as e:
        log(event="recording_start_ack_discarded", phase=e.actual)


def _on_recorder_state(machine: BondingStateMachine, state: str) -> None:
    if state != rec.FINISHED:
        return
    try:
        machine.recording_completed()
    except WrongPhase as e:
        log(event="recording_completion_discarded", phase=e.actual)


def _on_power_state(indicator: Indicator, state: str) -> None:
    if state == pw.DEEP_SLEEP:
        indicator.set_state(led.OFF)
    elif state == pw.ACTIVE:
        indicator.set_state(led.IDLE)


def _on_session_error(indicator: Indicator, err: Exception) -> None:
    indicator.set_state(led.ERROR)
    log(event="session_error_observed", errorType=type(err).__name__, error=str(err)[:300])


def wire_components(
    *,
    registry: DeviceRegistry,
    machine: BondingStateMachine,
    power: PowerSignal,
    validator: ValidationClient,
    recorder: Recorder,
    indicator: Indicator,
    tasks: BackgroundTasks,
) -> None:
    """Connect the components. Holds no state of its own beyond the subscriptions it registers."""
    registry.set_tap_handler(lambda device_id, uid, ts: _on_registry_tap(machine, power, device_id, uid))

    machine.subscribe(sm.VALIDATING, lambda phase: _on_validating(machine, validator, indicator, tasks))
    machine.subscribe(sm.RECORDING, lambda phase: _on_recording(machine, recorder, indicator))
    machine.subscribe(sm.COLLECTING_TAPS, lambda phase: _on_collecting(recorder, indicator))
    machine.subscribe_error(lambda err: _on_session_error(indicator, err))

    recorder.on_state_change(lambda state: _on_recorder_state(machine, state))
    power.on_state_change(lambda state: _on_power_state(indicator, state))
    log(event="components_wired")
