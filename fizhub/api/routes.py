from typing import List

from fastapi import APIRouter, Depends, Request

from fizhub.api.auth import require_api_key
from fizhub.api.schemas import ActionResponse, DeviceResponse, ReceiveUIDRequest, StatusResponse
from fizhub.core.orchestrator import submit_tap
from fizhub.hub import Hub
from fizhub.observability.logging import log

router = APIRouter(prefix="/api")


def get_hub(request: Request) -> Hub:
    return request.app.state.hub


@router.get("/status", response_model=StatusResponse)
def status(hub: Hub = Depends(get_hub)):
    """Read-only projection of the session and power signal."""
    snap = hub.machine.snapshot()
    return StatusResponse(
        phase=snap.phase,
        power_state=hub.power.state,
        uids=snap.collected_uids,
        tap_urls=hub.machine.formatted_uids(),
        bond_id=snap.bond_id,
        last_activity=hub.power.last_activity,
    )


@router.get("/devices", response_model=List[DeviceResponse])
def devices(hub: Hub = Depends(get_hub)):
    return [DeviceResponse(**d.to_dict()) for d in hub.registry.list_devices()]


@router.post("/receive_uid", response_model=ActionResponse, dependencies=[Depends(require_api_key)])
def receive_uid(body: ReceiveUIDRequest, hub: Hub = Depends(get_hub)):
    """
    Tap from the hub's own reader (or a tester). WrongPhase / DuplicateUID
    propagate to the app-level handler and come back as 409.
    """
    submit_tap(hub.machine, hub.power, body.uid, source="http")
    return ActionResponse(phase=hub.machine.phase)


@router.post("/session/reset", response_model=ActionResponse, dependencies=[Depends(require_api_key)])
def reset_session(hub: Hub = Depends(get_hub)):
    log(event="session_reset_requested", from_phase=hub.machine.phase)
    hub.machine.reset()
    return ActionResponse(phase=hub.machine.phase)


@router.post("/recording/stop", response_model=ActionResponse, dependencies=[Depends(require_api_key)])
def stop_recording(hub: Hub = Depends(get_hub)):
    stopped = hub.recorder.stop_recording()
    return ActionResponse(
        phase=hub.machine.phase,
        detail="recording stopped" if stopped else "no recording in progress",
    )


@router.post("/power/wake", response_model=ActionResponse, dependencies=[Depends(require_api_key)])
def wake(hub: Hub = Depends(get_hub)):
    woke = hub.power.wake_up()
    return ActionResponse(phase=hub.machine.phase, detail="woke up" if woke else f"already {hub.power.state}")
