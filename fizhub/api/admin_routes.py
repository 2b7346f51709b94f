from fastapi import APIRouter, Depends, Request

from fizhub.api.auth import require_admin
import fizhub.observability.metrics as metrics

router = APIRouter(prefix="/admin", tags=["admin"])

@router.get("/metrics")
def get_metrics(_=Depends(require_admin)):
    """In-process counters since start-up."""
    return metrics.get_metrics_snapshot()

@router.get("/session")
def get_session_snapshot(request: Request, _=Depends(require_admin)):
    """Full session view, including validated accounts (never shown on /api/status)."""
    hub = request.app.state.hub
    s = hub.machine.snapshot()
    return {
        "phase": s.phase,
        "collected_uids": s.collected_uids,
        "validated_accounts": s.validated_accounts,
        "bond_id": s.bond_id,
        "last_event_at": s.last_event_at,
        "recorder_state": hub.recorder.state,
        "indicator_state": hub.indicator.state,
        "pending_validations": hub.tasks.pending(),
    }
