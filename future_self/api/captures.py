"""Audio capture endpoints for testing and inspection."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from future_self.core.dependencies import get_capture_manager
from future_self.services.audio.manager import CaptureManager

router = APIRouter()
logger = logging.getLogger(__name__)


class ManualCloneRequest(BaseModel):
    """Manual clone trigger request."""
    callId: str


@router.get("/api/test/manual-clone")
async def manual_clone_usage():
    return {
        "message": "Manual voice cloning trigger",
        "usage": 'POST with { "callId": "your-call-id" } to trigger voice cloning',
        "note": "Useful for calls shorter than the clone threshold",
    }


@router.post("/api/test/manual-clone")
async def manual_clone(
    request: ManualCloneRequest,
    captures: CaptureManager = Depends(get_capture_manager),
):
    """Force voice cloning on a live capture, regardless of elapsed time."""
    logger.info(f"[MANUAL CLONE] Manual voice cloning requested for call {request.callId}")

    triggered = captures.manual_trigger(request.callId)
    if triggered is None:
        raise HTTPException(status_code=404, detail="No active audio capture for this call")

    return {
        "callId": request.callId,
        "triggered": triggered,
        "message": "Voice cloning triggered" if triggered else "Voice cloning already triggered or no audio buffered",
    }


@router.get("/api/captures/{call_id}")
async def get_capture_stats(
    call_id: str,
    captures: CaptureManager = Depends(get_capture_manager),
):
    """Statistics for a live capture."""
    stats = captures.get_stats(call_id)
    if stats is None:
        raise HTTPException(status_code=404, detail="No active audio capture for this call")
    return stats
