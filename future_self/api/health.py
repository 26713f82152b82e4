"""Health check endpoint."""
import logging
from fastapi import APIRouter, Depends, Request

from future_self.core.dependencies import get_capture_manager, get_session_store
from future_self.services.audio.manager import CaptureManager
from future_self.services.session.store import SessionStore

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check(
    request: Request,
    store: SessionStore = Depends(get_session_store),
    captures: CaptureManager = Depends(get_capture_manager),
):
    """Health check endpoint."""
    logger.debug(
        f"[HEALTH] Health check requested - Client: {request.client.host if request.client else 'unknown'}"
    )
    return {
        "status": "healthy",
        "sessions": store.count(),
        "activeCaptures": captures.active_count,
    }
