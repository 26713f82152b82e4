"""Vapi webhook endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from future_self.core.dependencies import get_event_router, get_session_manager
from future_self.core.exceptions import MalformedPayloadError
from future_self.services.session.manager import SessionManager
from future_self.services.webhooks.router import WebhookEventRouter, parse_event

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/vapi/webhook")
async def handle_vapi_webhook(
    request: Request,
    event_router: WebhookEventRouter = Depends(get_event_router),
):
    """
    Receive call-platform events.

    Structurally invalid bodies get a 400. Every recognised body gets
    ``{"success": true}``, even when processing it failed.
    """
    try:
        body = await request.json()
    except ValueError:
        logger.warning(
            f"[WEBHOOK] Invalid JSON payload - Client: {request.client.host if request.client else 'unknown'}"
        )
        return JSONResponse({"error": "Invalid JSON payload"}, status_code=400)

    try:
        event = parse_event(body)
    except MalformedPayloadError as e:
        logger.warning(f"[WEBHOOK] Rejected webhook payload: {e}")
        return JSONResponse({"error": str(e)}, status_code=400)

    await event_router.route(event)
    return {"success": True}


@router.get("/vapi/webhook")
async def get_session_snapshot(
    sessionId: Optional[str] = None,
    sessions: SessionManager = Depends(get_session_manager),
):
    """Full snapshot of a session, live or recently finished."""
    if not sessionId:
        raise HTTPException(status_code=400, detail="Session ID required")

    session = sessions.get_session(sessionId)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")

    return {"session": session.model_dump(mode="json")}
