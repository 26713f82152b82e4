"""Call status endpoints polled by the calling UI."""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from future_self.core.dependencies import get_call_persistence, get_session_manager
from future_self.services.persistence.calls import CallPersistenceService
from future_self.services.session.manager import SessionManager

router = APIRouter()
logger = logging.getLogger(__name__)


class CallRecordResponse(BaseModel):
    """Archived call response model."""
    id: int
    session_id: str
    call_id: str | None = None
    status: str
    call_state: str | None = None
    user_name: str | None = None
    problem_description: str | None = None
    voice_clone_completed: bool
    cloned_voice_id: str | None = None
    future_self_assistant_id: str | None = None
    recording_url: str | None = None
    started_at: str | None = None
    ended_at: str | None = None


@router.get("/api/call-status/debug")
async def debug_sessions(sessions: SessionManager = Depends(get_session_manager)):
    """List every session in the store, finished ones included."""
    live = sessions.list_sessions()
    debug_info = {
        "sessionCount": len(live),
        "sessions": [
            {
                "id": session.id,
                "callId": session.call_id,
                "status": str(session.status),
                "callState": str(session.call_state),
                "elapsedSeconds": sessions.elapsed_seconds(session.id),
                "voiceCloneCompleted": session.voice_clone_completed,
                "cloneStatus": str(session.clone_status),
                "futureSelfCreated": session.future_self_created,
                "finished": session.is_finished,
                "createdAt": session.created_at.isoformat(),
            }
            for session in live
        ],
    }
    logger.debug(f"[CALL STATUS] Debug listing: {len(live)} sessions")
    return debug_info


@router.get("/api/call-status/{session_id}")
async def get_call_status(
    session_id: str,
    sessions: SessionManager = Depends(get_session_manager),
):
    """Current call state for one session."""
    session = sessions.get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")

    elapsed = sessions.elapsed_seconds(session_id)
    logger.debug(f"[CALL STATUS] {session_id}: {session.call_state} ({elapsed}s)")
    return {
        "sessionId": session.id,
        "callState": str(session.call_state),
        "futureSelfAssistantId": session.future_self_assistant_id,
        "elapsedSeconds": elapsed,
        "voiceCloneReady": session.voice_clone_completed,
    }


@router.get("/api/calls", response_model=List[CallRecordResponse])
async def list_archived_calls(
    limit: int = Query(50, ge=1, le=500),
    persistence: CallPersistenceService = Depends(get_call_persistence),
):
    """Most recently archived calls."""
    records = await persistence.list_recent_calls(limit=limit)
    logger.info(f"[CALL STATUS] Returning {len(records)} archived calls")
    return [
        CallRecordResponse(
            id=record.id,
            session_id=record.session_id,
            call_id=record.call_id,
            status=record.status,
            call_state=record.call_state,
            user_name=record.user_name,
            problem_description=record.problem_description,
            voice_clone_completed=bool(record.voice_clone_completed),
            cloned_voice_id=record.cloned_voice_id,
            future_self_assistant_id=record.future_self_assistant_id,
            recording_url=record.recording_url,
            started_at=record.started_at.isoformat() if record.started_at else None,
            ended_at=record.ended_at.isoformat() if record.ended_at else None,
        )
        for record in records
    ]
