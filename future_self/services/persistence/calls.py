"""Call archive persistence service."""
from datetime import datetime
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc

from future_self.db.models import CallRecord
from future_self.services.session.models import Session


class CallPersistenceService:
    """Service for archiving finished sessions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def archive_session(
        self, session: Session, ended_at: Optional[datetime] = None
    ) -> CallRecord:
        """Write (or overwrite) the archive record for a session."""
        record = await self.get_call_by_session_id(session.id)
        if record is None:
            record = CallRecord(session_id=session.id, started_at=session.created_at)
            self.db.add(record)

        record.call_id = session.call_id
        record.status = str(session.status)
        record.call_state = str(session.call_state)
        record.user_name = session.user_name
        record.problem_description = session.problem_description
        record.transcript = session.get_transcript_text() or None
        record.voice_clone_completed = session.voice_clone_completed
        record.cloned_voice_id = session.cloned_voice_id
        record.future_self_assistant_id = session.future_self_assistant_id
        record.recording_url = session.recording_url
        record.ended_at = ended_at or datetime.utcnow()

        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def get_call_by_session_id(self, session_id: str) -> Optional[CallRecord]:
        """Get an archived call by session id."""
        result = await self.db.execute(
            select(CallRecord).where(CallRecord.session_id == session_id)
        )
        return result.scalar_one_or_none()

    async def list_recent_calls(self, limit: int = 50) -> List[CallRecord]:
        """Most recently ended calls first."""
        result = await self.db.execute(
            select(CallRecord).order_by(desc(CallRecord.ended_at)).limit(limit)
        )
        return list(result.scalars().all())
