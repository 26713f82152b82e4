"""Database models."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class CallRecord(Base):
    """Archived counseling call, written once when the call ends."""

    __tablename__ = "calls"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String, unique=True, index=True, nullable=False)
    call_id = Column(String, index=True, nullable=True)
    status = Column(String, nullable=False)  # completed, error
    call_state = Column(String, nullable=False)
    user_name = Column(String, nullable=True)
    problem_description = Column(Text, nullable=True)
    transcript = Column(Text, nullable=True)
    voice_clone_completed = Column(Boolean, default=False, nullable=False)
    cloned_voice_id = Column(String, nullable=True)
    future_self_assistant_id = Column(String, nullable=True)
    recording_url = Column(String, nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)
