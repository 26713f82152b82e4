"""Session models."""
import asyncio
import time
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionStatus(str, Enum):
    """Coarse lifecycle of a counseling session."""

    INITIALIZING = "initializing"
    COUNSELING = "counseling"
    PROCESSING = "processing"
    CALLING_BACK = "calling_back"
    COMPLETED = "completed"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


class CallState(str, Enum):
    """Call-state machine driving the callback."""

    ONBOARDING = "onboarding"  # Counselor is talking, sample is being captured
    PREPARING_INTERRUPTION = "preparing_interruption"  # Enough audio, persona on its way
    INTERRUPTION_DELIVERED = "interruption_delivered"  # Persona exists
    READY_FOR_FUTURE_CALL = "ready_for_future_call"  # UI may place the callback

    def __str__(self) -> str:
        return self.value


# Forward-only ordering of call states
CALL_STATE_ORDER = [
    CallState.ONBOARDING,
    CallState.PREPARING_INTERRUPTION,
    CallState.INTERRUPTION_DELIVERED,
    CallState.READY_FOR_FUTURE_CALL,
]


class CloneStatus(str, Enum):
    """Progress of the voice clone for a session."""

    IDLE = "idle"
    IN_FLIGHT = "in_flight"
    AMBIGUOUS = "ambiguous"  # Upload sent, no response; may still land upstream
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class TranscriptEntry(BaseModel):
    """A single utterance in the counseling call."""

    role: str
    text: str
    timestamp: float = Field(default_factory=time.time)


class Session(BaseModel):
    """One counseling interaction and everything needed to call the user back."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    call_id: Optional[str] = None
    status: SessionStatus = SessionStatus.INITIALIZING
    call_state: CallState = CallState.ONBOARDING
    created_at: datetime = Field(default_factory=datetime.utcnow)
    start_time: float = Field(default_factory=time.time)

    user_name: Optional[str] = None
    problem_description: Optional[str] = None
    transcripts: List[TranscriptEntry] = []

    listen_url: Optional[str] = None
    control_url: Optional[str] = None
    recording_url: Optional[str] = None

    voice_clone_completed: bool = False
    cloned_voice_id: Optional[str] = None
    clone_status: CloneStatus = CloneStatus.IDLE
    clone_label: Optional[str] = None

    future_self_created: bool = False
    future_self_assistant_id: Optional[str] = None

    # Set when the counseling call has been torn down and archived
    ended_at: Optional[datetime] = None

    # Deferred work (timers, background tasks); cancelled on teardown
    timers: Dict[str, asyncio.Task] = Field(default_factory=dict, exclude=True)

    def has_transcript_entry(self, role: str, text: str) -> bool:
        """Check whether an identical utterance was already recorded."""
        return any(
            entry.role == role and entry.text == text for entry in self.transcripts
        )

    def get_transcript_text(self) -> str:
        """Get full transcript as text."""
        return "\n".join(
            f"{entry.role.upper()}: {entry.text}" for entry in self.transcripts
        )

    @property
    def display_name(self) -> str:
        return self.user_name or "User"

    @property
    def is_finished(self) -> bool:
        return self.ended_at is not None
