"""Session manager."""
import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Iterable, Optional, TYPE_CHECKING

from future_self.core.exceptions import SessionNotFoundError
from future_self.services.extraction import (
    Extractor,
    extract_user_name,
    make_problem_extractor,
    DEFAULT_PROBLEM_MIN_LENGTH,
)
from future_self.services.session.models import (
    CALL_STATE_ORDER,
    CallState,
    Session,
    SessionStatus,
    TranscriptEntry,
)
from future_self.services.session.store import SessionStore

if TYPE_CHECKING:
    from future_self.services.persistence.calls import CallPersistenceService

logger = logging.getLogger(__name__)

USER_ROLE = "user"
DEFAULT_FINISHED_RETENTION_SECONDS = 3600.0


class SessionManager:
    """Owns every mutation of a session.

    Each operation looks the session up by id at the moment it mutates it, so
    concurrent continuations (webhooks, audio callbacks, timers) never write
    through a stale reference.
    """

    def __init__(
        self,
        store: SessionStore,
        name_extractor: Extractor = extract_user_name,
        problem_extractor: Optional[Extractor] = None,
        finished_retention_seconds: float = DEFAULT_FINISHED_RETENTION_SECONDS,
    ):
        self.store = store
        self.finished_retention_seconds = finished_retention_seconds
        self.name_extractor = name_extractor
        self.problem_extractor = problem_extractor or make_problem_extractor(
            DEFAULT_PROBLEM_MIN_LENGTH
        )

    def create_session(self, session_id: str, call_id: Optional[str] = None) -> Session:
        """Create a session, or return the existing one for this id."""
        existing = self.store.get(session_id)
        if existing:
            if call_id and not existing.call_id:
                existing.call_id = call_id
            logger.info(f"[SESSION] Session already exists: {session_id}")
            return existing

        session = Session(
            id=session_id,
            call_id=call_id,
            status=SessionStatus.COUNSELING,
        )
        self.store.set(session)
        logger.info(f"[SESSION] Session created: {session_id} (call: {call_id})")
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        """Get an existing session."""
        return self.store.get(session_id)

    def require_session(self, session_id: str) -> Session:
        """Get an existing session or raise SessionNotFoundError."""
        session = self.store.get(session_id)
        if not session:
            raise SessionNotFoundError(session_id)
        return session

    def list_sessions(self) -> list:
        return self.store.list()

    def update_call_state(self, session_id: str, new_state: CallState) -> Optional[Session]:
        """Advance the call state. Backward transitions are ignored."""
        session = self.store.get(session_id)
        if not session:
            logger.error(f"[SESSION] Session not found for call state update: {session_id}")
            return None

        old_state = session.call_state
        if CALL_STATE_ORDER.index(new_state) < CALL_STATE_ORDER.index(old_state):
            logger.warning(
                f"[SESSION] Ignoring backward call state transition for {session_id}: "
                f"{old_state} -> {new_state}"
            )
            return session

        if old_state != new_state:
            session.call_state = new_state
            logger.info(f"[SESSION] Call state updated for {session_id}: {old_state} -> {new_state}")
        return session

    def set_status(self, session_id: str, status: SessionStatus) -> Optional[Session]:
        """Set the lifecycle status."""
        session = self.store.get(session_id)
        if not session:
            return None
        if session.status != status:
            logger.info(f"[SESSION] Status for {session_id}: {session.status} -> {status}")
            session.status = status
        return session

    def add_transcript(self, session_id: str, role: str, text: str) -> bool:
        """Append an utterance unless an identical one is already recorded.

        Returns True when the entry was appended.
        """
        session = self.store.get(session_id)
        if not session or not text:
            return False

        if session.has_transcript_entry(role, text):
            return False

        session.transcripts.append(TranscriptEntry(role=role, text=text))
        if role == USER_ROLE:
            self.capture_user_facts(session_id, text)
        return True

    def add_conversation(self, session_id: str, messages: Iterable[dict]) -> int:
        """Merge a conversation snapshot into the transcript. Returns entries added."""
        added = 0
        for message in messages:
            role = message.get("role")
            content = message.get("content") or message.get("message")
            if role not in ("user", "assistant") or not isinstance(content, str):
                continue
            if self.add_transcript(session_id, role, content):
                added += 1
        return added

    def capture_user_facts(self, session_id: str, text: str) -> None:
        """Capture user name and problem description. First match wins."""
        session = self.store.get(session_id)
        if not session:
            return

        if not session.user_name:
            name = self.name_extractor(text)
            if name:
                session.user_name = name
                logger.info(f"[SESSION] Captured user name for {session_id}: {name}")

        if not session.problem_description:
            problem = self.problem_extractor(text)
            if problem:
                session.problem_description = problem
                logger.info(f"[SESSION] Captured problem description for {session_id}")

    def record_monitor_urls(
        self, session_id: str, listen_url: Optional[str], control_url: Optional[str]
    ) -> None:
        session = self.store.get(session_id)
        if not session:
            return
        session.listen_url = listen_url
        session.control_url = control_url

    def record_recording_url(self, session_id: str, recording_url: str) -> None:
        session = self.store.get(session_id)
        if session and not session.recording_url:
            session.recording_url = recording_url

    def elapsed_seconds(self, session_id: str) -> int:
        """Whole seconds since the session started."""
        session = self.store.get(session_id)
        if not session:
            return 0
        return int(time.time() - session.start_time)

    def register_timer(self, session_id: str, name: str, task: asyncio.Task) -> bool:
        """Track deferred work on the session so teardown can cancel it.

        A timer already registered under the same name is cancelled first.
        If the session is gone, the task is cancelled and False is returned.
        """
        session = self.store.get(session_id)
        if not session:
            task.cancel()
            logger.warning(f"[SESSION] Dropping timer '{name}' for unknown session {session_id}")
            return False

        previous = session.timers.get(name)
        if previous is not None and previous is not task and not previous.done():
            previous.cancel()

        session.timers[name] = task

        def _forget(finished: asyncio.Task) -> None:
            current = self.store.get(session_id)
            if current and current.timers.get(name) is finished:
                del current.timers[name]

        task.add_done_callback(_forget)
        return True

    def cancel_timer(self, session_id: str, name: str) -> bool:
        """Cancel one named timer. Returns True if a pending task was cancelled."""
        session = self.store.get(session_id)
        if not session:
            return False
        task = session.timers.pop(name, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug(f"[SESSION] Cancelled timer '{name}' for {session_id}")
        return True

    def cancel_timers(self, session_id: str, keep: Iterable[str] = ()) -> int:
        """Cancel pending deferred work for a session. Returns how many were cancelled.

        Tasks registered under a name in ``keep`` are left running.
        """
        session = self.store.get(session_id)
        if not session:
            return 0

        keep = set(keep)
        current = asyncio.current_task() if _loop_running() else None
        cancelled = 0
        for name, task in list(session.timers.items()):
            if name in keep:
                continue
            del session.timers[name]
            if task is current or task.done():
                continue
            task.cancel()
            cancelled += 1
            logger.debug(f"[SESSION] Cancelled timer '{name}' for {session_id}")
        return cancelled

    async def end_session(
        self,
        session_id: str,
        persistence: Optional["CallPersistenceService"] = None,
        keep: Iterable[str] = (),
    ) -> Optional[Session]:
        """Finish a session: cancel timers, settle its status and archive it.

        The session stays in the store so status queries keep answering after
        the call; finished sessions are pruned once the retention window passes.
        """
        session = self.store.get(session_id)
        if not session:
            logger.warning(f"[SESSION] end_session for unknown session {session_id}")
            return None

        self.cancel_timers(session_id, keep=keep)

        if session.status != SessionStatus.ERROR:
            session.status = (
                SessionStatus.COMPLETED
                if session.future_self_created
                else SessionStatus.ERROR
            )
        session.ended_at = datetime.utcnow()

        if persistence is not None:
            try:
                await persistence.archive_session(session, ended_at=session.ended_at)
            except Exception as e:
                logger.error(
                    f"[SESSION] Failed to archive session {session_id}: {type(e).__name__}: {e}",
                    exc_info=True,
                )

        logger.info(
            f"[SESSION] Session ended: {session_id} (status: {session.status}, "
            f"transcript entries: {len(session.transcripts)})"
        )
        self.prune_finished()
        return session

    def prune_finished(self, now: Optional[datetime] = None) -> int:
        """Drop finished sessions older than the retention window. Returns how many."""
        cutoff = (now or datetime.utcnow()) - timedelta(seconds=self.finished_retention_seconds)
        pruned = 0
        for session in self.store.list():
            if session.ended_at is not None and session.ended_at <= cutoff:
                self.cancel_timers(session.id)
                self.store.delete(session.id)
                pruned += 1
        if pruned:
            logger.info(f"[SESSION] Pruned {pruned} finished sessions")
        return pruned


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
        return True
    except RuntimeError:
        return False
