"""Call-state scheduler.

Drives a session from onboarding to ready_for_future_call. Two triggers race
to create the future-self persona: the voice clone completing, and the
fallback timer. Whichever arrives first creates it; the other finds
``future_self_created`` already set and does nothing. A call that ends
before either fires still gets its persona, created after hangup.
"""
import asyncio
import logging
from typing import AsyncContextManager, Awaitable, Callable, Dict, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from future_self.core.config import Settings, settings
from future_self.core.exceptions import (
    AmbiguousTimeoutError,
    AudioPayloadError,
    CloneProviderError,
    PersonaCreationError,
)
from future_self.services.audio.capture import CloneSample
from future_self.services.cloning.dispatcher import CloneDispatcher
from future_self.services.persistence.calls import CallPersistenceService
from future_self.services.persona.creator import PersonaCreator
from future_self.services.persona.vapi import VapiClient
from future_self.services.session.manager import SessionManager
from future_self.services.session.models import (
    CallState,
    CloneStatus,
    Session,
    SessionStatus,
)

logger = logging.getLogger(__name__)

TimerCallback = Callable[[str], Awaitable[None]]
DbSessionFactory = Callable[[], AsyncContextManager[AsyncSession]]

PREPARE_TIMER = "prepare_interruption"
FALLBACK_TIMER = "fallback"
READY_TIMER = "ready"
CLONE_TASK = "clone"
FINALIZE_TASK = "finalize"

RECORDING_EXTENSIONS = {
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/ogg": ".ogg",
    "audio/webm": ".webm",
}


class CallStateScheduler:
    """Time- and event-driven orchestration of the callback persona."""

    def __init__(
        self,
        sessions: SessionManager,
        dispatcher: CloneDispatcher,
        persona_creator: PersonaCreator,
        config: Settings = settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        recordings: Optional[VapiClient] = None,
        db_factory: Optional[DbSessionFactory] = None,
    ):
        self.sessions = sessions
        self.dispatcher = dispatcher
        self.persona_creator = persona_creator
        self.config = config
        self.recordings = recordings
        self.db_factory = db_factory
        self._sleep = sleep
        self._locks: Dict[str, asyncio.Lock] = {}

    def schedule(self, session_id: str, name: str, delay: float, callback: TimerCallback) -> asyncio.Task:
        """Run a callback after a delay, tracked on the session under ``name``."""

        async def _fire() -> None:
            await self._sleep(delay)
            try:
                await callback(session_id)
            except Exception as e:
                logger.error(
                    f"[SCHEDULER] Timer '{name}' failed for {session_id}: {type(e).__name__}: {e}",
                    exc_info=True,
                )

        task = asyncio.create_task(_fire(), name=f"{name}:{session_id}")
        self.sessions.register_timer(session_id, name, task)
        return task

    def on_call_started(self, session_id: str) -> None:
        """Arm the interruption and fallback timers for a new call."""
        logger.info(
            f"[SCHEDULER] Timers armed for {session_id}: prepare in "
            f"{self.config.interruption_prepare_seconds}s, fallback in "
            f"{self.config.fallback_timeout_seconds}s"
        )
        self.schedule(
            session_id, PREPARE_TIMER, self.config.interruption_prepare_seconds, self._prepare_interruption
        )
        self.schedule(
            session_id, FALLBACK_TIMER, self.config.fallback_timeout_seconds, self.on_fallback_timeout
        )

    async def _prepare_interruption(self, session_id: str) -> None:
        self.sessions.update_call_state(session_id, CallState.PREPARING_INTERRUPTION)

    async def handle_clone_sample(self, sample: CloneSample) -> Optional[str]:
        """Dispatch a packaged sample and react to the outcome.

        Runs as a background task and registers itself on the session. Only
        shutdown cancels it; an upload survives the end of the call.
        """
        session = self.sessions.get_session(sample.session_id)
        if not session:
            logger.warning(
                f"[SCHEDULER] Clone sample for unknown session {sample.session_id} "
                f"(call {sample.call_id}), ignoring"
            )
            return None

        current = asyncio.current_task()
        if current is not None:
            self.sessions.register_timer(sample.session_id, CLONE_TASK, current)

        logger.info(
            f"[SCHEDULER] Clone sample ready for {sample.session_id}: {sample.duration_seconds:.1f}s "
            f"at {sample.sample_rate} Hz ({sample.sample_rate_source}, trigger: {sample.trigger})"
        )
        self.sessions.update_call_state(sample.session_id, CallState.PREPARING_INTERRUPTION)

        try:
            voice_id = await self.dispatcher.dispatch(
                sample.session_id, sample.call_id, session.display_name, sample.wav
            )
        except AmbiguousTimeoutError:
            # Fallback timer polls and reconciles
            return None
        except (AudioPayloadError, CloneProviderError) as e:
            await self.on_voice_clone_failed(sample.session_id, e)
            return None

        if voice_id:
            await self.on_voice_clone_completed(sample.session_id)
        return voice_id

    async def on_voice_clone_completed(self, session_id: str) -> Optional[str]:
        logger.info(f"[SCHEDULER] Voice clone completed for {session_id}, creating future self")
        return await self.create_future_self(session_id, reason="clone completed")

    async def on_voice_clone_failed(self, session_id: str, error: Exception) -> Optional[str]:
        logger.warning(
            f"[SCHEDULER] Voice clone failed for {session_id} ({type(error).__name__}), "
            f"creating future self with default voice"
        )
        return await self.create_future_self(session_id, reason="clone failed")

    async def on_fallback_timeout(self, session_id: str) -> Optional[str]:
        """Create the persona even if the clone never arrived."""
        session = self.sessions.get_session(session_id)
        if not session or session.future_self_created:
            return None

        if session.clone_status in (CloneStatus.IN_FLIGHT, CloneStatus.AMBIGUOUS):
            logger.info(
                f"[SCHEDULER] Fallback reached for {session_id} with clone {session.clone_status}, "
                f"polling for up to {self.config.clone_poll_ceiling_seconds}s"
            )
            await self.poll_for_clone(session_id)
        else:
            logger.info(f"[SCHEDULER] Fallback reached for {session_id} without a voice clone")

        return await self.create_future_self(session_id, reason="fallback")

    async def poll_for_clone(self, session_id: str) -> bool:
        """Wait for an in-flight or ambiguous clone. Returns True if it landed."""
        waited = 0.0
        while True:
            session = self.sessions.get_session(session_id)
            if not session:
                return False
            if session.voice_clone_completed or session.future_self_created:
                return True

            if session.clone_status == CloneStatus.AMBIGUOUS:
                if await self.dispatcher.reconcile(session_id):
                    return True
            elif session.clone_status != CloneStatus.IN_FLIGHT:
                return False

            if waited >= self.config.clone_poll_ceiling_seconds:
                logger.warning(
                    f"[SCHEDULER] Gave up waiting for voice clone for {session_id} after "
                    f"{waited:.0f}s (clone {session.clone_status}), using default voice"
                )
                return False

            await self._sleep(self.config.clone_poll_interval_seconds)
            waited += self.config.clone_poll_interval_seconds

    async def create_future_self(self, session_id: str, reason: str = "") -> Optional[str]:
        """Create the persona at most once per session. Returns the assistant id."""
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            session = self.sessions.get_session(session_id)
            if not session:
                logger.warning(f"[SCHEDULER] Cannot create future self, session gone: {session_id}")
                return None
            if session.future_self_created:
                logger.info(
                    f"[SCHEDULER] Future self already created for {session_id} ({reason}), skipping"
                )
                return session.future_self_assistant_id

            logger.info(f"[SCHEDULER] Creating future self for {session_id} ({reason})")
            self.sessions.set_status(session_id, SessionStatus.PROCESSING)
            self.sessions.update_call_state(session_id, CallState.PREPARING_INTERRUPTION)

            try:
                result = await self.persona_creator.create(session)
            except PersonaCreationError as e:
                logger.error(f"[SCHEDULER] Future self creation failed for {session_id}: {e}")
                self.sessions.set_status(session_id, SessionStatus.ERROR)
                return None

            session = self.sessions.get_session(session_id)
            if not session:
                logger.warning(
                    f"[SCHEDULER] Session {session_id} ended while assistant "
                    f"{result.assistant_id} was being created"
                )
                return None

            self._record_persona(session, result.assistant_id)
            self.sessions.set_status(session_id, SessionStatus.CALLING_BACK)
            self.sessions.update_call_state(session_id, CallState.INTERRUPTION_DELIVERED)
            self.schedule(session_id, READY_TIMER, self.config.ready_delay_seconds, self._mark_ready)

            logger.info(
                f"[SCHEDULER] Future self ready for {session_id}: {result.assistant_id} "
                f"({'cloned' if result.used_cloned_voice else 'default'} voice)"
            )
            return result.assistant_id

    @staticmethod
    def _record_persona(session: Session, assistant_id: str) -> None:
        session.future_self_created = True
        session.future_self_assistant_id = assistant_id

    async def _mark_ready(self, session_id: str) -> None:
        self.sessions.update_call_state(session_id, CallState.READY_FOR_FUTURE_CALL)

    async def on_call_ended(
        self,
        session_id: str,
        persistence: Optional[CallPersistenceService] = None,
    ) -> Optional[Session]:
        """
        Wrap up after the counseling call hangs up.

        When the persona already exists the session is archived right away.
        Otherwise the callback is still owed: a tracked background task waits
        for a pending clone (or clones the call recording), creates the
        persona and only then archives the session. Clone uploads are never
        cancelled here.
        """
        session = self.sessions.get_session(session_id)
        if not session:
            logger.warning(f"[SCHEDULER] Call ended for unknown session {session_id}")
            return None
        if session.is_finished or FINALIZE_TASK in session.timers:
            logger.info(f"[SCHEDULER] Call end for {session_id} already handled")
            return session

        self.sessions.cancel_timer(session_id, PREPARE_TIMER)

        if session.future_self_created:
            self._ready_after_call(session_id)
            self._locks.pop(session_id, None)
            return await self.sessions.end_session(session_id, persistence, keep=(CLONE_TASK,))

        logger.info(
            f"[SCHEDULER] Call {session_id} ended before the future self was created "
            f"(clone {session.clone_status}), finishing in the background"
        )
        task = asyncio.create_task(
            self._finish_after_call(session_id), name=f"{FINALIZE_TASK}:{session_id}"
        )
        self.sessions.register_timer(session_id, FINALIZE_TASK, task)
        return session

    async def _finish_after_call(self, session_id: str) -> Optional[Session]:
        try:
            await self.clone_from_recording(session_id)
            session = self.sessions.get_session(session_id)
            if session and session.clone_status in (CloneStatus.IN_FLIGHT, CloneStatus.AMBIGUOUS):
                await self.poll_for_clone(session_id)
            await self.create_future_self(session_id, reason="call ended")
        except Exception as e:
            logger.error(
                f"[SCHEDULER] Post-call work failed for {session_id}: {type(e).__name__}: {e}",
                exc_info=True,
            )

        self._ready_after_call(session_id)
        self._locks.pop(session_id, None)
        return await self._archive(session_id)

    def _ready_after_call(self, session_id: str) -> None:
        # Nothing left to interrupt once the caller has hung up
        session = self.sessions.get_session(session_id)
        if session and session.future_self_created:
            self.sessions.update_call_state(session_id, CallState.READY_FOR_FUTURE_CALL)

    async def _archive(self, session_id: str) -> Optional[Session]:
        if self.db_factory is None:
            return await self.sessions.end_session(session_id, keep=(CLONE_TASK,))
        async with self.db_factory() as db:
            return await self.sessions.end_session(
                session_id, CallPersistenceService(db), keep=(CLONE_TASK,)
            )

    async def clone_from_recording(self, session_id: str) -> Optional[str]:
        """Clone from the call recording when no live sample was ever submitted."""
        session = self.sessions.get_session(session_id)
        if not session or self.recordings is None or not session.recording_url:
            return None
        if session.voice_clone_completed or session.clone_status != CloneStatus.IDLE:
            return None

        logger.info(f"[SCHEDULER] No live sample for {session_id}, cloning from the call recording")
        try:
            audio, content_type = await self.recordings.fetch_recording(
                session.recording_url, timeout=self.config.recording_download_timeout_seconds
            )
        except httpx.HTTPError as e:
            logger.warning(
                f"[SCHEDULER] Could not download recording for {session_id}: {type(e).__name__}: {e}"
            )
            return None

        try:
            return await self.dispatcher.dispatch(
                session_id,
                session.call_id or session_id,
                session.display_name,
                audio,
                filename=f"call_recording{RECORDING_EXTENSIONS.get(content_type, '.wav')}",
                content_type=content_type,
            )
        except AmbiguousTimeoutError:
            # Polled before the persona is created
            return None
        except (AudioPayloadError, CloneProviderError) as e:
            logger.warning(
                f"[SCHEDULER] Recording clone failed for {session_id} ({type(e).__name__}), "
                f"using default voice"
            )
            return None

    def cancel_all(self) -> int:
        """Cancel deferred work for every live session (shutdown)."""
        cancelled = 0
        for session in self.sessions.list_sessions():
            cancelled += self.sessions.cancel_timers(session.id)
        self._locks.clear()
        return cancelled
