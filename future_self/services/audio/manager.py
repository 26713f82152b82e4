"""Capture manager: one monitor-feed capture per live call."""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from future_self.core.config import Settings, settings
from future_self.core.exceptions import AudioCaptureError
from future_self.services.audio.capture import (
    AudioCaptureSession,
    CaptureEvent,
    CaptureEventType,
    CloneSample,
)

logger = logging.getLogger(__name__)

CloneSampleHandler = Callable[[CloneSample], Awaitable[Any]]
CaptureFactory = Callable[[str, str], AudioCaptureSession]

STOP_TIMEOUT_SECONDS = 2.0


class CaptureManager:
    """Starts, stops and drives capture sessions.

    Each capture publishes CaptureEvents; the manager runs the single dispatch
    loop over them and hands CLONE_READY samples to the clone handler in a
    background task so the feed keeps draining while the provider works.
    """

    def __init__(
        self,
        config: Settings = settings,
        clone_handler: Optional[CloneSampleHandler] = None,
        capture_factory: Optional[CaptureFactory] = None,
    ):
        self.config = config
        self.clone_handler = clone_handler
        self.capture_factory = capture_factory or (
            lambda call_id, session_id: AudioCaptureSession.from_settings(
                call_id, session_id, self.config
            )
        )
        self._captures: Dict[str, AudioCaptureSession] = {}
        self._consumers: Dict[str, asyncio.Task] = {}
        self._clone_tasks: Set[asyncio.Task] = set()

    def start(self, session_id: str, call_id: str, listen_url: str) -> AudioCaptureSession:
        """Attach to a call's monitor feed in the background."""
        existing = self._captures.get(call_id)
        if existing and not existing.is_closed:
            logger.info(f"[AUDIO CAPTURE] Capture already running for call {call_id}")
            return existing

        capture = self.capture_factory(call_id, session_id)
        self._captures[call_id] = capture
        consumer = asyncio.create_task(self._run(capture, listen_url))
        self._consumers[call_id] = consumer

        def _forget(task: asyncio.Task) -> None:
            if self._consumers.get(call_id) is task:
                del self._consumers[call_id]

        consumer.add_done_callback(_forget)
        logger.info(f"[AUDIO CAPTURE] Capture started for call {call_id} (session {session_id})")
        return capture

    async def _run(self, capture: AudioCaptureSession, listen_url: str) -> None:
        try:
            await capture.connect(listen_url)
        except AudioCaptureError as e:
            logger.warning(f"[AUDIO CAPTURE] Initial connect failed for call {capture.call_id}: {e}")
            capture.schedule_reconnect(str(e))

        await self.dispatch_events(capture)

    async def dispatch_events(self, capture: AudioCaptureSession) -> None:
        """Consume a capture's events until its final CLOSED event."""
        while True:
            event: CaptureEvent = await capture.events.get()

            if event.type == CaptureEventType.CONNECTED:
                logger.info(f"[AUDIO CAPTURE] Feed connected for call {event.call_id}")
            elif event.type == CaptureEventType.CHUNK:
                continue
            elif event.type == CaptureEventType.FORMAT_DETECTED:
                logger.info(
                    f"[AUDIO CAPTURE] Audio format for call {event.call_id}: {event.sample_rate} Hz"
                )
            elif event.type == CaptureEventType.CLONE_READY:
                self._spawn_clone(event.sample)
            elif event.type == CaptureEventType.ERROR:
                logger.error(f"[AUDIO CAPTURE] Capture error for call {event.call_id}: {event.error}")
            elif event.type == CaptureEventType.CLOSED:
                logger.info(
                    f"[AUDIO CAPTURE] Feed closed for call {event.call_id} "
                    f"(code: {event.close_code}, final: {event.final})"
                )
                if event.final:
                    break

        if self._captures.get(capture.call_id) is capture:
            del self._captures[capture.call_id]

    def _spawn_clone(self, sample: Optional[CloneSample]) -> None:
        if sample is None:
            return
        task = asyncio.create_task(self._handle_clone_sample(sample))
        self._clone_tasks.add(task)
        task.add_done_callback(self._clone_tasks.discard)

    async def _handle_clone_sample(self, sample: CloneSample) -> None:
        if self.clone_handler is None:
            logger.warning(
                f"[AUDIO CAPTURE] Clone sample ready for call {sample.call_id} but no handler is set"
            )
            return
        try:
            await self.clone_handler(sample)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                f"[AUDIO CAPTURE] Clone handler failed for call {sample.call_id}: "
                f"{type(e).__name__}: {e}",
                exc_info=True,
            )

    async def stop(self, call_id: str) -> bool:
        """Disconnect a call's capture and wait for its dispatch loop to finish."""
        capture = self._captures.pop(call_id, None)
        consumer = self._consumers.pop(call_id, None)
        if capture is None:
            return False

        await capture.disconnect()

        if consumer is not None and not consumer.done():
            try:
                await asyncio.wait_for(consumer, timeout=STOP_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                consumer.cancel()
        logger.info(f"[AUDIO CAPTURE] Capture stopped for call {call_id}")
        return True

    async def stop_all(self) -> None:
        for call_id in list(self._captures):
            await self.stop(call_id)
        for task in list(self._clone_tasks):
            task.cancel()

    def get_capture(self, call_id: str) -> Optional[AudioCaptureSession]:
        return self._captures.get(call_id)

    def manual_trigger(self, call_id: str) -> Optional[bool]:
        """Force cloning on a live capture. None if the call has no capture."""
        capture = self._captures.get(call_id)
        if capture is None:
            return None
        return capture.manual_trigger()

    def get_stats(self, call_id: str) -> Optional[Dict[str, Any]]:
        capture = self._captures.get(call_id)
        return capture.stats() if capture else None

    @property
    def active_count(self) -> int:
        return len(self._captures)
