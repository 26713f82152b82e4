"""Live monitor-feed consumer.

Attaches to the per-call audio websocket exposed by the call platform. Binary
frames are raw interleaved stereo PCM, text frames are JSON metadata. Once
enough audio has been heard, the buffered audio is packaged into a mono WAV
sample and published as a CLONE_READY event, exactly once per capture.

Everything the capture observes is published as a typed CaptureEvent on
``events``; the consumer (CaptureManager) reads them in one dispatch loop.
"""
import asyncio
import json
import logging
import time
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

import websockets
from pydantic import BaseModel, ConfigDict
from websockets.exceptions import ConnectionClosed, WebSocketException

from future_self.core.config import Settings
from future_self.core.exceptions import (
    AudioCaptureError,
    AudioConnectionDropped,
    AudioConnectionTimeout,
)
from future_self.services.audio.channels import extract_first_channel_chunks
from future_self.services.audio.sample_rate import SampleRateDetector
from future_self.services.audio.wav import build_wav

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006
INTERNAL_ERROR = 1011

# Websocket tuning for the monitor feed
WS_MAX_SIZE = 16 * 1024 * 1024
WS_PING_INTERVAL = 20
WS_CLOSE_TIMEOUT = 5


class CaptureEventType(str, Enum):
    """Outcomes published by a capture session."""

    CONNECTED = "connected"
    CHUNK = "chunk"
    FORMAT_DETECTED = "format_detected"
    CLONE_READY = "clone_ready"
    ERROR = "error"
    CLOSED = "closed"

    def __str__(self) -> str:
        return self.value


class CloneSample(BaseModel):
    """A clone-worthy, packaged excerpt of the caller's voice."""

    session_id: str
    call_id: str
    wav: bytes
    sample_rate: int
    sample_rate_source: str
    chunk_count: int
    pcm_bytes: int
    duration_seconds: float
    trigger: str  # "threshold" or "manual"


class CaptureEvent(BaseModel):
    """A single outcome on the capture event channel."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    type: CaptureEventType
    call_id: str
    size: int = 0
    sample_rate: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    sample: Optional[CloneSample] = None
    error: Optional[Exception] = None
    close_code: Optional[int] = None
    final: bool = False


class AudioCaptureSession:
    """Consumes one call's monitor feed and decides when to clone."""

    def __init__(
        self,
        call_id: str,
        session_id: str,
        threshold_seconds: float = 30.0,
        max_buffer_chunks: int = 1000,
        connect_timeout: float = 10.0,
        max_reconnect_attempts: int = 3,
        reconnect_base_delay: float = 1.0,
        reconnect_max_delay: float = 10.0,
        sample_rate_detector: Optional[SampleRateDetector] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.call_id = call_id
        self.session_id = session_id
        self.threshold_seconds = threshold_seconds
        self.max_buffer_chunks = max_buffer_chunks
        self.connect_timeout = connect_timeout
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_base_delay = reconnect_base_delay
        self.reconnect_max_delay = reconnect_max_delay
        self.sample_rate_detector = sample_rate_detector or SampleRateDetector()
        self.clock = clock

        self.events: asyncio.Queue = asyncio.Queue()
        self.buffer: deque = deque(maxlen=max_buffer_chunks)

        self.ws = None
        self.listen_url: Optional[str] = None
        self.chunks_received = 0
        self.total_bytes = 0
        self.audio_start_time: Optional[float] = None
        self.connection_start_time: Optional[datetime] = None
        self.connection_end_time: Optional[datetime] = None
        self.clone_triggered = False
        self.reconnect_attempts = 0

        self._receive_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._closing = False

    @classmethod
    def from_settings(
        cls, call_id: str, session_id: str, config: Settings
    ) -> "AudioCaptureSession":
        """Build a capture session from application settings."""
        detector = SampleRateDetector(
            default_rate=config.default_sample_rate,
            min_observations=config.sample_rate_min_observations,
            stability_tolerance=config.sample_rate_stability_tolerance,
            band_tolerance=config.sample_rate_band_tolerance,
        )
        return cls(
            call_id=call_id,
            session_id=session_id,
            threshold_seconds=config.clone_threshold_seconds,
            max_buffer_chunks=config.audio_buffer_max_chunks,
            connect_timeout=config.audio_connect_timeout_seconds,
            max_reconnect_attempts=config.audio_max_reconnect_attempts,
            reconnect_base_delay=config.audio_reconnect_base_delay_seconds,
            reconnect_max_delay=config.audio_reconnect_max_delay_seconds,
            sample_rate_detector=detector,
        )

    @property
    def is_connected(self) -> bool:
        return self.ws is not None

    @property
    def is_closed(self) -> bool:
        return self._closing

    async def connect(self, listen_url: str, timeout: Optional[float] = None) -> None:
        """Open the monitor feed and start receiving frames.

        Raises:
            AudioConnectionTimeout: No handshake within the timeout.
            AudioConnectionDropped: The connection was refused or failed.
        """
        if self._closing:
            raise AudioCaptureError(f"Capture for call {self.call_id} is closed")

        self.listen_url = listen_url
        timeout = self.connect_timeout if timeout is None else timeout
        logger.info(f"[AUDIO CAPTURE] Connecting to monitor feed for call {self.call_id}...")

        try:
            ws = await asyncio.wait_for(
                websockets.connect(
                    listen_url,
                    max_size=WS_MAX_SIZE,
                    ping_interval=WS_PING_INTERVAL,
                    close_timeout=WS_CLOSE_TIMEOUT,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                f"[AUDIO CAPTURE] Connection timeout after {timeout}s for call {self.call_id}"
            )
            raise AudioConnectionTimeout(
                f"Monitor feed handshake timed out after {timeout}s"
            )
        except (OSError, WebSocketException) as e:
            logger.error(
                f"[AUDIO CAPTURE] Failed to connect for call {self.call_id}: "
                f"{type(e).__name__}: {e}"
            )
            raise AudioConnectionDropped(f"Could not connect to monitor feed: {e}")

        if self._closing:
            await ws.close(code=NORMAL_CLOSURE, reason="Normal closure")
            return

        self.ws = ws
        self.connection_start_time = datetime.utcnow()
        self.reconnect_attempts = 0
        logger.info(f"[AUDIO CAPTURE] Monitor feed connected for call {self.call_id}")
        self._emit(CaptureEventType.CONNECTED)
        self._receive_task = asyncio.create_task(self._receive_loop(ws))

    async def _receive_loop(self, ws) -> None:
        close_code: Optional[int] = None
        try:
            async for message in ws:
                self.handle_message(message)
            close_code = getattr(ws, "close_code", None)
        except ConnectionClosed as e:
            close_code = e.rcvd.code if e.rcvd is not None else ABNORMAL_CLOSURE
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                f"[AUDIO CAPTURE] Receive loop failed for call {self.call_id}: "
                f"{type(e).__name__}: {e}",
                exc_info=True,
            )
            self._emit(CaptureEventType.ERROR, error=e)
            close_code = INTERNAL_ERROR

        self._handle_closed(close_code if close_code is not None else ABNORMAL_CLOSURE)

    def _handle_closed(self, close_code: int) -> None:
        if self.ws is not None:
            self.ws = None
        self.connection_end_time = datetime.utcnow()
        logger.info(
            f"[AUDIO CAPTURE] Monitor feed closed for call {self.call_id}. Code: {close_code}. "
            f"Stats: {self.chunks_received} chunks, {self.total_bytes} bytes"
        )

        if self._closing:
            return

        if close_code == NORMAL_CLOSURE:
            self._emit(CaptureEventType.CLOSED, close_code=close_code, final=True)
            self._closing = True
            return

        self._emit(CaptureEventType.CLOSED, close_code=close_code, final=False)
        self.schedule_reconnect(f"closed with code {close_code}")

    def reconnect_delay(self, attempt: int) -> float:
        """Exponential backoff for the given attempt number (1-based), capped."""
        return min(
            self.reconnect_base_delay * (2 ** (attempt - 1)),
            self.reconnect_max_delay,
        )

    def schedule_reconnect(self, reason: str) -> bool:
        """Schedule a reconnect with backoff. Returns False once attempts are exhausted."""
        if self._closing:
            return False

        if self.reconnect_attempts >= self.max_reconnect_attempts:
            error = AudioConnectionDropped(
                f"Monitor feed for call {self.call_id} lost after "
                f"{self.reconnect_attempts} reconnect attempts ({reason})"
            )
            logger.error(f"[AUDIO CAPTURE] {error}")
            self._emit(CaptureEventType.ERROR, error=error)
            self._emit(CaptureEventType.CLOSED, close_code=ABNORMAL_CLOSURE, final=True)
            self._closing = True
            return False

        self.reconnect_attempts += 1
        delay = self.reconnect_delay(self.reconnect_attempts)
        logger.info(
            f"[AUDIO CAPTURE] Reconnecting call {self.call_id} "
            f"({self.reconnect_attempts}/{self.max_reconnect_attempts}) in {delay:.1f}s ({reason})"
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))
        return True

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._closing or not self.listen_url:
            return
        try:
            await self.connect(self.listen_url)
        except AudioCaptureError as e:
            self.schedule_reconnect(str(e))

    def handle_message(self, data: Any) -> None:
        """Route one websocket frame: bytes are audio, text is metadata."""
        if isinstance(data, (bytes, bytearray, memoryview)):
            self._handle_audio(bytes(data))
        else:
            self._handle_metadata(data)

    def _handle_audio(self, chunk: bytes) -> None:
        self.chunks_received += 1
        self.total_bytes += len(chunk)

        if self.audio_start_time is None:
            self.audio_start_time = self.clock()
            logger.info(f"[AUDIO CAPTURE] Audio recording started for call {self.call_id}")

        self.buffer.append(chunk)

        detected = self.sample_rate_detector.observe_chunk(len(chunk))
        if detected:
            self._emit(CaptureEventType.FORMAT_DETECTED, sample_rate=detected)

        if self.chunks_received % 100 == 0:
            logger.debug(
                f"[AUDIO CAPTURE] Received {self.chunks_received} chunks for call {self.call_id}, "
                f"latest size: {len(chunk)} bytes, total: {self.total_bytes} bytes"
            )

        self._emit(CaptureEventType.CHUNK, size=len(chunk))
        self.check_clone_trigger()

    def _handle_metadata(self, data: Any) -> None:
        try:
            message = json.loads(data)
        except (TypeError, ValueError):
            logger.debug(f"[AUDIO CAPTURE] Non-JSON message on call {self.call_id}: {data!r:.200}")
            return

        if not isinstance(message, dict):
            logger.debug(f"[AUDIO CAPTURE] Ignoring non-object metadata on call {self.call_id}")
            return

        rate = self.sample_rate_detector.observe_metadata(message)
        if rate or message.get("type") == "audio-format":
            self._emit(
                CaptureEventType.FORMAT_DETECTED,
                sample_rate=self.sample_rate_detector.sample_rate,
                metadata=message,
            )
        logger.debug(f"[AUDIO CAPTURE] Metadata on call {self.call_id}: {message}")

    def elapsed_audio_seconds(self) -> float:
        if self.audio_start_time is None:
            return 0.0
        return self.clock() - self.audio_start_time

    def check_clone_trigger(self) -> bool:
        """Fire the clone step once the threshold is crossed. Returns True if it fired now."""
        if self.clone_triggered or self.audio_start_time is None:
            return False
        if self.elapsed_audio_seconds() < self.threshold_seconds:
            return False

        logger.info(
            f"[AUDIO CAPTURE] {self.threshold_seconds:.0f}s of audio captured for call "
            f"{self.call_id}, triggering voice cloning"
        )
        self._fire_clone("threshold")
        return True

    def manual_trigger(self) -> bool:
        """Force the clone step now, for calls shorter than the threshold."""
        if self.clone_triggered or not self.buffer:
            logger.info(
                f"[AUDIO CAPTURE] Manual trigger ignored for call {self.call_id}: "
                f"{'already triggered' if self.clone_triggered else 'no audio buffered'}"
            )
            return False

        logger.info(f"[AUDIO CAPTURE] Manually triggering voice cloning for call {self.call_id}")
        self._fire_clone("manual")
        return True

    def _fire_clone(self, trigger: str) -> None:
        self.clone_triggered = True
        try:
            sample = self.build_clone_sample(trigger)
        except Exception as e:
            logger.error(
                f"[AUDIO CAPTURE] Failed to package clone sample for call {self.call_id}: {e}",
                exc_info=True,
            )
            self._emit(CaptureEventType.ERROR, error=e)
            return
        self._emit(CaptureEventType.CLONE_READY, sample=sample)

    def build_clone_sample(self, trigger: str = "threshold") -> CloneSample:
        """Package the buffered audio as a mono WAV at the determined sample rate."""
        chunks = list(self.buffer)
        if not chunks:
            raise AudioCaptureError(f"No audio buffered for call {self.call_id}")

        caller_pcm = extract_first_channel_chunks(chunks)
        sample_rate = self.sample_rate_detector.sample_rate
        wav = build_wav(caller_pcm, sample_rate)

        logger.info(
            f"[AUDIO CAPTURE] Extracted caller audio for call {self.call_id}: "
            f"{len(caller_pcm)} bytes from {len(chunks)} chunks at {sample_rate} Hz "
            f"({self.sample_rate_detector.source})"
        )
        return CloneSample(
            session_id=self.session_id,
            call_id=self.call_id,
            wav=wav,
            sample_rate=sample_rate,
            sample_rate_source=self.sample_rate_detector.source,
            chunk_count=len(chunks),
            pcm_bytes=len(caller_pcm),
            duration_seconds=round(self.elapsed_audio_seconds(), 1),
            trigger=trigger,
        )

    async def disconnect(self) -> None:
        """Close the feed with a normal closure and cancel pending work. Idempotent."""
        if self._closing and self.ws is None and not self._has_pending_tasks():
            return

        already_closing = self._closing
        self._closing = True

        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None

        ws, self.ws = self.ws, None
        if ws is not None:
            try:
                await ws.close(code=NORMAL_CLOSURE, reason="Normal closure")
            except Exception as e:
                logger.warning(f"[AUDIO CAPTURE] Error closing monitor feed for call {self.call_id}: {e}")

        task, self._receive_task = self._receive_task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self.connection_end_time = self.connection_end_time or datetime.utcnow()
        if not already_closing:
            self._emit(CaptureEventType.CLOSED, close_code=NORMAL_CLOSURE, final=True)
            logger.info(f"[AUDIO CAPTURE] Disconnected from monitor feed for call {self.call_id}")

    def _has_pending_tasks(self) -> bool:
        return any(
            task is not None and not task.done()
            for task in (self._receive_task, self._reconnect_task)
        )

    def _emit(self, event_type: CaptureEventType, **fields: Any) -> None:
        self.events.put_nowait(CaptureEvent(type=event_type, call_id=self.call_id, **fields))

    def get_buffered_audio(self) -> list:
        """Copy of the buffered raw chunks."""
        return list(self.buffer)

    def clear_buffer(self) -> None:
        self.buffer.clear()

    def stats(self) -> Dict[str, Any]:
        return {
            "callId": self.call_id,
            "sessionId": self.session_id,
            "audioChunksReceived": self.chunks_received,
            "totalAudioBytes": self.total_bytes,
            "bufferedChunks": len(self.buffer),
            "connectionStartTime": self.connection_start_time.isoformat() if self.connection_start_time else None,
            "connectionEndTime": self.connection_end_time.isoformat() if self.connection_end_time else None,
            "isConnected": self.is_connected,
            "voiceCloneTriggered": self.clone_triggered,
            "sampleRate": self.sample_rate_detector.sample_rate,
            "sampleRateSource": self.sample_rate_detector.source,
            "reconnectAttempts": self.reconnect_attempts,
            "elapsedAudioSeconds": round(self.elapsed_audio_seconds(), 1),
        }
