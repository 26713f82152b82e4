"""Clone dispatcher: submits caller samples to the cloning provider."""
import asyncio
import logging
import random
import re
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional, Set

import httpx

from future_self.core.config import Settings, settings
from future_self.core.exceptions import (
    AmbiguousTimeoutError,
    AudioPayloadError,
    AudioPayloadTooLargeError,
    CloneProviderError,
    InsufficientAudioError,
    ProviderRejectedError,
    ProviderTransientError,
)
from future_self.services.cloning.elevenlabs import ElevenLabsClient
from future_self.services.session.manager import SessionManager
from future_self.services.session.models import CloneStatus

logger = logging.getLogger(__name__)

# Request never reached the provider (or never finished uploading): safe to resubmit
TRANSIENT_TRANSPORT_ERRORS = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.PoolTimeout,
    httpx.WriteTimeout,
    httpx.WriteError,
)

# Upload completed but no response: the clone may exist upstream
AMBIGUOUS_TRANSPORT_ERRORS = (
    httpx.ReadTimeout,
    httpx.ReadError,
    httpx.RemoteProtocolError,
)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


def is_transient_status(status_code: int) -> bool:
    """Rate limiting and server errors are worth retrying."""
    return status_code == 429 or status_code >= 500


class CloneDispatcher:
    """Submits one sample per session and records the resulting voice id."""

    def __init__(
        self,
        sessions: SessionManager,
        client: ElevenLabsClient,
        config: Settings = settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.sessions = sessions
        self.client = client
        self.config = config
        self._sleep = sleep
        self._in_flight: Set[str] = set()

    @staticmethod
    def build_label(display_name: str, call_id: str) -> str:
        return f"{display_name}_voice_{call_id[:8]}"

    def validate_audio(self, audio: bytes) -> None:
        """Reject samples the provider is documented to refuse."""
        size = len(audio)
        if size < self.config.min_clone_audio_bytes:
            raise InsufficientAudioError(
                f"Audio sample too small for cloning: {size} bytes "
                f"(minimum {self.config.min_clone_audio_bytes})",
                size,
            )
        if size > self.config.max_clone_audio_bytes:
            raise AudioPayloadTooLargeError(
                f"Audio sample too large for cloning: {size} bytes "
                f"(maximum {self.config.max_clone_audio_bytes})",
                size,
            )

    async def dispatch(
        self,
        session_id: str,
        call_id: str,
        display_name: str,
        audio: bytes,
        filename: str = "realtime_audio.wav",
        content_type: str = "audio/wav",
    ) -> Optional[str]:
        """
        Clone the caller's voice from a packaged WAV sample or a call recording.

        Args:
            session_id: Session to write the voice id into
            call_id: Call the sample came from
            display_name: Human-readable name used in the voice label
            audio: Encoded audio
            filename: File name reported in the upload
            content_type: MIME type of the audio

        Returns:
            The provider voice id, or None when the session is unknown or a
            clone for it is already in flight.

        Raises:
            AudioPayloadError: Sample outside provider bounds (not submitted)
            ProviderRejectedError: Provider refused the sample
            ProviderTransientError: Retries exhausted
            AmbiguousTimeoutError: No response after upload; session left pending
        """
        session = self.sessions.get_session(session_id)
        if not session:
            logger.warning(f"[CLONE] Session not found, skipping clone: {session_id}")
            return None

        if session.voice_clone_completed:
            logger.info(f"[CLONE] Voice already cloned for {session_id}: {session.cloned_voice_id}")
            return session.cloned_voice_id

        if session_id in self._in_flight or session.clone_status in (
            CloneStatus.IN_FLIGHT,
            CloneStatus.AMBIGUOUS,
        ):
            logger.info(f"[CLONE] Clone already in flight for {session_id}, not resubmitting")
            return None

        try:
            self.validate_audio(audio)
        except AudioPayloadError as e:
            logger.warning(f"[CLONE] Rejected sample for {session_id} before upload: {e}")
            self._set_clone_status(session_id, CloneStatus.FAILED)
            raise

        label = self.build_label(display_name, call_id)
        description = f"Real-time voice clone for {display_name} from call {call_id}"

        self._in_flight.add(session_id)
        session.clone_status = CloneStatus.IN_FLIGHT
        session.clone_label = label
        self._export_sample(call_id, display_name, audio, Path(filename).suffix or ".wav")

        started = time.monotonic()
        logger.info(
            f"[CLONE] Submitting {len(audio)} byte sample for {session_id} as '{label}'"
        )
        try:
            voice_id = await self._submit_with_retries(
                session_id, label, description, audio, filename, content_type
            )
        except AmbiguousTimeoutError as e:
            logger.warning(
                f"[CLONE] No response from provider for {session_id} after "
                f"{time.monotonic() - started:.0f}s; clone may still complete upstream. "
                f"Leaving session pending. ({e})"
            )
            self._set_clone_status(session_id, CloneStatus.AMBIGUOUS)
            raise
        except CloneProviderError as e:
            logger.error(f"[CLONE] Voice cloning failed for {session_id}: {type(e).__name__}: {e}")
            self._set_clone_status(session_id, CloneStatus.FAILED)
            raise
        finally:
            self._in_flight.discard(session_id)

        logger.info(
            f"[CLONE] Voice clone created for {session_id} in "
            f"{time.monotonic() - started:.1f}s: {voice_id}"
        )
        self.record_voice(session_id, voice_id)
        return voice_id

    def retry_delay(self, attempt: int) -> float:
        """Capped exponential backoff with jitter for a 1-based attempt number."""
        delay = min(
            self.config.clone_retry_base_delay_seconds * (2 ** (attempt - 1)),
            self.config.clone_retry_max_delay_seconds,
        )
        return delay * random.uniform(0.5, 1.0)

    async def _submit_with_retries(
        self,
        session_id: str,
        label: str,
        description: str,
        audio: bytes,
        filename: str,
        content_type: str,
    ) -> str:
        max_attempts = max(1, self.config.clone_max_attempts)
        for attempt in range(1, max_attempts + 1):
            try:
                return await self._submit_once(label, description, audio, filename, content_type)
            except ProviderTransientError as e:
                if attempt >= max_attempts:
                    raise
                delay = self.retry_delay(attempt)
                logger.warning(
                    f"[CLONE] Transient failure for {session_id} "
                    f"(attempt {attempt}/{max_attempts}): {e}. Retrying in {delay:.1f}s"
                )
                await self._sleep(delay)
        raise ProviderTransientError("Clone retries exhausted")

    async def _submit_once(
        self, label: str, description: str, audio: bytes, filename: str, content_type: str
    ) -> str:
        try:
            body = await self.client.add_voice(
                name=label,
                audio=audio,
                description=description,
                filename=filename,
                content_type=content_type,
                remove_background_noise=self.config.clone_remove_background_noise,
            )
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = e.response.text[:500]
            if is_transient_status(status):
                raise ProviderTransientError(f"Provider returned {status}: {detail}", status)
            raise ProviderRejectedError(f"Provider rejected sample ({status}): {detail}", status)
        except TRANSIENT_TRANSPORT_ERRORS as e:
            raise ProviderTransientError(f"{type(e).__name__}: {e}")
        except AMBIGUOUS_TRANSPORT_ERRORS as e:
            raise AmbiguousTimeoutError(f"{type(e).__name__}: {e}")
        except httpx.TransportError as e:
            raise ProviderTransientError(f"{type(e).__name__}: {e}")
        except ValueError as e:
            raise ProviderRejectedError(f"Invalid JSON from provider: {e}")

        voice_id = body.get("voice_id") if isinstance(body, dict) else None
        if not voice_id:
            raise ProviderRejectedError(f"No voice_id returned from provider: {body}")
        return voice_id

    async def reconcile(self, session_id: str) -> Optional[str]:
        """Resolve an ambiguous clone by looking its label up at the provider."""
        session = self.sessions.get_session(session_id)
        if not session:
            return None
        if session.voice_clone_completed:
            return session.cloned_voice_id
        if session.clone_status != CloneStatus.AMBIGUOUS or not session.clone_label:
            return None

        label = session.clone_label
        try:
            voice = await self.client.find_voice_by_name(label)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"[CLONE] Could not reconcile clone '{label}' for {session_id}: {e}")
            return None

        if not voice or not voice.get("voice_id"):
            logger.debug(f"[CLONE] Clone '{label}' not found upstream yet for {session_id}")
            return None

        logger.info(f"[CLONE] Ambiguous clone for {session_id} landed upstream: {voice['voice_id']}")
        self.record_voice(session_id, voice["voice_id"])
        return voice["voice_id"]

    def record_voice(self, session_id: str, voice_id: str) -> bool:
        """Write the voice id into the session. The first id recorded wins."""
        session = self.sessions.get_session(session_id)
        if not session:
            logger.warning(f"[CLONE] Session {session_id} ended before voice {voice_id} was recorded")
            return False
        if session.cloned_voice_id and session.cloned_voice_id != voice_id:
            logger.warning(
                f"[CLONE] Session {session_id} already has voice {session.cloned_voice_id}, "
                f"ignoring {voice_id}"
            )
            return False

        session.cloned_voice_id = voice_id
        session.voice_clone_completed = True
        session.clone_status = CloneStatus.COMPLETED
        return True

    def _set_clone_status(self, session_id: str, status: CloneStatus) -> None:
        session = self.sessions.get_session(session_id)
        if session and not session.voice_clone_completed:
            session.clone_status = status

    def _export_sample(
        self, call_id: str, display_name: str, audio: bytes, suffix: str = ".wav"
    ) -> Optional[Path]:
        """Keep a local copy of the sample when an export directory is configured."""
        if not self.config.audio_export_dir:
            return None

        export_dir = Path(self.config.audio_export_dir)
        safe_name = _UNSAFE_FILENAME_CHARS.sub("_", display_name)
        path = export_dir / f"voice_{call_id}_{safe_name}_{int(time.time() * 1000)}{suffix}"
        try:
            export_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(audio)
        except OSError as e:
            logger.warning(f"[CLONE] Could not write sample export {path}: {e}")
            return None
        logger.info(f"[CLONE] Sample exported to {path}")
        return path
