"""Future-self persona creation."""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, NamedTuple

import httpx

from future_self.core.config import Settings, settings
from future_self.core.exceptions import PersonaCreationError
from future_self.services.persona.prompt import build_assistant_config, build_voice
from future_self.services.persona.vapi import VapiClient
from future_self.services.session.models import Session

logger = logging.getLogger(__name__)


class PersonaResult(NamedTuple):
    assistant_id: str
    voice: Dict[str, str]
    used_cloned_voice: bool


def is_voice_not_ready(error: httpx.HTTPStatusError) -> bool:
    """The platform has not yet synced the freshly cloned voice."""
    return "not found" in error.response.text.lower()


class PersonaCreator:
    """Creates the future-self assistant for a session."""

    def __init__(
        self,
        client: VapiClient,
        config: Settings = settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.config = config
        self._sleep = sleep

    def retry_delay(self, attempt: int) -> float:
        return min(
            self.config.persona_retry_base_delay_seconds * (2 ** (attempt - 1)),
            self.config.persona_retry_max_delay_seconds,
        )

    async def create(self, session: Session) -> PersonaResult:
        """
        Create the assistant, preferring the session's cloned voice.

        The cloned voice is retried while the platform reports it missing or
        the request fails in transit. After that the default voice is used.

        Raises:
            PersonaCreationError: The default voice also failed
        """
        if session.cloned_voice_id:
            voice = build_voice(self.config.cloned_voice_provider, session.cloned_voice_id)
            try:
                assistant_id = await self._create_with_voice(session, voice, cloned=True)
                return PersonaResult(assistant_id, voice, True)
            except (httpx.HTTPError, ValueError, PersonaCreationError) as e:
                logger.warning(
                    f"[PERSONA] Cloned voice failed for {session.id}, "
                    f"falling back to default voice: {type(e).__name__}: {e}"
                )
        else:
            logger.info(f"[PERSONA] No cloned voice for {session.id}, using default voice")

        voice = build_voice(self.config.default_voice_provider, self.config.default_voice_id)
        try:
            assistant_id = await self._create_with_voice(session, voice, cloned=False)
        except (httpx.HTTPError, ValueError, PersonaCreationError) as e:
            raise PersonaCreationError(
                f"Could not create future-self assistant for {session.id}: "
                f"{type(e).__name__}: {e}"
            ) from e
        return PersonaResult(assistant_id, voice, False)

    async def _create_with_voice(self, session: Session, voice: Dict[str, str], cloned: bool) -> str:
        max_attempts = max(1, self.config.persona_max_attempts)
        for attempt in range(1, max_attempts + 1):
            logger.info(
                f"[PERSONA] Creating assistant for {session.id} "
                f"(voice: {voice['provider']}/{voice['voiceId']}, attempt {attempt}/{max_attempts})"
            )
            try:
                return await self._attempt(session, voice)
            except httpx.HTTPStatusError as e:
                retryable = e.response.status_code == 429 or e.response.status_code >= 500
                if cloned and is_voice_not_ready(e):
                    retryable = True
                logger.error(
                    f"[PERSONA] Assistant API error for {session.id}: "
                    f"{e.response.status_code} {e.response.text[:300]}"
                )
                if not retryable or attempt >= max_attempts:
                    raise
            except httpx.TransportError as e:
                logger.error(f"[PERSONA] Assistant request failed for {session.id}: {type(e).__name__}: {e}")
                if attempt >= max_attempts:
                    raise

            delay = self.retry_delay(attempt)
            logger.info(f"[PERSONA] Waiting {delay:.0f}s before retry {attempt + 1} for {session.id}")
            await self._sleep(delay)

        raise PersonaCreationError(f"Assistant creation attempts exhausted for {session.id}")

    async def _attempt(self, session: Session, voice: Dict[str, str]) -> str:
        assistant_config = build_assistant_config(session, voice, self.config)
        body = await self.client.create_assistant(assistant_config)
        assistant_id = body.get("id") if isinstance(body, dict) else None
        if not assistant_id:
            raise PersonaCreationError(f"Assistant API returned no id: {body}")
        logger.info(f"[PERSONA] Future self assistant created for {session.id}: {assistant_id}")
        return assistant_id
