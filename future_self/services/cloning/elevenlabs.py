"""ElevenLabs voice API client."""
import logging
from typing import Any, Dict, List, Optional

import httpx

from future_self.core.config import Settings, settings

logger = logging.getLogger(__name__)

LIST_PAGE_SIZE = 100


class ElevenLabsClient:
    """Thin async client for the ElevenLabs voice endpoints.

    HTTP errors surface as httpx exceptions; callers decide what they mean.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.elevenlabs.io",
        timeout: float = 120.0,
        connect_timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = httpx.Timeout(timeout, connect=connect_timeout)
        self.transport = transport

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "ElevenLabsClient":
        return cls(
            api_key=config.elevenlabs_api_key,
            base_url=config.elevenlabs_base_url,
            timeout=config.clone_request_timeout_seconds,
            connect_timeout=config.clone_connect_timeout_seconds,
        )

    def _client(self, timeout: Optional[httpx.Timeout] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"xi-api-key": self.api_key},
            timeout=timeout or self.timeout,
            transport=self.transport,
        )

    async def add_voice(
        self,
        name: str,
        audio: bytes,
        description: str = "",
        filename: str = "realtime_audio.wav",
        content_type: str = "audio/wav",
        remove_background_noise: bool = True,
    ) -> Dict[str, Any]:
        """
        Create an instant voice clone from an audio sample.

        Args:
            name: Label for the new voice
            audio: Encoded audio (WAV for live samples)
            description: Free-text description
            filename: File name reported in the multipart upload
            content_type: MIME type of the sample
            remove_background_noise: Ask the provider to denoise the sample

        Returns:
            Provider response body (contains ``voice_id`` on success)
        """
        data = {
            "name": name,
            "description": description,
            "remove_background_noise": "true" if remove_background_noise else "false",
        }
        files = {"files": (filename, audio, content_type)}

        async with self._client() as client:
            response = await client.post("/v1/voices/add", data=data, files=files)
            response.raise_for_status()
            return response.json()

    async def list_voices(self, search: Optional[str] = None) -> List[Dict[str, Any]]:
        """List all voices in the account, following pagination."""
        voices: List[Dict[str, Any]] = []
        params: Dict[str, Any] = {"page_size": LIST_PAGE_SIZE}
        if search:
            params["search"] = search

        async with self._client(httpx.Timeout(30.0)) as client:
            while True:
                response = await client.get("/v2/voices", params=params)
                response.raise_for_status()
                body = response.json()
                voices.extend(body.get("voices", []))

                token = body.get("next_page_token")
                if not body.get("has_more") or not token:
                    break
                params["next_page_token"] = token

        return voices

    async def find_voice_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        """Find a voice whose name matches exactly."""
        for voice in await self.list_voices(search=name):
            if voice.get("name") == name:
                return voice
        return None

    async def delete_voice(self, voice_id: str) -> Dict[str, Any]:
        """Delete a voice."""
        async with self._client(httpx.Timeout(30.0)) as client:
            response = await client.delete(f"/v1/voices/{voice_id}")
            response.raise_for_status()
            return response.json()
