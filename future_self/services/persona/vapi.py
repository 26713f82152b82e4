"""Vapi assistant API client."""
import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from future_self.core.config import Settings, settings

logger = logging.getLogger(__name__)


class VapiClient:
    """Async client for the Vapi assistant endpoints.

    HTTP errors surface as httpx exceptions; callers decide what they mean.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.vapi.ai",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "VapiClient":
        return cls(
            api_key=config.vapi_api_key,
            base_url=config.vapi_base_url,
            timeout=config.vapi_timeout_seconds,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
            transport=self.transport,
        )

    async def create_assistant(self, assistant_config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a new assistant.

        Args:
            assistant_config: Assistant definition (name, voice, model, ...)

        Returns:
            Created assistant (contains ``id``)
        """
        async with self._client() as client:
            response = await client.post("/assistant", json=assistant_config)
            response.raise_for_status()
            return response.json()

    async def get_assistant(self, assistant_id: str) -> Dict[str, Any]:
        async with self._client() as client:
            response = await client.get(f"/assistant/{assistant_id}")
            response.raise_for_status()
            return response.json()

    async def configure_assistant(self, assistant_id: str, webhook_url: str) -> Dict[str, Any]:
        """Point an assistant's events at our webhook and enable its monitor feed."""
        payload = {
            "serverUrl": webhook_url,
            "monitorPlan": {
                "listenEnabled": True,
                "controlEnabled": True,
            },
        }
        async with self._client() as client:
            response = await client.patch(f"/assistant/{assistant_id}", json=payload)
            response.raise_for_status()
            logger.info(f"[PERSONA] Assistant {assistant_id} configured with server URL {webhook_url}")
            return response.json()

    async def fetch_recording(self, recording_url: str, timeout: float = 60.0) -> Tuple[bytes, str]:
        """
        Download a call recording from platform storage.

        Recording URLs are pre-signed, so no API key is sent.

        Returns:
            Audio bytes and the reported content type
        """
        async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
            response = await client.get(recording_url, follow_redirects=True)
            response.raise_for_status()
            content_type = response.headers.get("content-type", "audio/wav").split(";")[0].strip()
            logger.info(
                f"[PERSONA] Downloaded call recording ({len(response.content)} bytes, {content_type})"
            )
            return response.content, content_type
