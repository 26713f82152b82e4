"""Counselor assistant setup endpoint."""
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from future_self.core.config import settings
from future_self.core.dependencies import get_vapi_client
from future_self.services.persona.vapi import VapiClient

router = APIRouter()
logger = logging.getLogger(__name__)


class SetupAssistantRequest(BaseModel):
    """Assistant setup request."""
    assistantId: Optional[str] = None
    webhookUrl: Optional[str] = None


@router.post("/api/vapi/setup-assistant")
async def setup_assistant(
    request: SetupAssistantRequest,
    vapi: VapiClient = Depends(get_vapi_client),
):
    """Point the counselor assistant at our webhook and enable its monitor feed."""
    if not request.webhookUrl:
        raise HTTPException(status_code=400, detail="webhookUrl is required in request body")

    assistant_id = request.assistantId or settings.counselor_assistant_id
    if not assistant_id:
        raise HTTPException(
            status_code=400,
            detail="assistantId is required when COUNSELOR_ASSISTANT_ID is not configured",
        )

    logger.info(f"[SETUP] Configuring assistant {assistant_id} with webhook {request.webhookUrl}")
    try:
        assistant = await vapi.configure_assistant(assistant_id, request.webhookUrl)
    except httpx.HTTPStatusError as e:
        logger.error(
            f"[SETUP] Assistant API error for {assistant_id}: "
            f"{e.response.status_code} {e.response.text[:300]}"
        )
        raise HTTPException(
            status_code=e.response.status_code,
            detail=f"Vapi API error: {e.response.status_code} {e.response.text}",
        )
    except httpx.HTTPError as e:
        logger.error(f"[SETUP] Failed to update assistant {assistant_id}: {type(e).__name__}: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to update assistant: {e}")

    return {
        "success": True,
        "assistant": assistant,
        "message": "Assistant updated with webhook URL and monitor plan enabled",
    }
