"""Webhook event router: demultiplexes call-platform events."""
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, TYPE_CHECKING

from pydantic import BaseModel, ValidationError

from future_self.core.exceptions import MalformedPayloadError
from future_self.services.audio.manager import CaptureManager
from future_self.services.scheduler.call_state import CallStateScheduler
from future_self.services.session.manager import SessionManager
from future_self.services.session.models import SessionStatus

if TYPE_CHECKING:
    from future_self.services.persistence.calls import CallPersistenceService

logger = logging.getLogger(__name__)

CALL_IN_PROGRESS = "in-progress"
PARTIAL_TRANSCRIPT = "partial"


class WebhookEvent(BaseModel):
    """A platform event normalised from either envelope."""

    type: str
    call: Dict[str, Any] = {}
    status: Optional[str] = None
    role: Optional[str] = None
    conversation: List[Dict[str, Any]] = []
    transcript: Optional[str] = None
    transcript_type: Optional[str] = None
    recording_url: Optional[str] = None
    error: Optional[str] = None
    legacy: bool = False

    @property
    def call_id(self) -> Optional[str]:
        return self.call.get("id")

    @property
    def session_id(self) -> Optional[str]:
        metadata = self.call.get("metadata") or {}
        return metadata.get("sessionId") or self.call_id

    @property
    def monitor(self) -> Dict[str, Any]:
        return self.call.get("monitor") or {}


def _as_dict(value: Any, field: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedPayloadError(f"Field '{field}' must be an object")
    return value


def _require_type(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise MalformedPayloadError("Missing or invalid type field")
    return value


def _parse_call(value: Any) -> Dict[str, Any]:
    """Check the parts of ``call`` that routing reads."""
    call = _as_dict(value, "call")
    metadata = _as_dict(call.get("metadata"), "call.metadata")
    _as_dict(call.get("monitor"), "call.monitor")
    identifiers = {
        "call.id": call.get("id"),
        "call.metadata.sessionId": metadata.get("sessionId"),
    }
    for field, value in identifiers.items():
        if value is not None and not isinstance(value, str):
            raise MalformedPayloadError(f"Field '{field}' must be a string")
    return call


def _build_event(**fields: Any) -> WebhookEvent:
    try:
        return WebhookEvent(**fields)
    except ValidationError as e:
        problems = ", ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors()
        )
        raise MalformedPayloadError(f"Invalid field types ({problems})") from e


def parse_event(body: Any) -> WebhookEvent:
    """
    Validate and normalise a webhook body.

    Accepts ``{message: {type, call, ...}}`` and the older flat
    ``{type, call, data}`` envelope.

    Raises:
        MalformedPayloadError: Body is not an object, has no usable type, or
            carries a field of the wrong type
    """
    if not isinstance(body, dict):
        raise MalformedPayloadError("Webhook body must be a JSON object")

    if "message" in body:
        message = body["message"]
        if not isinstance(message, dict):
            raise MalformedPayloadError("Field 'message' must be an object")
        artifact = message.get("artifact") or {}
        conversation = message.get("conversation") or []
        if not isinstance(conversation, list):
            raise MalformedPayloadError("Field 'conversation' must be a list")
        return _build_event(
            type=_require_type(message.get("type")),
            call=_parse_call(message.get("call")),
            status=message.get("status"),
            role=message.get("role"),
            conversation=[m for m in conversation if isinstance(m, dict)],
            transcript=message.get("transcript"),
            transcript_type=message.get("transcriptType"),
            recording_url=message.get("recordingUrl")
            or (artifact.get("recordingUrl") if isinstance(artifact, dict) else None),
            error=message.get("error"),
        )

    if "type" not in body:
        raise MalformedPayloadError("No message field found")

    data = _as_dict(body.get("data"), "data")
    return _build_event(
        type=_require_type(body.get("type")),
        call=_parse_call(body.get("call")),
        role=data.get("role"),
        transcript=data.get("transcript") or data.get("text"),
        transcript_type=data.get("transcriptType"),
        recording_url=data.get("recordingUrl"),
        error=data.get("error") or data.get("message"),
        legacy=True,
    )


class WebhookEventRouter:
    """Routes events to the session manager, capture manager and scheduler.

    Handler failures are logged and never reach the event source.
    """

    def __init__(
        self,
        sessions: SessionManager,
        captures: CaptureManager,
        scheduler: CallStateScheduler,
        persistence: Optional["CallPersistenceService"] = None,
    ):
        self.sessions = sessions
        self.captures = captures
        self.scheduler = scheduler
        self.persistence = persistence

        self._handlers: Dict[str, Callable[[WebhookEvent], Awaitable[None]]] = {
            "status-update": self.handle_status_update,
            "conversation-update": self.handle_conversation_update,
            "speech-update": self.handle_speech_update,
            "transcript": self.handle_transcript,
            "user-interrupted": self.handle_user_interrupted,
            "end-of-call-report": self.handle_call_ended,
            "hang": self.handle_hang,
            "error": self.handle_error,
            # Legacy envelope
            "call-started": self.handle_call_started,
            "call-ended": self.handle_call_ended,
            "recording": self.handle_recording,
        }

    async def route(self, event: WebhookEvent) -> bool:
        """Dispatch one event. Returns False when the type is not handled."""
        handler = self._handlers.get(event.type)
        logger.info(
            f"[WEBHOOK] Event: {event.type} (call: {event.call_id}, session: {event.session_id})"
        )
        if handler is None:
            logger.debug(f"[WEBHOOK] Unhandled event type: {event.type}")
            return False

        try:
            await handler(event)
        except Exception as e:
            logger.error(
                f"[WEBHOOK] Error processing {event.type} for session {event.session_id}: "
                f"{type(e).__name__}: {e}",
                exc_info=True,
            )
        return True

    async def handle_status_update(self, event: WebhookEvent) -> None:
        if event.status == CALL_IN_PROGRESS:
            await self.handle_call_started(event)
        else:
            logger.debug(f"[WEBHOOK] Status update for call {event.call_id}: {event.status}")

    async def handle_call_started(self, event: WebhookEvent) -> None:
        session_id = event.session_id
        if not session_id:
            logger.error("[WEBHOOK] Cannot create session: missing sessionId and call.id")
            return

        is_new = self.sessions.get_session(session_id) is None
        self.sessions.create_session(session_id, event.call_id)

        listen_url = event.monitor.get("listenUrl")
        control_url = event.monitor.get("controlUrl")
        self.sessions.record_monitor_urls(session_id, listen_url, control_url)

        if not is_new:
            return

        self.scheduler.on_call_started(session_id)

        if listen_url:
            self.captures.start(session_id, event.call_id or session_id, listen_url)
        else:
            logger.warning(
                f"[WEBHOOK] No monitor URLs for call {event.call_id}; check the assistant's "
                f"monitorPlan settings. Voice will not be cloned."
            )

    async def handle_conversation_update(self, event: WebhookEvent) -> None:
        session_id = event.session_id
        if not session_id or not self.sessions.get_session(session_id):
            return
        added = self.sessions.add_conversation(session_id, event.conversation)
        logger.debug(f"[WEBHOOK] Conversation update for {session_id}: {added} new entries")

    async def handle_speech_update(self, event: WebhookEvent) -> None:
        logger.debug(f"[WEBHOOK] Speech update: role={event.role}, status={event.status}")

    async def handle_transcript(self, event: WebhookEvent) -> None:
        if event.transcript_type == PARTIAL_TRANSCRIPT:
            return
        session_id = event.session_id
        if not session_id or not event.role or not event.transcript:
            return
        if not self.sessions.get_session(session_id):
            logger.debug(f"[WEBHOOK] Transcript for unknown session {session_id}, ignoring")
            return
        self.sessions.add_transcript(session_id, event.role, event.transcript)

    async def handle_user_interrupted(self, event: WebhookEvent) -> None:
        logger.info(f"[WEBHOOK] User interrupted on call {event.call_id}")

    async def handle_hang(self, event: WebhookEvent) -> None:
        logger.warning(f"[WEBHOOK] Assistant did not respond in time on call {event.call_id}")

    async def handle_recording(self, event: WebhookEvent) -> None:
        session_id = event.session_id
        if session_id and event.recording_url:
            self.sessions.record_recording_url(session_id, event.recording_url)

    async def handle_error(self, event: WebhookEvent) -> None:
        session_id = event.session_id
        logger.error(f"[WEBHOOK] Platform error for session {session_id}: {event.error}")
        if session_id:
            self.sessions.set_status(session_id, SessionStatus.ERROR)

    async def handle_call_ended(self, event: WebhookEvent) -> None:
        session_id = event.session_id
        if event.call_id:
            await self.captures.stop(event.call_id)
        if not session_id:
            return
        if event.recording_url:
            self.sessions.record_recording_url(session_id, event.recording_url)

        session = await self.scheduler.on_call_ended(session_id, self.persistence)
        if session:
            logger.info(
                f"[WEBHOOK] Call ended for {session_id} (status: {session.status}, "
                f"future self: {session.future_self_assistant_id})"
            )
