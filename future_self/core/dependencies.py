"""FastAPI dependencies."""
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from future_self.core.config import settings
from future_self.db.database import AsyncSessionLocal, get_db
from future_self.services.audio.manager import CaptureManager
from future_self.services.cloning.dispatcher import CloneDispatcher
from future_self.services.cloning.elevenlabs import ElevenLabsClient
from future_self.services.extraction import extract_user_name, make_problem_extractor
from future_self.services.persistence.calls import CallPersistenceService
from future_self.services.persona.creator import PersonaCreator
from future_self.services.persona.vapi import VapiClient
from future_self.services.scheduler.call_state import CallStateScheduler
from future_self.services.session.manager import SessionManager
from future_self.services.session.store import InMemorySessionStore, SessionStore
from future_self.services.webhooks.router import WebhookEventRouter


@lru_cache
def get_session_store() -> SessionStore:
    """Process-wide session store."""
    return InMemorySessionStore()


@lru_cache
def get_session_manager() -> SessionManager:
    return SessionManager(
        get_session_store(),
        name_extractor=extract_user_name,
        problem_extractor=make_problem_extractor(settings.problem_min_length),
        finished_retention_seconds=settings.finished_session_retention_seconds,
    )


@lru_cache
def get_elevenlabs_client() -> ElevenLabsClient:
    return ElevenLabsClient.from_settings(settings)


@lru_cache
def get_vapi_client() -> VapiClient:
    return VapiClient.from_settings(settings)


@lru_cache
def get_clone_dispatcher() -> CloneDispatcher:
    return CloneDispatcher(get_session_manager(), get_elevenlabs_client(), settings)


@lru_cache
def get_scheduler() -> CallStateScheduler:
    return CallStateScheduler(
        get_session_manager(),
        get_clone_dispatcher(),
        PersonaCreator(get_vapi_client(), settings),
        settings,
        recordings=get_vapi_client(),
        db_factory=AsyncSessionLocal,
    )


@lru_cache
def get_capture_manager() -> CaptureManager:
    """Capture manager whose clone samples go to the scheduler."""
    return CaptureManager(settings, clone_handler=get_scheduler().handle_clone_sample)


def get_call_persistence(db: AsyncSession = Depends(get_db)) -> CallPersistenceService:
    return CallPersistenceService(db)


def get_event_router(
    persistence: CallPersistenceService = Depends(get_call_persistence),
) -> WebhookEventRouter:
    """Get a webhook router bound to this request's database session."""
    return WebhookEventRouter(
        get_session_manager(),
        get_capture_manager(),
        get_scheduler(),
        persistence,
    )
