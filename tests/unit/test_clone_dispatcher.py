"""Unit tests for the ElevenLabs client and clone dispatcher."""
import asyncio

import httpx
import pytest

from future_self.core.exceptions import (
    AmbiguousTimeoutError,
    AudioPayloadTooLargeError,
    InsufficientAudioError,
    ProviderRejectedError,
    ProviderTransientError,
)
from future_self.services.audio.wav import build_wav
from future_self.services.cloning.dispatcher import CloneDispatcher
from future_self.services.cloning.elevenlabs import ElevenLabsClient
from future_self.services.session.models import CloneStatus, SessionStatus

CALL_ID = "call-1234567890"
SAMPLE = build_wav(b"\x01\x00" * 4000, 16000)


class ProviderStub:
    """Scripted provider: each request pops the next response or exception."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, type) and issubclass(outcome, Exception):
            raise outcome("simulated", request=request)
        return outcome


def make_dispatcher(session_manager, test_settings, instant_sleep, stub):
    client = ElevenLabsClient("test-key", transport=httpx.MockTransport(stub))
    return CloneDispatcher(session_manager, client, test_settings, sleep=instant_sleep)


@pytest.fixture
def session(session_manager):
    return session_manager.create_session("s1", CALL_ID)


class TestDispatchSuccess:
    """Test the happy path."""

    @pytest.mark.asyncio
    async def test_records_voice_id(self, session_manager, session, test_settings, instant_sleep):
        stub = ProviderStub(httpx.Response(200, json={"voice_id": "voice-123"}))
        dispatcher = make_dispatcher(session_manager, test_settings, instant_sleep, stub)

        voice_id = await dispatcher.dispatch("s1", CALL_ID, "Alice", SAMPLE)

        assert voice_id == "voice-123"
        assert session.cloned_voice_id == "voice-123"
        assert session.voice_clone_completed is True
        assert session.clone_status == CloneStatus.COMPLETED
        assert session.clone_label == "Alice_voice_call-123"

        request = stub.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/v1/voices/add"
        assert request.headers["xi-api-key"] == "test-key"
        body = request.content
        assert b'name="name"' in body
        assert b"Alice_voice_call-123" in body
        assert b'filename="realtime_audio.wav"' in body

    @pytest.mark.asyncio
    async def test_concurrent_dispatch_sends_one_request(
        self, session_manager, session, test_settings, instant_sleep
    ):
        stub = ProviderStub(httpx.Response(200, json={"voice_id": "voice-123"}))
        dispatcher = make_dispatcher(session_manager, test_settings, instant_sleep, stub)

        results = await asyncio.gather(
            dispatcher.dispatch("s1", CALL_ID, "Alice", SAMPLE),
            dispatcher.dispatch("s1", CALL_ID, "Alice", SAMPLE),
        )

        assert len(stub.requests) == 1
        assert "voice-123" in results
        assert session.cloned_voice_id == "voice-123"

    @pytest.mark.asyncio
    async def test_unknown_session_is_a_no_op(self, session_manager, test_settings, instant_sleep):
        stub = ProviderStub(httpx.Response(200, json={"voice_id": "voice-123"}))
        dispatcher = make_dispatcher(session_manager, test_settings, instant_sleep, stub)

        assert await dispatcher.dispatch("missing", CALL_ID, "Alice", SAMPLE) is None
        assert stub.requests == []

    @pytest.mark.asyncio
    async def test_exports_sample(self, session_manager, session, test_settings, instant_sleep, tmp_path):
        stub = ProviderStub(httpx.Response(200, json={"voice_id": "voice-123"}))
        config = test_settings.model_copy(update={"audio_export_dir": str(tmp_path)})
        client = ElevenLabsClient("test-key", transport=httpx.MockTransport(stub))
        dispatcher = CloneDispatcher(session_manager, client, config, sleep=instant_sleep)

        await dispatcher.dispatch("s1", CALL_ID, "Alice Smith", SAMPLE)

        exported = list(tmp_path.glob("*.wav"))
        assert len(exported) == 1
        assert exported[0].read_bytes() == SAMPLE
        assert "Alice_Smith" in exported[0].name

    @pytest.mark.asyncio
    async def test_recording_upload_keeps_its_format(
        self, session_manager, session, test_settings, instant_sleep
    ):
        stub = ProviderStub(httpx.Response(200, json={"voice_id": "voice-123"}))
        dispatcher = make_dispatcher(session_manager, test_settings, instant_sleep, stub)
        recording = b"ID3" + b"\x00" * 500

        await dispatcher.dispatch(
            "s1", CALL_ID, "Alice", recording, filename="call_recording.mp3", content_type="audio/mpeg"
        )

        body = stub.requests[0].content
        assert b'filename="call_recording.mp3"' in body
        assert b"Content-Type: audio/mpeg" in body


class TestPayloadBounds:
    """Test size validation before upload."""

    @pytest.mark.asyncio
    async def test_too_small(self, session_manager, session, test_settings, instant_sleep):
        stub = ProviderStub(httpx.Response(200, json={"voice_id": "voice-123"}))
        dispatcher = make_dispatcher(session_manager, test_settings, instant_sleep, stub)

        with pytest.raises(InsufficientAudioError):
            await dispatcher.dispatch("s1", CALL_ID, "Alice", b"RIFF")

        assert stub.requests == []
        assert session.clone_status == CloneStatus.FAILED

    @pytest.mark.asyncio
    async def test_too_large(self, session_manager, session, test_settings, instant_sleep):
        stub = ProviderStub(httpx.Response(200, json={"voice_id": "voice-123"}))
        config = test_settings.model_copy(update={"max_clone_audio_bytes": 1000})
        client = ElevenLabsClient("test-key", transport=httpx.MockTransport(stub))
        dispatcher = CloneDispatcher(session_manager, client, config, sleep=instant_sleep)

        with pytest.raises(AudioPayloadTooLargeError):
            await dispatcher.dispatch("s1", CALL_ID, "Alice", SAMPLE)
        assert stub.requests == []


class TestFailureClassification:
    """Test transient, rejected and ambiguous outcomes."""

    @pytest.mark.asyncio
    async def test_rejection_is_terminal(self, session_manager, session, test_settings, instant_sleep):
        stub = ProviderStub(httpx.Response(400, json={"detail": "audio too noisy"}))
        dispatcher = make_dispatcher(session_manager, test_settings, instant_sleep, stub)

        with pytest.raises(ProviderRejectedError) as exc_info:
            await dispatcher.dispatch("s1", CALL_ID, "Alice", SAMPLE)

        assert exc_info.value.status_code == 400
        assert len(stub.requests) == 1
        assert session.clone_status == CloneStatus.FAILED
        assert session.voice_clone_completed is False

    @pytest.mark.asyncio
    async def test_missing_voice_id_is_rejection(self, session_manager, session, test_settings, instant_sleep):
        stub = ProviderStub(httpx.Response(200, json={"status": "ok"}))
        dispatcher = make_dispatcher(session_manager, test_settings, instant_sleep, stub)

        with pytest.raises(ProviderRejectedError):
            await dispatcher.dispatch("s1", CALL_ID, "Alice", SAMPLE)

    @pytest.mark.asyncio
    async def test_transient_status_is_retried(self, session_manager, session, test_settings, instant_sleep):
        stub = ProviderStub(
            httpx.Response(503, text="busy"),
            httpx.Response(429, text="slow down"),
            httpx.Response(200, json={"voice_id": "voice-123"}),
        )
        dispatcher = make_dispatcher(session_manager, test_settings, instant_sleep, stub)

        assert await dispatcher.dispatch("s1", CALL_ID, "Alice", SAMPLE) == "voice-123"
        assert len(stub.requests) == 3
        assert len(instant_sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_connect_error_is_retried(self, session_manager, session, test_settings, instant_sleep):
        stub = ProviderStub(httpx.ConnectError, httpx.Response(200, json={"voice_id": "voice-9"}))
        dispatcher = make_dispatcher(session_manager, test_settings, instant_sleep, stub)

        assert await dispatcher.dispatch("s1", CALL_ID, "Alice", SAMPLE) == "voice-9"
        assert len(stub.requests) == 2

    @pytest.mark.asyncio
    async def test_transient_attempts_are_bounded(self, session_manager, session, test_settings, instant_sleep):
        stub = ProviderStub(httpx.Response(500, text="boom"))
        dispatcher = make_dispatcher(session_manager, test_settings, instant_sleep, stub)

        with pytest.raises(ProviderTransientError):
            await dispatcher.dispatch("s1", CALL_ID, "Alice", SAMPLE)

        assert len(stub.requests) == test_settings.clone_max_attempts
        assert session.clone_status == CloneStatus.FAILED

    @pytest.mark.asyncio
    async def test_read_timeout_is_ambiguous(self, session_manager, session, test_settings, instant_sleep):
        """No response after upload leaves the clone pending and is never resubmitted."""
        stub = ProviderStub(httpx.ReadTimeout)
        dispatcher = make_dispatcher(session_manager, test_settings, instant_sleep, stub)

        with pytest.raises(AmbiguousTimeoutError):
            await dispatcher.dispatch("s1", CALL_ID, "Alice", SAMPLE)

        assert len(stub.requests) == 1
        assert session.clone_status == CloneStatus.AMBIGUOUS
        assert session.voice_clone_completed is False
        assert session.status != SessionStatus.ERROR

        assert await dispatcher.dispatch("s1", CALL_ID, "Alice", SAMPLE) is None
        assert len(stub.requests) == 1

    def test_retry_delay_is_capped(self, session_manager, test_settings):
        config = test_settings.model_copy(
            update={"clone_retry_base_delay_seconds": 2.0, "clone_retry_max_delay_seconds": 20.0}
        )
        dispatcher = CloneDispatcher(session_manager, ElevenLabsClient("k"), config)

        assert 1.0 <= dispatcher.retry_delay(1) <= 2.0
        assert 10.0 <= dispatcher.retry_delay(10) <= 20.0


class TestReconcile:
    """Test resolving ambiguous clones by label."""

    @pytest.mark.asyncio
    async def test_records_voice_that_landed(self, session_manager, session, test_settings, instant_sleep):
        session.clone_status = CloneStatus.AMBIGUOUS
        session.clone_label = "Alice_voice_call-123"

        def provider(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v2/voices"
            return httpx.Response(
                200,
                json={
                    "voices": [
                        {"voice_id": "other", "name": "Alice_voice_call-999"},
                        {"voice_id": "voice-landed", "name": "Alice_voice_call-123"},
                    ],
                    "has_more": False,
                },
            )

        dispatcher = make_dispatcher(session_manager, test_settings, instant_sleep, provider)

        assert await dispatcher.reconcile("s1") == "voice-landed"
        assert session.voice_clone_completed is True
        assert session.clone_status == CloneStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_not_landed_yet(self, session_manager, session, test_settings, instant_sleep):
        session.clone_status = CloneStatus.AMBIGUOUS
        session.clone_label = "Alice_voice_call-123"
        stub = ProviderStub(httpx.Response(200, json={"voices": [], "has_more": False}))
        dispatcher = make_dispatcher(session_manager, test_settings, instant_sleep, stub)

        assert await dispatcher.reconcile("s1") is None
        assert session.clone_status == CloneStatus.AMBIGUOUS

    @pytest.mark.asyncio
    async def test_only_for_ambiguous_clones(self, session_manager, session, test_settings, instant_sleep):
        stub = ProviderStub(httpx.Response(200, json={"voices": [], "has_more": False}))
        dispatcher = make_dispatcher(session_manager, test_settings, instant_sleep, stub)

        assert await dispatcher.reconcile("s1") is None
        assert stub.requests == []


class TestElevenLabsClient:
    """Test pagination and deletion."""

    @pytest.mark.asyncio
    async def test_list_voices_follows_pages(self):
        pages = {
            None: {"voices": [{"voice_id": "a"}], "has_more": True, "next_page_token": "t2"},
            "t2": {"voices": [{"voice_id": "b"}], "has_more": False},
        }

        def provider(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=pages[request.url.params.get("next_page_token")])

        client = ElevenLabsClient("k", transport=httpx.MockTransport(provider))
        voices = await client.list_voices()

        assert [v["voice_id"] for v in voices] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_delete_voice(self):
        def provider(request: httpx.Request) -> httpx.Response:
            assert request.method == "DELETE"
            assert request.url.path == "/v1/voices/voice-1"
            return httpx.Response(200, json={"status": "ok"})

        client = ElevenLabsClient("k", transport=httpx.MockTransport(provider))
        assert await client.delete_voice("voice-1") == {"status": "ok"}
