"""Unit tests for the bulk voice deletion tool."""
import httpx
import pytest

from future_self.services.cloning.elevenlabs import ElevenLabsClient
from future_self.tools.delete_voices import DeletionSummary, delete_voices, parse_args

VOICES = [
    {"voice_id": "v1", "name": "Alice_voice_call-123", "category": "cloned"},
    {"voice_id": "v2", "name": "Rachel", "category": "premade"},
    {"voice_id": "v3", "name": "Bob_voice_call-456", "category": "cloned"},
]


class FakeAccount:
    """In-memory voice account behind a mock transport."""

    def __init__(self, voices, failing=()):
        self.voices = list(voices)
        self.failing = set(failing)
        self.deleted = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET" and request.url.path == "/v2/voices":
            return httpx.Response(200, json={"voices": self.voices, "has_more": False})
        if request.method == "DELETE":
            voice_id = request.url.path.rsplit("/", 1)[-1]
            if voice_id in self.failing:
                return httpx.Response(500, text="internal error")
            self.deleted.append(voice_id)
            return httpx.Response(200, json={"status": "ok"})
        return httpx.Response(404)

    def client(self) -> ElevenLabsClient:
        return ElevenLabsClient("k", transport=httpx.MockTransport(self))


class TestDeleteVoices:
    """Test the deletion loop."""

    @pytest.mark.asyncio
    async def test_deletes_everything(self):
        account = FakeAccount(VOICES)
        lines = []

        summary = await delete_voices(account.client(), echo=lines.append)

        assert summary == DeletionSummary(3, 3, 0)
        assert account.deleted == ["v1", "v2", "v3"]
        assert lines[-1] == "All done."
        assert any("v2 (Rachel) ... ok" in line for line in lines)

    @pytest.mark.asyncio
    async def test_dry_run_deletes_nothing(self):
        account = FakeAccount(VOICES)
        lines = []

        summary = await delete_voices(account.client(), dry_run=True, echo=lines.append)

        assert summary == DeletionSummary(3, 0, 0)
        assert account.deleted == []
        assert "Would delete 3 voice(s)..." in lines

    @pytest.mark.asyncio
    async def test_cloned_only(self):
        account = FakeAccount(VOICES)

        summary = await delete_voices(account.client(), cloned_only=True, echo=lambda line: None)

        assert summary.found == 2
        assert account.deleted == ["v1", "v3"]

    @pytest.mark.asyncio
    async def test_failures_are_counted_and_skipped(self):
        account = FakeAccount(VOICES, failing={"v2"})
        lines = []

        summary = await delete_voices(account.client(), echo=lines.append)

        assert summary == DeletionSummary(3, 2, 1)
        assert account.deleted == ["v1", "v3"]
        assert any("v2 (Rachel) ... failed" in line for line in lines)

    @pytest.mark.asyncio
    async def test_empty_account(self):
        lines = []

        summary = await delete_voices(FakeAccount([]).client(), echo=lines.append)

        assert summary == DeletionSummary(0, 0, 0)
        assert lines[-1] == "No voices found - nothing to delete."


class TestParseArgs:

    def test_defaults(self):
        args = parse_args([])
        assert (args.dry_run, args.yes, args.cloned_only) == (False, False, False)

    def test_flags(self):
        args = parse_args(["--dry-run", "--yes", "--cloned-only"])
        assert (args.dry_run, args.yes, args.cloned_only) == (True, True, True)
