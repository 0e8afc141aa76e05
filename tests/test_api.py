"""
Tests for the HTTP surface:
- POST /chat-audio/ success and failure bodies
- Upload lifecycle (removed after success, kept after failure)
- GET /download-audio/{file} serving and 404s
- Concurrent uploads each get their own reply
- Startup refuses to run without credentials
"""
import asyncio
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from config.settings import DialogueConfig, Settings
from core.errors import ConfigError


def _clip(text: str, name: str = "hello_test.mp3") -> dict:
    return {"audio": (name, text.encode("utf-8"), "audio/mpeg")}


def _staged_uploads(settings) -> list[Path]:
    return [p for p in Path(settings.storage.upload_dir).iterdir() if p.is_file()]


@pytest.fixture
def app(settings, orchestrator):
    return create_app(settings=settings, orchestrator=orchestrator)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


# ══════════════════════════════════════════════════════════════
#  CHAT AUDIO
# ══════════════════════════════════════════════════════════════

class TestChatAudio:

    def test_success_body(self, client):
        resp = client.post("/chat-audio/", files=_clip("What services do you offer?"))
        assert resp.status_code == 200
        body = resp.json()
        assert set(body) == {"audio_reply", "duration_seconds", "transcript", "reply"}
        assert body["audio_reply"].startswith("assistant_response_")
        assert body["audio_reply"].endswith(".mp3")
        assert body["duration_seconds"] == pytest.approx(3.2)
        assert body["transcript"] == "What services do you offer?"
        assert body["reply"] == "Reply to: What services do you offer?"

    def test_upload_removed_after_success(self, client, settings):
        resp = client.post("/chat-audio/", files=_clip("hi"))
        assert resp.status_code == 200
        assert _staged_uploads(settings) == []

    def test_upload_keeps_its_extension_while_processing(self, client, transcoder):
        client.post("/chat-audio/", files=_clip("hi", name="Voice Note.OGG"))
        staged = transcoder.calls[0][1]
        assert staged.suffix == ".ogg"
        assert staged.name != "Voice Note.OGG"

    def test_transcode_failure_returns_500(self, client, transcoder, settings):
        transcoder.fail_normalize = True
        resp = client.post("/chat-audio/", files=_clip("garbage"))
        assert resp.status_code == 500
        assert resp.json() == {
            "error": "Processing failed",
            "details": "Invalid data found when processing input",
        }
        # failed requests leave the upload in place
        assert len(_staged_uploads(settings)) == 1

    def test_dialogue_failure_returns_500(self, client, completions):
        completions.choices = []
        resp = client.post("/chat-audio/", files=_clip("hello"))
        assert resp.status_code == 500
        assert resp.json()["error"] == "Processing failed"
        assert "no completions" in resp.json()["details"]

    def test_missing_audio_field_returns_500(self, client, transcoder):
        resp = client.post("/chat-audio/", files={"file": ("a.mp3", b"x", "audio/mpeg")})
        assert resp.status_code == 500
        assert resp.json()["error"] == "Processing failed"
        assert "audio" in resp.json()["details"]
        assert transcoder.calls == []

    def test_text_audio_field_returns_500(self, client, transcoder):
        resp = client.post("/chat-audio/", data={"audio": "not a file"})
        assert resp.status_code == 500
        assert resp.json() == {
            "error": "Processing failed",
            "details": "No audio file uploaded in field 'audio'",
        }
        assert transcoder.calls == []

    @pytest.mark.asyncio
    async def test_concurrent_requests_get_their_own_reply(self, app, transcoder):
        transcoder.delay = 0.05
        texts = ["What services do you offer?", "Can I track my project status?"]
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://relay") as ac:
            responses = await asyncio.gather(
                *(ac.post("/chat-audio/", files=_clip(t)) for t in texts)
            )
            for text, resp in zip(texts, responses):
                assert resp.status_code == 200
                body = resp.json()
                assert body["transcript"] == text
                audio = await ac.get(f"/download-audio/{body['audio_reply']}")
                assert audio.status_code == 200
                assert audio.content == f"MP3:Reply to: {text}".encode()


# ══════════════════════════════════════════════════════════════
#  DOWNLOAD
# ══════════════════════════════════════════════════════════════

class TestDownloadAudio:

    def test_download_produced_reply(self, client):
        name = client.post("/chat-audio/", files=_clip("hello")).json()["audio_reply"]
        resp = client.get(f"/download-audio/{name}")
        assert resp.status_code == 200
        assert resp.content == b"MP3:Reply to: hello"
        assert name in resp.headers["content-disposition"]

    def test_unknown_file_is_404(self, client):
        resp = client.get("/download-audio/assistant_response_0_deadbeef.mp3")
        assert resp.status_code == 404
        assert resp.json() == {"error": "File not found"}

    def test_files_outside_output_dir_are_404(self, client, settings):
        staged = Path(settings.storage.upload_dir) / "private.mp3"
        staged.write_bytes(b"secret")
        resp = client.get("/download-audio/private.mp3")
        assert resp.status_code == 404


# ══════════════════════════════════════════════════════════════
#  HEALTH, STATS, STARTUP
# ══════════════════════════════════════════════════════════════

class TestServiceEndpoints:

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["active_requests"] == 0

    def test_stats_count_requests(self, client):
        client.post("/chat-audio/", files=_clip("hello"))
        stats = client.get("/api/v1/stats").json()
        assert stats["total"]["count"] == 1
        assert stats["dialogue"]["count"] == 1

    def test_startup_requires_credentials(self, settings, orchestrator):
        settings.transcription.api_key = ""
        with pytest.raises(ConfigError, match="FIREWORKS_API_KEY"):
            create_app(settings=settings, orchestrator=orchestrator)

    def test_startup_rejects_unresolved_placeholder(self, orchestrator):
        settings = Settings(dialogue=DialogueConfig(api_key="${OPENAI_API_KEY}", persona="p"))
        with pytest.raises(ConfigError, match="OPENAI_API_KEY"):
            create_app(settings=settings, orchestrator=orchestrator)
