"""Shared test fixtures for the voice relay."""
import asyncio
from pathlib import Path
from types import SimpleNamespace

import pytest

from config.settings import (
    DialogueConfig, Settings, StorageConfig, SynthesisConfig, TranscriptionConfig,
)
from core.engine import DialogueEngine
from core.errors import ProbeError, TranscodeError
from core.orchestrator import VoiceRelayOrchestrator
from models.schemas import AudioAsset, AudioFormat
from voice.latency import AggregateLatencyTracker
from voice.stt import Transcriber
from voice.transcoder import Transcoder
from voice.tts import OpenAISpeechSynthesizer

PERSONA = "You are a test assistant. Answer about services only."
WAV_MAGIC = b"WAV:"


# ── Fake collaborators ───────────────────────────────────────

class FakeTranscoder(Transcoder):
    """Writes WAV_MAGIC + input bytes to the output path; pauses to let requests interleave."""

    def __init__(self, duration: float = 3.2, delay: float = 0.0,
                 fail_normalize: bool = False, fail_probe: bool = False):
        self.duration = duration
        self.delay = delay
        self.fail_normalize = fail_normalize
        self.fail_probe = fail_probe
        self.calls: list[tuple] = []

    async def normalize(self, input_path, output_path, *, channels=1, sample_rate=16000):
        self.calls.append(("normalize", Path(input_path), Path(output_path), channels, sample_rate))
        if self.fail_normalize:
            raise TranscodeError("Invalid data found when processing input")
        Path(output_path).write_bytes(WAV_MAGIC + Path(input_path).read_bytes())
        await asyncio.sleep(self.delay)
        return AudioAsset(path=Path(output_path), format=AudioFormat.WAVEFORM)

    async def probe_duration(self, path):
        self.calls.append(("probe", Path(path)))
        if self.fail_probe:
            raise ProbeError("moov atom not found")
        return self.duration


class FakeTranscriber(Transcriber):
    """Returns whatever text the fake transcoder embedded in the waveform."""

    def __init__(self, text: str = None, delay: float = 0.0):
        self.text = text
        self.delay = delay
        self.calls: list[Path] = []

    async def transcribe(self, wav_path):
        self.calls.append(Path(wav_path))
        await asyncio.sleep(self.delay)
        if self.text is not None:
            return self.text
        return Path(wav_path).read_bytes()[len(WAV_MAGIC):].decode("utf-8")


class FakeCompletions:
    """Stands in for client.chat.completions; echoes the user turn unless told otherwise."""

    def __init__(self, reply: str = None, choices: list = None, error: Exception = None):
        self.reply = reply
        self.choices = choices
        self.error = error
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        if self.choices is not None:
            return SimpleNamespace(choices=self.choices)
        user = kwargs["messages"][-1]["content"]
        content = self.reply if self.reply is not None else f"  Reply to: {user}  "
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class FakeSpeech:
    """Stands in for client.audio.speech; the audio bytes are the spoken text."""

    def __init__(self, error: Exception = None, content: bytes = None):
        self.error = error
        self.content = content
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        audio = self.content if self.content is not None else b"MP3:" + kwargs["input"].encode("utf-8")
        return SimpleNamespace(content=audio)


def chat_client(completions: FakeCompletions) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def speech_client(speech: FakeSpeech) -> SimpleNamespace:
    return SimpleNamespace(audio=SimpleNamespace(speech=speech))


# ── Fixtures ─────────────────────────────────────────────────

@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        storage=StorageConfig(
            upload_dir=str(tmp_path / "uploads"),
            work_dir=str(tmp_path / "uploads" / "work"),
            output_dir=str(tmp_path / "responses"),
        ),
        transcription=TranscriptionConfig(api_key="fw-test-key"),
        dialogue=DialogueConfig(api_key="sk-test", persona=PERSONA),
        synthesis=SynthesisConfig(api_key="sk-test"),
    )


@pytest.fixture
def transcoder() -> FakeTranscoder:
    return FakeTranscoder()


@pytest.fixture
def transcriber() -> FakeTranscriber:
    return FakeTranscriber()


@pytest.fixture
def completions() -> FakeCompletions:
    return FakeCompletions()


@pytest.fixture
def speech() -> FakeSpeech:
    return FakeSpeech()


@pytest.fixture
def orchestrator(settings, transcoder, transcriber, completions, speech) -> VoiceRelayOrchestrator:
    return VoiceRelayOrchestrator(
        transcoder=transcoder,
        transcriber=transcriber,
        dialogue=DialogueEngine(settings.dialogue, client=chat_client(completions)),
        synthesizer=OpenAISpeechSynthesizer(settings.synthesis, client=speech_client(speech)),
        storage=settings.storage,
        latency=AggregateLatencyTracker(),
    )


@pytest.fixture
def input_clip(tmp_path) -> Path:
    path = tmp_path / "hello_test.mp3"
    path.write_bytes(b"What services do you offer?")
    return path
