"""
Configuration loader for the voice relay.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from core.errors import ConfigError

CONFIG_DIR = Path(__file__).parent

_PLACEHOLDER = re.compile(r'\$\{(\w+)\}')


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = field(default_factory=lambda: ["*"])


@dataclass
class StorageConfig:
    upload_dir: str = "uploads"
    work_dir: str = "uploads/work"        # per-request scratch dirs live here
    output_dir: str = "responses"         # reply audio, never cleaned up


@dataclass
class TranscoderConfig:
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    channels: int = 1
    sample_rate: int = 16000


@dataclass
class TranscriptionConfig:
    api_key: str = ""
    model: str = "whisper-v3-turbo"
    base_url: str = ""                    # empty = derived from model
    timeout: float = 60.0


@dataclass
class DialogueConfig:
    api_key: str = ""
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: Optional[int] = None
    persona: str = ""                     # inline persona text, wins over persona_path
    persona_path: str = "personas/agencyx.txt"

    def load_persona(self) -> str:
        """Return the persona/policy block. Relative paths resolve against the config dir."""
        if self.persona.strip():
            return self.persona.strip()
        path = Path(self.persona_path)
        if not path.is_absolute():
            path = CONFIG_DIR / path
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as e:
            raise ConfigError(f"Cannot read persona file {path}: {e}") from e


@dataclass
class SynthesisConfig:
    api_key: str = ""
    model: str = "gpt-4o-mini-tts"
    voice: str = "shimmer"
    instructions: str = (
        "Speak slowly, warmly, and politely, like a caring human assistant.\n"
        "Use a gentle, encouraging, emotionally present tone. Pause naturally.\n"
        "Imagine you're talking to someone who's waiting for something important."
    )
    response_format: str = "mp3"


@dataclass
class LatencyConfig:
    transcode_ms: int = 2000
    probe_ms: int = 500
    transcribe_ms: int = 3000
    dialogue_ms: int = 5000
    synthesize_ms: int = 5000
    total_ms: int = 15000


@dataclass
class Settings:
    app_name: str = "VoiceRelay"
    debug: bool = False
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    transcoder: TranscoderConfig = field(default_factory=TranscoderConfig)
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    dialogue: DialogueConfig = field(default_factory=DialogueConfig)
    synthesis: SynthesisConfig = field(default_factory=SynthesisConfig)
    latency: LatencyConfig = field(default_factory=LatencyConfig)

    def validate(self) -> None:
        """Refuse to run without both provider credentials and a persona."""
        missing = []
        if not _is_set(self.dialogue.api_key):
            missing.append("OPENAI_API_KEY (dialogue)")
        if not _is_set(self.synthesis.api_key):
            missing.append("OPENAI_API_KEY (synthesis)")
        if not _is_set(self.transcription.api_key):
            missing.append("FIREWORKS_API_KEY (transcription)")
        if missing:
            raise ConfigError("Missing credentials: " + ", ".join(missing))
        if not self.dialogue.load_persona():
            raise ConfigError("Dialogue persona is empty")


_settings: Optional[Settings] = None


def _is_set(value: str) -> bool:
    return bool(value) and not _PLACEHOLDER.search(value)


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return _PLACEHOLDER.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _section(cls, data: Optional[dict[str, Any]]):
    """Build a config dataclass from a YAML mapping, ignoring unknown keys."""
    if not data:
        return cls()
    known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
    return cls(**known)


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    load_dotenv()

    if config_path is None:
        config_path = os.environ.get(
            "VOICE_RELAY_CONFIG",
            str(CONFIG_DIR / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        settings.server = _section(ServerConfig, raw.get("server"))
        settings.storage = _section(StorageConfig, raw.get("storage"))
        settings.transcoder = _section(TranscoderConfig, raw.get("transcoder"))
        settings.transcription = _section(TranscriptionConfig, raw.get("transcription"))
        settings.dialogue = _section(DialogueConfig, raw.get("dialogue"))
        settings.synthesis = _section(SynthesisConfig, raw.get("synthesis"))
        settings.latency = _section(LatencyConfig, raw.get("latency"))

    # PORT wins over the file, matching the usual container convention
    port = os.environ.get("PORT")
    if port:
        try:
            settings.server.port = int(port)
        except ValueError as e:
            raise ConfigError(f"PORT must be an integer, got {port!r}") from e

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
