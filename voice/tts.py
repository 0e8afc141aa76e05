"""
Speech synthesis client: OpenAI text-to-speech.

The reply text is spoken in a fixed voice with fixed style instructions
and written straight to the reply file.
"""
from __future__ import annotations

import abc
import asyncio
import structlog
from pathlib import Path
from typing import Any

from config.settings import SynthesisConfig, get_settings
from core.errors import SynthesisError
from models.schemas import AudioAsset, AudioFormat

logger = structlog.get_logger()


class SpeechSynthesizer(abc.ABC):
    """Abstract text-to-speech service."""

    @abc.abstractmethod
    async def synthesize(self, text: str, output_path: Path) -> AudioAsset:
        """Speak text into output_path. Raises SynthesisError."""
        ...

    async def aclose(self) -> None:
        return None


def _write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


class OpenAISpeechSynthesizer(SpeechSynthesizer):
    """OpenAI audio.speech wrapper (gpt-4o-mini-tts by default)."""

    def __init__(self, config: SynthesisConfig = None, client: Any = None):
        self.config = config or get_settings().synthesis
        self._client = client

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self.config.api_key)
            logger.info("tts_client_initialized", provider="openai", model=self.config.model)
        return self._client

    async def synthesize(self, text: str, output_path: Path) -> AudioAsset:
        output_path = Path(output_path)
        client = self._get_client()
        try:
            response = await client.audio.speech.create(
                model=self.config.model,
                voice=self.config.voice,
                input=text,
                instructions=self.config.instructions,
                response_format=self.config.response_format,
            )
        except Exception as e:
            raise SynthesisError(f"Speech synthesis failed: {e}") from e

        audio = getattr(response, "content", None)
        if not audio:
            raise SynthesisError("Speech synthesis returned no audio")

        try:
            await asyncio.to_thread(_write_bytes, output_path, audio)
        except OSError as e:
            raise SynthesisError(f"Cannot write reply audio {output_path.name}: {e}") from e

        logger.debug("speech_synthesized", voice=self.config.voice,
                     bytes=len(audio), output=output_path.name)
        return AudioAsset(path=output_path, format=AudioFormat.REPLY)

    async def aclose(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()


def create_synthesizer(config: SynthesisConfig = None) -> SpeechSynthesizer:
    return OpenAISpeechSynthesizer(config)
