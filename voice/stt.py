"""
Transcription client: Whisper speech-to-text over the Fireworks audio API.

Turbo models are served from a dedicated endpoint; everything else goes
to the production audio endpoint. The API key is sent verbatim in the
Authorization header.
"""
from __future__ import annotations

import abc
import asyncio
import structlog
from pathlib import Path
from typing import Any, Optional

import httpx

from config.settings import TranscriptionConfig, get_settings
from core.errors import TranscriptionError

logger = structlog.get_logger()

TURBO_BASE_URL = "https://audio-turbo.us-virginia-1.direct.fireworks.ai/v1"
PROD_BASE_URL = "https://audio-prod.us-virginia-1.direct.fireworks.ai/v1"


def resolve_base_url(model: str, override: str = "") -> str:
    if override:
        return override.rstrip("/")
    return TURBO_BASE_URL if model.endswith("turbo") else PROD_BASE_URL


class Transcriber(abc.ABC):
    """Abstract speech-to-text service."""

    @abc.abstractmethod
    async def transcribe(self, wav_path: Path) -> str:
        """Return the transcript text, possibly empty. Raises TranscriptionError."""
        ...

    async def aclose(self) -> None:
        return None


class FireworksTranscriber(Transcriber):
    """Posts the waveform as multipart form data to /audio/transcriptions."""

    def __init__(self, config: TranscriptionConfig = None, transport: httpx.AsyncBaseTransport = None):
        self.config = config or get_settings().transcription
        self.base_url = resolve_base_url(self.config.model, self.config.base_url)
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": self.config.api_key},
                timeout=self.config.timeout,
                transport=self._transport,
            )
        return self.client

    async def transcribe(self, wav_path: Path) -> str:
        wav_path = Path(wav_path)
        try:
            audio = await asyncio.to_thread(wav_path.read_bytes)
        except OSError as e:
            raise TranscriptionError(f"Cannot read waveform {wav_path.name}: {e}") from e

        client = await self._get_client()
        try:
            response = await client.post(
                "/audio/transcriptions",
                files={"file": (wav_path.name, audio, "audio/wav")},
                data={"model": self.config.model},
            )
            response.raise_for_status()
            payload: Any = response.json()
        except httpx.HTTPStatusError as e:
            raise TranscriptionError(
                f"Transcription failed with status {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise TranscriptionError(f"Transcription request failed: {e}") from e

        text = payload.get("text") if isinstance(payload, dict) else None
        logger.debug("transcription_received", model=self.config.model, chars=len(text or ""))
        return text or ""

    async def aclose(self) -> None:
        if self.client is not None and not self.client.is_closed:
            await self.client.aclose()


def create_transcriber(config: TranscriptionConfig = None) -> Transcriber:
    return FireworksTranscriber(config)
