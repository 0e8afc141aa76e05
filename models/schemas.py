"""
Core data models for the voice relay.
These are the types passed between the orchestrator, its collaborators
and the HTTP layer.
"""
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class AudioFormat(str, Enum):
    INPUT = "input"              # whatever the caller uploaded
    WAVEFORM = "waveform"        # normalized mono PCM wav
    REPLY = "reply"              # synthesized speech


# ──────────────────────────────────────────────────────────────
#  Audio assets
# ──────────────────────────────────────────────────────────────

class AudioAsset(BaseModel):
    """A reference to an audio file on local storage."""
    path: Path
    format: AudioFormat
    duration_seconds: Optional[float] = None   # set only for waveforms

    @property
    def name(self) -> str:
        return self.path.name


# ──────────────────────────────────────────────────────────────
#  HTTP payloads
# ──────────────────────────────────────────────────────────────

class VoiceReply(BaseModel):
    """Result of one voice request, serialized as the /chat-audio/ body."""
    audio_reply: str                           # file name under the output dir
    duration_seconds: float = Field(ge=0)
    transcript: str = ""
    reply: str


class ErrorResponse(BaseModel):
    error: str
    details: Optional[str] = None
