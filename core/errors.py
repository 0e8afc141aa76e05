"""
Relay Errors: one exception per pipeline stage.

Every stage failure aborts the request. The HTTP layer does not
distinguish between them; the stage name is carried for logging only.
"""
from __future__ import annotations


class RelayError(Exception):
    """Base exception for all voice relay failures."""

    stage: str = ""

    def __init__(self, message: str, stage: str = ""):
        if stage:
            self.stage = stage
        super().__init__(message)


class TranscodeError(RelayError):
    stage = "transcode"


class ProbeError(RelayError):
    stage = "probe"


class TranscriptionError(RelayError):
    stage = "transcribe"


class DialogueError(RelayError):
    stage = "dialogue"


class SynthesisError(RelayError):
    stage = "synthesize"


class ConfigError(RelayError):
    """Missing or unusable configuration. Fatal at startup."""
    stage = "config"
