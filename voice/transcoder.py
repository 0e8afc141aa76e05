"""
Transcoder: normalizes arbitrary input audio to a mono 16 kHz waveform.

Delegates all codec work to the ffmpeg / ffprobe binaries, run as
asyncio subprocesses so the event loop keeps serving other requests
while a clip is being converted.
"""
from __future__ import annotations

import abc
import asyncio
import json
import math
import structlog
from pathlib import Path
from typing import Optional

from config.settings import TranscoderConfig, get_settings
from core.errors import ProbeError, TranscodeError
from models.schemas import AudioAsset, AudioFormat

logger = structlog.get_logger()


class Transcoder(abc.ABC):
    """Abstract base for media conversion backends."""

    @abc.abstractmethod
    async def normalize(
        self,
        input_path: Path,
        output_path: Path,
        *,
        channels: int = 1,
        sample_rate: int = 16000,
    ) -> AudioAsset:
        """Convert input_path into a waveform at output_path. Raises TranscodeError."""
        ...

    @abc.abstractmethod
    async def probe_duration(self, path: Path) -> float:
        """Return the clip duration in seconds. Raises ProbeError."""
        ...


async def _run(*cmd: str) -> tuple[int, bytes, bytes]:
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await proc.communicate()
    return proc.returncode, stdout, stderr


def _last_line(stderr: bytes) -> str:
    lines = [l for l in stderr.decode("utf-8", "replace").splitlines() if l.strip()]
    return lines[-1].strip() if lines else "no output"


class FFmpegTranscoder(Transcoder):
    """Transcoder backed by the ffmpeg and ffprobe command line tools."""

    def __init__(self, config: TranscoderConfig = None):
        self.config = config or get_settings().transcoder

    async def normalize(
        self,
        input_path: Path,
        output_path: Path,
        *,
        channels: Optional[int] = None,
        sample_rate: Optional[int] = None,
    ) -> AudioAsset:
        channels = channels or self.config.channels
        sample_rate = sample_rate or self.config.sample_rate
        cmd = (
            self.config.ffmpeg_path,
            "-hide_banner", "-loglevel", "error",
            "-y",
            "-i", str(input_path),
            "-ac", str(channels),
            "-ar", str(sample_rate),
            str(output_path),
        )
        try:
            code, _, stderr = await _run(*cmd)
        except OSError as e:
            raise TranscodeError(f"Cannot run {self.config.ffmpeg_path}: {e}") from e

        if code != 0:
            raise TranscodeError(
                f"ffmpeg exited with {code} for {Path(input_path).name}: {_last_line(stderr)}"
            )
        if not Path(output_path).exists():
            raise TranscodeError(f"ffmpeg produced no output at {output_path}")

        logger.debug("audio_normalized", input=str(input_path), output=str(output_path),
                     channels=channels, sample_rate=sample_rate)
        return AudioAsset(path=Path(output_path), format=AudioFormat.WAVEFORM)

    async def probe_duration(self, path: Path) -> float:
        cmd = (
            self.config.ffprobe_path,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "json",
            str(path),
        )
        try:
            code, stdout, stderr = await _run(*cmd)
        except OSError as e:
            raise ProbeError(f"Cannot run {self.config.ffprobe_path}: {e}") from e

        if code != 0:
            raise ProbeError(f"ffprobe exited with {code} for {Path(path).name}: {_last_line(stderr)}")
        return parse_probe_output(stdout)


def parse_probe_output(stdout: bytes) -> float:
    """Pull format.duration out of `ffprobe -of json` output."""
    try:
        data = json.loads(stdout or b"{}")
        duration = float(data["format"]["duration"])
    except (ValueError, KeyError, TypeError) as e:
        raise ProbeError(f"Unreadable duration in probe output: {e}") from e
    if not math.isfinite(duration):
        raise ProbeError(f"Non-finite duration reported: {duration}")
    if duration < 0:
        raise ProbeError(f"Negative duration reported: {duration}")
    return duration


def create_transcoder(config: TranscoderConfig = None) -> Transcoder:
    return FFmpegTranscoder(config)
