"""
Orchestrator: drives one voice request end to end.

Pipeline:
  input clip → transcode (mono 16 kHz wav) → probe duration
             → transcribe → dialogue reply → synthesize reply audio

Stages run strictly in order; each takes the previous stage's result.
The first failure aborts the request and no later stage is invoked.
Nothing is retried. The intermediate waveform lives in a per-request
workspace that is removed as soon as transcription is done, or on
failure. The uploaded input is left to the caller.
"""
from __future__ import annotations

import structlog
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from config.settings import Settings, StorageConfig, get_settings
from core.engine import DialogueEngine
from core.errors import (
    DialogueError, ProbeError, RelayError, SynthesisError,
    TranscodeError, TranscriptionError,
)
from core.workspace import RequestWorkspace, new_request_id, reply_audio_name
from models.schemas import AudioAsset, AudioFormat, VoiceReply
from voice.latency import (
    AggregateLatencyTracker, LatencyBudget, PipelineStage, RequestLatencyTracker,
)
from voice.stt import Transcriber, create_transcriber
from voice.transcoder import Transcoder, create_transcoder
from voice.tts import SpeechSynthesizer, create_synthesizer

logger = structlog.get_logger()


class VoiceRelayOrchestrator:
    """
    Sequential voice pipeline over four collaborators.

    Holds no per-request state of its own, so any number of requests may
    run through one instance concurrently.
    """

    def __init__(
        self,
        transcoder: Transcoder,
        transcriber: Transcriber,
        dialogue: DialogueEngine,
        synthesizer: SpeechSynthesizer,
        storage: StorageConfig = None,
        latency: AggregateLatencyTracker = None,
        channels: int = 1,
        sample_rate: int = 16000,
    ):
        self.transcoder = transcoder
        self.transcriber = transcriber
        self.dialogue = dialogue
        self.synthesizer = synthesizer
        self.storage = storage or get_settings().storage
        self.latency = latency or AggregateLatencyTracker()
        self.channels = channels
        self.sample_rate = sample_rate

    async def process_voice_request(self, input_path: str | Path) -> VoiceReply:
        """
        Run the whole pipeline for one uploaded clip.

        Returns the reply file name, clip duration, transcript and reply
        text. Raises the RelayError subclass of the first stage that fails.
        """
        request_id = new_request_id()
        source = AudioAsset(path=Path(input_path), format=AudioFormat.INPUT)
        tracker = self.latency.create_request_tracker(request_id)
        tracker.start(PipelineStage.TOTAL)
        failed = True

        logger.info("voice_request_started", request_id=request_id, input=source.name)
        try:
            async with self._workspace(request_id) as ws:
                waveform = await self._stage(
                    tracker, PipelineStage.TRANSCODE, TranscodeError,
                    self.transcoder.normalize, source.path, ws.waveform_path,
                    channels=self.channels, sample_rate=self.sample_rate,
                )
                duration = await self._stage(
                    tracker, PipelineStage.PROBE, ProbeError,
                    self.transcoder.probe_duration, waveform.path,
                )
                waveform = waveform.model_copy(update={"duration_seconds": duration})
                transcript = await self._stage(
                    tracker, PipelineStage.TRANSCRIBE, TranscriptionError,
                    self.transcriber.transcribe, waveform.path,
                )

            reply = await self._stage(
                tracker, PipelineStage.DIALOGUE, DialogueError,
                self.dialogue.generate_reply, transcript,
            )
            output_path = Path(self.storage.output_dir) / reply_audio_name()
            reply_audio = await self._stage(
                tracker, PipelineStage.SYNTHESIZE, SynthesisError,
                self.synthesizer.synthesize, reply, output_path,
            )
            failed = False
        except RelayError as e:
            logger.error("voice_request_failed", request_id=request_id,
                         stage=e.stage, error=str(e))
            raise
        finally:
            tracker.end(PipelineStage.TOTAL)
            self.latency.finish(request_id, failed=failed)

        logger.info("voice_request_completed",
                    request_id=request_id,
                    audio_reply=reply_audio.name,
                    duration_seconds=waveform.duration_seconds,
                    transcript_chars=len(transcript),
                    over_budget=[v["stage"] for v in tracker.violations],
                    **tracker.stage_durations())

        return VoiceReply(
            audio_reply=reply_audio.name,
            duration_seconds=waveform.duration_seconds,
            transcript=transcript,
            reply=reply,
        )

    def _workspace(self, request_id: str) -> RequestWorkspace:
        return _GuardedWorkspace(self.storage.work_dir, request_id)

    async def _stage(
        self,
        tracker: RequestLatencyTracker,
        stage: PipelineStage,
        error_cls: type[RelayError],
        fn: Callable[..., Awaitable[Any]],
        *args,
        **kwargs,
    ) -> Any:
        """Run one stage, timing it and mapping stray exceptions to the stage's error."""
        tracker.start(stage)
        try:
            result = await fn(*args, **kwargs)
        except RelayError:
            raise
        except Exception as e:
            raise error_cls(f"{stage.value} failed: {e}") from e
        finally:
            duration_ms = tracker.end(stage)
        logger.debug("stage_completed", request_id=tracker.request_id,
                     stage=stage.value, duration_ms=round(duration_ms, 1))
        return result

    def stats(self) -> dict[str, Any]:
        return self.latency.get_all_stats()

    async def aclose(self) -> None:
        for collaborator in (self.transcriber, self.dialogue, self.synthesizer):
            await collaborator.aclose()


class _GuardedWorkspace(RequestWorkspace):
    """A workspace whose setup failure counts as a transcode failure."""

    async def __aenter__(self) -> RequestWorkspace:
        try:
            return await super().__aenter__()
        except OSError as e:
            raise TranscodeError(f"Cannot create workspace {self.path}: {e}") from e


def create_orchestrator(settings: Optional[Settings] = None) -> VoiceRelayOrchestrator:
    """Wire the production collaborators from settings."""
    settings = settings or get_settings()
    return VoiceRelayOrchestrator(
        transcoder=create_transcoder(settings.transcoder),
        transcriber=create_transcriber(settings.transcription),
        dialogue=DialogueEngine(settings.dialogue),
        synthesizer=create_synthesizer(settings.synthesis),
        storage=settings.storage,
        latency=AggregateLatencyTracker(LatencyBudget.from_config(settings.latency)),
        channels=settings.transcoder.channels,
        sample_rate=settings.transcoder.sample_rate,
    )
