"""
Voice Subsystem: the media and speech collaborators of the relay.

Modules:
- transcoder: ffmpeg normalization to mono 16 kHz wav + ffprobe duration
- stt: Whisper transcription over the Fireworks audio API
- tts: OpenAI speech synthesis
- latency: per-stage latency tracking and budgets
"""
from voice.transcoder import Transcoder, FFmpegTranscoder, create_transcoder
from voice.stt import Transcriber, FireworksTranscriber, create_transcriber
from voice.tts import SpeechSynthesizer, OpenAISpeechSynthesizer, create_synthesizer
from voice.latency import (
    PipelineStage, LatencyBudget, RequestLatencyTracker,
    AggregateLatencyTracker, StageTracker,
)

__all__ = [
    "Transcoder", "FFmpegTranscoder", "create_transcoder",
    "Transcriber", "FireworksTranscriber", "create_transcriber",
    "SpeechSynthesizer", "OpenAISpeechSynthesizer", "create_synthesizer",
    "PipelineStage", "LatencyBudget", "RequestLatencyTracker",
    "AggregateLatencyTracker", "StageTracker",
]
