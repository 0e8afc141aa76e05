"""
Latency Tracker: Per-stage latency measurement for voice requests.

Tracks how long each pipeline stage (transcode, probe, transcription,
dialogue, synthesis) takes with:
- Per-request high-resolution timing
- Rolling percentile tracking (p50, p90, p99) across requests
- Latency budgets with a warning log on overrun
"""
from __future__ import annotations

import time
import structlog
from collections import deque
from typing import Any, Optional
from dataclasses import dataclass
from enum import Enum

from config.settings import LatencyConfig

logger = structlog.get_logger()


class PipelineStage(str, Enum):
    """Stages in the voice pipeline, measured independently."""
    TRANSCODE = "transcode"      # input clip → mono 16 kHz wav
    PROBE = "probe"              # wav duration lookup
    TRANSCRIBE = "transcribe"    # speech-to-text
    DIALOGUE = "dialogue"        # LLM reply
    SYNTHESIZE = "synthesize"    # text-to-speech
    TOTAL = "total"              # whole request


@dataclass
class LatencyBudget:
    """
    Latency budget per stage, in milliseconds. Overruns are logged,
    never enforced.
    """
    transcode_ms: int = 2000
    probe_ms: int = 500
    transcribe_ms: int = 3000
    dialogue_ms: int = 5000
    synthesize_ms: int = 5000
    total_ms: int = 15000

    @classmethod
    def from_config(cls, config: LatencyConfig) -> LatencyBudget:
        return cls(
            transcode_ms=config.transcode_ms,
            probe_ms=config.probe_ms,
            transcribe_ms=config.transcribe_ms,
            dialogue_ms=config.dialogue_ms,
            synthesize_ms=config.synthesize_ms,
            total_ms=config.total_ms,
        )

    def budget_for(self, stage: PipelineStage) -> int:
        return getattr(self, f"{stage.value}_ms")


@dataclass
class LatencyMeasurement:
    """A single latency measurement."""
    stage: PipelineStage
    duration_ms: float


class StageTracker:
    """Tracks latency measurements for a single pipeline stage."""

    def __init__(self, stage: PipelineStage, window_size: int = 200):
        self.stage = stage
        self._measurements: deque[float] = deque(maxlen=window_size)
        self._total: float = 0.0
        self._count: int = 0
        self._min: float = float("inf")
        self._max: float = 0.0

    def record(self, duration_ms: float) -> None:
        self._measurements.append(duration_ms)
        self._total += duration_ms
        self._count += 1
        self._min = min(self._min, duration_ms)
        self._max = max(self._max, duration_ms)

    @property
    def avg_ms(self) -> float:
        return self._total / self._count if self._count > 0 else 0.0

    @property
    def p50_ms(self) -> float:
        return self._percentile(50)

    @property
    def p90_ms(self) -> float:
        return self._percentile(90)

    @property
    def p99_ms(self) -> float:
        return self._percentile(99)

    @property
    def min_ms(self) -> float:
        return self._min if self._count > 0 else 0.0

    @property
    def max_ms(self) -> float:
        return self._max

    @property
    def count(self) -> int:
        return self._count

    def _percentile(self, pct: int) -> float:
        if not self._measurements:
            return 0.0
        sorted_vals = sorted(self._measurements)
        idx = int(len(sorted_vals) * pct / 100)
        idx = min(idx, len(sorted_vals) - 1)
        return sorted_vals[idx]

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage.value,
            "count": self._count,
            "avg_ms": round(self.avg_ms, 1),
            "p50_ms": round(self.p50_ms, 1),
            "p90_ms": round(self.p90_ms, 1),
            "p99_ms": round(self.p99_ms, 1),
            "min_ms": round(self.min_ms, 1),
            "max_ms": round(self.max_ms, 1),
        }


# ══════════════════════════════════════════════════════════════
#  REQUEST LATENCY TRACKER
# ══════════════════════════════════════════════════════════════

class RequestLatencyTracker:
    """
    Tracks latency for a single voice request.

    Usage:
        tracker.start(PipelineStage.TRANSCRIBE)
        # ... speech-to-text call ...
        tracker.end(PipelineStage.TRANSCRIBE)
    """

    def __init__(self, request_id: str, budget: LatencyBudget = None):
        self.request_id = request_id
        self.budget = budget or LatencyBudget()
        self._starts: dict[str, float] = {}
        self._measurements: list[LatencyMeasurement] = []
        self._violations: list[dict[str, Any]] = []

    def start(self, stage: PipelineStage) -> None:
        """Mark the start of a pipeline stage."""
        self._starts[stage.value] = time.monotonic()

    def end(self, stage: PipelineStage) -> float:
        """
        Mark the end of a pipeline stage.
        Returns duration in ms. Records violation if over budget.
        """
        start = self._starts.pop(stage.value, None)
        if start is None:
            return 0.0

        duration_ms = (time.monotonic() - start) * 1000
        self._measurements.append(LatencyMeasurement(
            stage=stage,
            duration_ms=duration_ms,
        ))

        budget = self.budget.budget_for(stage)
        if duration_ms > budget:
            violation = {
                "stage": stage.value,
                "duration_ms": round(duration_ms, 1),
                "budget_ms": budget,
                "overage_ms": round(duration_ms - budget, 1),
            }
            self._violations.append(violation)
            logger.warning("latency_budget_exceeded", request_id=self.request_id, **violation)

        return duration_ms

    @property
    def measurements(self) -> list[LatencyMeasurement]:
        return list(self._measurements)

    @property
    def violations(self) -> list[dict[str, Any]]:
        return self._violations

    def stage_durations(self) -> dict[str, float]:
        return {m.stage.value: round(m.duration_ms, 1) for m in self._measurements}


# ══════════════════════════════════════════════════════════════
#  AGGREGATE LATENCY TRACKER
# ══════════════════════════════════════════════════════════════

class AggregateLatencyTracker:
    """
    Tracks latency across all requests for system-wide monitoring.
    Maintains per-stage rolling percentiles.
    """

    def __init__(self, budget: LatencyBudget = None):
        self.budget = budget or LatencyBudget()
        self._stages: dict[PipelineStage, StageTracker] = {
            stage: StageTracker(stage) for stage in PipelineStage
        }
        self._active: dict[str, RequestLatencyTracker] = {}
        self._failures: int = 0

    def create_request_tracker(self, request_id: str) -> RequestLatencyTracker:
        tracker = RequestLatencyTracker(request_id, self.budget)
        self._active[request_id] = tracker
        return tracker

    def finish(self, request_id: str, failed: bool = False) -> Optional[RequestLatencyTracker]:
        """Fold a request's measurements into the aggregates and forget it."""
        tracker = self._active.pop(request_id, None)
        if tracker is None:
            return None
        for m in tracker.measurements:
            self._stages[m.stage].record(m.duration_ms)
        if failed:
            self._failures += 1
        return tracker

    @property
    def active_requests(self) -> int:
        return len(self._active)

    def get_all_stats(self) -> dict[str, Any]:
        stats = {}
        for stage, tracker in self._stages.items():
            if tracker.count > 0:
                stats[stage.value] = tracker.to_dict()
        stats["active_requests"] = len(self._active)
        stats["failed_requests"] = self._failures
        stats["budget"] = {stage.value: self.budget.budget_for(stage) for stage in PipelineStage}
        return stats

