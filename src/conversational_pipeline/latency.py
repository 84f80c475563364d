"""
Latency Monitor

Keeps a fixed-capacity ring buffer of per-chunk latency samples and derives:
- Rolling percentiles and averages (generate_report)
- A coarse health/trend signal (get_realtime_status)
- Optimisation hints when a sample overshoots the latency target

Monitoring must never affect pipeline correctness: record() does not raise,
malformed samples are clamped, and listener failures are logged and dropped.
"""

import csv
import io
import json
import math
from collections import deque
from collections.abc import Callable
from dataclasses import asdict, dataclass, field, replace
from typing import Any

from conversational_pipeline.logging import get_logger
from conversational_pipeline.models import LatencySample, LatencyTrend, StageLatencies

logger = get_logger()

DEFAULT_WINDOW_CAPACITY = 200
DEFAULT_TARGET_MS = 300.0
TREND_THRESHOLD = 0.10


# =============================================================================
# Report types
# =============================================================================


@dataclass
class LatencyBreakdown:
    audio_processing: float = 0.0
    transcription: float = 0.0
    middleware: float = 0.0


@dataclass
class LatencyReport:
    """Summary of the current sample window."""

    average_latency: float = 0.0
    p50: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    min_latency: float = 0.0
    max_latency: float = 0.0
    target_met: bool = True
    sample_count: int = 0
    breakdown: LatencyBreakdown = field(default_factory=LatencyBreakdown)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RealtimeStatus:
    is_healthy: bool = True
    current_latency: float = 0.0
    trend: LatencyTrend = LatencyTrend.STABLE
    last_optimization: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_healthy": self.is_healthy,
            "current_latency": self.current_latency,
            "trend": self.trend.value,
            "last_optimization": self.last_optimization,
        }


# =============================================================================
# Optimisation hints
# =============================================================================


@dataclass(frozen=True)
class OptimizationHint:
    """Suggested action emitted when latency overshoots the target."""

    rule: str
    action: str
    chunk_id: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OptimizationRule:
    name: str
    description: str
    expected_reduction_ms: float
    condition: Callable[[LatencySample], bool]
    action: str
    payload: dict[str, Any] = field(default_factory=dict)


DEFAULT_OPTIMIZATION_RULES: tuple[OptimizationRule, ...] = (
    OptimizationRule(
        name="middleware-reduction",
        description="Disable non-essential middleware when middleware latency > 100ms",
        expected_reduction_ms=100.0,
        condition=lambda s: s.stage_latencies.middleware > 100.0,
        action="disable-middleware",
        payload={"stages": ["sentiment", "intent", "translation"]},
    ),
    OptimizationRule(
        name="chunk-size-reduction",
        description="Reduce chunk size when transcription latency > 200ms",
        expected_reduction_ms=80.0,
        condition=lambda s: s.stage_latencies.transcription > 200.0,
        action="reduce-chunk-size",
        payload={"chunk_duration_ms": 6000},
    ),
    OptimizationRule(
        name="parallel-processing",
        description="Enable parallel processing when audio processing > 150ms",
        expected_reduction_ms=60.0,
        condition=lambda s: s.stage_latencies.audio_processing > 150.0,
        action="enable-parallel-processing",
    ),
)

HintListener = Callable[[OptimizationHint], None]


# =============================================================================
# Monitor
# =============================================================================


class LatencyMonitor:
    """
    Ring buffer of latency samples with percentile reporting.

    Usage:
        monitor = LatencyMonitor(window_capacity=200, target_threshold_ms=300)
        monitor.record(sample)
        report = monitor.generate_report()
        status = monitor.get_realtime_status()
    """

    def __init__(
        self,
        window_capacity: int = DEFAULT_WINDOW_CAPACITY,
        target_threshold_ms: float = DEFAULT_TARGET_MS,
        optimization_rules: tuple[OptimizationRule, ...] = DEFAULT_OPTIMIZATION_RULES,
    ):
        if window_capacity <= 0:
            raise ValueError("window_capacity must be positive")
        self.window_capacity = window_capacity
        self.target_threshold_ms = target_threshold_ms
        self._samples: deque[LatencySample] = deque(maxlen=window_capacity)
        self._rules = optimization_rules
        self._listeners: list[HintListener] = []
        self._last_optimization: str | None = None

    # =========================================================================
    # Recording
    # =========================================================================

    def record(self, sample: LatencySample) -> None:
        try:
            sample = _clamped(sample)
            self._samples.append(sample)
            self._check_optimizations(sample)
        except Exception:
            logger.warning(
                "latency_record_failed",
                chunk_id=getattr(sample, "chunk_id", None),
                exc_info=True,
            )

    def clear(self) -> None:
        self._samples.clear()
        self._last_optimization = None

    @property
    def sample_count(self) -> int:
        return len(self._samples)

    def samples(self) -> list[LatencySample]:
        return list(self._samples)

    # =========================================================================
    # Reporting
    # =========================================================================

    def generate_report(self) -> LatencyReport:
        if not self._samples:
            return LatencyReport()

        window = list(self._samples)
        latencies = sorted(s.total_latency_ms for s in window)
        average = sum(latencies) / len(latencies)

        return LatencyReport(
            average_latency=average,
            p50=percentile(latencies, 50),
            p95=percentile(latencies, 95),
            p99=percentile(latencies, 99),
            min_latency=latencies[0],
            max_latency=latencies[-1],
            target_met=average < self.target_threshold_ms,
            sample_count=len(window),
            breakdown=LatencyBreakdown(
                audio_processing=_mean(s.stage_latencies.audio_processing for s in window),
                transcription=_mean(s.stage_latencies.transcription for s in window),
                middleware=_mean(s.stage_latencies.middleware for s in window),
            ),
        )

    def get_realtime_status(self) -> RealtimeStatus:
        if not self._samples:
            return RealtimeStatus(last_optimization=self._last_optimization)

        window = [s.total_latency_ms for s in self._samples]
        current = window[-1]
        return RealtimeStatus(
            is_healthy=current < self.target_threshold_ms,
            current_latency=current,
            trend=_trend(window),
            last_optimization=self._last_optimization,
        )

    def export_metrics(self, fmt: str = "json") -> str:
        """Serialise the sample window as JSON or CSV."""
        rows = [s.to_dict() for s in self._samples]
        if fmt == "csv":
            buffer = io.StringIO()
            writer = csv.DictWriter(
                buffer,
                fieldnames=[
                    "chunk_id",
                    "total_latency_ms",
                    "audio_processing_ms",
                    "transcription_ms",
                    "middleware_ms",
                    "captured_at_ms",
                    "vad_score",
                ],
                extrasaction="ignore",
                lineterminator="\n",
            )
            writer.writeheader()
            writer.writerows(rows)
            return buffer.getvalue()
        if fmt == "json":
            return json.dumps(rows, indent=2)
        raise ValueError(f"Unsupported export format: {fmt}")

    # =========================================================================
    # Optimisation hints
    # =========================================================================

    def add_listener(self, listener: HintListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: HintListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _check_optimizations(self, sample: LatencySample) -> None:
        if sample.total_latency_ms <= self.target_threshold_ms:
            return

        # Only one optimisation per sample.
        for rule in self._rules:
            if not rule.condition(sample):
                continue
            hint = OptimizationHint(
                rule=rule.name,
                action=rule.action,
                chunk_id=sample.chunk_id,
                payload=dict(rule.payload),
            )
            self._last_optimization = rule.name
            logger.warning(
                "latency_optimization_triggered",
                rule=rule.name,
                chunk_id=sample.chunk_id,
                total_latency_ms=sample.total_latency_ms,
            )
            for listener in list(self._listeners):
                try:
                    listener(hint)
                except Exception:
                    logger.warning("optimization_listener_failed", rule=rule.name, exc_info=True)
            break


def percentile(sorted_values: list[float], pct: float) -> float:
    """Nearest-rank percentile of an already sorted list."""
    if not sorted_values:
        return 0.0
    index = math.ceil((pct / 100.0) * len(sorted_values)) - 1
    return sorted_values[max(0, min(index, len(sorted_values) - 1))]


def _trend(window: list[float]) -> LatencyTrend:
    third = len(window) // 3
    if third == 0:
        return LatencyTrend.STABLE
    historical = _mean(window[:third])
    recent = _mean(window[-third:])
    if historical <= 0:
        return LatencyTrend.DEGRADING if recent > 0 else LatencyTrend.STABLE
    if recent < historical * (1 - TREND_THRESHOLD):
        return LatencyTrend.IMPROVING
    if recent > historical * (1 + TREND_THRESHOLD):
        return LatencyTrend.DEGRADING
    return LatencyTrend.STABLE


def _mean(values) -> float:
    values = list(values)
    return sum(values) / len(values) if values else 0.0


def _clamped(sample: LatencySample) -> LatencySample:
    stages = sample.stage_latencies
    clamped_stages = StageLatencies(
        audio_processing=max(0.0, stages.audio_processing),
        transcription=max(0.0, stages.transcription),
        middleware=max(0.0, stages.middleware),
    )
    total = max(0.0, sample.total_latency_ms)
    if clamped_stages == stages and total == sample.total_latency_ms:
        return sample
    return replace(sample, stage_latencies=clamped_stages, total_latency_ms=total)
