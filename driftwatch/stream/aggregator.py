"""Rolling metrics, event history and hotspot analysis."""

from __future__ import annotations

import csv
import io
import json
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable, Deque, Dict, List, Literal, Optional, Sequence

from ..logging import get_logger
from ..models import Change, DesignPatternProfile, EvaluationResult, Violation
from ..observers import Event, EventBus

Trend = Literal["increasing", "decreasing", "stable"]

SCORE_CHANGE_THRESHOLD = 5
HOTSPOT_WINDOW_S = 5 * 60
HOTSPOT_EVENT_LIMIT = 50
_TREND_FAST_S = 60
_TREND_SLOW_S = 300
_EVENT_HISTORY = 1000

logger = get_logger("stream")


@dataclass(frozen=True)
class MetricSample:
    timestamp: float
    score: int = 100
    violation_count: int = 0
    error_count: int = 0
    warning_count: int = 0
    analysis_duration_ms: float = 0.0
    score_change: int = 0
    violation_change: int = 0
    cache_hit_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class StreamEvent:
    id: str
    type: str
    timestamp: float
    data: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Hotspot:
    path: str
    violation_count: int
    errors: int
    warnings: int
    infos: int
    recent_changes: int
    trend: Trend

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "violation_count": self.violation_count,
            "severity_breakdown": {
                "error": self.errors,
                "warning": self.warnings,
                "info": self.infos,
            },
            "recent_changes": self.recent_changes,
            "trend": self.trend,
        }


def trend_direction(timestamps: Sequence[float]) -> Trend:
    """Classify how quickly the last three events arrived."""
    if len(timestamps) < 3:
        return "stable"
    recent = list(timestamps)[-3:]
    intervals = [later - earlier for earlier, later in zip(recent, recent[1:])]
    average = sum(intervals) / len(intervals)
    if average < _TREND_FAST_S:
        return "increasing"
    if average > _TREND_SLOW_S:
        return "decreasing"
    return "stable"


class EventAggregator:
    """Consumes change batches and evaluation results; read-only to the cache."""

    def __init__(
        self,
        *,
        history_size: int = 100,
        event_history: int = _EVENT_HISTORY,
        bus: EventBus | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._clock = clock
        self._bus = bus
        self._metrics: Deque[MetricSample] = deque(maxlen=max(history_size, 1))
        self._events: Deque[StreamEvent] = deque(maxlen=max(event_history, 1))
        self._current = MetricSample(timestamp=clock())
        self._counter = 0
        self._started_at = clock()

    # ------------------------------------------------------------------
    # Ingestion

    def record_changes(self, changes: Sequence[Change]) -> StreamEvent:
        return self._add(
            "change-detected",
            {
                "changes": [{"type": change.type, "path": change.path} for change in changes],
                "change_count": len(changes),
            },
        )

    def record_evaluation(
        self,
        result: EvaluationResult,
        duration_ms: float,
        *,
        cache_hit_rate: float = 0.0,
        violations: Optional[Sequence[Violation]] = None,
    ) -> MetricSample:
        """Append a metric sample and the matching stream events.

        The sample always reflects the whole ``result``. ``violations`` narrows
        the ``violations-detected`` event to the files a batch touched, so
        hotspots only count a file again when it changes.
        """
        previous = self._current
        sample = MetricSample(
            timestamp=self._clock(),
            score=result.score,
            violation_count=len(result.violations),
            error_count=result.error_count,
            warning_count=result.warning_count,
            analysis_duration_ms=duration_ms,
            score_change=result.score - previous.score,
            violation_change=len(result.violations) - previous.violation_count,
            cache_hit_rate=cache_hit_rate,
        )
        self._current = sample
        self._metrics.append(sample)
        self._add(
            "analysis-complete",
            {
                "score": result.score,
                "violation_count": len(result.violations),
                "files_evaluated": result.files_evaluated,
            },
            {"duration_ms": duration_ms, "error_count": result.error_count},
        )
        streamed = result.violations if violations is None else violations
        if streamed:
            self._record_violations(streamed)
        if abs(sample.score_change) >= SCORE_CHANGE_THRESHOLD:
            event = self._add(
                "score-changed",
                {
                    "old_score": previous.score,
                    "new_score": sample.score,
                    "change": sample.score_change,
                },
            )
            logger.debug("Drift score moved %d -> %d", previous.score, sample.score)
            if self._bus is not None:
                self._bus.publish(
                    Event(type="score-changed", payload=event.data, timestamp=event.timestamp)
                )
        return sample

    def record_profile(self, profile: DesignPatternProfile) -> StreamEvent:
        return self._add("patterns-updated", {"profile": profile.to_dict()})

    def _record_violations(self, violations: Sequence[Violation]) -> StreamEvent:
        breakdown: Dict[str, int] = {}
        for violation in violations:
            breakdown[violation.severity] = breakdown.get(violation.severity, 0) + 1
        return self._add(
            "violations-detected",
            {
                "violations": [violation.to_dict() for violation in violations],
                "count": len(violations),
                "severity_breakdown": breakdown,
            },
        )

    def _add(
        self, event_type: str, data: Dict[str, Any], metadata: Optional[Dict[str, Any]] = None
    ) -> StreamEvent:
        now = self._clock()
        self._counter += 1
        event = StreamEvent(
            id=f"event_{self._counter}_{int(now * 1000)}",
            type=event_type,
            timestamp=now,
            data=data,
            metadata=metadata or {},
        )
        self._events.append(event)
        return event

    # ------------------------------------------------------------------
    # Pull access

    def current_metrics(self) -> MetricSample:
        return self._current

    def metrics_history(self) -> List[MetricSample]:
        return list(self._metrics)

    def event_stream(self, limit: Optional[int] = None) -> List[StreamEvent]:
        events = list(self._events)
        if limit:
            return events[-limit:]
        return events

    def hotspots(self, k: int = 10) -> List[Hotspot]:
        """Top ``k`` files by violation count over recent violation events."""
        now = self._clock()
        recent = [
            event
            for event in self._events
            if event.type == "violations-detected" and now - event.timestamp < HOTSPOT_WINDOW_S
        ][-HOTSPOT_EVENT_LIMIT:]

        tally: Dict[str, Dict[str, Any]] = {}
        for event in recent:
            for violation in event.data.get("violations", []):
                bucket = tally.setdefault(
                    violation["path"],
                    {"count": 0, "error": 0, "warning": 0, "info": 0, "timestamps": []},
                )
                bucket["count"] += 1
                bucket["timestamps"].append(event.timestamp)
                severity = violation.get("severity")
                bucket[severity if severity in ("error", "warning") else "info"] += 1

        ranked = sorted(tally.items(), key=lambda item: -item[1]["count"])
        return [
            Hotspot(
                path=path,
                violation_count=data["count"],
                errors=data["error"],
                warnings=data["warning"],
                infos=data["info"],
                recent_changes=len(data["timestamps"]),
                trend=trend_direction(data["timestamps"]),
            )
            for path, data in ranked[: max(k, 0)]
        ]

    # ------------------------------------------------------------------
    # Export

    def export(self, format: str = "json") -> str:
        if format == "json":
            payload = {
                "metadata": {
                    "export_time": _iso(self._clock()),
                    "stream_duration_s": max(self._clock() - self._started_at, 0.0),
                    "total_events": len(self._events),
                },
                "events": [event.to_dict() for event in self._events],
                "metrics": [sample.to_dict() for sample in self._metrics],
                "hotspots": [hotspot.to_dict() for hotspot in self.hotspots()],
            }
            return json.dumps(payload, indent=2)
        if format == "csv":
            buffer = io.StringIO()
            writer = csv.writer(buffer, lineterminator="\n")
            writer.writerow(
                ["timestamp", "score", "violations", "errors", "warnings", "analysis_ms"]
            )
            for sample in self._metrics:
                writer.writerow(
                    [
                        _iso(sample.timestamp),
                        sample.score,
                        sample.violation_count,
                        sample.error_count,
                        sample.warning_count,
                        sample.analysis_duration_ms,
                    ]
                )
            return buffer.getvalue()
        raise ValueError(f"Unsupported export format: {format}")


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, UTC).isoformat().replace("+00:00", "Z")


__all__ = [
    "EventAggregator",
    "Hotspot",
    "MetricSample",
    "SCORE_CHANGE_THRESHOLD",
    "StreamEvent",
    "Trend",
    "trend_direction",
]
