"""FastAPI application exposing read-only drift metrics."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, Query
from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str


class MetricsResponse(BaseModel):
    timestamp: float
    score: int
    violation_count: int
    error_count: int
    warning_count: int
    analysis_duration_ms: float
    score_change: int
    violation_change: int
    cache_hit_rate: float


class EventResponse(BaseModel):
    id: str
    type: str
    timestamp: float
    data: Dict[str, Any]
    metadata: Dict[str, Any]


class SeverityBreakdown(BaseModel):
    error: int
    warning: int
    info: int


class HotspotResponse(BaseModel):
    path: str
    violation_count: int
    severity_breakdown: SeverityBreakdown
    recent_changes: int
    trend: str


def create_app(aggregator_factory: Callable[[], EventAggregator]) -> FastAPI:
    """Create the FastAPI application serving the aggregator's views."""

    app = FastAPI(title="driftwatch metrics", version="1.0.0")

    async def get_aggregator() -> EventAggregator:
        return aggregator_factory()

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/metrics", response_model=MetricsResponse)
    async def metrics(
        aggregator: EventAggregator = Depends(get_aggregator),
    ) -> MetricsResponse:
        return MetricsResponse(**aggregator.current_metrics().to_dict())

    @app.get("/metrics/history", response_model=List[MetricsResponse])
    async def metrics_history(
        aggregator: EventAggregator = Depends(get_aggregator),
    ) -> List[MetricsResponse]:
        return [MetricsResponse(**sample.to_dict()) for sample in aggregator.metrics_history()]

    @app.get("/events", response_model=List[EventResponse])
    async def events(
        limit: Optional[int] = Query(default=None, ge=1),
        aggregator: EventAggregator = Depends(get_aggregator),
    ) -> List[EventResponse]:
        return [EventResponse(**event.to_dict()) for event in aggregator.event_stream(limit)]

    @app.get("/hotspots", response_model=List[HotspotResponse])
    async def hotspots(
        limit: int = Query(default=10, ge=1, le=100),
        aggregator: EventAggregator = Depends(get_aggregator),
    ) -> List[HotspotResponse]:
        return [HotspotResponse(**spot.to_dict()) for spot in aggregator.hotspots(limit)]

    return app


__all__ = ["create_app"]
