"""Aggregated views over the analysis stream."""

from .aggregator import EventAggregator, Hotspot, MetricSample, StreamEvent, trend_direction

__all__ = ["EventAggregator", "Hotspot", "MetricSample", "StreamEvent", "trend_direction"]
