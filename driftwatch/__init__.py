"""Incremental design-drift detection for source trees."""

__version__ = "0.1.0"
