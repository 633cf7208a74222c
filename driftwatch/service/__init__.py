"""Read-only HTTP access to a session's metrics."""

from .app import create_app

__all__ = ["create_app"]
