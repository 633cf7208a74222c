"""Exception hierarchy shared across driftwatch components."""

from __future__ import annotations


class DriftWatchError(RuntimeError):
    """Base class for driftwatch failures."""


class ConfigError(DriftWatchError):
    """Raised when the configuration file cannot be parsed."""


class CacheCorruptionError(DriftWatchError):
    """Raised when a persisted cache document cannot be restored."""


class StartupError(DriftWatchError):
    """Raised when a watch session cannot start.

    The message always names the offending path and what to do about it.
    """


__all__ = ["CacheCorruptionError", "ConfigError", "DriftWatchError", "StartupError"]
