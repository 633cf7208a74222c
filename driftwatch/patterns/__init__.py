"""Baseline pattern learning."""

from .learner import extract_profile, is_significant, requires_refresh

__all__ = ["extract_profile", "is_significant", "requires_refresh"]
