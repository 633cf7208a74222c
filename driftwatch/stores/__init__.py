"""Persistent stores: the incremental fact cache and learned profiles."""

from .fact_cache import IncrementalCache, compute_file_hash, normalize_path
from .profile_store import ProfileStore

__all__ = ["IncrementalCache", "ProfileStore", "compute_file_hash", "normalize_path"]
