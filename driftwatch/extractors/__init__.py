"""Extractor contract, registry and entry-point discovery."""

from __future__ import annotations

from importlib import metadata
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Set

from .base import Extractor
from .guard import ExtractionOutcome, ExtractionPolicy, classify_exception, safe_extract

_ENTRY_POINT_GROUP = "driftwatch.extractors"


class ExtractorRegistry:
    """Resolves the extractor responsible for a path by file kind."""

    def __init__(self, extractors: Iterable[Extractor] = ()) -> None:
        self._extractors: List[Extractor] = list(extractors)

    def register(self, extractor: Extractor) -> None:
        if not isinstance(extractor, Extractor):
            raise TypeError("Only Extractor instances can be registered")
        self._extractors.append(extractor)

    def for_path(self, path: Path) -> Optional[Extractor]:
        for extractor in self._extractors:
            if extractor.supports(path):
                return extractor
        return None

    def suffixes(self) -> Set[str]:
        known: Set[str] = set()
        for extractor in self._extractors:
            known.update(suffix.lower() for suffix in extractor.suffixes)
        return known

    def __len__(self) -> int:
        return len(self._extractors)


def discover_extractors(enabled: Sequence[str] | None = None) -> ExtractorRegistry:
    """Return a registry populated from the ``driftwatch.extractors`` entry points."""

    enabled_set: Set[str] | None = None
    if enabled is not None:
        enabled_set = {name.lower() for name in enabled}

    registry = ExtractorRegistry()
    seen: Set[str] = set()

    def _add(name: str, factory: Callable[[], Extractor]) -> None:
        key = name.lower()
        if enabled_set is not None and key not in enabled_set:
            return
        if key in seen:
            return
        registry.register(factory())
        seen.add(key)
        if enabled_set is not None:
            enabled_set.discard(key)

    for entry in _iter_entry_points():
        name = entry.name
        try:
            loaded = entry.load()
        except Exception as exc:  # pragma: no cover
            raise RuntimeError(f"Failed to load extractor entry point '{name}': {exc}") from exc

        def _factory(obj: object = loaded) -> Extractor:
            return _coerce_extractor(obj)

        _add(name, _factory)

    if enabled_set:
        missing = ", ".join(sorted(enabled_set))
        raise ValueError(f"Unknown extractors requested: {missing}")

    return registry


def _coerce_extractor(obj: object) -> Extractor:
    if isinstance(obj, Extractor):
        return obj
    if isinstance(obj, type) and issubclass(obj, Extractor):
        return obj()
    if callable(obj):
        instance = obj()
        if isinstance(instance, Extractor):
            return instance
    raise TypeError("Extractor entry point must be an Extractor subclass or factory")


def _iter_entry_points() -> Iterable[metadata.EntryPoint]:
    return metadata.entry_points().select(group=_ENTRY_POINT_GROUP)


__all__ = [
    "ExtractionOutcome",
    "ExtractionPolicy",
    "Extractor",
    "ExtractorRegistry",
    "classify_exception",
    "discover_extractors",
    "safe_extract",
]
