"""Tests for saving and restoring the incremental cache."""

from __future__ import annotations

import json

import pytest

from driftwatch.errors import CacheCorruptionError
from driftwatch.extractors import ExtractorRegistry
from driftwatch.stores import IncrementalCache
from driftwatch.stores.fact_cache import cache_document_path
from tests._fixtures.project_builder import ProjectBuilder


class _Clock:
    def __init__(self, start: float = 50_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def _populated(project: ProjectBuilder, registry: ExtractorRegistry, clock: _Clock):
    button = project.write_facts("src/Button.jsx", kind="component", name="Button")
    form = project.write_facts(
        "src/Form.jsx", kind="component", name="Form", dependencies=["./Button"]
    )
    cache = IncrementalCache(registry, clock=clock)
    cache.analyze_changed_files([button, form])
    return cache, button, form


def test_save_writes_camel_case_document(
    project: ProjectBuilder, registry: ExtractorRegistry
) -> None:
    clock = _Clock()
    cache, button, form = _populated(project, registry, clock)

    target = cache.save_cache(project.path())

    assert target == cache_document_path(project.path())
    document = json.loads(target.read_text(encoding="utf-8"))
    assert set(document) >= {"fileHashes", "cacheEntries", "dependencyGraph", "savedAt"}
    assert document["savedAt"] == clock.now
    hashes = dict(document["fileHashes"])
    assert set(hashes) == {button, form}
    assert set(hashes[button]) == {"hash", "size", "mtime"}
    assert dict(document["dependencyGraph"]) == {button: [form]}
    assert [item.name for item in target.parent.iterdir()] == ["analysis-cache.json"]


def test_load_restores_entries_and_graph(
    project: ProjectBuilder, registry: ExtractorRegistry, extractor
) -> None:
    clock = _Clock()
    cache, button, form = _populated(project, registry, clock)
    cache.save_cache(project.path())

    clock.now += 60
    restored = IncrementalCache(registry, clock=clock)
    assert restored.load_cache(project.path()) == 2

    assert restored.get(button) == cache.get(button)
    assert restored.dependents_of(button) == {form}
    calls_before = len(extractor.calls)
    assert restored.analyze_changed_files([button, form]) == []
    assert len(extractor.calls) == calls_before


def test_load_discards_document_older_than_ttl(
    project: ProjectBuilder, registry: ExtractorRegistry
) -> None:
    clock = _Clock()
    cache, button, _ = _populated(project, registry, clock)
    cache.save_cache(project.path())

    clock.now += 25 * 60 * 60
    restored = IncrementalCache(registry, clock=clock)

    assert restored.load_cache(project.path()) == 0
    assert restored.get(button) is None


def test_load_drops_entries_whose_bytes_changed(
    project: ProjectBuilder, registry: ExtractorRegistry
) -> None:
    clock = _Clock()
    cache, button, form = _populated(project, registry, clock)
    cache.save_cache(project.path())
    project.write_facts("src/Button.jsx", kind="component", name="Button", props=["variant"])

    restored = IncrementalCache(registry, clock=clock)
    assert restored.load_cache(project.path()) == 1
    assert restored.get(button) is None
    assert restored.get(form) is not None

    changes = restored.analyze_changed_files([button])
    assert [change.type for change in changes] == ["added"]


def test_load_without_revalidation_keeps_entries(
    project: ProjectBuilder, registry: ExtractorRegistry
) -> None:
    clock = _Clock()
    cache, button, _ = _populated(project, registry, clock)
    cache.save_cache(project.path())
    project.write_facts("src/Button.jsx", kind="component", name="Button", props=["variant"])

    restored = IncrementalCache(registry, clock=clock)

    assert restored.load_cache(project.path(), revalidate=False) == 2
    assert restored.needs_reanalysis(button) is True


def test_corrupt_document_is_discarded_unless_strict(
    project: ProjectBuilder, registry: ExtractorRegistry
) -> None:
    target = cache_document_path(project.path())
    target.parent.mkdir(parents=True)
    target.write_text("{not json", encoding="utf-8")

    lenient = IncrementalCache(registry)
    assert lenient.load_cache(project.path()) == 0

    strict = IncrementalCache(registry)
    with pytest.raises(CacheCorruptionError) as excinfo:
        strict.load_cache(project.path(), strict=True)
    assert str(target) in str(excinfo.value)


def test_missing_document_loads_nothing(
    project: ProjectBuilder, registry: ExtractorRegistry
) -> None:
    assert IncrementalCache(registry).load_cache(project.path()) == 0
