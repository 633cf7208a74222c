"""Tests for the analysis pipeline and watch sessions."""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Callable, Iterator, List

import pytest

from driftwatch.config import DriftConfig
from driftwatch.errors import StartupError
from driftwatch.extractors import ExtractorRegistry
from driftwatch.models import SYNTAX_ERROR, ExtractionFailure, SessionStats
from driftwatch.observers import Event, EventBus
from driftwatch.stores import IncrementalCache, ProfileStore
from driftwatch.stores.fact_cache import cache_document_path
from driftwatch.stream.aggregator import EventAggregator
from driftwatch.watcher import session as session_module
from driftwatch.watcher import (
    AnalysisContext,
    WatchSession,
    WatchState,
    discover_files,
    run_pipeline,
)
from tests._fixtures.project_builder import ProjectBuilder


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def events(bus: EventBus) -> List[Event]:
    received: List[Event] = []
    bus.subscribe(received.append)
    return received


@pytest.fixture
def context(
    project: ProjectBuilder, registry: ExtractorRegistry, bus: EventBus
) -> Iterator[AnalysisContext]:
    context = AnalysisContext(
        config=project.config(),
        cache=IncrementalCache(registry, workers=2),
        aggregator=EventAggregator(bus=bus),
        bus=bus,
        stats=SessionStats(),
        profile_store=ProfileStore(project.path()),
    )
    yield context
    context.cache.close()


def test_first_batch_learns_evaluates_and_publishes(
    project: ProjectBuilder, context: AnalysisContext, events: List[Event]
) -> None:
    button = project.write_facts(
        "src/Button.jsx", kind="component", name="Button", styling="inline"
    )

    outcome = run_pipeline(context, [button])

    assert [change.type for change in outcome.changes] == ["added"]
    assert outcome.profile_refreshed is True
    assert [event.type for event in events] == [
        "drift-detected",
        "patterns-updated",
        "score-changed",
        "violations-detected",
        "analysis-complete",
    ]
    violations = events[3].payload["violations"]
    assert [violation.type for violation in violations] == ["inline-styles"]
    assert events[-1].payload["session_stats"]["files_watched"] == 1
    assert context.stats.changes_detected == 1
    assert context.stats.violations_found == 1
    assert context.profile.component("Button") is not None


def test_unchanged_touch_publishes_no_changes(
    project: ProjectBuilder, context: AnalysisContext, events: List[Event]
) -> None:
    button = project.write_facts("src/Button.jsx", kind="component", name="Button")
    run_pipeline(context, [button])
    events.clear()

    outcome = run_pipeline(context, [button])

    assert outcome.changes == []
    assert outcome.profile_refreshed is False
    assert [event.type for event in events] == ["analysis-complete"]
    assert context.stats.changes_detected == 1


def test_deleted_path_is_reported_and_forgotten(
    project: ProjectBuilder, context: AnalysisContext, events: List[Event]
) -> None:
    button = project.write_facts("src/Button.jsx", kind="component", name="Button")
    form = project.write_facts(
        "src/Form.jsx", kind="component", name="Form", dependencies=["./Button"]
    )
    run_pipeline(context, [button, form])
    events.clear()

    project.remove("src/Form.jsx")
    outcome = run_pipeline(context, [form])

    drift = [event for event in events if event.type == "drift-detected"]
    assert len(drift) == 1
    assert [(change.type, change.path) for change in drift[0].payload["changes"]] == [
        ("deleted", form)
    ]
    assert outcome.result.files_evaluated == 1
    assert context.cache.file_hash(form) is None
    assert context.cache.get(form) is None
    assert context.cache.dependents_of(button) == set()
    assert context.stats.files_watched == 1


def test_dependents_are_refreshed_in_the_same_batch(
    project: ProjectBuilder, context: AnalysisContext, extractor
) -> None:
    button = project.write_facts("src/Button.jsx", kind="component", name="Button")
    form = project.write_facts(
        "src/Form.jsx", kind="component", name="Form", dependencies=["./Button"]
    )
    run_pipeline(context, [button, form])

    project.write_facts("src/Button.jsx", kind="component", name="Button", props=["size"])
    outcome = run_pipeline(context, [button])

    assert [change.path for change in outcome.changes] == [button]
    assert context.cache.get(form) is not None
    assert context.cache.invalidated() == set()
    assert extractor.calls.count(form) == 2


def test_untouched_file_hotspot_does_not_grow_across_batches(
    project: ProjectBuilder, context: AnalysisContext
) -> None:
    button = project.write_facts(
        "src/Button.jsx", kind="component", name="Button", styling="inline"
    )
    card = project.write_facts("src/Card.jsx", kind="component", name="Card")
    run_pipeline(context, [button, card])

    for size in ("sm", "md", "lg"):
        project.write_facts("src/Card.jsx", kind="component", name="Card", props=[size])
        run_pipeline(context, [card])

    spots = {spot.path: spot for spot in context.aggregator.hotspots()}
    assert spots[button].violation_count == 1
    assert spots[button].recent_changes == 1
    assert spots[button].trend == "stable"
    assert context.last_result is not None
    assert any(item.path == button for item in context.last_result.violations)


def test_extraction_failure_emits_one_error_and_keeps_entry(
    project: ProjectBuilder, registry: ExtractorRegistry, bus: EventBus, events: List[Event]
) -> None:
    session = WatchSession(project.config(), registry=registry, bus=bus)
    modal = project.write_facts("src/Modal.jsx", kind="component", name="Modal")
    try:
        run_pipeline(session.context, [modal])
        events.clear()

        project.write({"src/Modal.jsx": "export default function Modal( {"})
        outcome = run_pipeline(session.context, [modal])
    finally:
        session.context.cache.close()

    errors = [event for event in events if event.type == "error"]
    assert len(errors) == 1
    cause = errors[0].payload["cause"]
    assert isinstance(cause, ExtractionFailure)
    assert cause.kind == SYNTAX_ERROR
    assert outcome.changes == []
    entry = session.context.cache.get(modal)
    assert entry is not None
    assert entry.stale is True


def test_discover_files_honours_globs_and_suffixes(project: ProjectBuilder) -> None:
    project.write(
        {
            "src/Button.jsx": "{}",
            "src/Button.test.jsx": "{}",
            "src/styles/app.css": "{}",
            "src/notes.md": "",
            "node_modules/lib/index.jsx": "{}",
            ".driftwatch/analysis-cache.json": "{}",
            "pages/index.tsx": "{}",
        }
    )
    config = project.config()

    found = discover_files(config, {".jsx", ".css"})

    root = config.root
    assert [path.relative_to(root).as_posix() for path in found] == [
        "src/Button.jsx",
        "src/styles/app.css",
    ]


async def _wait_for(
    events: List[Event], predicate: Callable[[Event], bool], timeout: float = 10.0
) -> Event:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        for event in events:
            if predicate(event):
                return event
        await asyncio.sleep(0.05)
    raise AssertionError("Timed out waiting for event")


def _has_change(change_type: str, path: str) -> Callable[[Event], bool]:
    def predicate(event: Event) -> bool:
        if event.type != "drift-detected":
            return False
        return any(
            change.type == change_type and change.path == path
            for change in event.payload["changes"]
        )

    return predicate


def test_session_scans_watches_and_persists(
    project: ProjectBuilder, registry: ExtractorRegistry, bus: EventBus, events: List[Event]
) -> None:
    project.write_facts("src/Button.jsx", kind="component", name="Button")
    project.write_facts("src/styles/app.css", kind="style", spacing=["8px", "16px"])
    config = project.config()
    config.watch.debounce_ms = 50
    button = str(config.root / "src" / "Button.jsx")
    card = str(config.root / "src" / "Card.jsx")

    async def scenario() -> SessionStats:
        session = await WatchSession.start(config, registry=registry, bus=bus)
        assert session.state is WatchState.WATCHING
        assert session.stats()["files_watched"] == 2
        assert any(event.type == "ready" for event in events)

        (config.root / "src" / "Card.jsx").write_text(
            json.dumps({"kind": "component", "name": "Card"}), encoding="utf-8"
        )
        await _wait_for(events, _has_change("added", card))

        (config.root / "src" / "Button.jsx").write_text(
            json.dumps({"kind": "component", "name": "Button", "props": ["size"]}),
            encoding="utf-8",
        )
        (config.root / "src" / "Button.jsx").unlink()
        await _wait_for(events, _has_change("deleted", button))

        stats = await session.stop()
        assert session.state is WatchState.STOPPED
        assert await session.stop() is stats
        return stats

    stats = asyncio.run(scenario())

    assert stats.files_watched == 2
    assert stats.changes_detected >= 4
    assert stats.stopped_at is not None
    assert len(bus) == 0
    document = json.loads(cache_document_path(config.root).read_text(encoding="utf-8"))
    assert {path for path, _ in document["cacheEntries"]} == {
        card,
        str(config.root / "src" / "styles" / "app.css"),
    }
    assert ProfileStore(config.root).load() is not None


def test_restart_restores_cache_without_reextracting(
    project: ProjectBuilder, registry: ExtractorRegistry, extractor
) -> None:
    project.write_facts("src/Button.jsx", kind="component", name="Button")
    config = project.config()

    async def run_once() -> None:
        session = await WatchSession.start(config, registry=registry)
        await session.stop()

    asyncio.run(run_once())
    calls_after_first = len(extractor.calls)
    asyncio.run(run_once())

    assert calls_after_first == 1
    assert len(extractor.calls) == 1


def test_start_rejects_missing_root(tmp_path: Path, registry: ExtractorRegistry) -> None:
    config = DriftConfig(root=tmp_path / "missing")

    with pytest.raises(StartupError, match="missing"):
        asyncio.run(WatchSession.start(config, registry=registry))


def test_strict_start_rejects_corrupt_cache(
    project: ProjectBuilder, registry: ExtractorRegistry
) -> None:
    target = cache_document_path(project.path())
    target.parent.mkdir(parents=True)
    target.write_text("[]", encoding="utf-8")

    with pytest.raises(StartupError, match="analysis-cache.json"):
        asyncio.run(
            WatchSession.start(
                project.config(), registry=registry, strict_cache=True, initial_scan=False
            )
        )


def test_relative_root_keys_match_absolute_spellings(
    project: ProjectBuilder, registry: ExtractorRegistry, monkeypatch: pytest.MonkeyPatch
) -> None:
    button = project.write_facts("src/Button.jsx", kind="component", name="Button")
    monkeypatch.chdir(project.path().parent)
    config = DriftConfig(root=Path(project.path().name))

    async def scenario() -> WatchSession:
        session = await WatchSession.start(config, registry=registry)
        try:
            outcome = run_pipeline(session.context, [os.path.join("project", "src", "Button.jsx")])
            assert outcome.changes == []
        finally:
            await session.stop()
        return session

    session = asyncio.run(scenario())

    assert session.config.root == project.path().resolve()
    assert session.context.cache.paths() == [os.path.abspath(button)]
    assert session.context.watched == {os.path.abspath(button)}


class _RefusingObserver:
    """Stands in for a watchdog observer whose backend refuses to start."""

    def schedule(self, handler: object, path: str, recursive: bool = False) -> None:
        pass

    def start(self) -> None:
        raise OSError(28, "inotify watch limit reached")


class _DeadObserver:
    """Starts cleanly, then reports its emitter thread as gone."""

    def __init__(self) -> None:
        self.stopped = False

    @property
    def emitters(self) -> set:
        return set()

    def schedule(self, handler: object, path: str, recursive: bool = False) -> None:
        pass

    def start(self) -> None:
        pass

    def is_alive(self) -> bool:
        return False

    def stop(self) -> None:
        self.stopped = True

    def join(self, timeout: float | None = None) -> None:
        pass


def test_backend_start_failure_degrades_to_error_event(
    project: ProjectBuilder,
    registry: ExtractorRegistry,
    bus: EventBus,
    events: List[Event],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    project.write_facts("src/Button.jsx", kind="component", name="Button")
    monkeypatch.setattr(session_module, "Observer", _RefusingObserver)

    async def scenario() -> WatchSession:
        session = await WatchSession.start(project.config(), registry=registry, bus=bus)
        assert session.state is WatchState.WATCHING
        errors = [event for event in events if event.type == "error"]
        assert len(errors) == 1
        assert isinstance(errors[0].payload["cause"], OSError)
        ready = [event for event in events if event.type == "ready"]
        assert ready[0].payload["live"] is False
        assert ready[0].payload["files_watched"] == 1
        await session.stop()
        return session

    session = asyncio.run(scenario())

    assert session.state is WatchState.STOPPED
    assert cache_document_path(project.path()).exists()


def test_dead_observer_is_reported_once(
    project: ProjectBuilder,
    registry: ExtractorRegistry,
    bus: EventBus,
    events: List[Event],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(session_module, "Observer", _DeadObserver)
    monkeypatch.setattr(session_module, "_OBSERVER_HEALTH_INTERVAL_S", 0.02)

    async def scenario() -> None:
        session = await WatchSession.start(
            project.config(), registry=registry, bus=bus, initial_scan=False
        )
        try:
            event = await _wait_for(events, lambda item: item.type == "error", timeout=5.0)
            assert "stopped unexpectedly" in str(event.payload["cause"])
            await asyncio.sleep(0.1)
        finally:
            await session.stop()

    asyncio.run(scenario())

    assert [event.type for event in events].count("error") == 1
