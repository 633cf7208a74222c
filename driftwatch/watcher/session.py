"""Watch sessions: filesystem observation feeding the analysis pipeline."""

from __future__ import annotations

import asyncio
import enum
import os
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from ..config import DriftConfig
from ..drift import evaluate
from ..errors import CacheCorruptionError, StartupError
from ..extractors import ExtractionPolicy, ExtractorRegistry, discover_extractors
from ..logging import get_logger
from ..models import (
    Change,
    DesignPatternProfile,
    EvaluationResult,
    ExtractionFailure,
    SessionStats,
)
from ..observers import Event, EventBus
from ..patterns import extract_profile, requires_refresh
from ..stores.fact_cache import CACHE_DIRNAME, IncrementalCache, normalize_path
from ..stores.profile_store import ProfileStore
from ..stream.aggregator import EventAggregator
from .debounce import Debouncer, SettledPath

logger = get_logger("watcher")

_OBSERVER_JOIN_TIMEOUT_S = 5.0
_OBSERVER_HEALTH_INTERVAL_S = 1.0


class WatchState(enum.Enum):
    WATCHING = "watching"
    STOPPED = "stopped"


@dataclass
class AnalysisContext:
    """Everything one pipeline run reads or updates."""

    config: DriftConfig
    cache: IncrementalCache
    aggregator: EventAggregator
    bus: EventBus
    stats: SessionStats
    profile_store: ProfileStore
    profile: DesignPatternProfile = field(default_factory=DesignPatternProfile)
    last_result: Optional[EvaluationResult] = None
    watched: Set[str] = field(default_factory=set)

    def publish(self, event_type: str, **payload: Any) -> None:
        self.bus.publish(Event(type=event_type, payload=payload, timestamp=time.time()))


@dataclass(frozen=True)
class BatchOutcome:
    changes: List[Change]
    result: EvaluationResult
    profile_refreshed: bool
    duration_ms: float


def discover_files(config: DriftConfig, suffixes: Optional[Set[str]] = None) -> List[Path]:
    """Walk the project root and return files inside the watched set."""
    root = config.root
    found: List[Path] = []
    for current, dirs, files in os.walk(root):
        rel_dir = os.path.relpath(current, root)
        rel_dir = "" if rel_dir == "." else rel_dir
        dirs[:] = sorted(
            name
            for name in dirs
            if name != CACHE_DIRNAME and not config.excludes_dir(os.path.join(rel_dir, name))
        )
        for name in sorted(files):
            rel_path = os.path.join(rel_dir, name) if rel_dir else name
            if suffixes is not None and Path(name).suffix.lower() not in suffixes:
                continue
            if config.matches(rel_path):
                found.append(Path(current) / name)
    return found


def commit_batch(
    cache: IncrementalCache, paths: Sequence[str]
) -> Tuple[List[Change], List[Change]]:
    """Commit phase: analyze the batch, then re-extract invalidated dependents."""
    changes = cache.analyze_changed_files(paths)
    refreshed = cache.refresh_invalidated()
    return changes, refreshed


def run_pipeline(context: AnalysisContext, paths: Sequence[str]) -> BatchOutcome:
    """Analyze one settle batch and publish the resulting events."""
    started = time.perf_counter()
    changes, refreshed = commit_batch(context.cache, paths)
    return complete_batch(context, changes, refreshed, started)


def complete_batch(
    context: AnalysisContext,
    changes: List[Change],
    refreshed: List[Change],
    started: float,
) -> BatchOutcome:
    """Learn, evaluate and publish once every commit for the batch is done."""
    cache = context.cache

    for change in changes:
        if change.type == "deleted":
            context.watched.discard(change.path)
        else:
            context.watched.add(change.path)
    context.stats.files_watched = len(context.watched)
    context.stats.changes_detected += len(changes)
    if changes:
        context.publish("drift-detected", changes=changes)

    profile_refreshed = False
    if requires_refresh(changes):
        context.profile = extract_profile(cache.entries())
        context.aggregator.record_profile(context.profile)
        context.publish("patterns-updated", profile=context.profile)
        profile_refreshed = True

    result = evaluate(cache, context.profile, context.config)
    touched = {change.path for change in changes if change.type != "deleted"}
    touched.update(change.path for change in refreshed)
    batch_violations = [item for item in result.violations if item.path in touched]
    context.stats.violations_found += len(batch_violations)
    context.last_result = result

    duration_ms = (time.perf_counter() - started) * 1000
    if changes:
        context.aggregator.record_changes(changes)
    context.aggregator.record_evaluation(
        result,
        duration_ms,
        cache_hit_rate=float(cache.stats()["hit_rate"]),
        violations=batch_violations,
    )
    if batch_violations:
        context.publish("violations-detected", violations=batch_violations, changes=changes)
    context.publish(
        "analysis-complete",
        changes=changes,
        session_stats=context.stats.snapshot(),
    )
    logger.info(
        "Analyzed %d change(s) in %.0fms; score %d, %d new violation(s)",
        len(changes),
        duration_ms,
        result.score,
        len(batch_violations),
    )
    return BatchOutcome(
        changes=changes,
        result=result,
        profile_refreshed=profile_refreshed,
        duration_ms=duration_ms,
    )


class _ProjectEventHandler(FileSystemEventHandler):
    """Forwards watchdog events for watched paths to the debouncer."""

    def __init__(
        self,
        config: DriftConfig,
        debouncer: Debouncer,
        suffixes: Set[str],
        on_error: Callable[[BaseException], None],
    ) -> None:
        super().__init__()
        self._config = config
        self._debouncer = debouncer
        self._suffixes = suffixes
        self._on_error = on_error

    def _watched(self, path: str) -> bool:
        try:
            rel_path = os.path.relpath(path, self._config.root)
        except ValueError:
            return False
        if rel_path.startswith(".."):
            return False
        if self._suffixes and Path(path).suffix.lower() not in self._suffixes:
            return False
        return self._config.matches(rel_path)

    def _forward(self, path: str, deleted: bool) -> None:
        if self._watched(path):
            self._debouncer.push_threadsafe(normalize_path(path), deleted=deleted)

    def dispatch(self, event: FileSystemEvent) -> None:
        try:
            super().dispatch(event)
        except Exception as exc:
            self._on_error(exc)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(_decode(event.src_path), deleted=False)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(_decode(event.src_path), deleted=False)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(_decode(event.src_path), deleted=True)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._forward(_decode(event.src_path), deleted=True)
        self._forward(_decode(event.dest_path), deleted=False)


def _decode(path: str | bytes) -> str:
    return os.fsdecode(path)


class WatchSession:
    """Owns one watch lifecycle: ``WATCHING`` until :meth:`stop`, then ``STOPPED``."""

    def __init__(
        self,
        config: DriftConfig,
        *,
        registry: ExtractorRegistry | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self.config = config
        self.registry = registry if registry is not None else discover_extractors()
        self.bus = bus or EventBus()
        self.state = WatchState.STOPPED
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: asyncio.Queue[List[SettledPath]] = asyncio.Queue()
        self._consumer: Optional[asyncio.Task[None]] = None
        self._observer: Optional[BaseObserver] = None
        self._monitor: Optional[asyncio.Task[None]] = None
        self._debouncer: Optional[Debouncer] = None

        stats = SessionStats()
        self.context = AnalysisContext(
            config=config,
            cache=IncrementalCache(
                self.registry,
                budget_bytes=config.cache.budget_bytes,
                ttl_seconds=config.cache.ttl_seconds,
                policy=ExtractionPolicy(max_file_size=config.cache.max_file_size),
                workers=config.watch.workers,
                extract_timeout_s=config.watch.extract_timeout_s,
                reporter=self._report_failure,
            ),
            aggregator=EventAggregator(history_size=config.watch.history_size, bus=self.bus),
            bus=self.bus,
            stats=stats,
            profile_store=ProfileStore(config.root),
        )

    @classmethod
    async def start(
        cls,
        config: DriftConfig,
        *,
        registry: ExtractorRegistry | None = None,
        bus: EventBus | None = None,
        strict_cache: bool = False,
        initial_scan: bool = True,
    ) -> "WatchSession":
        """Create a session, restore persisted state and begin watching."""
        root = Path(config.root)
        if not root.is_dir():
            raise StartupError(
                f"Project root {root} does not exist or is not a directory; "
                "point the configuration at an existing project directory"
            )
        session = cls(replace(config, root=root.resolve()), registry=registry, bus=bus)
        await session._begin(strict_cache=strict_cache, initial_scan=initial_scan)
        return session

    async def _begin(self, *, strict_cache: bool, initial_scan: bool) -> None:
        context = self.context
        self._loop = asyncio.get_running_loop()
        try:
            restored = context.cache.load_cache(
                self.config.root,
                revalidate=self.config.cache.revalidate_on_load,
                strict=strict_cache,
            )
        except CacheCorruptionError as exc:
            context.cache.close()
            raise StartupError(str(exc)) from exc

        stored_profile = context.profile_store.load()
        if stored_profile is not None:
            context.profile = stored_profile
        elif restored:
            context.profile = extract_profile(context.cache.entries())

        context.stats = SessionStats()
        self._debouncer = Debouncer(
            self.config.watch.debounce_ms, self._enqueue, loop=self._loop
        )
        self._consumer = self._loop.create_task(self._consume())
        self.state = WatchState.WATCHING
        try:
            suffixes = self.registry.suffixes()
            if initial_scan:
                await self._initial_scan(suffixes)
            handler = _ProjectEventHandler(
                self.config, self._debouncer, suffixes, self._report_backend_error
            )
            self._observer = self._start_observer(handler)
        except BaseException:
            await self._abort()
            raise

        if self._observer is not None:
            self._monitor = self._loop.create_task(self._watch_observer(self._observer))
            logger.info("Watching %s (%d files)", self.config.root, context.stats.files_watched)
        context.publish(
            "ready",
            root=str(self.config.root),
            files_watched=context.stats.files_watched,
            live=self._observer is not None,
        )

    async def _initial_scan(self, suffixes: Set[str]) -> None:
        context = self.context
        files = await asyncio.to_thread(discover_files, self.config, suffixes or None)
        context.watched.update(normalize_path(path) for path in files)
        context.stats.files_watched = len(context.watched)
        if files:
            self._queue.put_nowait([SettledPath(path=str(path)) for path in files])
            await self._queue.join()

    def _start_observer(self, handler: _ProjectEventHandler) -> Optional[BaseObserver]:
        """Start the watchdog observer, or return ``None`` if the backend refuses."""
        observer = Observer()
        try:
            observer.schedule(handler, str(self.config.root), recursive=True)
            observer.start()
        except OSError as exc:
            logger.warning(
                "File watching is unavailable for %s (%s); changes will not be picked up",
                self.config.root,
                exc,
            )
            self.context.publish("error", cause=exc)
            return None
        return observer

    async def _watch_observer(self, observer: BaseObserver) -> None:
        while self._observer is observer:
            await asyncio.sleep(_OBSERVER_HEALTH_INTERVAL_S)
            if self._observer is not observer:
                return
            emitters = observer.emitters
            if observer.is_alive() and all(emitter.is_alive() for emitter in emitters):
                continue
            self._observer = None
            exc = RuntimeError(f"File watcher for {self.config.root} stopped unexpectedly")
            logger.warning("%s; changes will not be picked up", exc)
            self.context.publish("error", cause=exc)
            return

    async def _abort(self) -> None:
        self.state = WatchState.STOPPED
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None
        self.context.cache.close()

    async def stop(self) -> SessionStats:
        """Flush pending work, persist state and stop watching; idempotent."""
        if self.state is WatchState.STOPPED:
            return self.context.stats
        self.state = WatchState.STOPPED
        context = self.context

        if self._observer is not None:
            observer = self._observer
            self._observer = None
            observer.stop()
            await asyncio.to_thread(observer.join, _OBSERVER_JOIN_TIMEOUT_S)

        if self._monitor is not None:
            self._monitor.cancel()
            try:
                await self._monitor
            except asyncio.CancelledError:
                pass
            self._monitor = None

        if self._debouncer is not None:
            pending = self._debouncer.flush()
            if pending:
                self._queue.put_nowait(pending)
        await self._queue.join()

        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None

        context.cache.save_cache(self.config.root)
        context.profile_store.save(context.profile)
        context.cache.close()
        context.stats.stopped_at = time.time()
        context.bus.clear()
        logger.info("Stopped watching %s", self.config.root)
        return context.stats

    def stats(self) -> Dict[str, int]:
        return self.context.stats.snapshot()

    @property
    def aggregator(self) -> EventAggregator:
        return self.context.aggregator

    @property
    def profile(self) -> DesignPatternProfile:
        return self.context.profile

    # ------------------------------------------------------------------
    # Pipeline plumbing

    def _enqueue(self, batch: List[SettledPath]) -> None:
        self._queue.put_nowait(batch)

    async def _consume(self) -> None:
        while True:
            batch = await self._queue.get()
            try:
                paths = [item.path for item in batch]
                started = time.perf_counter()
                changes, refreshed = await asyncio.to_thread(
                    commit_batch, self.context.cache, paths
                )
                complete_batch(self.context, changes, refreshed, started)
            except Exception as exc:
                logger.exception("Analysis batch failed")
                self.context.publish("error", cause=exc)
            finally:
                self._queue.task_done()

    def _report_failure(self, failure: ExtractionFailure) -> None:
        self._call_on_loop(lambda: self.context.publish("error", cause=failure))

    def _report_backend_error(self, exc: BaseException) -> None:
        logger.warning("File watcher error: %s", exc)
        self._call_on_loop(lambda: self.context.publish("error", cause=exc))

    def _call_on_loop(self, callback: Callable[[], None]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            callback()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            callback()
        else:
            loop.call_soon_threadsafe(callback)


__all__ = [
    "AnalysisContext",
    "BatchOutcome",
    "WatchSession",
    "WatchState",
    "commit_batch",
    "complete_batch",
    "discover_files",
    "run_pipeline",
]
