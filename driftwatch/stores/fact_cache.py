"""Content-hash keyed fact cache with dependency-aware invalidation."""

from __future__ import annotations

import hashlib
import json
import os
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple, Union

from ..errors import CacheCorruptionError
from ..extractors import ExtractionOutcome, ExtractionPolicy, ExtractorRegistry, safe_extract
from ..logging import get_logger
from ..models import (
    IO_ERROR,
    TIMEOUT,
    CacheEntry,
    Change,
    ExtractionFailure,
    Facts,
    FileHash,
    Skip,
    facts_from_dict,
    facts_size,
    facts_to_dict,
)
from .atomic import write_json_atomic

CACHE_DIRNAME = ".driftwatch"
CACHE_FILENAME = "analysis-cache.json"
_CACHE_VERSION = 1
_EVICTION_TARGET = 0.8
_HASH_CHUNK = 1024 * 1024

FailureReporter = Callable[[ExtractionFailure], None]
PathLike = Union[str, Path]

logger = get_logger("cache")


def compute_file_hash(path: PathLike) -> FileHash:
    """Hash the file's bytes; mtime is recorded but never part of the hash."""
    target = Path(path)
    digest = hashlib.sha256()
    with target.open("rb") as handle:
        for chunk in iter(lambda: handle.read(_HASH_CHUNK), b""):
            digest.update(chunk)
    stats = target.stat()
    return FileHash(
        path=str(path),
        content_hash=digest.hexdigest(),
        size=stats.st_size,
        mtime=stats.st_mtime,
    )


def normalize_path(path: PathLike) -> str:
    """Absolute, normalised spelling used for every cache key."""
    return os.path.abspath(os.fspath(path))


def cache_document_path(root: PathLike) -> Path:
    return Path(root) / CACHE_DIRNAME / CACHE_FILENAME


class IncrementalCache:
    """Owns the hash map, fact cache and dependency graph for one session.

    Only this class mutates those structures. Extraction for a batch runs on a
    bounded thread pool, but results are committed one at a time in input
    order, so the final state does not depend on which extraction finishes
    first.
    """

    def __init__(
        self,
        registry: ExtractorRegistry,
        *,
        budget_bytes: int = 256 * 1024 * 1024,
        ttl_seconds: float = 24 * 60 * 60,
        policy: ExtractionPolicy | None = None,
        workers: int = 4,
        extract_timeout_s: float = 10.0,
        reporter: FailureReporter | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.budget_bytes = budget_bytes
        self.ttl_seconds = ttl_seconds
        self.policy = policy or ExtractionPolicy()
        self.workers = max(workers, 1)
        self.extract_timeout_s = extract_timeout_s
        self._reporter = reporter
        self._clock = clock

        self._hashes: Dict[str, FileHash] = {}
        self._entries: Dict[str, CacheEntry] = {}
        self._sizes: Dict[str, int] = {}
        self._graph: Dict[str, Set[str]] = {}
        self._skipped: Dict[str, Tuple[str, str]] = {}
        self._failures: Dict[str, ExtractionFailure] = {}
        self._invalidated: Set[str] = set()
        self._executor: Optional[ThreadPoolExecutor] = None
        # timed-out extractions whose worker thread is still running
        self._abandoned: Set["Future[ExtractionOutcome]"] = set()
        self._hits = 0
        self._misses = 0

    # ------------------------------------------------------------------
    # Incremental analysis

    def analyze_changed_files(self, paths: Iterable[PathLike]) -> List[Change]:
        """Re-extract the given paths and return the committed changes.

        Unchanged bytes are a no-op. A successful update invalidates the
        direct dependents of the path (one hop only).
        """
        return self._analyze(paths, propagate=True)

    def refresh_invalidated(self) -> List[Change]:
        """Re-extract entries dropped by invalidation, without cascading further."""
        pending = sorted(path for path in self._invalidated if path in self._hashes)
        self._invalidated.intersection_update(self._hashes)
        if not pending:
            return []
        return self._analyze(pending, propagate=False)

    def needs_reanalysis(self, path: PathLike) -> bool:
        key = normalize_path(path)
        try:
            current = compute_file_hash(key)
        except OSError:
            return True
        return not self._is_current(key, current)

    def _analyze(self, paths: Iterable[PathLike], *, propagate: bool) -> List[Change]:
        ordered = list(dict.fromkeys(normalize_path(path) for path in paths))
        # A plan without a hash is a deletion.
        plans: List[Tuple[str, Optional[FileHash]]] = []

        for path in ordered:
            if not os.path.exists(path):
                plans.append((path, None))
                continue
            try:
                current = compute_file_hash(path)
            except OSError as exc:
                self._record_failure(ExtractionFailure(path=path, kind=IO_ERROR, message=str(exc)))
                continue
            if self._is_current(path, current):
                self._hits += 1
                continue
            self._misses += 1
            plans.append((path, current))

        futures = self._submit([path for path, file_hash in plans if file_hash is not None])

        changes: List[Change] = []
        committed: Set[str] = set()
        for path, file_hash in plans:
            if file_hash is None:
                deletion = self._commit_deletion(path, propagate=propagate, protected=committed)
                if deletion is not None:
                    changes.append(deletion)
                continue
            kind = "modified" if path in self._hashes else "added"
            outcome = self._await(futures[path], path)
            if isinstance(outcome, Skip):
                self._record_skip(outcome, file_hash)
                continue
            if isinstance(outcome, ExtractionFailure):
                self._record_failure(outcome)
                continue
            changes.append(self._commit(kind, path, file_hash, outcome))
            committed.add(path)
            if propagate:
                self._invalidate_dependents(path, protected=committed)

        # All invalidation passes for this batch are complete at this point.
        evicted = self._enforce_budget()
        if evicted:
            logger.info("Evicted %d cache entries to respect the memory budget", len(evicted))
        return changes

    def _submit(self, paths: Sequence[str]) -> Dict[str, "Future[ExtractionOutcome]"]:
        if not paths:
            return {}
        if self._executor is not None and self._running_abandoned() >= self.workers:
            logger.warning(
                "All %d extraction workers are held by timed-out extractions; "
                "starting a fresh pool",
                self.workers,
            )
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
            self._abandoned.clear()
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.workers, thread_name_prefix="driftwatch-extract"
            )
        futures: Dict[str, Future[ExtractionOutcome]] = {}
        for path in paths:
            target = Path(path)
            extractor = self.registry.for_path(target)
            futures[path] = self._executor.submit(safe_extract, extractor, target, self.policy)
        return futures

    def _await(self, future: "Future[ExtractionOutcome]", path: str) -> ExtractionOutcome:
        try:
            return future.result(timeout=self.extract_timeout_s)
        except FutureTimeout:
            if not future.cancel():
                self._abandoned.add(future)
                logger.debug(
                    "%d timed-out extraction(s) still hold a worker",
                    self._running_abandoned(),
                )
            return ExtractionFailure(
                path=path,
                kind=TIMEOUT,
                message=f"Extraction exceeded {self.extract_timeout_s:g}s",
            )

    def _running_abandoned(self) -> int:
        self._abandoned = {future for future in self._abandoned if not future.done()}
        return len(self._abandoned)

    def _is_current(self, path: str, file_hash: FileHash) -> bool:
        skipped = self._skipped.get(path)
        if skipped is not None and skipped[0] == file_hash.content_hash:
            return True
        stored = self._hashes.get(path)
        entry = self._entries.get(path)
        if stored is None or entry is None or stored.content_hash != file_hash.content_hash:
            return False
        if entry.stale and entry.content_hash == file_hash.content_hash:
            # content reverted to the version the retained facts describe
            entry.stale = False
            self._failures.pop(path, None)
        return True

    # ------------------------------------------------------------------
    # Commit phase (single writer)

    def _commit(self, kind: str, path: str, file_hash: FileHash, facts: Facts) -> Change:
        previous = self._entries.get(path)
        dependencies = tuple(
            dict.fromkeys(self._resolve_dependency(path, dep) for dep in facts.dependencies)
        )
        self._entries[path] = CacheEntry(
            path=path,
            facts=facts,
            content_hash=file_hash.content_hash,
            analyzed_at=self._clock(),
            dependencies=dependencies,
        )
        self._sizes[path] = facts_size(facts)
        self._hashes[path] = file_hash
        self._skipped.pop(path, None)
        self._failures.pop(path, None)
        self._invalidated.discard(path)
        self._rebuild_edges(path, dependencies)
        return Change(
            type=kind,  # type: ignore[arg-type]
            path=path,
            facts=facts,
            old_facts=previous.facts if previous else None,
        )

    def _commit_deletion(
        self, path: str, *, propagate: bool, protected: Set[str]
    ) -> Optional[Change]:
        known = path in self._hashes or path in self._entries
        previous = self._entries.pop(path, None)
        self._hashes.pop(path, None)
        self._sizes.pop(path, None)
        self._skipped.pop(path, None)
        self._failures.pop(path, None)
        self._invalidated.discard(path)
        if propagate:
            self._invalidate_dependents(path, protected=protected)
        self._graph.pop(path, None)
        self._remove_outgoing_edges(path)
        if not known:
            return None
        return Change(
            type="deleted",
            path=path,
            old_facts=previous.facts if previous else None,
        )

    def _record_skip(self, skip: Skip, file_hash: FileHash) -> None:
        self._skipped[skip.path] = (file_hash.content_hash, skip.reason)
        logger.debug("Skipped %s: %s", skip.path, skip.reason)

    def _record_failure(self, failure: ExtractionFailure) -> None:
        previous = self._entries.get(failure.path)
        if previous is not None:
            previous.stale = True
        self._failures[failure.path] = failure
        logger.warning(
            "Failed to analyze %s (%s): %s", failure.path, failure.kind, failure.message
        )
        if self._reporter is not None:
            self._reporter(failure)

    def _resolve_dependency(self, path: str, dependency: str) -> str:
        if not dependency.startswith("."):
            return dependency
        base = os.path.normpath(os.path.join(os.path.dirname(path), dependency))
        if base in self._hashes or os.path.splitext(base)[1]:
            return base
        for candidate in self._hashes:
            if os.path.splitext(candidate)[0] == base:
                return candidate
        return base

    def _rebuild_edges(self, path: str, dependencies: Sequence[str]) -> None:
        self._remove_outgoing_edges(path)
        for dependency in dependencies:
            if dependency == path:
                continue
            self._graph.setdefault(dependency, set()).add(path)

    def _remove_outgoing_edges(self, path: str) -> None:
        for dependency in list(self._graph):
            dependents = self._graph[dependency]
            dependents.discard(path)
            if not dependents:
                del self._graph[dependency]

    def _invalidate_dependents(self, path: str, *, protected: Set[str]) -> None:
        for dependent in sorted(self._graph.get(path, ())):
            if dependent == path or dependent in protected:
                continue
            if self._entries.pop(dependent, None) is not None:
                self._sizes.pop(dependent, None)
                self._invalidated.add(dependent)
                logger.debug("Invalidated %s (depends on %s)", dependent, path)

    def _enforce_budget(self) -> List[str]:
        total = sum(self._sizes.values())
        if total <= self.budget_bytes:
            return []
        target = self.budget_bytes * _EVICTION_TARGET
        evicted: List[str] = []
        for path in sorted(self._entries, key=lambda key: self._entries[key].analyzed_at):
            if total <= target:
                break
            total -= self._sizes.pop(path, 0)
            del self._entries[path]
            self._hashes.pop(path, None)
            self._remove_outgoing_edges(path)
            evicted.append(path)
        return evicted

    # ------------------------------------------------------------------
    # Read access

    def get(self, path: PathLike) -> Optional[CacheEntry]:
        return self._entries.get(normalize_path(path))

    def get_facts(self, path: PathLike) -> Optional[Facts]:
        entry = self._entries.get(normalize_path(path))
        return entry.facts if entry else None

    def file_hash(self, path: PathLike) -> Optional[FileHash]:
        return self._hashes.get(normalize_path(path))

    def paths(self) -> List[str]:
        return list(self._entries)

    def entries(self) -> Iterator[CacheEntry]:
        return iter(list(self._entries.values()))

    def dependents_of(self, path: PathLike) -> Set[str]:
        return set(self._graph.get(normalize_path(path), ()))

    def dependency_graph(self) -> Dict[str, Set[str]]:
        return {key: set(value) for key, value in self._graph.items()}

    def invalidated(self) -> Set[str]:
        return set(self._invalidated)

    def skipped(self) -> Dict[str, str]:
        return {path: reason for path, (_, reason) in self._skipped.items()}

    def failures(self) -> Dict[str, ExtractionFailure]:
        return dict(self._failures)

    def memory_usage(self) -> int:
        return sum(self._sizes.values())

    def stats(self) -> Dict[str, float]:
        now = self._clock()
        oldest = min((entry.analyzed_at for entry in self._entries.values()), default=now)
        lookups = self._hits + self._misses
        return {
            "files": len(self._entries),
            "memory_usage": self.memory_usage(),
            "budget": self.budget_bytes,
            "stale": sum(1 for entry in self._entries.values() if entry.stale),
            "invalidated": len(self._invalidated),
            "skipped": len(self._skipped),
            "hit_rate": round(100.0 * self._hits / lookups, 1) if lookups else 0.0,
            "oldest_entry_age_s": max(now - oldest, 0.0),
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, os.PathLike)):
            return False
        return normalize_path(path) in self._entries

    # ------------------------------------------------------------------
    # Lifecycle & persistence

    def clear(self) -> None:
        self._hashes.clear()
        self._entries.clear()
        self._sizes.clear()
        self._graph.clear()
        self._skipped.clear()
        self._failures.clear()
        self._invalidated.clear()

    def close(self) -> None:
        """Shut the extraction pool down without waiting on hung extractors."""
        if self._executor is None:
            return
        stuck = self._running_abandoned()
        if stuck:
            logger.warning("Abandoning %d extraction(s) that exceeded their timeout", stuck)
        self._executor.shutdown(wait=not stuck, cancel_futures=True)
        self._executor = None
        self._abandoned.clear()

    def save_cache(self, root: PathLike) -> Path:
        """Persist hashes, entries and graph with a write-then-replace."""
        target = cache_document_path(root)
        payload = {
            "version": _CACHE_VERSION,
            "fileHashes": [
                [path, {"hash": item.content_hash, "size": item.size, "mtime": item.mtime}]
                for path, item in self._hashes.items()
            ],
            "cacheEntries": [
                [
                    path,
                    {
                        "facts": facts_to_dict(entry.facts),
                        "hash": entry.content_hash,
                        "analyzedAt": entry.analyzed_at,
                        "dependencies": list(entry.dependencies),
                        "stale": entry.stale,
                    },
                ]
                for path, entry in self._entries.items()
            ],
            "dependencyGraph": [
                [dependency, sorted(dependents)] for dependency, dependents in self._graph.items()
            ],
            "savedAt": self._clock(),
        }
        write_json_atomic(target, payload)
        logger.debug("Saved cache with %d entries to %s", len(self._entries), target)
        return target

    def load_cache(
        self, root: PathLike, *, revalidate: bool = True, strict: bool = False
    ) -> int:
        """Restore a saved cache; returns the number of entries restored.

        Documents older than the TTL are ignored. With ``strict`` an unreadable
        document raises :class:`CacheCorruptionError`; otherwise it is dropped.
        """
        source = cache_document_path(root)
        try:
            data = json.loads(source.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return 0
        except (OSError, json.JSONDecodeError) as exc:
            return self._discard_document(source, f"unreadable ({exc})", strict)

        if not isinstance(data, dict) or data.get("version") != _CACHE_VERSION:
            return self._discard_document(source, "unrecognised format", strict)
        saved_at = data.get("savedAt")
        if not isinstance(saved_at, (int, float)):
            return self._discard_document(source, "missing savedAt", strict)
        if self._clock() - saved_at > self.ttl_seconds:
            logger.info("Cache at %s is stale, starting fresh", source)
            return 0

        try:
            hashes, entries, graph = _parse_document(data)
        except (TypeError, ValueError, KeyError) as exc:
            return self._discard_document(source, f"malformed ({exc})", strict)

        self.clear()
        self._hashes = hashes
        self._entries = entries
        self._sizes = {path: facts_size(entry.facts) for path, entry in entries.items()}
        self._graph = graph
        self._invalidated = {path for path in hashes if path not in entries}
        if revalidate:
            valid, invalid = self.validate()
            if invalid:
                logger.info("Refreshed %d stale cache entries", len(invalid))
        logger.info("Loaded cache with %d files", len(self._entries))
        return len(self._entries)

    def validate(self) -> Tuple[int, List[str]]:
        """Drop entries whose on-disk bytes no longer match their hash."""
        invalid: List[str] = []
        valid = 0
        for path, entry in list(self._entries.items()):
            try:
                current = compute_file_hash(path)
            except OSError:
                invalid.append(path)
                continue
            if current.content_hash == entry.content_hash:
                valid += 1
            else:
                invalid.append(path)
        for path in invalid:
            self._entries.pop(path, None)
            self._sizes.pop(path, None)
            self._hashes.pop(path, None)
            self._invalidated.discard(path)
            self._remove_outgoing_edges(path)
        return valid, invalid

    def _discard_document(self, source: Path, reason: str, strict: bool) -> int:
        if strict:
            raise CacheCorruptionError(
                f"Cache document {source} is {reason}; delete it to rebuild the cache"
            )
        logger.warning("Ignoring cache document %s: %s", source, reason)
        self.clear()
        return 0


def _parse_document(
    data: Dict[str, object],
) -> Tuple[Dict[str, FileHash], Dict[str, CacheEntry], Dict[str, Set[str]]]:
    hashes: Dict[str, FileHash] = {}
    for path, raw in data.get("fileHashes") or []:  # type: ignore[union-attr]
        hashes[str(path)] = FileHash(
            path=str(path),
            content_hash=str(raw["hash"]),
            size=int(raw.get("size", 0)),
            mtime=float(raw.get("mtime", 0.0)),
        )

    entries: Dict[str, CacheEntry] = {}
    for path, raw in data.get("cacheEntries") or []:  # type: ignore[union-attr]
        entries[str(path)] = CacheEntry(
            path=str(path),
            facts=facts_from_dict(raw["facts"]),
            content_hash=str(raw["hash"]),
            analyzed_at=float(raw["analyzedAt"]),
            dependencies=tuple(str(dep) for dep in raw.get("dependencies", [])),
            stale=bool(raw.get("stale", False)),
        )

    graph: Dict[str, Set[str]] = {}
    for dependency, dependents in data.get("dependencyGraph") or []:  # type: ignore[union-attr]
        if dependents:
            graph[str(dependency)] = {str(item) for item in dependents}
    return hashes, entries, graph


__all__ = [
    "CACHE_DIRNAME",
    "CACHE_FILENAME",
    "FailureReporter",
    "IncrementalCache",
    "cache_document_path",
    "compute_file_hash",
    "normalize_path",
]
