"""Per-path debouncing of raw filesystem events."""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..logging import get_logger

logger = get_logger("watcher")


@dataclass(frozen=True)
class SettledPath:
    """A path whose events have gone quiet for the debounce interval."""

    path: str
    deleted: bool = False


SettleHandler = Callable[[List[SettledPath]], None]


class Debouncer:
    """Coalesce events per path and deliver settled paths in batches.

    Every event on a path restarts that path's timer. Paths whose timers fire
    in the same loop iteration are delivered together in one batch. All
    methods except :meth:`push_threadsafe` must run on the owning loop.
    """

    def __init__(
        self,
        delay_ms: int,
        on_settle: SettleHandler,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.delay = max(delay_ms, 0) / 1000
        self._on_settle = on_settle
        self._loop = loop
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._last_deleted: Dict[str, bool] = {}
        self._ready: Dict[str, bool] = {}
        self._delivery: Optional[asyncio.Handle] = None

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def push(self, path: str, *, deleted: bool = False) -> None:
        """Record an event for ``path`` and restart its timer."""
        timer = self._timers.pop(path, None)
        if timer is not None:
            timer.cancel()
        self._ready.pop(path, None)
        self._last_deleted[path] = deleted
        self._timers[path] = self.loop.call_later(self.delay, self._settle, path)

    def push_threadsafe(self, path: str, *, deleted: bool = False) -> None:
        self.loop.call_soon_threadsafe(lambda: self.push(path, deleted=deleted))

    def pending(self) -> int:
        return len(self._timers) + len(self._ready)

    def flush(self) -> List[SettledPath]:
        """Settle every pending path now and return the batch without delivering it."""
        for path, timer in list(self._timers.items()):
            timer.cancel()
            self._ready[path] = self._last_deleted.pop(path, False)
        self._timers.clear()
        if self._delivery is not None:
            self._delivery.cancel()
            self._delivery = None
        return self._drain()

    def cancel(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._ready.clear()
        self._last_deleted.clear()
        if self._delivery is not None:
            self._delivery.cancel()
            self._delivery = None

    def _settle(self, path: str) -> None:
        self._timers.pop(path, None)
        self._ready[path] = self._last_deleted.pop(path, False)
        if self._delivery is None:
            # timers expiring in this iteration join the same batch
            self._delivery = self.loop.call_soon(self._deliver)

    def _deliver(self) -> None:
        self._delivery = None
        batch = self._drain()
        if batch:
            logger.debug("Settled %d path(s)", len(batch))
            self._on_settle(batch)

    def _drain(self) -> List[SettledPath]:
        batch = [
            SettledPath(path=path, deleted=deleted or not os.path.exists(path))
            for path, deleted in self._ready.items()
        ]
        self._ready.clear()
        return batch


__all__ = ["Debouncer", "SettleHandler", "SettledPath"]
