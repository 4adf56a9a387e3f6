"""
Latest-request-wins guard for debounced lookups (venue search, geocoding).

Every `run()` takes the next sequence number, cancels the in-flight request
of the same guard and, after an optional debounce delay, awaits the factory.
A response whose sequence number is no longer the latest issued is never
returned: the caller gets `Superseded` instead, so stale results cannot
overwrite newer ones.
"""
from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Superseded(Exception):
    """A newer request of the same kind was issued for the same draft."""

    def __init__(self, seq: int) -> None:
        self.seq = seq
        super().__init__(f"request #{seq} superseded")


class LatestOnly:
    def __init__(self, debounce: float = 0.0) -> None:
        self._debounce = debounce
        self._seq = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def latest(self) -> int:
        return self._seq

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _invoke(self, factory: Callable[[], Awaitable[T]]) -> T:
        if self._debounce > 0:
            await asyncio.sleep(self._debounce)
        return await factory()

    async def run(self, factory: Callable[[], Awaitable[T]]) -> T:
        self._seq += 1
        seq = self._seq

        previous = self._task
        if previous is not None and not previous.done():
            previous.cancel()

        task = asyncio.ensure_future(self._invoke(factory))
        self._task = task
        try:
            result = await task
        except asyncio.CancelledError:
            if seq != self._seq:
                raise Superseded(seq) from None
            raise
        if seq != self._seq:
            raise Superseded(seq)
        return result

    def cancel(self) -> None:
        """Cancel the in-flight request; its caller sees Superseded."""
        self._seq += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()


class RequestSequencer:
    """
    One LatestOnly guard per (draft id, request kind).

    Wizards that are simply abandoned never reach forget(), so the table is
    capped at `max_guards`; the least recently used idle guards go first.
    """

    SEARCH  = "search"
    GEOCODE = "geocode"

    def __init__(self, debounce: float = 0.0, max_guards: int = 1024) -> None:
        self._debounce = debounce
        self._max_guards = max_guards
        self._guards: "OrderedDict[Tuple[str, str], LatestOnly]" = OrderedDict()

    def guard(self, draft_id: str, kind: str) -> LatestOnly:
        key = (draft_id, kind)
        guard = self._guards.get(key)
        if guard is None:
            guard = self._guards[key] = LatestOnly(self._debounce)
            self._evict_idle(keep=key)
        self._guards.move_to_end(key)
        return guard

    def _evict_idle(self, keep: Tuple[str, str]) -> None:
        for key in list(self._guards):
            if len(self._guards) <= self._max_guards:
                break
            if key != keep and not self._guards[key].busy:
                del self._guards[key]

    def __len__(self) -> int:
        return len(self._guards)

    async def run(self, draft_id: str, kind: str, factory: Callable[[], Awaitable[T]]) -> T:
        return await self.guard(draft_id, kind).run(factory)

    def forget(self, draft_id: str) -> None:
        """Drop (and cancel) every guard of a finished or abandoned draft."""
        for key in [k for k in self._guards if k[0] == draft_id]:
            self._guards.pop(key).cancel()
