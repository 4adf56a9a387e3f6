"""
Unit tests — Latest-request-wins guard (latest_request.py).
"""
from __future__ import annotations

import asyncio

import pytest

from matchbot.services.latest_request import LatestOnly, RequestSequencer, Superseded


def _responder(value, delay: float = 0.0, calls=None):
    async def factory():
        if calls is not None:
            calls.append(value)
        if delay:
            await asyncio.sleep(delay)
        return value
    return factory


class TestLatestOnly:
    async def test_single_request(self) -> None:
        guard = LatestOnly()
        assert await guard.run(_responder("a")) == "a"
        assert guard.latest == 1

    async def test_older_request_is_superseded(self) -> None:
        guard = LatestOnly()
        first = asyncio.create_task(guard.run(_responder("old", delay=0.5)))
        await asyncio.sleep(0)

        assert await guard.run(_responder("new")) == "new"
        with pytest.raises(Superseded) as exc:
            await first
        assert exc.value.seq == 1

    async def test_fast_stale_response_never_wins(self) -> None:
        """A response for an older query is dropped even if it arrives later."""
        guard = LatestOnly()
        first = asyncio.create_task(guard.run(_responder("old", delay=0.05)))
        await asyncio.sleep(0)
        second = asyncio.create_task(guard.run(_responder("new", delay=0.1)))

        results = await asyncio.gather(first, second, return_exceptions=True)
        assert isinstance(results[0], Superseded)
        assert results[1] == "new"

    async def test_debounce_skips_superseded_factory(self) -> None:
        calls = []
        guard = LatestOnly(debounce=0.05)
        first = asyncio.create_task(guard.run(_responder("a", calls=calls)))
        await asyncio.sleep(0)
        assert await guard.run(_responder("b", calls=calls)) == "b"
        with pytest.raises(Superseded):
            await first
        assert calls == ["b"]

    async def test_cancel_supersedes_in_flight(self) -> None:
        guard = LatestOnly()
        pending = asyncio.create_task(guard.run(_responder("x", delay=0.5)))
        await asyncio.sleep(0)
        guard.cancel()
        with pytest.raises(Superseded):
            await pending

    async def test_factory_errors_propagate(self) -> None:
        async def boom():
            raise RuntimeError("directory down")

        with pytest.raises(RuntimeError):
            await LatestOnly().run(boom)


class TestRequestSequencer:
    async def test_drafts_are_independent(self) -> None:
        seq = RequestSequencer()
        a = asyncio.create_task(seq.run("d1", RequestSequencer.SEARCH, _responder(1, delay=0.05)))
        await asyncio.sleep(0)
        b = await seq.run("d2", RequestSequencer.SEARCH, _responder(2))
        assert b == 2
        assert await a == 1

    async def test_kinds_are_independent(self) -> None:
        seq = RequestSequencer()
        a = asyncio.create_task(seq.run("d1", RequestSequencer.SEARCH, _responder("s", delay=0.05)))
        await asyncio.sleep(0)
        assert await seq.run("d1", RequestSequencer.GEOCODE, _responder("g")) == "g"
        assert await a == "s"

    async def test_forget_cancels_and_drops_guards(self) -> None:
        seq = RequestSequencer()
        pending = asyncio.create_task(seq.run("d1", RequestSequencer.SEARCH, _responder("x", delay=0.5)))
        await asyncio.sleep(0)
        guard = seq.guard("d1", RequestSequencer.SEARCH)

        seq.forget("d1")
        with pytest.raises(Superseded):
            await pending
        assert seq.guard("d1", RequestSequencer.SEARCH) is not guard

    async def test_abandoned_guards_are_evicted(self) -> None:
        seq = RequestSequencer(max_guards=2)
        oldest = seq.guard("d1", RequestSequencer.SEARCH)
        seq.guard("d2", RequestSequencer.SEARCH)
        seq.guard("d3", RequestSequencer.SEARCH)

        assert len(seq) == 2
        assert seq.guard("d1", RequestSequencer.SEARCH) is not oldest

    async def test_busy_guard_survives_eviction(self) -> None:
        seq = RequestSequencer(max_guards=1)
        pending = asyncio.create_task(seq.run("d1", RequestSequencer.SEARCH, _responder("x", delay=0.05)))
        await asyncio.sleep(0)
        busy = seq.guard("d1", RequestSequencer.SEARCH)

        assert await seq.run("d2", RequestSequencer.SEARCH, _responder("y")) == "y"
        assert seq.guard("d1", RequestSequencer.SEARCH) is busy
        assert await pending == "x"
