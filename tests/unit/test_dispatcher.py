"""Tests for the bounded batch dispatcher."""

import asyncio

import pytest

from app.services.ingestion.dispatcher import Dispatcher
from app.services.ingestion.events import EventBatch
from app.services.ingestion.shutdown import ShutdownSignal
from app.utils.exceptions import DispatcherClosedError


def batch(n: int) -> EventBatch:
    return EventBatch(stream_id=f"stream-{n}")


class TestDispatcher:
    """Tests for Dispatcher."""

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            Dispatcher(capacity=0)

    @pytest.mark.asyncio
    async def test_fifo_order(self):
        dispatcher = Dispatcher(capacity=10)
        for n in range(3):
            await dispatcher.send(batch(n))

        received = [await dispatcher.receive() for _ in range(3)]

        assert [b.stream_id for b in received] == ["stream-0", "stream-1", "stream-2"]

    @pytest.mark.asyncio
    async def test_send_blocks_at_capacity(self):
        """Backpressure: the (C+1)th send waits until one batch is received."""
        dispatcher = Dispatcher(capacity=2)
        await dispatcher.send(batch(0))
        await dispatcher.send(batch(1))

        blocked = asyncio.create_task(dispatcher.send(batch(2)))
        await asyncio.sleep(0.05)
        assert not blocked.done()
        assert dispatcher.qsize() == 2

        first = await dispatcher.receive()
        await asyncio.wait_for(blocked, timeout=1.0)

        assert first.stream_id == "stream-0"
        assert dispatcher.qsize() == 2
        remaining = [await dispatcher.receive() for _ in range(2)]
        assert [b.stream_id for b in remaining] == ["stream-1", "stream-2"]

    @pytest.mark.asyncio
    async def test_receive_drains_then_returns_none_after_close(self):
        dispatcher = Dispatcher(capacity=5)
        await dispatcher.send(batch(0))
        dispatcher.close()

        assert (await dispatcher.receive()).stream_id == "stream-0"
        assert await dispatcher.receive() is None
        assert await dispatcher.receive() is None

    @pytest.mark.asyncio
    async def test_close_wakes_waiting_receiver(self):
        dispatcher = Dispatcher(capacity=5)
        waiting = asyncio.create_task(dispatcher.receive())
        await asyncio.sleep(0.01)

        dispatcher.close()

        assert await asyncio.wait_for(waiting, timeout=1.0) is None

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        dispatcher = Dispatcher()
        dispatcher.close()
        dispatcher.close()

        assert dispatcher.closed is True

    @pytest.mark.asyncio
    async def test_send_after_close_raises(self):
        dispatcher = Dispatcher()
        dispatcher.close()

        with pytest.raises(DispatcherClosedError):
            await dispatcher.send(batch(0))

    @pytest.mark.asyncio
    async def test_shutdown_releases_blocked_send(self):
        """A stalled consumer cannot block shutdown."""
        shutdown = ShutdownSignal()
        dispatcher = Dispatcher(capacity=1, shutdown=shutdown)
        await dispatcher.send(batch(0))
        blocked = asyncio.create_task(dispatcher.send(batch(1)))
        await asyncio.sleep(0.01)

        shutdown.trigger()

        with pytest.raises(DispatcherClosedError):
            await asyncio.wait_for(blocked, timeout=1.0)
        assert dispatcher.qsize() == 1

    @pytest.mark.asyncio
    async def test_send_refused_after_shutdown(self):
        shutdown = ShutdownSignal()
        dispatcher = Dispatcher(shutdown=shutdown)
        shutdown.trigger(RuntimeError("boom"))

        with pytest.raises(DispatcherClosedError, match="shutdown"):
            await dispatcher.send(batch(0))


class TestShutdownSignal:
    """Tests for ShutdownSignal."""

    @pytest.mark.asyncio
    async def test_first_cause_wins(self):
        shutdown = ShutdownSignal()
        first = RuntimeError("first")

        shutdown.trigger(first)
        shutdown.trigger(RuntimeError("second"))

        assert shutdown.is_set()
        assert shutdown.cause is first
        await asyncio.wait_for(shutdown.wait(), timeout=1.0)
