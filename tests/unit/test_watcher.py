"""Tests for the log watcher."""

import asyncio

import pytest

from app.models.enums import EventKind
from app.services.ingestion.dispatcher import Dispatcher
from app.services.ingestion.events import StreamSpec
from app.services.ingestion.watcher import Watcher, WatcherState
from app.utils.exceptions import ChainConnectionError, FatalError


CONTRACT = "0x00000000000000000000000000000000000000aa"


@pytest.fixture
def dispatcher():
    return Dispatcher(capacity=100)


@pytest.fixture
def make_watcher(chain_client, dispatcher):
    def factory(**kwargs) -> Watcher:
        options = {
            "batch_size": 50,
            "batch_linger": 0.05,
            "reconnect_base_delay": 0.01,
            "reconnect_max_delay": 0.02,
            "max_reconnect_attempts": 3,
        }
        options.update(kwargs)
        return Watcher(
            StreamSpec(EventKind.NATIVE_AIRDROP, CONTRACT),
            chain_client,
            dispatcher,
            **options,
        )

    return factory


async def drain(dispatcher: Dispatcher) -> list:
    batches = []
    while dispatcher.qsize():
        batches.append(await dispatcher.receive())
    return batches


class TestWatcherStart:
    """Tests for Watcher.start."""

    @pytest.mark.asyncio
    async def test_initial_subscribe_failure_is_not_retried(
        self, make_watcher, chain_client
    ):
        chain_client.fail_subscribes = 1
        watcher = make_watcher()

        with pytest.raises(ChainConnectionError):
            await watcher.start(100)

        assert watcher.state == WatcherState.STOPPED
        assert chain_client.subscribe_calls == [100]

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self, make_watcher):
        watcher = make_watcher()
        await watcher.start(100)

        with pytest.raises(RuntimeError):
            await watcher.start(100)

        await watcher.stop()


class TestWatcherStreaming:
    """Tests for decoding and batching."""

    @pytest.mark.asyncio
    async def test_malformed_log_is_skipped(
        self, make_watcher, chain_client, dispatcher, log_factory, eventually
    ):
        bad = log_factory(tx_hash="0x02", block_number=101)
        bad["topics"] = bad["topics"][:1]
        chain_client.emit(log_factory(tx_hash="0x01", block_number=100))
        chain_client.emit(bad)
        chain_client.emit(log_factory(tx_hash="0x03", block_number=102))

        watcher = make_watcher()
        await watcher.start(100)
        task = asyncio.create_task(watcher.run())
        await eventually(lambda: dispatcher.qsize() >= 1)
        await watcher.stop()
        await asyncio.wait_for(task, timeout=1.0)

        events = [e for b in await drain(dispatcher) for e in b.events]
        assert [e.block_number for e in events] == [100, 102]
        assert watcher.malformed_count == 1
        assert watcher.events_seen == 2

    @pytest.mark.asyncio
    async def test_batches_close_on_block_boundaries(
        self, make_watcher, chain_client, dispatcher, log_factory, eventually
    ):
        for block, index in [(100, 0), (100, 1), (101, 0), (101, 1), (102, 0)]:
            chain_client.emit(
                log_factory(tx_hash=hex(block * 10 + index), block_number=block, log_index=index)
            )

        watcher = make_watcher(batch_size=2)
        await watcher.start(100)
        task = asyncio.create_task(watcher.run())
        await eventually(lambda: watcher.batches_sent == 3)
        await watcher.stop()
        await asyncio.wait_for(task, timeout=1.0)

        batches = await drain(dispatcher)
        blocks = [[e.block_number for e in b.events] for b in batches]
        assert blocks == [[100, 100], [101, 101], [102]]
        assert [b.partial_tail for b in batches] == [False, False, True]
        assert [b.checkpoint_block for b in batches] == [100, 101, 101]
        assert watcher.last_delivered_block == 102

    @pytest.mark.asyncio
    async def test_pending_events_flushed_on_stop(
        self, make_watcher, chain_client, dispatcher, log_factory, eventually
    ):
        watcher = make_watcher(batch_linger=30.0)
        await watcher.start(100)
        task = asyncio.create_task(watcher.run())
        chain_client.emit(log_factory(block_number=100))
        await eventually(lambda: watcher.events_seen == 1)
        assert dispatcher.qsize() == 0

        await watcher.stop()
        await asyncio.wait_for(task, timeout=1.0)

        (batch,) = await drain(dispatcher)
        assert batch.partial_tail
        assert batch.checkpoint_block == 99
        assert watcher.state == WatcherState.STOPPED
        assert chain_client.subscriptions[0].unsubscribed

    @pytest.mark.asyncio
    async def test_closed_dispatcher_stops_watcher(
        self, make_watcher, chain_client, dispatcher, log_factory
    ):
        watcher = make_watcher()
        await watcher.start(100)
        task = asyncio.create_task(watcher.run())
        dispatcher.close()
        chain_client.emit(log_factory(block_number=100))

        await asyncio.wait_for(task, timeout=1.0)

        assert watcher.state == WatcherState.STOPPED


class TestWatcherReconnect:
    """Tests for subscription recovery."""

    @pytest.mark.asyncio
    async def test_resubscribes_from_last_delivered_block(
        self, make_watcher, chain_client, log_factory, eventually
    ):
        watcher = make_watcher()
        await watcher.start(90)
        task = asyncio.create_task(watcher.run())
        chain_client.emit(log_factory(block_number=100))
        await eventually(lambda: watcher.events_seen == 1)

        chain_client.drop_connection()
        await eventually(lambda: watcher.reconnects == 1)

        assert chain_client.subscribe_calls == [90, 100]
        assert watcher.state == WatcherState.STREAMING
        assert chain_client.subscriptions[0].unsubscribed

        await watcher.stop()
        await asyncio.wait_for(task, timeout=1.0)

    @pytest.mark.asyncio
    async def test_rest_of_block_read_after_mid_block_disconnect(
        self, make_watcher, chain_client, dispatcher, log_factory, eventually
    ):
        watcher = make_watcher()
        await watcher.start(90)
        task = asyncio.create_task(watcher.run())
        chain_client.emit(log_factory(tx_hash="0x01", block_number=100, log_index=0))
        await eventually(lambda: watcher.events_seen == 1)

        chain_client.drop_connection()
        # Mined in the same block, never delivered on the old subscription
        chain_client.history.append(
            log_factory(tx_hash="0x01", block_number=100, log_index=1)
        )
        await eventually(lambda: watcher.events_seen == 3)
        await watcher.stop()
        await asyncio.wait_for(task, timeout=1.0)

        events = [e for b in await drain(dispatcher) for e in b.events]
        assert {(e.block_number, e.log_index) for e in events} == {(100, 0), (100, 1)}
        assert chain_client.subscribe_calls == [90, 100]

    @pytest.mark.asyncio
    async def test_resubscribes_from_start_block_without_deliveries(
        self, make_watcher, chain_client, eventually
    ):
        watcher = make_watcher()
        await watcher.start(90)
        task = asyncio.create_task(watcher.run())

        chain_client.drop_connection()
        await eventually(lambda: watcher.reconnects == 1)

        assert chain_client.subscribe_calls == [90, 90]
        await watcher.stop()
        await asyncio.wait_for(task, timeout=1.0)

    @pytest.mark.asyncio
    async def test_fatal_after_retry_budget(self, make_watcher, chain_client):
        watcher = make_watcher(max_reconnect_attempts=2)
        await watcher.start(100)
        chain_client.fail_subscribes = 2
        chain_client.drop_connection()

        with pytest.raises(FatalError) as exc_info:
            await asyncio.wait_for(watcher.run(), timeout=1.0)

        assert exc_info.value.stream_id == watcher.stream_id
        assert isinstance(exc_info.value.cause, ChainConnectionError)
        assert len(chain_client.subscribe_calls) == 3
        assert watcher.state == WatcherState.STOPPED

    @pytest.mark.asyncio
    async def test_failed_attempts_then_recovery(
        self, make_watcher, chain_client, eventually
    ):
        watcher = make_watcher(max_reconnect_attempts=3)
        await watcher.start(100)
        task = asyncio.create_task(watcher.run())
        chain_client.fail_subscribes = 2
        chain_client.drop_connection()

        await eventually(lambda: watcher.reconnects == 1)

        assert len(chain_client.subscribe_calls) == 4
        await watcher.stop()
        await asyncio.wait_for(task, timeout=1.0)

    @pytest.mark.asyncio
    async def test_stop_during_backoff(self, make_watcher, chain_client, eventually):
        watcher = make_watcher(reconnect_base_delay=30.0, reconnect_max_delay=30.0)
        await watcher.start(100)
        task = asyncio.create_task(watcher.run())
        chain_client.drop_connection()
        await eventually(lambda: watcher.state == WatcherState.RECONNECTING)

        await watcher.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert watcher.state == WatcherState.STOPPED
        assert chain_client.subscribe_calls == [100]

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, make_watcher):
        watcher = make_watcher()
        await watcher.start(100)

        await watcher.stop()
        await watcher.stop()

        assert watcher.state == WatcherState.STOPPED
