"""
Log Watcher.

Owns the log subscription of one stream, decodes raw logs into domain
events, groups them into batches at block boundaries and forwards them
to the dispatcher. Subscription failures are retried with bounded
exponential backoff.
"""

import asyncio
import enum
from collections.abc import AsyncIterator

from loguru import logger

from app.config.constants import (
    BATCH_LINGER_SECONDS,
    DEFAULT_BATCH_SIZE,
    WS_MAX_RECONNECT_ATTEMPTS,
    WS_RECONNECT_BASE_DELAY,
    WS_RECONNECT_MAX_DELAY,
)
from app.services.blockchain.chain_client import ChainClient, LogSubscription
from app.services.blockchain.rpc_wrapper import backoff_delay
from app.services.ingestion.dispatcher import Dispatcher
from app.services.ingestion.events import (
    DomainEvent,
    EventBatch,
    StreamSpec,
    decode_log,
)
from app.utils.exceptions import (
    ChainConnectionError,
    DispatcherClosedError,
    FatalError,
    MalformedEventError,
)


class WatcherState(str, enum.Enum):
    """Watcher lifecycle states."""

    IDLE = "idle"
    SUBSCRIBING = "subscribing"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


async def _next_log(iterator: AsyncIterator[dict]) -> dict:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        raise ChainConnectionError("log stream ended") from None


class Watcher:
    """
    Subscription owner for one stream.

    IDLE -> SUBSCRIBING -> STREAMING <-> RECONNECTING -> STOPPED

    Usage:
        watcher = Watcher(spec, client, dispatcher)
        await watcher.start(from_block)   # fails fast
        await watcher.run()               # until stop() or FatalError
    """

    def __init__(
        self,
        spec: StreamSpec,
        client: ChainClient,
        dispatcher: Dispatcher,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_linger: float = BATCH_LINGER_SECONDS,
        reconnect_base_delay: float = WS_RECONNECT_BASE_DELAY,
        reconnect_max_delay: float = WS_RECONNECT_MAX_DELAY,
        max_reconnect_attempts: int = WS_MAX_RECONNECT_ATTEMPTS,
    ) -> None:
        self.spec = spec
        self.client = client
        self.dispatcher = dispatcher
        self.batch_size = batch_size
        self.batch_linger = batch_linger
        self.reconnect_base_delay = reconnect_base_delay
        self.reconnect_max_delay = reconnect_max_delay
        self.max_reconnect_attempts = max_reconnect_attempts

        self.state = WatcherState.IDLE
        self.from_block: int | None = None
        self.last_delivered_block: int | None = None

        # Statistics
        self.events_seen = 0
        self.malformed_count = 0
        self.batches_sent = 0
        self.reconnects = 0

        self._subscription: LogSubscription | None = None
        self._pending: list[DomainEvent] = []
        self._stop_requested = asyncio.Event()
        self._running = False
        self._log_prefix = f"[Watcher:{spec.kind.value}]"

    @property
    def stream_id(self) -> str:
        return self.spec.stream_id

    async def start(self, from_block: int) -> None:
        """
        Open the subscription starting at from_block.

        Raises:
            ChainConnectionError: If the initial subscribe fails (no retry)
        """
        if self.state != WatcherState.IDLE:
            raise RuntimeError(f"{self._log_prefix} start() called in state {self.state}")

        self.state = WatcherState.SUBSCRIBING
        self.from_block = from_block
        try:
            self._subscription = await self.client.subscribe_logs(
                self.spec.contract_address, self.spec.topic, from_block
            )
        except ChainConnectionError as e:
            self.state = WatcherState.STOPPED
            logger.error(f"{self._log_prefix} Initial subscribe failed: {e}")
            raise

        self.state = WatcherState.STREAMING
        logger.info(
            f"{self._log_prefix} Streaming {self.spec.contract_address} "
            f"from block {from_block}"
        )

    async def run(self) -> None:
        """
        Stream logs until stop() is called.

        Raises:
            FatalError: After max_reconnect_attempts consecutive failed
                re-subscribes
        """
        if self.state != WatcherState.STREAMING or self._subscription is None:
            raise RuntimeError(f"{self._log_prefix} run() requires a successful start()")

        self._running = True
        try:
            while True:
                try:
                    await self._stream(self._subscription)
                    return
                except ChainConnectionError as e:
                    logger.warning(f"{self._log_prefix} Subscription error: {e}")

                await self._release_subscription()
                await self._flush()
                if self._stop_requested.is_set():
                    return
                if not await self._reconnect():
                    return
        except DispatcherClosedError as e:
            dropped = len(self._pending)
            self._pending = []
            logger.warning(
                f"{self._log_prefix} Dispatcher closed ({e}); "
                f"{dropped} unsent event(s) will be replayed from checkpoint"
            )
        finally:
            self._running = False
            await self._release_subscription()
            self.state = WatcherState.STOPPED
            logger.info(
                f"{self._log_prefix} Stopped (last delivered block: "
                f"{self.last_delivered_block}, events: {self.events_seen}, "
                f"malformed: {self.malformed_count})"
            )

    async def stop(self) -> None:
        """Cancel the subscription and release resources. Idempotent."""
        self._stop_requested.set()
        if not self._running:
            await self._release_subscription()
            self.state = WatcherState.STOPPED

    def resume_block(self) -> int:
        """
        Block to re-subscribe from after a subscription failure.

        This is the last delivered block itself: the connection may have
        dropped between two logs of that block. It may be ahead of the last
        committed block. Logs delivered twice around the reconnect are
        ignored by storage.
        """
        if self.last_delivered_block is not None:
            return self.last_delivered_block
        return self.from_block or 0

    async def _reconnect(self) -> bool:
        """
        Re-subscribe with exponential backoff.

        Returns:
            True when streaming again, False if stopped while waiting
        """
        self.state = WatcherState.RECONNECTING
        last_error: Exception | None = None

        for attempt in range(1, self.max_reconnect_attempts + 1):
            delay = backoff_delay(
                attempt, self.reconnect_base_delay, self.reconnect_max_delay
            )
            logger.info(
                f"{self._log_prefix} Reconnecting in {delay:.1f}s "
                f"(attempt {attempt}/{self.max_reconnect_attempts})"
            )
            if await self._wait_for_stop(delay):
                return False

            resume_from = self.resume_block()
            try:
                self._subscription = await self.client.subscribe_logs(
                    self.spec.contract_address, self.spec.topic, resume_from
                )
            except ChainConnectionError as e:
                last_error = e
                logger.warning(
                    f"{self._log_prefix} Re-subscribe attempt {attempt} failed: {e}"
                )
                continue

            self.reconnects += 1
            self.state = WatcherState.STREAMING
            logger.success(
                f"{self._log_prefix} Re-subscribed from block {resume_from}"
            )
            return True

        raise FatalError(
            f"{self.stream_id}: subscription lost after "
            f"{self.max_reconnect_attempts} reconnect attempts",
            stream_id=self.stream_id,
            cause=last_error,
        )

    async def _wait_for_stop(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._stop_requested.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    async def _stream(self, subscription: LogSubscription) -> None:
        """Consume one subscription until stop or failure."""
        iterator = subscription.__aiter__()
        next_log: asyncio.Future | None = None
        stop_wait = asyncio.ensure_future(self._stop_requested.wait())
        try:
            while True:
                if next_log is None:
                    next_log = asyncio.ensure_future(_next_log(iterator))

                timeout = self.batch_linger if self._pending else None
                done, _ = await asyncio.wait(
                    {next_log, stop_wait},
                    timeout=timeout,
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if stop_wait in done:
                    await self._flush()
                    return
                if not done:
                    # Idle: no more logs for the pending block(s)
                    await self._flush()
                    continue

                finished, next_log = next_log, None
                await self._handle_log(finished.result())
        finally:
            stop_wait.cancel()
            if next_log is not None and not next_log.done():
                next_log.cancel()

    async def _handle_log(self, raw_log: dict) -> None:
        try:
            event = decode_log(raw_log, self.spec.kind)
        except MalformedEventError as e:
            self.malformed_count += 1
            logger.bind(
                stream_id=self.stream_id,
                tx_hash=str(raw_log.get("transactionHash")),
                log_index=raw_log.get("logIndex"),
                block_number=raw_log.get("blockNumber"),
            ).warning(f"{self._log_prefix} Skipping malformed log: {e}")
            return

        if (
            self._pending
            and event.block_number > self._pending[-1].block_number
            and len(self._pending) >= self.batch_size
        ):
            await self._flush(partial_tail=False)

        self._pending.append(event)
        self.events_seen += 1
        if (
            self.last_delivered_block is None
            or event.block_number > self.last_delivered_block
        ):
            self.last_delivered_block = event.block_number

    async def _flush(self, partial_tail: bool = True) -> None:
        """
        Send pending events as one batch.

        Only a flush triggered by a log of a newer block closes the last
        pending block; any other flush leaves it open (partial_tail).
        """
        if not self._pending:
            return
        batch = EventBatch(self.stream_id, tuple(self._pending), partial_tail)
        await self.dispatcher.send(batch)
        self._pending = []
        self.batches_sent += 1
        logger.debug(
            f"{self._log_prefix} Sent batch of {len(batch)} event(s) "
            f"(blocks {batch.min_block}-{batch.max_block})"
        )

    async def _release_subscription(self) -> None:
        if self._subscription is None:
            return
        subscription, self._subscription = self._subscription, None
        try:
            await subscription.unsubscribe()
        except Exception as e:
            logger.warning(f"{self._log_prefix} Error during unsubscribe: {e}")
