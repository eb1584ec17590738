"""
Ingestion lifecycle.

StreamPipeline wires one Watcher, Dispatcher and Processor together and
owns their start and stop order. IngestionService runs every configured
stream under one shared shutdown signal, so a fatal error in any
component stops all of them.
"""

import asyncio
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

from loguru import logger

from app.config.constants import (
    BATCH_LINGER_SECONDS,
    DEFAULT_BATCH_SIZE,
    DEFAULT_DISPATCHER_CAPACITY,
    PROCESSOR_MAX_RETRIES,
    PROCESSOR_RETRY_BASE_DELAY,
    PROCESSOR_RETRY_MAX_DELAY,
    SHUTDOWN_GRACE_SECONDS,
    WS_MAX_RECONNECT_ATTEMPTS,
    WS_RECONNECT_BASE_DELAY,
    WS_RECONNECT_MAX_DELAY,
)
from app.config.settings import Settings
from app.models.enums import EventKind, StreamState
from app.services.blockchain.chain_client import ChainClient
from app.services.ingestion.dispatcher import Dispatcher
from app.services.ingestion.events import StreamSpec
from app.services.ingestion.processor import Processor
from app.services.ingestion.shutdown import ShutdownSignal
from app.services.ingestion.storage import EventStore
from app.services.ingestion.watcher import Watcher
from app.utils.exceptions import ChainConnectionError, FatalError


@dataclass(frozen=True)
class StreamStatus:
    """Point-in-time view of one stream."""

    stream_id: str
    state: StreamState
    last_committed_block: int | None
    last_delivered_block: int | None
    events_seen: int
    malformed_count: int
    batches_committed: int
    events_inserted: int
    duplicates_ignored: int
    reconnects: int
    queued_batches: int
    error: str | None = None


class StreamPipeline:
    """
    One stream: Watcher -> Dispatcher -> Processor.

    Start order: checkpoint, processor task, watcher subscribe (fail
    fast), watcher task. Stop order: watcher, dispatcher close, processor
    drain. Each wait is bounded by the grace period, then cancelled.
    """

    def __init__(
        self,
        spec: StreamSpec,
        client: ChainClient,
        store: EventStore,
        shutdown: ShutdownSignal | None = None,
        start_block: int | None = None,
        dispatcher_capacity: int = DEFAULT_DISPATCHER_CAPACITY,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_linger: float = BATCH_LINGER_SECONDS,
        reconnect_base_delay: float = WS_RECONNECT_BASE_DELAY,
        reconnect_max_delay: float = WS_RECONNECT_MAX_DELAY,
        max_reconnect_attempts: int = WS_MAX_RECONNECT_ATTEMPTS,
        processor_max_retries: int = PROCESSOR_MAX_RETRIES,
        processor_retry_base_delay: float = PROCESSOR_RETRY_BASE_DELAY,
        processor_retry_max_delay: float = PROCESSOR_RETRY_MAX_DELAY,
        shutdown_grace: float = SHUTDOWN_GRACE_SECONDS,
    ) -> None:
        self.spec = spec
        self.client = client
        self.store = store
        self.shutdown = shutdown or ShutdownSignal()
        self.start_block = start_block
        self.shutdown_grace = shutdown_grace

        self.dispatcher = Dispatcher(
            capacity=dispatcher_capacity,
            shutdown=self.shutdown,
            name=f"Dispatcher:{spec.kind.value}",
        )
        self.watcher = Watcher(
            spec,
            client,
            self.dispatcher,
            batch_size=batch_size,
            batch_linger=batch_linger,
            reconnect_base_delay=reconnect_base_delay,
            reconnect_max_delay=reconnect_max_delay,
            max_reconnect_attempts=max_reconnect_attempts,
        )
        self.processor = Processor(
            spec.stream_id,
            self.dispatcher,
            client,
            store,
            max_retries=processor_max_retries,
            retry_base_delay=processor_retry_base_delay,
            retry_max_delay=processor_retry_max_delay,
            shutdown=self.shutdown,
        )

        self.state = StreamState.STARTING
        self.error: str | None = None
        self.loaded_checkpoint: int | None = None
        self.from_block: int | None = None

        self._watcher_task: asyncio.Task | None = None
        self._processor_task: asyncio.Task | None = None
        self._stopped = False

    @classmethod
    def from_settings(
        cls,
        spec: StreamSpec,
        client: ChainClient,
        store: EventStore,
        shutdown: ShutdownSignal,
        config: Settings,
    ) -> "StreamPipeline":
        return cls(
            spec,
            client,
            store,
            shutdown=shutdown,
            start_block=config.indexer_start_block,
            dispatcher_capacity=config.dispatcher_capacity,
            batch_size=config.batch_size,
            batch_linger=config.batch_linger,
            reconnect_base_delay=config.reconnect_base_delay,
            reconnect_max_delay=config.reconnect_max_delay,
            max_reconnect_attempts=config.max_reconnect_attempts,
            processor_max_retries=config.processor_max_retries,
            processor_retry_base_delay=config.processor_retry_base_delay,
            processor_retry_max_delay=config.processor_retry_max_delay,
            shutdown_grace=config.shutdown_grace,
        )

    @property
    def stream_id(self) -> str:
        return self.spec.stream_id

    @property
    def last_committed_block(self) -> int | None:
        if self.processor.last_committed_block is not None:
            return self.processor.last_committed_block
        return self.loaded_checkpoint

    async def start(self) -> None:
        """
        Resume the stream from its checkpoint.

        Raises:
            ChainConnectionError: If the node is unreachable or the initial
                subscribe fails
        """
        self.loaded_checkpoint = await self.store.load_checkpoint(self.stream_id)
        self.from_block = await self._resolve_from_block()

        self._processor_task = self._spawn(self.processor.run(), "processor")
        try:
            await self.watcher.start(self.from_block)
        except ChainConnectionError as e:
            self.error = f"{type(e).__name__}: {e}"
            self.dispatcher.close()
            await self._await_task(self._processor_task, "processor")
            self.state = StreamState.STOPPED
            self._stopped = True
            raise

        self._watcher_task = self._spawn(self.watcher.run(), "watcher")
        self.state = StreamState.RUNNING
        logger.info(
            f"[Pipeline] Stream {self.stream_id} started from block "
            f"{self.from_block} (checkpoint: {self.loaded_checkpoint})"
        )

    async def _resolve_from_block(self) -> int:
        if self.loaded_checkpoint is not None:
            return self.loaded_checkpoint + 1
        if self.start_block is not None:
            return self.start_block

        try:
            await self.client.connect()
            head = await self.client.get_block_number()
        except ChainConnectionError:
            raise
        except Exception as e:
            raise ChainConnectionError(f"cannot read chain head: {e}") from e
        logger.info(
            f"[Pipeline] No checkpoint for {self.stream_id}, starting at head {head}"
        )
        return head

    def _spawn(self, coro: Coroutine[Any, Any, None], role: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"{role}:{self.stream_id}")
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        """Turn a crashed component into a pipeline-wide shutdown."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return

        self.error = f"{type(exc).__name__}: {exc}"
        if not self._stopped:
            self.state = StreamState.DEGRADED
        if isinstance(exc, FatalError):
            logger.error(f"[Pipeline] {task.get_name()} failed: {exc}")
        else:
            logger.opt(exception=exc).error(
                f"[Pipeline] {task.get_name()} crashed: {exc}"
            )
        self.shutdown.trigger(exc)

    async def stop(self, timeout: float | None = None) -> None:
        """
        Stop watcher, close dispatcher, drain processor. Idempotent.

        Args:
            timeout: Grace period per component (default: shutdown_grace)
        """
        if self._stopped:
            return
        self._stopped = True
        grace = self.shutdown_grace if timeout is None else timeout

        await self.watcher.stop()
        await self._await_task(self._watcher_task, "watcher", grace)
        self.dispatcher.close()
        await self._await_task(self._processor_task, "processor", grace)
        self.processor.close()

        try:
            await self.client.close()
        except Exception as e:
            logger.warning(f"[Pipeline] Error closing chain client: {e}")

        self.state = StreamState.STOPPED
        logger.info(
            f"[Pipeline] Stream {self.stream_id} stopped at block "
            f"{self.last_committed_block}"
        )

    async def _await_task(
        self,
        task: asyncio.Task | None,
        role: str,
        grace: float | None = None,
    ) -> None:
        if task is None:
            return
        grace = self.shutdown_grace if grace is None else grace
        if not task.done():
            done, _ = await asyncio.wait({task}, timeout=grace)
            if not done:
                logger.warning(
                    f"[Pipeline] {role} of {self.stream_id} did not stop "
                    f"within {grace}s, cancelling"
                )
                task.cancel()
        # Errors were already reported by _on_task_done
        await asyncio.gather(task, return_exceptions=True)

    def status(self) -> StreamStatus:
        return StreamStatus(
            stream_id=self.stream_id,
            state=self.state,
            last_committed_block=self.last_committed_block,
            last_delivered_block=self.watcher.last_delivered_block,
            events_seen=self.watcher.events_seen,
            malformed_count=self.watcher.malformed_count,
            batches_committed=self.processor.batches_committed,
            events_inserted=self.processor.events_inserted,
            duplicates_ignored=self.processor.duplicates_ignored,
            reconnects=self.watcher.reconnects,
            queued_batches=self.dispatcher.qsize(),
            error=self.error,
        )


class IngestionService:
    """
    All configured streams under one shutdown signal.

    Usage:
        service = IngestionService.from_settings(settings, store, client_factory)
        await service.start()
        await service.run()     # until stop() or a fatal error
    """

    def __init__(
        self,
        pipelines: list[StreamPipeline],
        shutdown: ShutdownSignal,
    ) -> None:
        if not pipelines:
            raise ValueError("IngestionService needs at least one stream")
        self.pipelines = pipelines
        self.shutdown = shutdown
        self._stop_requested = asyncio.Event()
        self._started = False
        self._stopped = False

    @classmethod
    def from_settings(
        cls,
        config: Settings,
        store: EventStore,
        client_factory: Callable[[], ChainClient],
        stream_names: list[str] | None = None,
    ) -> "IngestionService":
        """
        Build one pipeline per enabled stream.

        Args:
            config: Application settings
            store: Event store shared by all streams
            client_factory: Creates a dedicated chain client per stream
            stream_names: Event names to index (default: from settings)

        Raises:
            ValueError: On an unknown stream name
        """
        shutdown = ShutdownSignal()
        pipelines = []
        for name in stream_names or config.get_stream_names():
            try:
                kind = EventKind(name)
            except ValueError:
                known = ", ".join(k.value for k in EventKind)
                raise ValueError(
                    f"Unknown stream '{name}' (expected one of: {known})"
                ) from None
            spec = StreamSpec(kind, config.airdrop_contract_address)
            pipelines.append(
                StreamPipeline.from_settings(
                    spec, client_factory(), store, shutdown, config
                )
            )
        return cls(pipelines, shutdown)

    async def start(self) -> None:
        """
        Start every stream; on any failure stop the ones already running.

        Raises:
            ChainConnectionError: If a stream cannot subscribe
        """
        if self._started:
            return
        self._started = True

        for pipeline in self.pipelines:
            try:
                await pipeline.start()
            except Exception as e:
                logger.error(
                    f"[Pipeline] Failed to start {pipeline.stream_id}: {e}"
                )
                self.shutdown.trigger(e)
                await self._stop_pipelines()
                raise

        logger.success(
            f"[Pipeline] Ingestion started: {len(self.pipelines)} stream(s)"
        )

    async def run(self) -> None:
        """
        Run until stop() is requested or the shutdown signal fires.

        Raises:
            FatalError: If a component exhausted its retry budget
        """
        await self.start()

        stop_wait = asyncio.ensure_future(self._stop_requested.wait())
        shutdown_wait = asyncio.ensure_future(self.shutdown.wait())
        try:
            await asyncio.wait(
                {stop_wait, shutdown_wait}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            stop_wait.cancel()
            shutdown_wait.cancel()
            await self._stop_pipelines()

        cause = self.shutdown.cause
        if cause is None:
            return
        if isinstance(cause, FatalError):
            raise cause
        raise FatalError(
            f"ingestion stopped by {type(cause).__name__}: {cause}", cause=cause
        ) from cause

    def request_stop(self) -> None:
        """Ask run() to stop gracefully. Safe to call from a signal handler."""
        if not self._stop_requested.is_set():
            logger.info("[Pipeline] Stop requested")
            self._stop_requested.set()

    async def stop(self) -> None:
        """Graceful stop of every stream. Idempotent."""
        self.request_stop()
        await self._stop_pipelines()

    async def _stop_pipelines(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        await asyncio.gather(*(pipeline.stop() for pipeline in self.pipelines))
        self._report()

    def _report(self) -> None:
        for status in self.status():
            if status.error:
                logger.error(
                    f"[Pipeline] Stream {status.stream_id} degraded/stopped, "
                    f"last committed block {status.last_committed_block}: "
                    f"{status.error}"
                )
            else:
                logger.info(
                    f"[Pipeline] Stream {status.stream_id} stopped, "
                    f"last committed block {status.last_committed_block}"
                )

    def status(self) -> list[StreamStatus]:
        return [pipeline.status() for pipeline in self.pipelines]
