"""
Bounded FIFO channel between a watcher and a processor.
"""

import asyncio

from loguru import logger

from app.config.constants import DEFAULT_DISPATCHER_CAPACITY
from app.services.ingestion.events import EventBatch
from app.services.ingestion.shutdown import ShutdownSignal
from app.utils.exceptions import DispatcherClosedError


class Dispatcher:
    """
    Fixed-capacity batch queue with backpressure.

    Exactly one producer (the watcher) and one consumer (the processor).
    send() blocks while the queue is full and gives up when the dispatcher
    is closed or the shutdown signal fires. receive() drains what is left
    after close() and then returns None.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_DISPATCHER_CAPACITY,
        shutdown: ShutdownSignal | None = None,
        name: str = "dispatcher",
    ) -> None:
        if capacity < 1:
            raise ValueError("Dispatcher capacity must be at least 1")
        self.name = name
        self.capacity = capacity
        self._queue: asyncio.Queue[EventBatch] = asyncio.Queue(maxsize=capacity)
        self._closed = asyncio.Event()
        self._shutdown = shutdown

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def qsize(self) -> int:
        return self._queue.qsize()

    def _check_open(self) -> None:
        if self._closed.is_set():
            raise DispatcherClosedError(f"{self.name} is closed")
        if self._shutdown is not None and self._shutdown.is_set():
            raise DispatcherClosedError(f"{self.name}: shutdown in progress")

    async def send(self, batch: EventBatch) -> None:
        """
        Enqueue a batch, waiting for room if the queue is full.

        Raises:
            DispatcherClosedError: If closed or shut down before the batch
                was accepted
        """
        self._check_open()
        if not self._queue.full():
            self._queue.put_nowait(batch)
            return

        logger.debug(
            f"[{self.name}] Queue full ({self.capacity}), waiting for consumer"
        )
        put = asyncio.ensure_future(self._queue.put(batch))
        stoppers = [asyncio.ensure_future(self._closed.wait())]
        if self._shutdown is not None:
            stoppers.append(asyncio.ensure_future(self._shutdown.wait()))
        try:
            await asyncio.wait(
                {put, *stoppers}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for stopper in stoppers:
                stopper.cancel()
            if not put.done():
                put.cancel()

        if put.done() and not put.cancelled():
            put.result()
            return
        raise DispatcherClosedError(
            f"{self.name} closed while waiting to send batch"
        )

    async def receive(self) -> EventBatch | None:
        """
        Next batch in FIFO order.

        Returns:
            The batch, or None once the dispatcher is closed and drained
        """
        while True:
            if not self._queue.empty():
                return self._queue.get_nowait()
            if self._closed.is_set():
                return None

            get = asyncio.ensure_future(self._queue.get())
            closed = asyncio.ensure_future(self._closed.wait())
            try:
                await asyncio.wait(
                    {get, closed}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                closed.cancel()
                if not get.done():
                    get.cancel()

            if get.done() and not get.cancelled():
                return get.result()

    def close(self) -> None:
        """Stop accepting batches. Idempotent."""
        if self._closed.is_set():
            return
        self._closed.set()
        logger.debug(f"[{self.name}] Closed with {self.qsize()} batch(es) queued")
