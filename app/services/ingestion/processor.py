"""
Batch Processor.

Drains a dispatcher, enriches each batch with block timestamps and token
addresses, and writes it idempotently together with the stream
checkpoint. Enrichment and writes are retried with bounded backoff; an
exhausted budget is fatal for the whole pipeline.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from app.config.constants import (
    PROCESSOR_MAX_RETRIES,
    PROCESSOR_RETRY_BASE_DELAY,
    PROCESSOR_RETRY_MAX_DELAY,
)
from app.services.blockchain.chain_client import ChainClient
from app.services.blockchain.rpc_wrapper import retry_with_backoff
from app.services.ingestion.dispatcher import Dispatcher
from app.services.ingestion.events import DomainEvent, EventBatch
from app.services.ingestion.shutdown import ShutdownSignal
from app.services.ingestion.storage import EventStore, WriteResult
from app.utils.exceptions import EnrichmentError, FatalError, is_transient


class Processor:
    """
    Consumer side of one stream.

    A graceful stop closes the dispatcher and lets run() drain it. When the
    shutdown signal fires, run() returns after the in-flight batch; queued
    batches are not committed and are replayed from the checkpoint.

    Usage:
        processor = Processor(stream_id, dispatcher, client, store)
        await processor.run()   # until the dispatcher is closed and drained
    """

    def __init__(
        self,
        stream_id: str,
        dispatcher: Dispatcher,
        client: ChainClient,
        store: EventStore,
        max_retries: int = PROCESSOR_MAX_RETRIES,
        retry_base_delay: float = PROCESSOR_RETRY_BASE_DELAY,
        retry_max_delay: float = PROCESSOR_RETRY_MAX_DELAY,
        shutdown: ShutdownSignal | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.stream_id = stream_id
        self.dispatcher = dispatcher
        self.client = client
        self.store = store
        self.shutdown = shutdown
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self._sleep = sleep

        # Token address per airdrop contract, for the processor's lifetime
        self._token_cache: dict[str, str] = {}
        self._closed = False

        # Statistics
        self.batches_committed = 0
        self.events_inserted = 0
        self.duplicates_ignored = 0
        self.last_committed_block: int | None = None

        self._log_prefix = f"[Processor:{stream_id.split(':', 1)[0]}]"

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop after the in-flight batch. Idempotent."""
        if self._closed:
            return
        self._closed = True
        logger.debug(f"{self._log_prefix} Close requested")

    async def run(self) -> None:
        """
        Process batches until the dispatcher is drained or close() is called.

        Raises:
            FatalError: If a batch cannot be enriched or written within the
                retry budget
        """
        logger.info(f"{self._log_prefix} Started")
        try:
            while not self._closed:
                batch = await self.dispatcher.receive()
                if batch is None:
                    break
                if self.shutdown is not None and self.shutdown.is_set():
                    logger.warning(
                        f"{self._log_prefix} Shutdown in progress, leaving "
                        f"{self.dispatcher.qsize() + 1} batch(es) uncommitted"
                    )
                    break
                await self.process_batch(batch)
        finally:
            self._closed = True
            logger.info(
                f"{self._log_prefix} Stopped (batches: {self.batches_committed}, "
                f"inserted: {self.events_inserted}, "
                f"duplicates: {self.duplicates_ignored}, "
                f"last committed block: {self.last_committed_block})"
            )

    async def process_batch(self, batch: EventBatch) -> WriteResult | None:
        """
        Enrich and durably write one batch.

        Args:
            batch: Batch received from the dispatcher

        Returns:
            Write result, or None for an empty batch

        Raises:
            FatalError: When retries are exhausted
        """
        if not batch.events:
            return None

        try:
            events = await retry_with_backoff(
                lambda: self._enrich(batch),
                max_attempts=self.max_retries,
                base_delay=self.retry_base_delay,
                max_delay=self.retry_max_delay,
                operation_name=f"{self._log_prefix} Enrichment",
                sleep=self._sleep,
            )
            result = await retry_with_backoff(
                lambda: self.store.write_batch(
                    self.stream_id, events, batch.checkpoint_block
                ),
                max_attempts=self.max_retries,
                base_delay=self.retry_base_delay,
                max_delay=self.retry_max_delay,
                operation_name=f"{self._log_prefix} Batch write",
                sleep=self._sleep,
            )
        except Exception as e:
            if not is_transient(e):
                raise
            await self.store.record_error(
                self.stream_id, f"{type(e).__name__}: {e}"
            )
            raise FatalError(
                f"{self.stream_id}: batch for blocks "
                f"{batch.min_block}-{batch.max_block} failed after "
                f"{self.max_retries} attempts",
                stream_id=self.stream_id,
                cause=e,
            ) from e

        self.batches_committed += 1
        self.events_inserted += result.inserted
        self.duplicates_ignored += result.duplicates
        self.last_committed_block = result.checkpoint

        if result.duplicates:
            logger.info(
                f"{self._log_prefix} Ignored {result.duplicates} already "
                f"persisted event(s) in blocks {batch.min_block}-{batch.max_block}"
            )
        logger.debug(
            f"{self._log_prefix} Committed {result.inserted} event(s), "
            f"checkpoint {result.checkpoint}"
        )
        return result

    async def _enrich(self, batch: EventBatch) -> list[DomainEvent]:
        """
        Resolve block time and token address of every event in the batch.

        Raises:
            EnrichmentError: If a block or token lookup fails
        """
        block_times: dict[str, datetime] = {}
        enriched: list[DomainEvent] = []

        for event in batch.events:
            if not event.needs_enrichment:
                enriched.append(event)
                continue

            block_time = event.block_time
            if block_time is None:
                block_time = block_times.get(event.block_hash)
                if block_time is None:
                    block_time = await self._fetch_block_time(event.block_hash)
                    block_times[event.block_hash] = block_time

            token_address = event.token_address
            if token_address is None:
                token_address = await self._resolve_token(event.contract_address)

            enriched.append(event.enriched(block_time, token_address))

        return enriched

    async def _fetch_block_time(self, block_hash: str) -> datetime:
        try:
            block = await self.client.get_block_by_hash(block_hash)
        except Exception as e:
            raise EnrichmentError(f"block {block_hash} lookup failed: {e}") from e
        return datetime.fromtimestamp(block.timestamp, tz=UTC)

    async def _resolve_token(self, contract_address: str) -> str:
        key = contract_address.lower()
        cached = self._token_cache.get(key)
        if cached is not None:
            return cached

        try:
            token_address = await self.client.get_token_address(contract_address)
        except Exception as e:
            raise EnrichmentError(
                f"token() lookup on {contract_address} failed: {e}"
            ) from e

        self._token_cache[key] = token_address
        logger.info(
            f"{self._log_prefix} Token of {contract_address} is {token_address}"
        )
        return token_address
