"""
Chain Client Adapter.

Capability interface over a node connection, and its web3 implementation
backed by a persistent WebSocket provider (eth_subscribe).
"""

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol

from eth_utils import to_checksum_address
from loguru import logger
from web3 import AsyncWeb3, Web3
from web3.providers.persistent import WebSocketProvider

from app.config.constants import (
    AIRDROP_ABI,
    BACKFILL_CHUNK_BLOCKS,
    BLOCKCHAIN_LONG_TIMEOUT,
    BLOCKCHAIN_TIMEOUT,
)
from app.services.blockchain.rpc_wrapper import with_timeout
from app.utils.exceptions import ChainConnectionError


@dataclass(frozen=True)
class BlockInfo:
    """Block metadata needed for enrichment."""

    number: int
    timestamp: int  # unix seconds
    hash: str


class LogSubscription(Protocol):
    """Live log stream. Iteration raises ChainConnectionError on failure."""

    def __aiter__(self) -> AsyncIterator[dict]: ...

    async def unsubscribe(self) -> None: ...


class ChainClient(Protocol):
    """Operations the ingestion pipeline consumes from a node."""

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def subscribe_logs(
        self, contract_address: str, topic: str, from_block: int
    ) -> LogSubscription: ...

    async def get_block_by_hash(self, block_hash: str) -> BlockInfo: ...

    async def get_block_number(self) -> int: ...

    async def get_token_address(self, contract_address: str) -> str: ...


def normalize_log(log: Any) -> dict:
    """
    Convert a web3-formatted log into a plain dict of hex strings and ints.

    Args:
        log: AttributeDict or dict as returned by web3

    Returns:
        Dict with address, topics, data, blockNumber, blockHash,
        transactionHash, logIndex, removed
    """
    def hexify(value: Any) -> Any:
        if isinstance(value, (bytes, bytearray)):
            return Web3.to_hex(value)
        return value

    return {
        "address": log["address"],
        "topics": [hexify(t) for t in log["topics"]],
        "data": hexify(log["data"]),
        "blockNumber": log["blockNumber"],
        "blockHash": hexify(log["blockHash"]),
        "transactionHash": hexify(log["transactionHash"]),
        "logIndex": log["logIndex"],
        "removed": log.get("removed", False),
    }


class Web3LogSubscription:
    """
    Backfilled logs followed by live eth_subscribe logs.

    Live logs at or below the backfilled head are dropped, so the stream
    is ordered by block number.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        subscription_id: str,
        backlog: list[dict],
        backfilled_head: int,
    ) -> None:
        self._w3 = w3
        self.subscription_id = subscription_id
        self._backlog = backlog
        self._backfilled_head = backfilled_head
        self._unsubscribed = False

    def __aiter__(self) -> AsyncIterator[dict]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[dict]:
        for log in self._backlog:
            yield log
        self._backlog = []

        try:
            async for payload in self._w3.socket.process_subscriptions():
                if payload.get("subscription") != self.subscription_id:
                    continue
                result = payload.get("result")
                if result is None:
                    continue
                log = normalize_log(result)
                if log["removed"]:
                    logger.warning(
                        f"[ChainClient] Ignoring removed log "
                        f"{log['transactionHash']}:{log['logIndex']}"
                    )
                    continue
                if log["blockNumber"] <= self._backfilled_head:
                    continue
                yield log
        except Exception as e:
            raise ChainConnectionError(
                f"subscription {self.subscription_id} failed: {e}"
            ) from e

        if not self._unsubscribed:
            raise ChainConnectionError(
                f"subscription {self.subscription_id} stream closed"
            )

    async def unsubscribe(self) -> None:
        if self._unsubscribed:
            return
        self._unsubscribed = True
        try:
            await with_timeout(
                self._w3.eth.unsubscribe(self.subscription_id),
                timeout=BLOCKCHAIN_TIMEOUT,
                operation_name="eth_unsubscribe",
            )
        except Exception as e:
            logger.debug(
                f"[ChainClient] Unsubscribe {self.subscription_id} failed: {e}"
            )


class Web3ChainClient:
    """
    ChainClient over a single WebSocket connection.

    One instance per watcher; the connection is re-established on the
    next subscribe after it drops.
    """

    def __init__(
        self,
        ws_url: str,
        timeout: float = BLOCKCHAIN_TIMEOUT,
        backfill_chunk: int = BACKFILL_CHUNK_BLOCKS,
    ) -> None:
        self.ws_url = ws_url
        self.timeout = timeout
        self.backfill_chunk = backfill_chunk
        self._w3: AsyncWeb3 | None = None

    async def connect(self) -> None:
        """Open the WebSocket connection."""
        if self._w3 is not None and await self._w3.provider.is_connected():
            return
        w3 = AsyncWeb3(WebSocketProvider(self.ws_url))
        try:
            await with_timeout(
                w3.provider.connect(),
                timeout=self.timeout,
                operation_name="WebSocket connect",
            )
        except Exception as e:
            raise ChainConnectionError(
                f"cannot connect to {self.ws_url}: {e}"
            ) from e
        self._w3 = w3
        logger.info(f"[ChainClient] Connected to {self.ws_url}")

    async def close(self) -> None:
        """Close the WebSocket connection."""
        if self._w3 is None:
            return
        w3, self._w3 = self._w3, None
        try:
            await w3.provider.disconnect()
        except Exception as e:
            logger.warning(f"[ChainClient] Error closing connection: {e}")

    async def _require(self) -> AsyncWeb3:
        if self._w3 is None or not await self._w3.provider.is_connected():
            self._w3 = None
            await self.connect()
        return self._w3

    async def subscribe_logs(
        self, contract_address: str, topic: str, from_block: int
    ) -> Web3LogSubscription:
        """
        Subscribe to logs of one event on one contract, from from_block.

        Raises:
            ChainConnectionError: If the subscription cannot be opened
        """
        w3 = await self._require()
        log_filter = {
            "address": to_checksum_address(contract_address),
            "topics": [topic],
        }
        try:
            # Subscribe first so nothing emitted during backfill is missed
            subscription_id = await with_timeout(
                w3.eth.subscribe("logs", log_filter),
                timeout=self.timeout,
                operation_name="eth_subscribe",
            )
            head = await with_timeout(
                w3.eth.block_number,
                timeout=self.timeout,
                operation_name="eth_blockNumber",
            )
            backlog = await self._fetch_backlog(w3, log_filter, from_block, head)
        except ChainConnectionError:
            raise
        except Exception as e:
            raise ChainConnectionError(
                f"cannot subscribe to {topic} on {contract_address}: {e}"
            ) from e

        logger.info(
            f"[ChainClient] Subscribed {subscription_id}: "
            f"backfilled {len(backlog)} logs ({from_block} -> {head})"
        )
        return Web3LogSubscription(
            w3, subscription_id, backlog, max(head, from_block - 1)
        )

    async def _fetch_backlog(
        self,
        w3: AsyncWeb3,
        log_filter: dict,
        from_block: int,
        head: int,
    ) -> list[dict]:
        backlog: list[dict] = []
        current = from_block
        while current <= head:
            chunk_end = min(current + self.backfill_chunk - 1, head)
            logs = await with_timeout(
                w3.eth.get_logs(
                    {**log_filter, "fromBlock": current, "toBlock": chunk_end}
                ),
                timeout=BLOCKCHAIN_LONG_TIMEOUT,
                operation_name=f"eth_getLogs {current}-{chunk_end}",
            )
            backlog.extend(normalize_log(log) for log in logs)
            current = chunk_end + 1

        backlog.sort(key=lambda log: (log["blockNumber"], log["logIndex"]))
        return backlog

    async def get_block_by_hash(self, block_hash: str) -> BlockInfo:
        w3 = await self._require()
        block = await with_timeout(
            w3.eth.get_block(block_hash),
            timeout=self.timeout,
            operation_name="eth_getBlockByHash",
        )
        return BlockInfo(
            number=block["number"],
            timestamp=block["timestamp"],
            hash=Web3.to_hex(block["hash"]),
        )

    async def get_block_number(self) -> int:
        w3 = await self._require()
        return await with_timeout(
            w3.eth.block_number,
            timeout=self.timeout,
            operation_name="eth_blockNumber",
        )

    async def get_token_address(self, contract_address: str) -> str:
        """Call the airdrop contract's token() view."""
        w3 = await self._require()
        contract = w3.eth.contract(
            address=to_checksum_address(contract_address), abi=AIRDROP_ABI
        )
        token = await with_timeout(
            contract.functions.token().call(),
            timeout=self.timeout,
            operation_name="token()",
        )
        return token.lower()
