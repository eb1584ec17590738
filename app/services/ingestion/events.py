"""
Ingestion domain events.

Event signatures of the airdrop contract, the DomainEvent produced by the
watcher, and decoding of raw logs.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address
from web3 import Web3

from app.config.constants import (
    AIRDROP_BNB_SIGNATURE,
    AIRDROP_ERC20_SIGNATURE,
    NATIVE_TOKEN_ADDRESS,
)
from app.models.enums import EventKind
from app.utils.exceptions import MalformedEventError


EVENT_SIGNATURES = {
    EventKind.TOKEN_AIRDROP: AIRDROP_ERC20_SIGNATURE,
    EventKind.NATIVE_AIRDROP: AIRDROP_BNB_SIGNATURE,
}


def event_topic(kind: EventKind) -> str:
    """topic0 (keccak256 of the Solidity signature) for an event kind."""
    return Web3.to_hex(Web3.keccak(text=EVENT_SIGNATURES[kind]))


@dataclass(frozen=True)
class StreamSpec:
    """One watched event signature on one contract."""

    kind: EventKind
    contract_address: str

    @property
    def stream_id(self) -> str:
        """Stable stream identifier used for checkpoints."""
        return f"{self.kind.value}:{self.contract_address.lower()}"

    @property
    def topic(self) -> str:
        return event_topic(self.kind)


@dataclass(frozen=True)
class DomainEvent:
    """
    Canonical representation of an observed airdrop event.

    token_address is the zero address for native airdrops and None for
    token airdrops until the processor resolves it. block_time is None
    until the processor fetches the block.
    """

    kind: EventKind
    recipient: str
    amount: int
    contract_address: str
    tx_hash: str
    block_hash: str
    block_number: int
    log_index: int
    token_address: str | None = None
    block_time: datetime | None = None

    @property
    def idempotency_key(self) -> tuple[str, str, int]:
        return (self.contract_address.lower(), self.tx_hash, self.log_index)

    @property
    def needs_enrichment(self) -> bool:
        return self.block_time is None or self.token_address is None

    def enriched(
        self,
        block_time: datetime | None = None,
        token_address: str | None = None,
    ) -> "DomainEvent":
        """Copy with resolved metadata; already-set fields are kept."""
        return replace(
            self,
            block_time=self.block_time or block_time,
            token_address=self.token_address or token_address,
        )


@dataclass(frozen=True)
class EventBatch:
    """
    Events of one stream, in delivery order.

    partial_tail marks a batch flushed before the next block was seen
    (idle, stop or reconnect): more logs of its last block may still
    follow, so that block is not covered by the checkpoint.
    """

    stream_id: str
    events: tuple[DomainEvent, ...] = field(default_factory=tuple)
    partial_tail: bool = False

    def __len__(self) -> int:
        return len(self.events)

    @property
    def max_block(self) -> int:
        return max(event.block_number for event in self.events)

    @property
    def min_block(self) -> int:
        return min(event.block_number for event in self.events)

    @property
    def checkpoint_block(self) -> int:
        """Highest block whose logs are all in this or earlier batches."""
        if self.partial_tail:
            return self.max_block - 1
        return self.max_block


def _to_int(value: int | str) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise TypeError(f"expected int or str, got {type(value).__name__}")


def _to_hex(value: bytes | str) -> str:
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    if isinstance(value, str):
        return value.lower() if value.startswith("0x") else "0x" + value.lower()
    raise TypeError(f"expected bytes or str, got {type(value).__name__}")


def _to_bytes(value: bytes | str) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


def decode_log(raw_log: dict, kind: EventKind) -> DomainEvent:
    """
    Decode a raw log into a DomainEvent.

    Accepts both web3-formatted logs (HexBytes, ints) and plain JSON-RPC
    logs (hex strings).

    Args:
        raw_log: Log as delivered by the chain client
        kind: Event kind the subscription was opened for

    Returns:
        Decoded domain event

    Raises:
        MalformedEventError: If the log does not match the event layout
    """
    try:
        topics = [_to_hex(t) for t in raw_log["topics"]]
        if len(topics) != 2:
            raise MalformedEventError(
                f"expected 2 topics, got {len(topics)}", raw_log
            )
        if topics[0] != event_topic(kind):
            raise MalformedEventError(
                f"topic0 {topics[0]} does not match {kind.value}", raw_log
            )

        recipient_word = _to_bytes(topics[1])
        if len(recipient_word) != 32 or any(recipient_word[:12]):
            raise MalformedEventError("recipient topic is not an address", raw_log)
        recipient = to_checksum_address(recipient_word[12:])

        (amount,) = abi_decode(["uint256"], _to_bytes(raw_log["data"]))

        return DomainEvent(
            kind=kind,
            recipient=recipient,
            amount=amount,
            contract_address=to_checksum_address(raw_log["address"]),
            tx_hash=_to_hex(raw_log["transactionHash"]),
            block_hash=_to_hex(raw_log["blockHash"]),
            block_number=_to_int(raw_log["blockNumber"]),
            log_index=_to_int(raw_log["logIndex"]),
            token_address=NATIVE_TOKEN_ADDRESS if kind.is_native else None,
        )
    except MalformedEventError:
        raise
    except (KeyError, TypeError, ValueError, DecodingError) as e:
        raise MalformedEventError(
            f"cannot decode {kind.value} log: {type(e).__name__}: {e}", raw_log
        ) from e
