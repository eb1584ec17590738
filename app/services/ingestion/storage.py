"""
Event storage.

Single-transaction write of an enriched batch plus its checkpoint.
"""

from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.repositories.airdrop_event_repository import AirdropEventRepository
from app.services.ingestion.checkpoint import CheckpointStore
from app.services.ingestion.events import DomainEvent
from app.utils.exceptions import PersistenceError


@dataclass(frozen=True)
class WriteResult:
    """Outcome of one committed batch."""

    inserted: int
    duplicates: int
    checkpoint: int


class EventStore(Protocol):
    """Durable sink for enriched batches."""

    async def load_checkpoint(self, stream_id: str) -> int | None: ...

    async def write_batch(
        self,
        stream_id: str,
        events: list[DomainEvent],
        checkpoint_block: int,
    ) -> WriteResult: ...

    async def record_error(self, stream_id: str, message: str) -> None: ...


def event_to_row(event: DomainEvent, stream_id: str) -> dict[str, Any]:
    """
    Column dict of an enriched event.

    Raises:
        ValueError: If the event was not enriched
    """
    if event.block_time is None or event.token_address is None:
        raise ValueError(
            f"event {event.tx_hash}:{event.log_index} is not enriched"
        )
    return {
        "tx_hash": event.tx_hash.lower(),
        "log_index": event.log_index,
        "block_number": event.block_number,
        "block_hash": event.block_hash.lower(),
        "block_time": event.block_time,
        "event_type": event.kind.value,
        "recipient": event.recipient.lower(),
        "amount": str(event.amount),
        "token_address": event.token_address.lower(),
        "contract_address": event.contract_address.lower(),
        "stream_id": stream_id,
    }


class SqlEventStore:
    """EventStore on PostgreSQL via SQLAlchemy async sessions."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        checkpoints: CheckpointStore | None = None,
    ) -> None:
        self.session_maker = session_maker
        self.checkpoints = checkpoints or CheckpointStore(session_maker)

    async def load_checkpoint(self, stream_id: str) -> int | None:
        return await self.checkpoints.load(stream_id)

    async def write_batch(
        self,
        stream_id: str,
        events: list[DomainEvent],
        checkpoint_block: int,
    ) -> WriteResult:
        """
        Insert events (ignoring known logs) and advance the checkpoint to
        checkpoint_block.

        Raises:
            PersistenceError: If the transaction fails; nothing is committed
        """
        rows = [event_to_row(event, stream_id) for event in events]
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    inserted = await AirdropEventRepository(session).insert_ignore(rows)
                    checkpoint = await self.checkpoints.save(
                        stream_id, checkpoint_block, session, event_count=inserted
                    )
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"batch write for {stream_id} failed: {e}"
            ) from e

        return WriteResult(
            inserted=inserted,
            duplicates=len(rows) - inserted,
            checkpoint=checkpoint,
        )

    async def record_error(self, stream_id: str, message: str) -> None:
        await self.checkpoints.record_error(stream_id, message)
