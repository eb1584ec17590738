"""
Checkpoint Store.

Durable per-stream cursor used to resume ingestion after restart.
"""

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.repositories.stream_checkpoint_repository import (
    StreamCheckpointRepository,
)


class CheckpointStore:
    """
    Last committed block per stream.

    save() takes the caller's session so the cursor moves in the same
    transaction as the event insert: either both commit or neither does.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker

    async def load(self, stream_id: str) -> int | None:
        """
        Last committed block of a stream.

        Args:
            stream_id: Stream identifier

        Returns:
            Block number, or None if nothing was ever committed
        """
        async with self.session_maker() as session:
            repo = StreamCheckpointRepository(session)
            state = await repo.get_by(stream_id=stream_id)
            return state.last_committed_block if state else None

    async def save(
        self,
        stream_id: str,
        block_number: int,
        session: AsyncSession,
        event_count: int = 0,
    ) -> int:
        """
        Advance the checkpoint inside an open transaction.

        Args:
            stream_id: Stream identifier
            block_number: Highest block of the batch being committed
            session: Session of the batch transaction
            event_count: Newly inserted events in the batch

        Returns:
            Checkpoint value after the update (never lower than before)
        """
        repo = StreamCheckpointRepository(session)
        return await repo.advance(stream_id, block_number, event_count)

    async def record_error(self, stream_id: str, message: str) -> None:
        """Best-effort error bookkeeping in a separate transaction."""
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    repo = StreamCheckpointRepository(session)
                    await repo.record_error(stream_id, message[:2000])
        except Exception as e:
            logger.error(
                f"[Checkpoint] Failed to record error for {stream_id}: {e}"
            )
