"""
Stream Checkpoint repository.

Data access layer for ingestion cursors.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.stream_checkpoint import StreamCheckpoint
from app.repositories.base import BaseRepository


class StreamCheckpointRepository(BaseRepository[StreamCheckpoint]):
    """Repository for stream checkpoints."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(StreamCheckpoint, session)

    async def get_for_update(self, stream_id: str) -> StreamCheckpoint | None:
        """
        Get checkpoint row locked for the current transaction.

        Args:
            stream_id: Stream identifier

        Returns:
            Checkpoint or None
        """
        stmt = (
            select(StreamCheckpoint)
            .where(StreamCheckpoint.stream_id == stream_id)
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def advance(
        self,
        stream_id: str,
        block_number: int,
        event_count: int = 0,
    ) -> int:
        """
        Move the checkpoint forward; never moves it back.

        Must run inside the transaction that wrote the events.

        Args:
            stream_id: Stream identifier
            block_number: Highest block of the committed batch
            event_count: Newly inserted events to add to the total

        Returns:
            Checkpoint value after the update
        """
        state = await self.get_for_update(stream_id)
        if state is None:
            state = StreamCheckpoint(
                stream_id=stream_id,
                last_committed_block=block_number,
                total_events=event_count,
                error_count=0,
            )
            self.session.add(state)
            await self.session.flush()
            return state.last_committed_block

        if block_number > state.last_committed_block:
            state.last_committed_block = block_number
        state.total_events += event_count
        await self.session.flush()
        return state.last_committed_block

    async def record_error(self, stream_id: str, message: str) -> bool:
        """
        Store the last persistence error of a stream.

        Streams without a committed batch have no row and are not created
        here, so a failure can never fabricate a cursor.

        Args:
            stream_id: Stream identifier
            message: Error description

        Returns:
            True if a checkpoint row was updated
        """
        state = await self.get_for_update(stream_id)
        if state is None:
            return False
        state.last_error = message
        state.error_count += 1
        await self.session.flush()
        return True
