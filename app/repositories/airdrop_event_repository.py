"""
Airdrop Event repository.

Data access layer for persisted airdrop events.
"""

from typing import Any

from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.constants import INSERT_CHUNK_ROWS
from app.models.airdrop_event import AirdropEvent
from app.repositories.base import BaseRepository


class AirdropEventRepository(BaseRepository[AirdropEvent]):
    """Repository for airdrop events."""

    def __init__(
        self, session: AsyncSession, chunk_size: int = INSERT_CHUNK_ROWS
    ) -> None:
        """Initialize repository."""
        super().__init__(AirdropEvent, session)
        self.chunk_size = chunk_size

    def build_insert_ignore(self, rows: list[dict[str, Any]]):
        """
        INSERT ... ON CONFLICT (tx_hash, log_index) DO NOTHING RETURNING id.

        Args:
            rows: Column dicts

        Returns:
            Executable insert statement
        """
        return (
            insert(AirdropEvent)
            .values(rows)
            .on_conflict_do_nothing(
                index_elements=[AirdropEvent.tx_hash, AirdropEvent.log_index]
            )
            .returning(AirdropEvent.id)
        )

    async def insert_ignore(self, rows: list[dict[str, Any]]) -> int:
        """
        Insert events, silently skipping already persisted logs.

        Rows are sent in statements of at most chunk_size rows, all within
        the caller's transaction, so one block with thousands of logs stays
        under the bind parameter limit.

        Args:
            rows: Column dicts

        Returns:
            Number of newly inserted rows
        """
        inserted = 0
        for start in range(0, len(rows), self.chunk_size):
            chunk = rows[start:start + self.chunk_size]
            result = await self.session.execute(self.build_insert_ignore(chunk))
            inserted += len(result.scalars().all())
        return inserted
