"""
Stream Checkpoint model.

Tracks ingestion progress of each event stream.
"""

from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class StreamCheckpoint(Base):
    """
    Durable cursor of an event stream.

    Used to:
    - Resume ingestion after restart from last_committed_block + 1
    - Report stream progress to external consumers
    - Track persistence errors per stream
    """

    __tablename__ = "stream_checkpoints"

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Stream identification, e.g. "AirdropERC20:0xabc..."
    stream_id: Mapped[str] = mapped_column(
        String(100), nullable=False, unique=True, index=True
    )

    # Cursor (never decreases)
    last_committed_block: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )

    # Statistics
    total_events: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    # Error tracking
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<StreamCheckpoint(stream_id={self.stream_id}, "
            f"last_committed_block={self.last_committed_block})>"
        )
