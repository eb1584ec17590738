"""
Airdrop Event model.

Append-only record of every AirdropERC20 / AirdropBNB event observed
on the airdrop contract.
"""

from datetime import UTC, datetime

from sqlalchemy import (
    BigInteger,
    DateTime,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class AirdropEvent(Base):
    """
    Persisted airdrop event.

    Rows are created once by the processor and never updated or deleted.
    (tx_hash, log_index) is unique, so replays of the same log are ignored.
    """

    __tablename__ = "airdrop_events"
    __table_args__ = (
        UniqueConstraint(
            "tx_hash", "log_index", name="uq_airdrop_events_tx_log"
        ),
    )

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Log identification
    tx_hash: Mapped[str] = mapped_column(
        String(66), nullable=False, index=True
    )
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    block_number: Mapped[int] = mapped_column(
        BigInteger, nullable=False, index=True
    )
    block_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    block_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    # Event payload
    event_type: Mapped[str] = mapped_column(
        String(50), nullable=False, index=True
    )  # AirdropERC20, AirdropBNB
    recipient: Mapped[str] = mapped_column(
        String(42), nullable=False, index=True
    )
    amount: Mapped[str] = mapped_column(
        String(78), nullable=False
    )  # uint256 as decimal string
    token_address: Mapped[str] = mapped_column(
        String(42), nullable=False, index=True
    )  # zero address for native BNB
    contract_address: Mapped[str] = mapped_column(
        String(42), nullable=False, index=True
    )

    stream_id: Mapped[str] = mapped_column(String(100), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<AirdropEvent(tx_hash={self.tx_hash[:16]}..., "
            f"log_index={self.log_index}, type={self.event_type}, "
            f"amount={self.amount})>"
        )
