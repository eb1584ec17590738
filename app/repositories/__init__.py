"""
Repositories.

Data access layer for indexed events and stream checkpoints.
"""

from app.repositories.airdrop_event_repository import AirdropEventRepository
from app.repositories.base import BaseRepository
from app.repositories.stream_checkpoint_repository import (
    StreamCheckpointRepository,
)


__all__ = [
    "AirdropEventRepository",
    "BaseRepository",
    "StreamCheckpointRepository",
]
