"""
Database models.

Exports all SQLAlchemy models for easy imports.
"""

from app.models.airdrop_event import AirdropEvent
from app.models.base import Base
from app.models.enums import EventKind, StreamState
from app.models.stream_checkpoint import StreamCheckpoint

__all__ = [
    "AirdropEvent",
    "Base",
    "EventKind",
    "StreamCheckpoint",
    "StreamState",
]
