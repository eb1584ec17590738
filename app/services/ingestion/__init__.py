"""
Event ingestion pipeline.

Watcher -> Dispatcher -> Processor per stream, with the checkpoint
advanced in the same transaction as the batch insert.
"""

from app.services.ingestion.checkpoint import CheckpointStore
from app.services.ingestion.dispatcher import Dispatcher
from app.services.ingestion.events import (
    DomainEvent,
    EventBatch,
    StreamSpec,
    decode_log,
    event_topic,
)
from app.services.ingestion.pipeline import (
    IngestionService,
    StreamPipeline,
    StreamStatus,
)
from app.services.ingestion.processor import Processor
from app.services.ingestion.shutdown import ShutdownSignal
from app.services.ingestion.storage import (
    EventStore,
    SqlEventStore,
    WriteResult,
    event_to_row,
)
from app.services.ingestion.watcher import Watcher, WatcherState


__all__ = [
    "CheckpointStore",
    "Dispatcher",
    "DomainEvent",
    "EventBatch",
    "EventStore",
    "IngestionService",
    "Processor",
    "ShutdownSignal",
    "SqlEventStore",
    "StreamPipeline",
    "StreamSpec",
    "StreamStatus",
    "Watcher",
    "WatcherState",
    "WriteResult",
    "decode_log",
    "event_to_row",
    "event_topic",
]
