"""
Exception handling utilities.

Defines the ingestion error taxonomy and categorizes exceptions
by handling strategy.
"""

import asyncio

from sqlalchemy.exc import DBAPIError, OperationalError
from web3.exceptions import Web3Exception


class IngestionError(Exception):
    """Base exception for the ingestion pipeline."""
    pass


class ChainConnectionError(IngestionError):
    """Cannot establish or maintain a log subscription."""
    pass


class MalformedEventError(IngestionError):
    """A single log could not be decoded into a domain event."""

    def __init__(self, message: str, raw_log: dict | None = None) -> None:
        super().__init__(message)
        self.raw_log = raw_log


class EnrichmentError(IngestionError):
    """Block or token metadata could not be fetched for a batch."""
    pass


class PersistenceError(IngestionError):
    """A batch could not be durably written."""
    pass


class DispatcherClosedError(IngestionError):
    """Send attempted on a closed or shut-down dispatcher."""
    pass


class FatalError(IngestionError):
    """
    Retry budget exhausted; the whole pipeline must shut down.

    Attributes:
        stream_id: Stream that failed
        cause: Last underlying error
    """

    def __init__(
        self,
        message: str,
        stream_id: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.stream_id = stream_id
        self.cause = cause


# Exception categories based on handling strategy

# Retried locally with bounded backoff
TRANSIENT = (
    ChainConnectionError,
    EnrichmentError,
    PersistenceError,
    OperationalError,  # Database connectivity
    DBAPIError,
    Web3Exception,     # Blockchain RPC errors
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)


def is_transient(exc: BaseException) -> bool:
    """
    Check if exception may succeed on retry.

    Args:
        exc: Exception to check

    Returns:
        True if the operation should be retried
    """
    if isinstance(exc, FatalError):
        return False
    return isinstance(exc, TRANSIENT)
