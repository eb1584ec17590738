"""
Blockchain services module.

Node access for the ingestion pipeline: the chain client adapter and the
timeout and retry helpers around RPC calls.
"""

from .chain_client import (
    BlockInfo,
    ChainClient,
    LogSubscription,
    Web3ChainClient,
    Web3LogSubscription,
)
from .rpc_wrapper import (
    BlockchainTimeoutError,
    backoff_delay,
    retry_with_backoff,
    with_timeout,
)


__all__ = [
    "BlockInfo",
    "BlockchainTimeoutError",
    "ChainClient",
    "LogSubscription",
    "Web3ChainClient",
    "Web3LogSubscription",
    "backoff_delay",
    "retry_with_backoff",
    "with_timeout",
]
