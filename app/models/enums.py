"""
Enumerations shared by models and services.
"""

import enum

from app.config.constants import AIRDROP_BNB_EVENT, AIRDROP_ERC20_EVENT


class EventKind(str, enum.Enum):
    """Kind of observed airdrop event. Value is the Solidity event name."""

    TOKEN_AIRDROP = AIRDROP_ERC20_EVENT
    NATIVE_AIRDROP = AIRDROP_BNB_EVENT

    @property
    def is_native(self) -> bool:
        """Native-asset airdrops carry the zero token address."""
        return self is EventKind.NATIVE_AIRDROP


class StreamState(str, enum.Enum):
    """Reported state of an ingestion stream."""

    STARTING = "starting"
    RUNNING = "running"
    DEGRADED = "degraded"
    STOPPED = "stopped"
