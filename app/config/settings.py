"""
Application settings.

Loads configuration from environment variables using pydantic-settings.
"""

from loguru import logger
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.config.constants import (
    BATCH_LINGER_SECONDS,
    BLOCKCHAIN_TIMEOUT,
    DEFAULT_BATCH_SIZE,
    DEFAULT_DISPATCHER_CAPACITY,
    PROCESSOR_MAX_RETRIES,
    PROCESSOR_RETRY_BASE_DELAY,
    PROCESSOR_RETRY_MAX_DELAY,
    SHUTDOWN_GRACE_SECONDS,
    WS_MAX_RECONNECT_ATTEMPTS,
    WS_RECONNECT_BASE_DELAY,
    WS_RECONNECT_MAX_DELAY,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str
    database_echo: bool = False

    # Blockchain node (WebSocket endpoint, eth_subscribe capable)
    rpc_wss_url: str

    # Airdrop contract
    airdrop_contract_address: str

    # Streams to index: comma-separated event names
    indexer_streams: str = "AirdropERC20,AirdropBNB"
    indexer_start_block: int | None = Field(
        default=None,
        ge=0,
        description="First block for streams without a checkpoint (default: head)",
    )

    # Dispatcher / batching
    dispatcher_capacity: int = Field(
        default=DEFAULT_DISPATCHER_CAPACITY, gt=0,
        description="Maximum number of queued batches per stream",
    )
    batch_size: int = Field(
        default=DEFAULT_BATCH_SIZE, gt=0,
        description="Soft limit of events per batch",
    )
    batch_linger: float = Field(
        default=BATCH_LINGER_SECONDS, gt=0,
        description="Idle seconds before a pending batch is flushed",
    )

    # Watcher reconnects
    reconnect_base_delay: float = Field(default=WS_RECONNECT_BASE_DELAY, gt=0)
    reconnect_max_delay: float = Field(default=WS_RECONNECT_MAX_DELAY, gt=0)
    max_reconnect_attempts: int = Field(default=WS_MAX_RECONNECT_ATTEMPTS, gt=0)

    # Processor retries
    processor_max_retries: int = Field(default=PROCESSOR_MAX_RETRIES, gt=0)
    processor_retry_base_delay: float = Field(
        default=PROCESSOR_RETRY_BASE_DELAY, gt=0
    )
    processor_retry_max_delay: float = Field(
        default=PROCESSOR_RETRY_MAX_DELAY, gt=0
    )

    # Timeouts
    rpc_timeout: float = Field(default=BLOCKCHAIN_TIMEOUT, gt=0)
    shutdown_grace: float = Field(
        default=SHUTDOWN_GRACE_SECONDS, gt=0,
        description="Seconds each component gets to exit after stop",
    )

    # Application
    environment: str = "production"
    debug: bool = False
    log_level: str = "INFO"
    log_file: str | None = "logs/indexer.log"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode='after')
    def validate_production(self) -> 'Settings':
        """Validate production-specific requirements."""
        if self.environment == 'production':
            if self.debug:
                raise ValueError(
                    'DEBUG must be False in production environment. '
                    'Set DEBUG=false in your .env file.'
                )
            if not self.rpc_wss_url.startswith('wss://'):
                logger.warning(
                    'RPC_WSS_URL does not use TLS (wss://). '
                    'Use a secure endpoint in production.'
                )
        return self

    @model_validator(mode='after')
    def validate_reconnect_delays(self) -> 'Settings':
        """Base reconnect delay must not exceed the cap."""
        if self.reconnect_base_delay > self.reconnect_max_delay:
            raise ValueError(
                'RECONNECT_BASE_DELAY must not exceed RECONNECT_MAX_DELAY'
            )
        if self.processor_retry_base_delay > self.processor_retry_max_delay:
            raise ValueError(
                'PROCESSOR_RETRY_BASE_DELAY must not exceed '
                'PROCESSOR_RETRY_MAX_DELAY'
            )
        return self

    @field_validator('airdrop_contract_address')
    @classmethod
    def validate_eth_address(cls, v: str) -> str:
        """Validate Ethereum address format."""
        if not v.startswith('0x') or len(v) != 42:
            raise ValueError(
                f'Invalid Ethereum address: {v}. '
                'Must start with 0x and be 42 characters long.'
            )
        try:
            int(v[2:], 16)
        except ValueError as exc:
            raise ValueError(f'Invalid Ethereum address format: {v}') from exc
        return v.lower()

    @field_validator('rpc_wss_url')
    @classmethod
    def validate_rpc_url(cls, v: str) -> str:
        """Subscriptions need a WebSocket endpoint."""
        if not v.startswith(('ws://', 'wss://')):
            raise ValueError('RPC_WSS_URL must start with ws:// or wss://')
        return v

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL."""
        if not v.startswith(('postgresql://', 'postgresql+asyncpg://')):
            raise ValueError(
                'DATABASE_URL must start with postgresql:// or postgresql+asyncpg://'
            )
        return v

    @property
    def async_database_url(self) -> str:
        """Database URL with the asyncpg driver selected."""
        if self.database_url.startswith('postgresql://'):
            return self.database_url.replace(
                'postgresql://', 'postgresql+asyncpg://', 1
            )
        return self.database_url

    def get_stream_names(self) -> list[str]:
        """Parse enabled stream names from comma-separated string."""
        result = []
        for name in self.indexer_streams.split(","):
            name_stripped = name.strip()
            if not name_stripped:
                continue
            if name_stripped in result:
                logger.warning(f"Duplicate stream name ignored: {name_stripped}")
                continue
            result.append(name_stripped)
        return result


# Global settings instance
settings = Settings()
