"""
Indexer main entry point.

Subscribes to the airdrop contract's events and persists them until
SIGINT/SIGTERM or a fatal pipeline error.

Usage:
    python -m indexer.main [--streams AirdropERC20,AirdropBNB] [--debug]
"""

import argparse
import asyncio
import signal
import sys
import warnings


# eth_utils warns about chains without a valid ChainId on import
warnings.filterwarnings(
    "ignore",
    message=".*does not have a valid ChainId.*",
    category=UserWarning,
)

from loguru import logger  # noqa: E402

from app.config.database import create_engine, create_session_maker  # noqa: E402
from app.config.settings import settings  # noqa: E402
from app.services.blockchain.chain_client import Web3ChainClient  # noqa: E402
from app.services.ingestion import (  # noqa: E402
    IngestionService,
    SqlEventStore,
)
from app.utils.exceptions import ChainConnectionError, FatalError  # noqa: E402
from indexer.initialization.logging import setup_logging  # noqa: E402
from indexer.initialization.shutdown import shutdown_handler  # noqa: E402


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Index airdrop contract events into PostgreSQL"
    )
    parser.add_argument(
        "--streams",
        default=None,
        help=(
            "Comma-separated event names to index "
            f"(default: {settings.indexer_streams})"
        ),
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log at DEBUG level",
    )
    return parser.parse_args(argv)


def install_signal_handlers(service: IngestionService) -> None:
    """Translate SIGINT/SIGTERM into a graceful stop."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, service.request_stop)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            logger.warning(f"Cannot install handler for {sig.name}")


async def main(argv: list[str] | None = None) -> int:
    """Initialize and run the indexer. Returns the process exit code."""
    args = parse_args(argv)
    setup_logging(
        level="DEBUG" if args.debug or settings.debug else settings.log_level,
        log_file=settings.log_file,
    )

    stream_names = None
    if args.streams:
        stream_names = [s.strip() for s in args.streams.split(",") if s.strip()]

    engine = create_engine()
    store = SqlEventStore(create_session_maker(engine))

    service: IngestionService | None = None
    try:
        service = IngestionService.from_settings(
            settings,
            store,
            client_factory=lambda: Web3ChainClient(
                settings.rpc_wss_url, timeout=settings.rpc_timeout
            ),
            stream_names=stream_names,
        )
        install_signal_handlers(service)

        logger.info(
            f"Indexing {settings.airdrop_contract_address} "
            f"({', '.join(s.stream_id for s in service.status())})"
        )
        await service.run()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2
    except ChainConnectionError as e:
        logger.error(f"Startup failed: {e}")
        return 1
    except FatalError as e:
        logger.error(f"Indexer stopped on fatal error: {e}")
        return 1
    finally:
        await shutdown_handler(service, engine)

    logger.info("Indexer stopped")
    return 0


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Indexer stopped by user (KeyboardInterrupt)")
    except Exception as e:
        logger.exception(f"Indexer crashed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
