#!/usr/bin/env python3
"""
Initialize database tables.

Creates airdrop_events and stream_checkpoints directly from the models.
Use alembic (alembic upgrade head) for managed deployments.

Usage:
    python scripts/init_database.py [--drop]
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from loguru import logger  # noqa: E402

from app.config.database import create_engine  # noqa: E402
from app.models import Base  # noqa: E402

# Configure logger for script
logger.remove()
logger.add(sys.stderr, level="INFO")


async def init_database(drop: bool = False) -> None:
    """Create all database tables."""
    logger.info("Connecting to database...")
    engine = create_engine()

    async with engine.begin() as conn:
        if drop:
            logger.warning("Dropping existing indexer tables...")
            await conn.run_sync(Base.metadata.drop_all, checkfirst=True)
        logger.info("Creating tables (checkfirst=True)...")
        await conn.run_sync(
            Base.metadata.create_all,
            checkfirst=True
        )

    await engine.dispose()
    logger.success("Database tables created successfully!")


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Create indexer tables")
    parser.add_argument(
        "--drop",
        action="store_true",
        help="Drop indexer tables before creating them (destroys data)",
    )
    args = parser.parse_args()

    asyncio.run(init_database(drop=args.drop))


if __name__ == "__main__":
    main()
