"""
Indexer Initialization - Shutdown Module.

Module: shutdown.py
Handles graceful shutdown of the indexer.
Stops the ingestion streams and closes database connections.
"""

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine

from app.services.ingestion import IngestionService


async def shutdown_handler(
    service: IngestionService | None,
    engine: AsyncEngine,
) -> None:
    """Handle graceful shutdown."""
    logger.info("Graceful shutdown initiated...")

    # Stop streams (no-op if run() already stopped them)
    if service is not None:
        try:
            await service.stop()
        except Exception as e:
            logger.warning(f"Error stopping ingestion: {e}")

    # Close database connections
    try:
        await engine.dispose()
        logger.info("Database connections closed")
    except Exception as e:
        logger.warning(f"Error closing database: {e}")

    logger.info("Graceful shutdown complete")
