"""
Indexer Initialization - Logging Module.

Module: logging.py
Configures loguru logger for the indexer.
Sets up log rotation and retention policies.
"""

import sys

from loguru import logger


def setup_logging(
    level: str = "INFO",
    log_file: str | None = "logs/indexer.log",
) -> None:
    """Configure stderr and file sinks with rotation."""
    logger.remove()
    logger.add(sys.stderr, level=level)

    if log_file:
        logger.add(
            log_file,
            rotation="1 day",
            retention="7 days",
            level=level,
            encoding="utf-8",
        )

    logger.info("Starting airdrop event indexer...")
