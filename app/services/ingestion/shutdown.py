"""
Shutdown signal shared by every component of the ingestion pipeline.
"""

import asyncio

from loguru import logger


class ShutdownSignal:
    """
    One-shot cancellation signal with an optional cause.

    The first trigger wins: its cause is kept, later triggers are no-ops.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.cause: BaseException | None = None

    def trigger(self, cause: BaseException | None = None) -> None:
        if self._event.is_set():
            return
        self.cause = cause
        self._event.set()
        if cause is not None:
            logger.error(f"[Shutdown] Triggered by {type(cause).__name__}: {cause}")
        else:
            logger.info("[Shutdown] Triggered")

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()
