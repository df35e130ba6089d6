"""
Cancellable transfer handle shared by the store adapters.

Wraps the transfer coroutine in an asyncio.Task so it makes progress on the
event loop as soon as it is issued. Awaiting the handle yields the stored
reference. An explicit cancel() surfaces as TransferCancelled; cancellation of
whoever awaits the handle propagates as a plain CancelledError and also stops
the transfer.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine, Generator
from typing import Any

from src.core.ports.store import TransferCancelled

logger = logging.getLogger(__name__)


class TransferTask:
    """Implements TransferHandle on top of asyncio.Task."""

    def __init__(self, path: str, coro: Coroutine[Any, Any, str]) -> None:
        self.path = path
        self._cancel_requested = False
        self._task: asyncio.Task[str] = asyncio.ensure_future(coro)

    def cancel(self) -> bool:
        if self._task.done():
            return False
        self._cancel_requested = True
        self._task.cancel()
        logger.info("Transfer cancel requested: %s", self.path)
        return True

    def done(self) -> bool:
        return self._task.done()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    async def wait(self) -> str:
        try:
            return await self._task
        except asyncio.CancelledError:
            if self._cancel_requested:
                raise TransferCancelled(self.path) from None
            raise

    def __await__(self) -> Generator[Any, None, str]:
        return self.wait().__await__()
