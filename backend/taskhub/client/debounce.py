"""Coalesce bursts of triggers into one async call."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class Debouncer:
    """Run ``callback`` once, ``delay`` seconds after the last ``trigger()``."""

    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]]) -> None:
        self._delay = delay
        self._callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self) -> None:
        if self.pending:
            self._task.cancel()
        self._task = asyncio.ensure_future(self._run())

    async def _run(self) -> None:
        await asyncio.sleep(self._delay)
        try:
            await self._callback()
        except Exception as e:
            logger.warning(f"[Client] Debounced callback failed: {e}")

    async def flush(self) -> None:
        """Run a pending callback now instead of waiting."""
        if not self.pending:
            return
        self._task.cancel()
        self._task = None
        await self._callback()

    def cancel(self) -> None:
        if self.pending:
            self._task.cancel()
        self._task = None
