"""Trailing-edge debounce for async callbacks."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class Debouncer:
    """Collapse a burst of triggers into one call after ``delay`` seconds of quiet.

    Usage:
        debouncer = Debouncer(0.5, synchronizer.refresh)
        debouncer.trigger()
        debouncer.trigger()   # restarts the timer; refresh runs once
    """

    def __init__(self, delay: float, callback: Callable[[], Awaitable[object]]):
        self.delay = delay
        self.callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        """True while a timer is waiting to fire."""
        return self._task is not None and not self._task.done()

    def trigger(self) -> None:
        """(Re)start the timer. Must be called from within a running event loop."""
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        await asyncio.sleep(self.delay)
        # Detach first so a trigger during the callback schedules a fresh call
        # instead of cancelling this one
        self._task = None
        try:
            await self.callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Debounced callback failed")

    def cancel(self) -> None:
        """Drop the pending call, if any."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
