"""Background reaper for expired pairing requests and signals.

Expiry is already enforced on every read path; the sweeper only keeps
memory bounded by purging entries nobody will read again.
"""

import asyncio
import logging
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class Sweepable(Protocol):
    """Anything that can purge its own expired entries."""

    def sweep(self) -> int:
        """Purge expired entries and return how many were removed."""
        ...


class ExpirySweeper:
    """Periodically sweeps a set of stores.

    Usage:
        sweeper = ExpirySweeper([registry, mailbox], interval=60.0)
        await sweeper.start()
        ...
        await sweeper.stop()
    """

    def __init__(self, targets: list[Sweepable], interval: float = 60.0):
        """Initialize the sweeper.

        Args:
            targets: Stores to sweep.
            interval: Seconds between sweeps.
        """
        self._targets = list(targets)
        self._interval = interval
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    def add(self, target: Sweepable) -> None:
        """Sweep another store on every pass."""
        self._targets.append(target)

    async def start(self) -> None:
        """Start the sweep loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info(f"ExpirySweeper started (interval={self._interval}s)")

    async def stop(self) -> None:
        """Stop the sweep loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("ExpirySweeper stopped")

    def sweep_once(self) -> int:
        """Sweep every target once.

        A failing target is logged and skipped.

        Returns:
            Total entries removed.
        """
        total = 0
        for target in self._targets:
            try:
                total += target.sweep()
            except Exception as e:
                logger.error(f"Sweep of {type(target).__name__} failed: {e}")
        if total:
            logger.debug(f"Swept {total} expired entries")
        return total

    async def _sweep_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._interval)
            self.sweep_once()
