"""Periodic refresh of the exported metrics.

Every tick fetches all five resources from the panel and, only if every
fetch succeeded, folds them into the gauges. A failed cycle leaves the
previous values exposed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from marzban_exporter.errors import ExporterError

if TYPE_CHECKING:
    from marzban_exporter.client import MarzbanClient
    from marzban_exporter.metrics.exporter import MarzbanMetrics

logger = logging.getLogger(__name__)

DEFAULT_UPDATE_INTERVAL = 60.0  # seconds

# Unhealthy once the last success is older than this many intervals
STALE_INTERVALS = 3


class RefreshScheduler:
    """Drive refresh cycles at a fixed rate.

    Ticks are aligned to the start time. A cycle that runs past one or more
    ticks is followed by a single immediate cycle, after which the schedule
    continues on the original grid. Cycles never overlap.
    """

    def __init__(
        self,
        client: MarzbanClient,
        metrics: MarzbanMetrics,
        interval: float = DEFAULT_UPDATE_INTERVAL,
    ):
        """Initialize the scheduler.

        Args:
            client: API client used to fetch resources.
            metrics: Gauges to update.
            interval: Seconds between cycle starts.
        """
        if interval <= 0:
            raise ValueError("interval must be positive")

        self.client = client
        self.metrics = metrics
        self.interval = interval

        # Cycle statistics
        self.cycles = 0
        self.failures = 0
        self.last_success: float | None = None
        self.last_error: str | None = None

        self._task: asyncio.Task | None = None
        self._running = False

    async def refresh_once(self) -> bool:
        """Run one fetch-all-then-update cycle.

        Returns:
            True if the gauges were updated, False if the cycle was abandoned.
        """
        self.cycles += 1
        try:
            snapshot = await self.client.fetch_snapshot()
        except (ExporterError, asyncio.TimeoutError) as e:
            self.failures += 1
            self.last_error = str(e) or type(e).__name__
            logger.error(f"Failed to update metrics: {self.last_error}")
            return False

        self.metrics.apply(snapshot)
        self.last_success = time.time()
        self.last_error = None
        logger.info(
            f"Refreshed metrics: {len(snapshot.nodes)} nodes, {len(snapshot.users)} users"
        )
        return True

    @property
    def healthy(self) -> bool:
        """True if a cycle succeeded within the last few intervals."""
        if self.last_success is None:
            return False
        return time.time() - self.last_success <= self.interval * STALE_INTERVALS

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the refresh loop as a background task."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Stop the refresh loop, cancelling any cycle in flight."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def run(self, max_cycles: int | None = None) -> None:
        """Run the refresh loop in the current task.

        Args:
            max_cycles: Optional number of cycles after which to return.
        """
        self._running = True
        try:
            await self._loop(max_cycles)
        finally:
            self._running = False

    async def _loop(self, max_cycles: int | None = None) -> None:
        loop = asyncio.get_running_loop()
        due = loop.time()
        completed = 0

        while self._running:
            delay = due - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)

            try:
                await self.refresh_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                # Keep the loop alive, the next cycle may succeed
                logger.exception("Unexpected error in refresh cycle")

            completed += 1
            if max_cycles is not None and completed >= max_cycles:
                break

            due += self.interval
            finished = loop.time()
            if finished > due:
                missed = int((finished - due) // self.interval)
                due += missed * self.interval
                logger.warning(
                    f"Refresh cycle overran the {self.interval}s interval, "
                    f"coalescing {missed + 1} missed tick(s)"
                )
