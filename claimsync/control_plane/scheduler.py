"""
Polling scheduler for the claim read path.

Fires ClaimSynchronizer.download_next_hash on a fixed interval. Ticks are
fire-and-forget relative to the timer: a slow tick does not delay the next
one, so two resolution attempts can be in flight at once. The entry index
handles that through atomic updates.
"""
import asyncio
import logging
from typing import Optional, Set

from claimsync.control_plane.controller import ClaimSynchronizer, DownloadContext


logger = logging.getLogger(__name__)


class SchedulerState:
    """Scheduler lifecycle states."""
    IDLE = "idle"
    RUNNING = "running"


class RetryPolicy:
    """Retry policy for resolution attempts."""

    def __init__(self, retry_delay_ms: int = 600000, max_attempts: int = 20):
        """
        Initialize retry policy.

        Args:
            retry_delay_ms: Milliseconds an entry waits after an attempt
            max_attempts: Inclusive attempt cap; entries beyond it are stuck
        """
        self.retry_delay_ms = retry_delay_ms
        self.max_attempts = max_attempts


class PollingScheduler:
    """
    Periodic trigger for the read path.

    State machine: idle -> running (start) -> idle (stop). stop() only
    prevents future ticks; in-flight ticks run to completion.
    """

    def __init__(
        self,
        synchronizer: ClaimSynchronizer,
        interval_seconds: float,
        retry_policy: Optional[RetryPolicy] = None
    ):
        """
        Initialize scheduler.

        Args:
            synchronizer: Synchronizer whose read path is driven
            interval_seconds: Seconds between ticks
            retry_policy: Retry policy (default: RetryPolicy())
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self.synchronizer = synchronizer
        self.interval_seconds = interval_seconds
        self.retry_policy = retry_policy or RetryPolicy()
        self.state = SchedulerState.IDLE
        self.ticks_started = 0
        self._timer: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self.state == SchedulerState.RUNNING

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def start(self) -> None:
        """
        Arm the timer. Must be called from a running event loop.

        Calling start() while running is a no-op.
        """
        if self.running:
            return

        loop = asyncio.get_running_loop()
        self.state = SchedulerState.RUNNING
        self._timer = loop.create_task(self._run_timer())
        logger.info(f"Polling scheduler started (interval {self.interval_seconds}s)")

    def stop(self) -> None:
        """Disarm the timer. Safe when never started or already stopped."""
        if not self.running:
            return

        self.state = SchedulerState.IDLE
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        logger.info(f"Polling scheduler stopped ({self.in_flight} tick(s) still in flight)")

    async def wait_idle(self) -> None:
        """Wait for in-flight ticks to finish (shutdown and tests)."""
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def _run_timer(self) -> None:
        while self.running:
            await asyncio.sleep(self.interval_seconds)
            if not self.running:
                break
            tick = asyncio.create_task(self.tick())
            self._in_flight.add(tick)
            tick.add_done_callback(self._in_flight.discard)

    async def tick(self) -> Optional[DownloadContext]:
        """Run one read path pass in a worker thread and log the outcome."""
        self.ticks_started += 1
        try:
            result = await asyncio.to_thread(
                self.synchronizer.download_next_hash,
                self.retry_policy.retry_delay_ms,
                self.retry_policy.max_attempts
            )
        except Exception as e:
            logger.error(f"Download tick failed: {type(e).__name__}: {e}")
            return None

        self._log_result(result)
        return result

    def run_once(self) -> Optional[DownloadContext]:
        """Run a single tick synchronously (CLI)."""
        result = self.synchronizer.download_next_hash(
            self.retry_policy.retry_delay_ms,
            self.retry_policy.max_attempts
        )
        self._log_result(result)
        return result

    @staticmethod
    def _log_result(result: Optional[DownloadContext]) -> None:
        if result is None:
            logger.info("No downloadable entries")
        elif result.resolved:
            logger.info(f"Successfully downloaded entry {result.summary()}")
        else:
            logger.info(f"Download attempt did not resolve: {result.summary()}")
