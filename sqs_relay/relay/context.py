"""
Runtime context shared by the relay components.

One RelayContext is built at startup and passed to every component, so
the poller, pipelines and lifecycle controller share config, clients and
the in-flight bookkeeping without module-level state.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Set

import aiohttp

from sqs_relay.relay.config import RelayConfig
from sqs_relay.relay.queue_client import QueueClient

logger = logging.getLogger(__name__)


class InFlightTracker:
    """
    Bounds and tracks the per-message pipelines currently running.

    A slot is acquired before a pipeline is dispatched and released when
    its task finishes. All mutation happens on the event loop thread.
    """

    def __init__(self, limit: int):
        self.limit = limit
        self._slots = asyncio.Semaphore(limit)
        self._tasks: Set[asyncio.Task] = set()

    @property
    def count(self) -> int:
        """Number of pipelines currently running."""
        return len(self._tasks)

    @property
    def has_capacity(self) -> bool:
        return not self._slots.locked()

    async def acquire(self) -> None:
        """Wait for a free slot."""
        await self._slots.acquire()

    def release(self) -> None:
        self._slots.release()

    def track(self, task: asyncio.Task) -> None:
        """Register a dispatched pipeline; its slot is freed when it finishes."""
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self.release()

    async def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for all tracked pipelines to finish.

        Returns:
            True if every pipeline finished within the timeout
        """
        if not self._tasks:
            return True
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        return not pending

    async def cancel_all(self) -> int:
        """Cancel every remaining pipeline and wait for them to unwind."""
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        return len(pending)


@dataclass
class RelayContext:
    """Config, shared clients and cancellation signal for one relay process."""

    config: RelayConfig
    queue: QueueClient
    session: Optional[aiohttp.ClientSession] = None
    shutdown: asyncio.Event = field(default_factory=asyncio.Event)
    in_flight: Optional[InFlightTracker] = None

    def __post_init__(self):
        if self.in_flight is None:
            self.in_flight = InFlightTracker(self.config.max_concurrent_messages)

    @property
    def shutting_down(self) -> bool:
        return self.shutdown.is_set()

    async def sleep(self, delay: float) -> bool:
        """
        Wait for ``delay`` seconds unless shutdown is requested first.

        Returns:
            True if the full delay elapsed, False if interrupted by shutdown
        """
        if self.shutdown.is_set():
            return False
        if delay <= 0:
            return True
        try:
            await asyncio.wait_for(self.shutdown.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return True
        return False
