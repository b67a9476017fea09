"""
Queue Poller for the SQS relay.

Long-polls the queue and hands each message to the processor, keeping
no more than ``max_concurrent_messages`` pipelines in flight. Poll
failures back off with jitter and are retried until shutdown.
"""

import asyncio
import logging
import time
from typing import List, Optional

from sqs_relay.relay.context import RelayContext
from sqs_relay.relay.models import QueuedMessage, QueueTransportError
from sqs_relay.relay.processor import MessageProcessor

logger = logging.getLogger(__name__)


class QueuePoller:
    """Receives batches from the queue and dispatches them for processing."""

    def __init__(self, context: RelayContext, processor: MessageProcessor):
        self.context = context
        self.processor = processor
        self.polls = 0
        self.poll_failures = 0
        self._consecutive_failures = 0
        self._backoff = context.config.poll_backoff_policy
        self._backlog: List[QueuedMessage] = []

    @property
    def backlog_size(self) -> int:
        """Received messages waiting locally for a free slot."""
        return len(self._backlog)

    async def run(self) -> None:
        """Poll until shutdown is requested."""
        config = self.context.config
        logger.debug(
            f"Starting poll loop: batch={config.batch_size}, "
            f"wait={config.wait_time_seconds}s"
        )

        while not self.context.shutting_down:
            if not await self._wait_for_capacity():
                break

            messages = await self.poll_once()
            if messages is None:
                delay = self._backoff.jittered(self._consecutive_failures)
                logger.info(f"Polling again in {delay:.1f} seconds...")
                if not await self.context.sleep(delay):
                    break
                continue

            if not messages:
                logger.debug("No messages received from SQS")
                continue

            logger.info(f"Received {len(messages)} message(s) from SQS")
            await self.dispatch(messages)

        if self._backlog:
            logger.info(
                f"Shutdown with {len(self._backlog)} undispatched message(s); "
                f"they will become visible again in the queue"
            )
            self._backlog.clear()
        logger.debug("Poll loop stopped")

    async def poll_once(self) -> Optional[List[QueuedMessage]]:
        """
        Issue one long poll.

        The poll is abandoned when shutdown is requested while it is
        outstanding; anything SQS hands out afterwards becomes visible
        again once its visibility timeout expires.

        Returns:
            The received messages, or None if the poll failed
        """
        config = self.context.config
        self.polls += 1
        receive = asyncio.ensure_future(
            self.context.queue.receive_messages(
                config.batch_size, config.wait_time_seconds, config.visibility_timeout
            )
        )
        stop = asyncio.ensure_future(self.context.shutdown.wait())
        try:
            await asyncio.wait({receive, stop}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            receive.cancel()
            raise
        finally:
            stop.cancel()

        if not receive.done():
            receive.cancel()
            try:
                await receive
            except asyncio.CancelledError:
                logger.debug("Long poll abandoned for shutdown")
            except QueueTransportError as e:
                logger.debug(f"Long poll failed during shutdown: {e}")
            return []

        try:
            messages = receive.result()
        except QueueTransportError as e:
            self.poll_failures += 1
            self._consecutive_failures += 1
            logger.error(
                f"SQS receive error ({self._consecutive_failures} in a row): {e}"
            )
            return None

        if self._consecutive_failures:
            logger.info(f"SQS polling recovered after {self._consecutive_failures} failure(s)")
        self._consecutive_failures = 0
        return messages

    async def dispatch(self, messages: List[QueuedMessage]) -> None:
        """
        Start a pipeline per message, waiting locally when all slots are busy.

        Messages still waiting when shutdown is requested are not started.
        """
        received_at = time.monotonic()
        self._backlog.extend(messages)

        while self._backlog:
            if not await self._acquire_slot():
                return
            message = self._backlog.pop(0)
            try:
                task = asyncio.create_task(
                    self.processor.run(message, received_at),
                    name=f"relay-{message.message_id}",
                )
            except Exception:
                self.context.in_flight.release()
                raise
            self.context.in_flight.track(task)

    async def _acquire_slot(self) -> bool:
        """Acquire an in-flight slot unless shutdown comes first."""
        in_flight = self.context.in_flight
        if self.context.shutting_down:
            return False
        if in_flight.has_capacity:
            await in_flight.acquire()
            return True

        acquire = asyncio.ensure_future(in_flight.acquire())
        stop = asyncio.ensure_future(self.context.shutdown.wait())
        try:
            await asyncio.wait({acquire, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()

        if acquire.done() and not acquire.cancelled():
            if self.context.shutting_down:
                in_flight.release()
                return False
            return True

        acquire.cancel()
        try:
            await acquire
        except asyncio.CancelledError:
            return False
        # The slot was granted while cancelling
        in_flight.release()
        return False

    async def _wait_for_capacity(self) -> bool:
        """Hold off polling while every slot is busy."""
        if self.context.in_flight.has_capacity:
            return True
        if not await self._acquire_slot():
            return False
        self.context.in_flight.release()
        return not self.context.shutting_down
