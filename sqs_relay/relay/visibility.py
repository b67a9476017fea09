"""
Visibility Extender for the SQS relay.

Keeps a delivery hidden from other consumers while its forward attempts
are still running, so the queue does not hand the same message to
someone else mid-retry.
"""

import logging
import time
from typing import Callable

from sqs_relay.relay.context import RelayContext
from sqs_relay.relay.models import (
    ForwardOutcome,
    QueuedMessage,
    QueueTransportError,
    VisibilityExtendError,
)

logger = logging.getLogger(__name__)


class VisibilityExtender:
    """
    Tracks the visibility deadline of one delivery and extends it on demand.

    The deadline starts at receipt time + visibility_timeout. ``ensure``
    extends it when less than ``visibility_margin`` (plus any upcoming
    wait) remains. A failed extension is logged and the message is left
    to be redelivered.
    """

    def __init__(
        self,
        context: RelayContext,
        message: QueuedMessage,
        received_at: float = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.context = context
        self.message = message
        self._clock = clock
        self.timeout = context.config.visibility_timeout
        self.margin = context.config.visibility_margin
        start = received_at if received_at is not None else clock()
        self.deadline = start + self.timeout
        self.extensions = 0
        self.failures = 0

    @property
    def remaining(self) -> float:
        """Seconds left before the queue may redeliver this message."""
        return self.deadline - self._clock()

    def needs_extension(self, upcoming: float = 0.0) -> bool:
        return self.remaining < self.margin + upcoming

    async def extend(self) -> None:
        """
        Reset the visibility window to a full ``visibility_timeout``.

        Raises:
            VisibilityExtendError: If the queue rejects the extension
        """
        try:
            await self.context.queue.change_visibility(
                self.message.receipt_handle, self.timeout
            )
        except QueueTransportError as e:
            raise VisibilityExtendError(
                f"Could not extend visibility of {self.message.message_id}: {e.reason}"
            ) from e
        self.deadline = self._clock() + self.timeout
        self.extensions += 1
        logger.debug(
            f"Extended visibility of {self.message.message_id} by {self.timeout}s "
            f"(extension {self.extensions})"
        )

    async def ensure(self, upcoming: float = 0.0) -> bool:
        """
        Extend the window if it would close within the margin.

        Args:
            upcoming: Seconds of work about to start (e.g. a retry wait)

        Returns:
            False only if an extension was needed and failed
        """
        if not self.needs_extension(upcoming):
            return True
        try:
            await self.extend()
        except VisibilityExtendError as e:
            self.failures += 1
            logger.warning(f"{e}; the message may be delivered again")
            return False
        return True

    async def before_retry(self, outcome: ForwardOutcome, delay: float) -> None:
        """Forward hook: cover the retry wait and the next attempt."""
        await self.ensure(delay + self.context.config.request_timeout)

    async def after_wait(self) -> None:
        """Forward hook: re-check once the wait has elapsed."""
        await self.ensure(self.context.config.request_timeout)
