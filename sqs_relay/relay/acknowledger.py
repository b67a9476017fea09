"""
Acknowledger for the SQS relay.

Deletes messages that were delivered and deliberately leaves every other
message in the queue, where its visibility timeout and any redrive
policy decide what happens next.
"""

import logging
from typing import Optional

from sqs_relay.relay.context import RelayContext
from sqs_relay.relay.models import (
    AttemptResult,
    DecodeError,
    Disposition,
    ForwardResult,
    QueuedMessage,
    QueueTransportError,
)

logger = logging.getLogger(__name__)


class Acknowledger:
    """Settles a message in the queue after its pipeline ends."""

    def __init__(self, context: RelayContext):
        self.context = context

    async def settle(
        self,
        message: QueuedMessage,
        result: Optional[ForwardResult] = None,
        error: Optional[DecodeError] = None,
    ) -> Disposition:
        """
        Apply the final outcome of a message to the queue.

        Args:
            message: The delivery being settled
            result: Forward result, if the message was decoded
            error: Decode error, if decoding failed

        Returns:
            Disposition describing what happened to the message
        """
        if result is not None and result.succeeded:
            return await self._delete(message)

        self._warn_if_poison(message)

        if error is not None:
            logger.error(
                f"{error} → leaving message in queue for redrive "
                f"(receive count {message.approx_receive_count})"
            )
        elif result is not None and result.result == AttemptResult.ABORTED:
            logger.info(
                f"Message {message.message_id} interrupted by shutdown after "
                f"{result.attempts} attempt(s), leaving it in queue"
            )
        elif result is not None:
            logger.warning(
                f"{result.to_error(message.message_id)} → leaving message in queue "
                f"(receive count {message.approx_receive_count})"
            )
        return Disposition.LEFT_FOR_REDRIVE

    async def _delete(self, message: QueuedMessage) -> Disposition:
        try:
            await self.context.queue.delete_message(message.receipt_handle)
        except QueueTransportError as e:
            logger.error(
                f"Failed to delete SQS message {message.message_id}: {e.reason}; "
                f"it may be delivered again"
            )
            return Disposition.DELETE_FAILED
        logger.debug(f"Message {message.message_id} deleted from queue")
        return Disposition.DELETED

    def _warn_if_poison(self, message: QueuedMessage) -> None:
        threshold = self.context.config.poison_receive_count
        if threshold and message.approx_receive_count >= threshold:
            logger.warning(
                f"Message {message.message_id} has been received "
                f"{message.approx_receive_count} times; configure a dead-letter "
                f"queue if it keeps failing"
            )
