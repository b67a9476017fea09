"""
Message Processor for the SQS relay.

Runs the per-message pipeline:
- Decode the queued message
- Forward it to the local target, extending visibility before the first
  attempt and between retries
- Settle it in the queue (delete on success, leave otherwise)
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, Any, Optional

from sqs_relay.relay.acknowledger import Acknowledger
from sqs_relay.relay.context import RelayContext
from sqs_relay.relay.decoder import MessageDecoder
from sqs_relay.relay.forwarder import ForwardingClient
from sqs_relay.relay.models import (
    AttemptResult,
    DecodeError,
    Disposition,
    ForwardResult,
    QueuedMessage,
)
from sqs_relay.relay.visibility import VisibilityExtender
from sqs_relay.utils import summarize_payload

logger = logging.getLogger(__name__)


@dataclass
class ProcessingResult:
    """Result of processing one delivery."""

    message_id: str
    disposition: Disposition
    forward: Optional[ForwardResult] = None
    error: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.forward is not None and self.forward.succeeded

    @property
    def attempts(self) -> int:
        return self.forward.attempts if self.forward else 0


@dataclass
class ProcessingStats:
    """Statistics for message processing."""

    messages_received: int = 0
    messages_delivered: int = 0
    messages_failed: int = 0
    decode_failures: int = 0
    delete_failures: int = 0
    aborted: int = 0
    visibility_extensions: int = 0
    visibility_failures: int = 0


class MessageProcessor:
    """
    Processes queued messages end to end.

    Each call to ``process`` handles exactly one delivery and never raises
    for per-message failures; they are logged and counted instead.
    """

    def __init__(
        self,
        context: RelayContext,
        decoder: Optional[MessageDecoder] = None,
        forwarder: Optional[ForwardingClient] = None,
        acknowledger: Optional[Acknowledger] = None,
    ):
        self.context = context
        self.decoder = decoder or MessageDecoder(context.config)
        self.forwarder = forwarder or ForwardingClient(context)
        self.acknowledger = acknowledger or Acknowledger(context)
        self._stats = ProcessingStats()

    async def process(
        self, message: QueuedMessage, received_at: Optional[float] = None
    ) -> ProcessingResult:
        """
        Run the pipeline for one delivery.

        Args:
            message: The delivery to process
            received_at: Monotonic time the message was received

        Returns:
            ProcessingResult describing how the message was settled
        """
        start = time.monotonic()
        received_at = received_at if received_at is not None else start
        self._stats.messages_received += 1

        try:
            request = self.decoder.decode(message)
        except DecodeError as e:
            self._stats.decode_failures += 1
            disposition = await self.acknowledger.settle(message, error=e)
            return ProcessingResult(
                message_id=message.message_id,
                disposition=disposition,
                error=str(e),
                duration_ms=(time.monotonic() - start) * 1000,
            )

        logger.info(
            f"SQS → Local: {summarize_payload(request.body)}"
            + (f" [IP: {request.source_ip}]" if request.source_ip else "")
            + f" (message {message.message_id}, receive count {message.approx_receive_count})"
        )
        logger.debug(f"Request headers: {list(request.headers)}")

        extender = VisibilityExtender(self.context, message, received_at=received_at)
        try:
            # Time spent in the local backlog counts against the window
            await extender.ensure(self.context.config.request_timeout)
            result = await self.forwarder.forward(
                request,
                before_retry=extender.before_retry,
                after_wait=extender.after_wait,
                message_id=message.message_id,
            )
        finally:
            self._stats.visibility_extensions += extender.extensions
            self._stats.visibility_failures += extender.failures

        disposition = await self.acknowledger.settle(message, result=result)

        if result.succeeded:
            self._stats.messages_delivered += 1
        elif result.result == AttemptResult.ABORTED:
            self._stats.aborted += 1
        else:
            self._stats.messages_failed += 1
        if disposition == Disposition.DELETE_FAILED:
            self._stats.delete_failures += 1

        return ProcessingResult(
            message_id=message.message_id,
            disposition=disposition,
            forward=result,
            error=None if result.succeeded else (result.last.error if result.last else None),
            duration_ms=(time.monotonic() - start) * 1000,
        )

    async def run(
        self, message: QueuedMessage, received_at: Optional[float] = None
    ) -> Optional[ProcessingResult]:
        """Task body for one dispatched delivery; isolates unexpected errors."""
        try:
            return await self.process(message, received_at)
        except asyncio.CancelledError:
            logger.info(
                f"Processing cancelled for {message.message_id}; "
                f"it stays in the queue"
            )
            raise
        except Exception as e:
            self._stats.messages_failed += 1
            logger.exception(f"Error processing {message.message_id}: {e}")
            return None

    def get_stats(self) -> Dict[str, Any]:
        """Get processing statistics."""
        return {
            "messages_received": self._stats.messages_received,
            "messages_delivered": self._stats.messages_delivered,
            "messages_failed": self._stats.messages_failed,
            "decode_failures": self._stats.decode_failures,
            "delete_failures": self._stats.delete_failures,
            "aborted": self._stats.aborted,
            "visibility_extensions": self._stats.visibility_extensions,
            "visibility_failures": self._stats.visibility_failures,
            "in_flight_count": self.context.in_flight.count,
        }
