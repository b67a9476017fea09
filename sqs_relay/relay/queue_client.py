"""
Queue client for the SQS relay.

Defines the narrow queue interface the relay depends on and its Amazon
SQS implementation. boto3 is synchronous, so every call runs in the
default executor to keep the event loop free.
"""

import asyncio
import functools
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from sqs_relay.relay.config import RelayConfig
from sqs_relay.relay.models import QueuedMessage, QueueTransportError, RelayStartupError

logger = logging.getLogger(__name__)

QUEUE_NAME_RE = re.compile(r"^[a-zA-Z0-9_-]{1,80}(\.fifo)?$")


class QueueClient(ABC):
    """Abstract interface for the queue collaborator."""

    @abstractmethod
    async def connect(self) -> None:
        """
        Create the underlying client.

        Raises:
            RelayStartupError: If the client cannot be constructed
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying client."""
        pass

    @abstractmethod
    async def receive_messages(
        self, max_messages: int, wait_time: int, visibility_timeout: int
    ) -> List[QueuedMessage]:
        """
        Long-poll for a batch of messages.

        Raises:
            QueueTransportError: If the poll fails
        """
        pass

    @abstractmethod
    async def delete_message(self, receipt_handle: str) -> None:
        """
        Delete one delivery.

        Raises:
            QueueTransportError: If the delete fails (e.g. expired handle)
        """
        pass

    @abstractmethod
    async def change_visibility(self, receipt_handle: str, timeout: int) -> None:
        """
        Reset the visibility timeout of one delivery.

        Raises:
            QueueTransportError: If the call fails
        """
        pass


class SQSQueueClient(QueueClient):
    """Amazon SQS implementation on boto3."""

    def __init__(self, config: RelayConfig):
        self.config = config
        self.queue_url: Optional[str] = None
        self._client = None
        self._queue = self._validate_queue(config.queue_url)

    @staticmethod
    def _validate_queue(queue: str) -> str:
        """
        Validate an SQS queue URL or name.

        Raises:
            ValueError: If queue is neither an http(s) URL nor a valid queue name
        """
        if not queue or not isinstance(queue, str):
            raise ValueError("Queue URL or name must be a non-empty string")

        queue = queue.strip()

        if any(char in queue for char in ["\r", "\n", "\0", "\t", " "]):
            raise ValueError("Queue identifier contains forbidden characters")

        if queue.startswith("https://") or queue.startswith("http://"):
            return queue

        if not QUEUE_NAME_RE.match(queue):
            raise ValueError(
                f"Invalid queue name format: '{queue}'. "
                f"Only alphanumeric characters, underscores, and hyphens are allowed."
            )
        return queue

    @property
    def is_queue_url(self) -> bool:
        return self._queue.startswith(("https://", "http://"))

    async def _call(self, operation: str, **kwargs) -> Any:
        """Run a boto3 call in the executor, mapping errors to QueueTransportError."""
        if self._client is None:
            raise QueueTransportError(operation, "client not connected")

        loop = asyncio.get_running_loop()
        try:
            call = functools.partial(getattr(self._client, operation), **kwargs)
            return await loop.run_in_executor(None, call)
        except ClientError as e:
            error = e.response.get("Error", {})
            raise QueueTransportError(
                operation, error.get("Message") or str(e), code=error.get("Code")
            ) from e
        except BotoCoreError as e:
            raise QueueTransportError(operation, str(e)) from e

    async def connect(self) -> None:
        """Create the SQS client and resolve the queue URL."""
        try:
            client_config = BotoConfig(
                region_name=self.config.region,
                # Long polls hold the connection for up to wait_time_seconds
                read_timeout=self.config.wait_time_seconds + 10,
                connect_timeout=10,
                retries={"max_attempts": 3, "mode": "standard"},
            )
            self._client = boto3.client(
                "sqs",
                endpoint_url=self.config.endpoint_url,
                config=client_config,
            )
        except (BotoCoreError, ValueError) as e:
            raise RelayStartupError(f"Could not create SQS client: {e}") from e

        if self.is_queue_url:
            self.queue_url = self._queue
        else:
            try:
                response = await self._call("get_queue_url", QueueName=self._queue)
            except QueueTransportError as e:
                raise RelayStartupError(
                    f"Could not resolve queue '{self._queue}': {e.reason}"
                ) from e
            self.queue_url = response["QueueUrl"]

        logger.info(f"SQS client ready for {self.queue_url} ({self.config.region})")

    async def close(self) -> None:
        """Close the SQS client."""
        if self._client is not None:
            self._client.close()
        self._client = None

    async def receive_messages(
        self, max_messages: int, wait_time: int, visibility_timeout: int
    ) -> List[QueuedMessage]:
        response = await self._call(
            "receive_message",
            QueueUrl=self.queue_url,
            MaxNumberOfMessages=max_messages,
            WaitTimeSeconds=wait_time,
            VisibilityTimeout=visibility_timeout,
            MessageAttributeNames=["All"],
            MessageSystemAttributeNames=["ApproximateReceiveCount"],
        )
        messages = []
        for entry in response.get("Messages", []):
            if not entry.get("ReceiptHandle"):
                logger.debug("Message missing receipt handle, skipping")
                continue
            messages.append(QueuedMessage.from_sqs(entry))
        return messages

    async def delete_message(self, receipt_handle: str) -> None:
        await self._call(
            "delete_message",
            QueueUrl=self.queue_url,
            ReceiptHandle=receipt_handle,
        )

    async def change_visibility(self, receipt_handle: str, timeout: int) -> None:
        await self._call(
            "change_message_visibility",
            QueueUrl=self.queue_url,
            ReceiptHandle=receipt_handle,
            VisibilityTimeout=timeout,
        )
