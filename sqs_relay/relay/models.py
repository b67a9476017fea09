"""
Data models for the SQS relay.

This module defines the core data structures used throughout the relay:
- QueuedMessage: A message received from the queue
- ForwardRequest: The HTTP request reconstructed from a queued message
- ForwardOutcome: The result of a single forward attempt
- ForwardResult: The full attempt sequence for one message
- Relay errors
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional, List


class BodyEncoding(Enum):
    """How the queued body maps back to the original request bytes."""
    RAW = "raw"
    BASE64 = "base64"


class AttemptResult(Enum):
    """Classification of a forward attempt."""
    SUCCESS = "success"        # 2xx received, stop
    RETRY = "retry"            # Failed, budget remains
    EXHAUSTED = "exhausted"    # Failed, budget spent
    ABORTED = "aborted"        # Retry wait interrupted by shutdown


class Disposition(Enum):
    """What happened to a message in the queue after processing."""
    DELETED = "deleted"
    DELETE_FAILED = "delete_failed"
    LEFT_FOR_REDRIVE = "left_for_redrive"


class RelayState(Enum):
    """Lifecycle state of the relay process."""
    STARTING = "starting"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class RelayError(Exception):
    """Base class for relay errors."""


class ConfigError(RelayError):
    """Invalid relay configuration."""


class RelayStartupError(RelayError):
    """Queue or HTTP clients could not be constructed."""


class DecodeError(RelayError):
    """Queued body could not be turned back into the original bytes."""

    def __init__(self, message_id: str, reason: str):
        super().__init__(f"Cannot decode message {message_id}: {reason}")
        self.message_id = message_id
        self.reason = reason


class ForwardTransientError(RelayError):
    """A single forward attempt failed and may be retried."""


class ForwardExhaustedError(RelayError):
    """Every forward attempt in the budget failed."""

    def __init__(self, message_id: str, attempts: int, last_error: Optional[str]):
        super().__init__(
            f"Giving up on message {message_id} after {attempts} attempt(s): {last_error}"
        )
        self.message_id = message_id
        self.attempts = attempts
        self.last_error = last_error


class QueueTransportError(RelayError):
    """A call against the queue failed (network, auth, expired handle)."""

    def __init__(self, operation: str, reason: str, code: Optional[str] = None):
        super().__init__(f"SQS {operation} failed: {reason}")
        self.operation = operation
        self.reason = reason
        self.code = code


class VisibilityExtendError(RelayError):
    """The visibility timeout of a delivery could not be extended."""


@dataclass
class QueuedMessage:
    """A single delivery of a message from the queue."""

    message_id: str
    receipt_handle: str
    body: str
    attributes: Dict[str, str] = field(default_factory=dict)
    approx_receive_count: int = 1

    @classmethod
    def from_sqs(cls, entry: Dict[str, Any]) -> "QueuedMessage":
        """Build from one element of a boto3 ``receive_message`` response."""
        attributes = {}
        for name, value in (entry.get("MessageAttributes") or {}).items():
            if not isinstance(value, dict):
                continue
            # Binary attributes carry no header value
            string_value = value.get("StringValue")
            if isinstance(string_value, str):
                attributes[name] = string_value

        system_attrs = entry.get("Attributes") or {}
        try:
            receive_count = int(system_attrs.get("ApproximateReceiveCount", 1))
        except (TypeError, ValueError):
            receive_count = 1

        return cls(
            message_id=entry.get("MessageId") or "unknown",
            receipt_handle=entry.get("ReceiptHandle") or "",
            body=entry.get("Body") or "",
            attributes=attributes,
            approx_receive_count=receive_count,
        )

    def get_attribute(self, name: str) -> Optional[str]:
        """Look up an attribute by name, ignoring case."""
        if name in self.attributes:
            return self.attributes[name]
        lowered = name.lower()
        for key, value in self.attributes.items():
            if key.lower() == lowered:
                return value
        return None


@dataclass(frozen=True)
class ForwardRequest:
    """HTTP request reconstructed from a queued message."""

    target_url: str
    headers: Dict[str, str]
    body: bytes
    encoding: BodyEncoding = BodyEncoding.RAW
    method: str = "POST"
    source_ip: Optional[str] = None


@dataclass(frozen=True)
class ForwardOutcome:
    """Result of one forward attempt."""

    attempt: int
    status_code: Optional[int] = None
    succeeded: bool = False
    error: Optional[str] = None
    duration_ms: float = 0.0


@dataclass
class ForwardResult:
    """Ordered attempt history for one message plus how it ended."""

    result: AttemptResult
    outcomes: List[ForwardOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.result == AttemptResult.SUCCESS

    @property
    def attempts(self) -> int:
        return len(self.outcomes)

    @property
    def last(self) -> Optional[ForwardOutcome]:
        return self.outcomes[-1] if self.outcomes else None

    def to_error(self, message_id: str) -> ForwardExhaustedError:
        """Describe a failed sequence as an exhausted-retries error."""
        last = self.last
        if last is None:
            reason = "no attempt made"
        elif last.status_code is not None:
            reason = f"HTTP {last.status_code}"
        else:
            reason = last.error
        return ForwardExhaustedError(message_id, self.attempts, reason)
