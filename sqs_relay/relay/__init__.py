"""
Relay for webhooks buffered in Amazon SQS.

The relay runs on the local network and drains the queue written by the
public webhook endpoint, replaying each webhook against a local URL.

Usage:
    # As a module
    python -m sqs_relay.relay.main --config relay.json

    # Programmatically
    from sqs_relay.relay import RelayConfig, WebhookRelay

    config = RelayConfig.load("relay.json")
    relay = WebhookRelay(config)
    await relay.run()
"""

# Only import config and models (no client library imports)
from sqs_relay.relay.config import RelayConfig
from sqs_relay.relay.models import (
    AttemptResult,
    BodyEncoding,
    DecodeError,
    Disposition,
    ForwardExhaustedError,
    ForwardOutcome,
    ForwardRequest,
    ForwardResult,
    ForwardTransientError,
    QueuedMessage,
    QueueTransportError,
    RelayState,
    VisibilityExtendError,
)


# Lazy imports for components that require aiohttp or boto3
def __getattr__(name):
    """Lazy import for components that require aiohttp or boto3."""
    if name in ("QueueClient", "SQSQueueClient"):
        from sqs_relay.relay.queue_client import QueueClient, SQSQueueClient

        return {"QueueClient": QueueClient, "SQSQueueClient": SQSQueueClient}[name]
    elif name == "MessageDecoder":
        from sqs_relay.relay.decoder import MessageDecoder

        return MessageDecoder
    elif name == "ForwardingClient":
        from sqs_relay.relay.forwarder import ForwardingClient

        return ForwardingClient
    elif name == "MessageProcessor":
        from sqs_relay.relay.processor import MessageProcessor

        return MessageProcessor
    elif name == "WebhookRelay":
        from sqs_relay.relay.main import WebhookRelay

        return WebhookRelay
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "RelayConfig",
    "AttemptResult",
    "BodyEncoding",
    "DecodeError",
    "Disposition",
    "ForwardExhaustedError",
    "ForwardOutcome",
    "ForwardRequest",
    "ForwardResult",
    "ForwardTransientError",
    "QueuedMessage",
    "QueueTransportError",
    "RelayState",
    "VisibilityExtendError",
    "QueueClient",
    "SQSQueueClient",
    "MessageDecoder",
    "ForwardingClient",
    "MessageProcessor",
    "WebhookRelay",
]
