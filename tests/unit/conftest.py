"""
Pytest configuration and shared fakes for the unit test suite.

The fakes stand in for the two external collaborators of the relay:
- FakeQueue: scripted receive batches, recorded deletes/extensions
- FakeSession: scripted HTTP statuses or exceptions, recorded requests
"""
import asyncio
from typing import Any, Dict, List, Optional

import pytest

from sqs_relay.relay.config import RelayConfig
from sqs_relay.relay.context import RelayContext
from sqs_relay.relay.models import QueuedMessage, QueueTransportError
from sqs_relay.relay.queue_client import QueueClient


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: Slow tests that should not run by default (deselect with '-m \"not slow\"')"
    )


class FakeQueue(QueueClient):
    """In-memory queue collaborator."""

    def __init__(self, batches: Optional[List[Any]] = None):
        # Each entry is a list of messages or an exception to raise
        self.batches = list(batches or [])
        self.receive_calls: List[Dict[str, int]] = []
        self.deleted: List[str] = []
        self.extended: List[tuple] = []
        self.delete_error: Optional[Exception] = None
        self.extend_error: Optional[Exception] = None
        # Seconds each receive takes, standing in for a long poll
        self.receive_delay = 0.0
        self.connected = False
        self.closed = False

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.closed = True

    async def receive_messages(self, max_messages, wait_time, visibility_timeout):
        self.receive_calls.append(
            {
                "max_messages": max_messages,
                "wait_time": wait_time,
                "visibility_timeout": visibility_timeout,
            }
        )
        # Yield so an empty script does not spin the loop
        await asyncio.sleep(self.receive_delay)
        if not self.batches:
            return []
        batch = self.batches.pop(0)
        if isinstance(batch, Exception):
            raise batch
        return batch

    async def delete_message(self, receipt_handle: str) -> None:
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append(receipt_handle)

    async def change_visibility(self, receipt_handle: str, timeout: int) -> None:
        if self.extend_error is not None:
            raise self.extend_error
        self.extended.append((receipt_handle, timeout))


class FakeResponse:
    def __init__(self, status: int, body: str = ""):
        self.status = status
        self._body = body

    async def text(self) -> str:
        return self._body


class _RequestContext:
    def __init__(self, session: "FakeSession", item: Any):
        self._session = session
        self._item = item

    async def __aenter__(self):
        if self._session.gate is not None:
            self._session.entered.set()
            await self._session.gate.wait()
        if isinstance(self._item, BaseException):
            raise self._item
        return FakeResponse(self._item)

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Stands in for aiohttp.ClientSession.request."""

    def __init__(self, script: Optional[List[Any]] = None, default: Any = 200):
        # Each entry is a status code or an exception to raise
        self.script = list(script or [])
        self.default = default
        self.requests: List[Dict[str, Any]] = []
        self.closed = False
        self.gate: Optional[asyncio.Event] = None
        self.entered = asyncio.Event()

    def request(self, **kwargs):
        self.requests.append(kwargs)
        item = self.script.pop(0) if self.script else self.default
        return _RequestContext(self, item)

    async def close(self) -> None:
        self.closed = True


def build_config(**overrides) -> RelayConfig:
    values = dict(
        queue_url="https://sqs.us-east-1.amazonaws.com/123456789012/hooks",
        target_url="http://127.0.0.1:3000/webhook",
        wait_time_seconds=0,
        backoff_base=0.01,
        backoff_max=0.05,
        poll_error_delay=0.01,
        poll_error_max_delay=0.02,
        drain_timeout=1.0,
    )
    values.update(overrides)
    return RelayConfig(**values)


@pytest.fixture
def make_config():
    """Factory for a valid RelayConfig with fast timings."""
    return build_config


@pytest.fixture
def make_message():
    """Factory for QueuedMessages."""
    counter = {"n": 0}

    def _make(
        body: str = '{"action": "opened", "id": "evt-1"}',
        attributes: Optional[Dict[str, str]] = None,
        message_id: Optional[str] = None,
        receipt_handle: Optional[str] = None,
        receive_count: int = 1,
    ) -> QueuedMessage:
        counter["n"] += 1
        n = counter["n"]
        return QueuedMessage(
            message_id=message_id or f"msg-{n}",
            receipt_handle=receipt_handle or f"receipt-{n}",
            body=body,
            attributes=dict(attributes or {}),
            approx_receive_count=receive_count,
        )

    return _make


@pytest.fixture
def fake_queue():
    return FakeQueue()


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def make_context(fake_queue, fake_session):
    """Factory for a RelayContext wired to the fakes."""

    def _make(config: Optional[RelayConfig] = None, queue=None, session=None) -> RelayContext:
        return RelayContext(
            config=config or build_config(),
            queue=queue if queue is not None else fake_queue,
            session=session if session is not None else fake_session,
        )

    return _make


@pytest.fixture
def transport_error():
    """Factory for QueueTransportErrors."""

    def _make(operation: str = "receive_message", reason: str = "boom"):
        return QueueTransportError(operation, reason, code="InternalError")

    return _make


@pytest.fixture
def make_session():
    """Factory for FakeSessions with a scripted list of statuses/exceptions."""
    return FakeSession
