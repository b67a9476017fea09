import os

import pytest


def pytest_configure(config):
    """Set up test environment variables before any tests run."""
    # boto3 must never reach real AWS from the test suite
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
    os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture(autouse=True)
def clear_relay_env(monkeypatch):
    """Remove relay environment variables so tests see only what they set."""
    for name in list(os.environ):
        if name.startswith("RELAY_") or name in ("QUEUE_URL", "LOCAL_URL", "AWS_REGION"):
            monkeypatch.delenv(name, raising=False)
    yield
