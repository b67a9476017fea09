"""SQS webhook relay."""

from sqs_relay.__version__ import __version__

__all__ = ["__version__"]
