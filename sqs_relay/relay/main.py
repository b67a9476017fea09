#!/usr/bin/env python3
"""
SQS Webhook Relay.

This is the main entry point for the relay service. It drains the SQS
queue fed by the public webhook endpoint and replays each webhook against
a local URL.

Usage:
    python -m sqs_relay.relay.main --config relay.json
    python -m sqs_relay.relay.main --queue-url https://sqs.us-east-1.amazonaws.com/123/hooks \\
        --target-url http://127.0.0.1:3000/webhook

Environment variables:
    RELAY_QUEUE_URL: SQS queue URL or name
    RELAY_TARGET_URL: Local target URL
    RELAY_REGION: AWS region
    RELAY_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR
"""

import argparse
import asyncio
import logging
import signal
import sys
import time
from datetime import datetime, timezone
from typing import Dict, Any, Optional

import aiohttp

from sqs_relay.__version__ import __version__
from sqs_relay.relay.config import RelayConfig
from sqs_relay.relay.context import RelayContext
from sqs_relay.relay.models import ConfigError, RelayStartupError, RelayState
from sqs_relay.relay.poller import QueuePoller
from sqs_relay.relay.processor import MessageProcessor
from sqs_relay.relay.queue_client import QueueClient, SQSQueueClient

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_STARTUP_FAILED = 1
EXIT_DRAIN_CUT_OFF = 2
EXIT_INTERRUPTED = 130


class WebhookRelay:
    """
    Relay service.

    Owns the runtime context and moves through
    STARTING -> RUNNING -> DRAINING -> STOPPED.
    """

    def __init__(
        self,
        config: RelayConfig,
        queue: Optional[QueueClient] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize the relay.

        Args:
            config: Relay configuration
            queue: Queue client to use instead of SQS (tests, other backends)
            session: HTTP session to use instead of creating one
        """
        self.config = config
        self.state = RelayState.STARTING
        self.context: Optional[RelayContext] = None
        self.processor: Optional[MessageProcessor] = None
        self.poller: Optional[QueuePoller] = None
        self.drained_cleanly: Optional[bool] = None
        self._queue = queue
        self._session = session
        self._owns_session = session is None
        self._shutdown_requested = False
        self._start_time: Optional[datetime] = None

    async def start(self) -> None:
        """
        Validate config and build clients (STARTING).

        Raises:
            ConfigError: If the configuration is invalid
            RelayStartupError: If the queue or HTTP client cannot be built
        """
        self.state = RelayState.STARTING
        self._start_time = datetime.now(timezone.utc)

        errors = self.config.validate()
        if errors:
            self.state = RelayState.STOPPED
            raise ConfigError("; ".join(errors))

        logger.info("Starting relay...")
        logger.info(f"  Queue: {self.config.queue_url}")
        logger.info(f"  Target: {self.config.target_url}")
        logger.info(f"  Region: {self.config.region}")

        try:
            queue = self._queue if self._queue is not None else SQSQueueClient(self.config)
            await queue.connect()
        except ValueError as e:
            self.state = RelayState.STOPPED
            raise RelayStartupError(str(e)) from e
        except RelayStartupError:
            self.state = RelayState.STOPPED
            raise

        if self._session is None:
            self._session = aiohttp.ClientSession()

        self.context = RelayContext(
            config=self.config, queue=queue, session=self._session
        )
        if self._shutdown_requested:
            self.context.shutdown.set()
        self.processor = MessageProcessor(self.context)
        self.poller = QueuePoller(self.context, self.processor)

    async def run(self) -> bool:
        """
        Run until shutdown is requested, then drain.

        Returns:
            True if in-flight messages finished before the drain deadline
        """
        if self.context is None:
            await self.start()

        self.state = RelayState.RUNNING
        logger.info("Relay running. Ctrl-C to stop.")

        try:
            await self.poller.run()
        finally:
            clean = await self._drain()
            await self._close()
            self.state = RelayState.STOPPED
            self.drained_cleanly = clean

        logger.info("Relay stopped")
        return clean

    def request_shutdown(self) -> None:
        """Signal the relay to stop polling and drain (safe to call repeatedly)."""
        if self._shutdown_requested:
            return
        self._shutdown_requested = True
        logger.info("Shutdown requested, draining in-flight messages...")
        if self.context is not None:
            self.context.shutdown.set()

    async def _drain(self) -> bool:
        """DRAINING: let dispatched pipelines finish within drain_timeout."""
        self.state = RelayState.DRAINING
        self.context.shutdown.set()

        in_flight = self.context.in_flight
        if in_flight.count:
            logger.info(
                f"Waiting up to {self.config.drain_timeout:.0f}s for "
                f"{in_flight.count} in-flight message(s)"
            )
        started = time.monotonic()
        clean = await in_flight.join(timeout=self.config.drain_timeout)
        if clean:
            logger.info(f"Drain complete in {time.monotonic() - started:.1f}s")
            return True

        abandoned = await in_flight.cancel_all()
        logger.warning(
            f"Drain deadline reached; abandoned {abandoned} message(s), "
            f"they will be redelivered"
        )
        return False

    async def _close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        if self.context is not None:
            await self.context.queue.close()

    def get_status(self) -> Dict[str, Any]:
        """Get relay status."""
        return {
            "state": self.state.value,
            "uptime_seconds": (
                (datetime.now(timezone.utc) - self._start_time).total_seconds()
                if self._start_time
                else 0
            ),
            "in_flight": self.context.in_flight.count if self.context else 0,
            "polls": self.poller.polls if self.poller else 0,
            "poll_failures": self.poller.poll_failures if self.poller else 0,
            "processor_stats": self.processor.get_stats() if self.processor else {},
            "config": self.config.to_dict(),
        }


def setup_logging(level: str = "INFO", format_str: Optional[str] = None) -> None:
    """Configure logging."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    log_format = format_str or "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level, format=log_format, handlers=[logging.StreamHandler(sys.stdout)]
    )

    # Quiet client library logging
    for name in ("aiohttp", "boto3", "botocore", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Relay webhooks from an SQS queue to a local URL",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Using configuration file
    %(prog)s --config relay.json

    # Using command line arguments
    %(prog)s --queue-url https://sqs.us-east-1.amazonaws.com/123456789012/hooks \\
             --target-url http://127.0.0.1:3000/webhook

    # With environment variables
    export RELAY_QUEUE_URL=https://sqs.us-east-1.amazonaws.com/123456789012/hooks
    export RELAY_TARGET_URL=http://127.0.0.1:3000/webhook
    %(prog)s
        """,
    )

    parser.add_argument(
        "--config", "-c", help="Path to configuration file (JSON or YAML)"
    )

    parser.add_argument("--queue-url", help="SQS queue URL or name")

    parser.add_argument("--target-url", help="Local URL to replay webhooks to")

    parser.add_argument("--region", help="AWS region")

    parser.add_argument(
        "--endpoint-url", help="Custom SQS endpoint (e.g. http://localhost:4566)"
    )

    parser.add_argument(
        "--max-concurrent", type=int, help="Maximum messages processed at once"
    )

    parser.add_argument(
        "--max-attempts", type=int, help="Forward attempts per message"
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    parser.add_argument(
        "--no-verify-ssl",
        action="store_true",
        help="Disable SSL certificate verification for the local target",
    )

    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> RelayConfig:
    """Build configuration from file, environment and arguments."""
    config = RelayConfig.load(args.config)

    return config.with_overrides(
        queue_url=args.queue_url,
        target_url=args.target_url,
        region=args.region,
        endpoint_url=args.endpoint_url,
        max_concurrent_messages=args.max_concurrent,
        max_attempts=args.max_attempts,
        log_level=args.log_level,
        verify_ssl=False if args.no_verify_ssl else None,
    )


async def main_async(relay: WebhookRelay) -> bool:
    """Async main function."""
    await relay.start()

    # Setup signal handlers
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        relay.request_shutdown()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        return await relay.run()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


def main() -> int:
    """Main entry point."""
    args = parse_args()

    try:
        config = build_config(args)
    except (OSError, TypeError, ValueError) as e:
        setup_logging()
        logger.error(f"Could not load configuration: {e}")
        return EXIT_STARTUP_FAILED

    # Setup logging
    setup_logging(level=config.log_level, format_str=config.log_format)

    # Validate configuration
    errors = config.validate()
    if errors:
        logger.error("Configuration errors:")
        for error in errors:
            logger.error(f"  - {error}")
        return EXIT_STARTUP_FAILED

    # Log startup banner
    rule = "=" * 60
    banner = "\n".join(
        [
            "",
            rule,
            f"    SQS Webhook Relay {__version__}",
            rule,
            f"  Queue:       {config.queue_url}",
            f"  Target:      {config.target_url}",
            f"  Concurrency: {config.max_concurrent_messages}",
            f"  Attempts:    {config.max_attempts}",
            rule,
        ]
    )
    logger.info(banner)

    relay = WebhookRelay(config)

    try:
        clean = asyncio.run(main_async(relay))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_INTERRUPTED
    except (ConfigError, RelayStartupError) as e:
        logger.error(f"Startup failed: {e}")
        return EXIT_STARTUP_FAILED
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        return EXIT_STARTUP_FAILED

    return EXIT_OK if clean else EXIT_DRAIN_CUT_OFF


if __name__ == "__main__":
    sys.exit(main())
