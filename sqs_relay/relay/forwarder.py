"""
Forwarding Client for the SQS relay.

Replays a reconstructed webhook against the local target:
- One POST per attempt with a per-attempt timeout
- Explicit per-attempt classification (success / retry / exhausted)
- Exponential backoff between attempts, interrupted by shutdown

This component never touches the queue; callers hook visibility
extension in through ``before_retry`` and ``after_wait``.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

import aiohttp

from sqs_relay.relay.context import RelayContext
from sqs_relay.relay.models import (
    AttemptResult,
    ForwardOutcome,
    ForwardRequest,
    ForwardResult,
    ForwardTransientError,
)
from sqs_relay.utils import preview_str

logger = logging.getLogger(__name__)

# Called with the failed outcome and the upcoming wait before each retry
BeforeRetryHook = Callable[[ForwardOutcome, float], Awaitable[None]]
# Called once a retry wait has elapsed, before the next attempt
AfterWaitHook = Callable[[], Awaitable[None]]


class ForwardingClient:
    """Delivers ForwardRequests to the local HTTP target with retries."""

    def __init__(self, context: RelayContext):
        self.context = context
        self.policy = context.config.backoff_policy
        self._timeout = aiohttp.ClientTimeout(total=context.config.request_timeout)

    @property
    def max_attempts(self) -> int:
        return self.policy.max_attempts

    def classify(self, outcome: ForwardOutcome) -> AttemptResult:
        """Decide what an attempt means for the sequence."""
        if outcome.succeeded:
            return AttemptResult.SUCCESS
        if outcome.attempt < self.max_attempts:
            return AttemptResult.RETRY
        return AttemptResult.EXHAUSTED

    async def attempt(self, request: ForwardRequest, attempt: int) -> ForwardOutcome:
        """
        Make a single delivery attempt.

        Transport failures are returned as a failed outcome, not raised.
        """
        start = time.monotonic()
        try:
            status = await self._send(request)
        except ForwardTransientError as e:
            return ForwardOutcome(
                attempt=attempt,
                error=str(e),
                duration_ms=(time.monotonic() - start) * 1000,
            )

        return ForwardOutcome(
            attempt=attempt,
            status_code=status,
            succeeded=200 <= status < 300,
            error=None if 200 <= status < 300 else f"HTTP {status}",
            duration_ms=(time.monotonic() - start) * 1000,
        )

    async def _send(self, request: ForwardRequest) -> int:
        """
        POST the request and return the response status.

        Raises:
            ForwardTransientError: On timeout, connection failure or an
                unsendable request
        """
        session = self.context.session
        if session is None or session.closed:
            raise ForwardTransientError("HTTP session is not open")

        # Keep absent headers absent instead of letting aiohttp fill them in
        present = {name.lower() for name in request.headers}
        skip_auto_headers = [
            name for name in ("User-Agent", "Content-Type") if name.lower() not in present
        ]

        try:
            async with session.request(
                method=request.method,
                url=request.target_url,
                headers=request.headers,
                data=request.body,
                timeout=self._timeout,
                ssl=self.context.config.verify_ssl,
                skip_auto_headers=skip_auto_headers,
            ) as response:
                if logger.isEnabledFor(logging.DEBUG):
                    try:
                        text = await response.text()
                        if text:
                            logger.debug(f"Response body: {preview_str(text, 200)}")
                    except (aiohttp.ClientError, UnicodeDecodeError) as e:
                        logger.debug(f"Could not read response body: {e}")
                return response.status
        except asyncio.TimeoutError as e:
            raise ForwardTransientError("Request timeout") from e
        except (aiohttp.ClientError, OSError, ValueError) as e:
            # aiohttp raises ValueError for headers or URLs it refuses to serialize
            raise ForwardTransientError(str(e) or type(e).__name__) from e

    async def wait(self, delay: float) -> bool:
        """Backoff wait; False if shutdown interrupted it."""
        return await self.context.sleep(delay)

    async def forward(
        self,
        request: ForwardRequest,
        before_retry: Optional[BeforeRetryHook] = None,
        after_wait: Optional[AfterWaitHook] = None,
        message_id: str = "-",
    ) -> ForwardResult:
        """
        Deliver a request, retrying transient failures.

        Args:
            request: The reconstructed request
            before_retry: Optional hook run before each backoff wait
            after_wait: Optional hook run after each completed backoff wait
            message_id: Used in log lines only

        Returns:
            ForwardResult with one outcome per attempt
        """
        outcomes = []
        attempt = 1

        while True:
            outcome = await self.attempt(request, attempt)
            outcomes.append(outcome)
            result = self.classify(outcome)

            if result == AttemptResult.SUCCESS:
                logger.info(
                    f"Local → Response: {outcome.status_code} "
                    f"(message {message_id}, attempt {attempt})"
                )
                return ForwardResult(result, outcomes)

            if result == AttemptResult.EXHAUSTED:
                logger.error(
                    f"Failed to deliver {message_id}: {outcome.error} "
                    f"(attempts={attempt})"
                )
                return ForwardResult(result, outcomes)

            delay = self.policy.delay(attempt)
            logger.warning(
                f"Attempt {attempt}/{self.max_attempts} failed for {message_id}: "
                f"{outcome.error}. Retrying in {delay:.2f} seconds..."
            )

            if before_retry is not None:
                await before_retry(outcome, delay)

            if not await self.wait(delay):
                logger.info(
                    f"Shutdown during retry wait for {message_id}, "
                    f"leaving it in the queue (attempts={attempt})"
                )
                return ForwardResult(AttemptResult.ABORTED, outcomes)

            if after_wait is not None:
                await after_wait()

            attempt += 1
