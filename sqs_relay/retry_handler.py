"""
Backoff policy for forward retries and queue poll errors.

Configuration values are clamped to fixed limits so a bad config cannot
produce unbounded retries or waits that outlive the visibility window.
"""
import logging
import random
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Limits applied to configured values
MAX_ATTEMPTS_LIMIT = 20
MAX_DELAY_LIMIT = 300.0
MAX_BACKOFF_MULTIPLIER = 10.0
MIN_ATTEMPTS = 1
MIN_DELAY = 0.0
MIN_BACKOFF_MULTIPLIER = 1.0


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with a ceiling.

    ``delay(attempt)`` returns the wait after the given 1-based attempt:
    ``base * multiplier ** (attempt - 1)`` capped at ``max_delay``.
    """

    base: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    max_attempts: int = 3

    @classmethod
    def create(
        cls,
        base: float = 1.0,
        max_delay: float = 30.0,
        multiplier: float = 2.0,
        max_attempts: int = 3,
    ) -> "BackoffPolicy":
        """Build a policy, clamping every value into its allowed range."""
        if not isinstance(max_attempts, int) or isinstance(max_attempts, bool):
            logger.warning(f"Invalid max_attempts type: {type(max_attempts)}, defaulting to 3")
            max_attempts = 3
        if max_attempts < MIN_ATTEMPTS:
            logger.warning(f"max_attempts {max_attempts} is below minimum {MIN_ATTEMPTS}, setting to {MIN_ATTEMPTS}")
            max_attempts = MIN_ATTEMPTS
        if max_attempts > MAX_ATTEMPTS_LIMIT:
            logger.warning(f"max_attempts {max_attempts} exceeds limit {MAX_ATTEMPTS_LIMIT}, capping to {MAX_ATTEMPTS_LIMIT}")
            max_attempts = MAX_ATTEMPTS_LIMIT

        base = _clamp_delay("base", base, 1.0)
        max_delay = _clamp_delay("max_delay", max_delay, 30.0)
        if max_delay < base:
            logger.warning(f"max_delay {max_delay} is less than base {base}, setting max_delay to {base}")
            max_delay = base

        if not isinstance(multiplier, (int, float)) or isinstance(multiplier, bool):
            logger.warning(f"Invalid multiplier type: {type(multiplier)}, defaulting to 2.0")
            multiplier = 2.0
        if multiplier < MIN_BACKOFF_MULTIPLIER:
            logger.warning(f"multiplier {multiplier} is below minimum {MIN_BACKOFF_MULTIPLIER}, setting to {MIN_BACKOFF_MULTIPLIER}")
            multiplier = MIN_BACKOFF_MULTIPLIER
        if multiplier > MAX_BACKOFF_MULTIPLIER:
            logger.warning(f"multiplier {multiplier} exceeds limit {MAX_BACKOFF_MULTIPLIER}, capping to {MAX_BACKOFF_MULTIPLIER}")
            multiplier = MAX_BACKOFF_MULTIPLIER

        return cls(
            base=float(base),
            max_delay=float(max_delay),
            multiplier=float(multiplier),
            max_attempts=max_attempts,
        )

    def delay(self, attempt: int) -> float:
        """
        Calculate the wait after a failed attempt.

        Args:
            attempt: The attempt that just failed (1-based)

        Returns:
            Delay in seconds (capped at max_delay, never negative or infinite)
        """
        exponent = max(attempt, 1) - 1
        try:
            value = self.base * (self.multiplier ** exponent)
        except OverflowError:
            return self.max_delay

        # value != value catches NaN
        if value != value or value == float("inf") or value < 0:
            return self.max_delay
        return min(value, self.max_delay)

    def jittered(self, attempt: int, ratio: float = 0.3) -> float:
        """Delay with up to ``ratio`` extra random jitter."""
        delay = self.delay(attempt)
        return delay + random.uniform(0, delay * ratio)


def _clamp_delay(name: str, value, default: float) -> float:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        logger.warning(f"Invalid {name} type: {type(value)}, defaulting to {default}")
        return default
    if value < MIN_DELAY:
        logger.warning(f"{name} {value} is below minimum {MIN_DELAY}, setting to {MIN_DELAY}")
        return MIN_DELAY
    if value > MAX_DELAY_LIMIT:
        logger.warning(f"{name} {value} exceeds limit {MAX_DELAY_LIMIT}, capping to {MAX_DELAY_LIMIT}")
        return MAX_DELAY_LIMIT
    return float(value)
