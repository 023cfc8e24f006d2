"""
Connection Management Utilities

Reconnection pacing for the display-side change channels:
- Exponential backoff between reconnection attempts
- Attempt cap after which reconnection needs a manual reset
"""

import logging

from common.constants import (
    MAX_RECONNECT_ATTEMPTS, RECONNECT_INITIAL_DELAY_S, RECONNECT_MAX_DELAY_S
)

logger = logging.getLogger(__name__)


class ExponentialBackoff:
    """
    Exponential backoff delay calculator.

    Implements exponential backoff with configurable parameters:
    - initial: Starting delay (default 1.0s)
    - multiplier: Delay multiplier on each failure (default 2.0)
    - max_delay: Maximum delay cap (default 16.0s)

    Example delays: 1s, 2s, 4s, 8s, 16s (capped)
    """

    def __init__(self, initial: float = RECONNECT_INITIAL_DELAY_S, multiplier: float = 2.0,
                 max_delay: float = RECONNECT_MAX_DELAY_S):
        """
        Initialize exponential backoff.

        Args:
            initial: Initial delay in seconds
            multiplier: Delay multiplier on each failure
            max_delay: Maximum delay cap in seconds
        """
        self.initial = initial
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.current_delay = initial

    def next_delay(self) -> float:
        """
        Get next backoff delay and advance state.

        Returns:
            Delay in seconds to wait before next attempt
        """
        delay = self.current_delay
        self.current_delay = min(self.current_delay * self.multiplier, self.max_delay)
        return delay

    def reset(self):
        """Reset backoff to initial delay (call on successful connection)."""
        self.current_delay = self.initial


class ReconnectPolicy:
    """
    Bounded reconnection policy.

    Counts consecutive failures and hands out backoff delays until the
    attempt cap is reached. Once exhausted, no further automatic attempt
    is allowed until reset() is called.
    """

    def __init__(self, max_attempts: int = MAX_RECONNECT_ATTEMPTS,
                 backoff: ExponentialBackoff = None):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.backoff = backoff or ExponentialBackoff()
        self.attempts = 0

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def record_failure(self):
        """
        Record a transport failure.

        Returns:
            Delay before the next automatic attempt, or None once the cap is reached
        """
        self.attempts += 1
        if self.exhausted:
            logger.warning(f"Reconnect attempts exhausted ({self.attempts}/{self.max_attempts})")
            return None
        return self.backoff.next_delay()

    def reset(self):
        """Reset attempt counter and backoff (on success or manual reconnect)."""
        self.attempts = 0
        self.backoff.reset()
