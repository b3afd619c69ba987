"""
Per-Connection Rate Limiting

Fixed window admission control for inbound messages. Each connection
carries its own counter so one sender cannot consume another's budget.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW = 1000  # milliseconds
RATE_LIMIT_MAX = 5  # messages admitted per window


def monotonic_ms() -> float:
    """Current monotonic time in milliseconds."""
    return time.monotonic() * 1000


@dataclass
class RateLimitState:
    """
    Fixed window counter for one connection.

    Attributes:
        count: Messages seen in the current window
        window_start: Start of the current window in milliseconds
    """

    count: int = 0
    window_start: float = 0.0


class RateLimiter:
    """
    Fixed window rate limiter.

    The state itself lives on the connection; the limiter only holds the
    policy and the clock.
    """

    def __init__(
        self,
        window_ms: int = RATE_LIMIT_WINDOW,
        max_messages: int = RATE_LIMIT_MAX,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize the rate limiter.

        Args:
            window_ms: Window length in milliseconds
            max_messages: Messages admitted per window
            clock: Callable returning the current time in milliseconds
        """
        self.window_ms = window_ms
        self.max_messages = max_messages
        self.clock = clock or monotonic_ms

    def new_state(self) -> RateLimitState:
        """Create a fresh state whose window starts now."""
        return RateLimitState(count=0, window_start=self.clock())

    def admit(self, connection) -> bool:
        """
        Count one inbound message against the connection's window.

        Args:
            connection: Connection whose ``rate_limit`` state is updated

        Returns:
            True if the message is admitted, False if it must be dropped
        """
        now = self.clock()
        state = connection.rate_limit

        if now - state.window_start > self.window_ms:
            state.count = 1
            state.window_start = now
        else:
            state.count += 1

        admitted = state.count <= self.max_messages
        if not admitted:
            logger.debug(
                f"Rate limit exceeded for connection "
                f"{connection.connection_id} ({state.count} in window)"
            )
        return admitted
