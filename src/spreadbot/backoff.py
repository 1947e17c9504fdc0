"""
Backoff Policy
==============

Exponential delay for retryable fetch failures: base, base*2, base*4, ...
capped at max_delay. A server-supplied Retry-After raises the delay, still
within the cap. Success resets the sequence.
"""

from typing import Optional

# Keeps the power finite; the cap is reached long before this
MAX_EXPONENT = 64


class ExponentialBackoff:
    """
    Args:
        base_delay: First delay in seconds
        max_delay: Upper bound for any delay
        multiplier: Growth factor per consecutive failure (default: 2)
    """

    def __init__(self, base_delay: float, max_delay: float, multiplier: float = 2.0) -> None:
        if base_delay <= 0 or max_delay <= 0:
            raise ValueError("backoff delays must be positive")
        self.base_delay = base_delay
        self.max_delay = max(max_delay, base_delay)
        self.multiplier = multiplier
        self.attempts = 0

    def next_delay(self, retry_after: Optional[float] = None) -> float:
        """Delay before the next retry; counts one more consecutive failure."""
        delay = self.base_delay * (self.multiplier ** min(self.attempts, MAX_EXPONENT))
        self.attempts += 1
        if retry_after is not None:
            delay = max(delay, retry_after)
        return min(delay, self.max_delay)

    def reset(self) -> None:
        self.attempts = 0
