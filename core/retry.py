"""
Retry Policy
Bounded exponential backoff shared by the REST fetcher, the price stream
reconnect loop and the orchestrator's resync scheduling.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff schedule.

    Attributes:
        max_attempts: Number of retries before the policy is exhausted
        base_delay: Delay in seconds for attempt 0
        multiplier: Growth factor per attempt
        max_delay: Upper bound for a single delay (None = unbounded)
        cooldown: Fixed delay used once attempts are exhausted (None = give up)
    """
    max_attempts: int
    base_delay: float
    multiplier: float = 2.0
    max_delay: Optional[float] = None
    cooldown: Optional[float] = None

    def delay_for(self, attempt: int) -> float:
        """
        Get backoff delay for an attempt.

        Args:
            attempt: Attempt index (0-based for the first retry)

        Returns:
            Delay in seconds
        """
        delay = self.base_delay * (self.multiplier ** max(attempt, 0))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    def exhausted(self, attempt: int) -> bool:
        """Whether `attempt` retries have used up the policy."""
        return attempt >= self.max_attempts


# REST fetch: 2 retries at 5s, 10s
FETCH_RETRY_POLICY = RetryPolicy(max_attempts=2, base_delay=5.0)

# Stream reconnect: attempts 1..3 wait 2s, 4s, 8s; then 30s and start over
STREAM_RECONNECT_POLICY = RetryPolicy(
    max_attempts=3,
    base_delay=1.0,
    max_delay=30.0,
    cooldown=30.0,
)

# Orchestrator resync after the stream drops: 5s, 10s, 20s, 30s, 30s...
RESYNC_POLICY = RetryPolicy(max_attempts=0, base_delay=5.0, max_delay=30.0)
