"""
Rate-Limit Tracker
Persisted request counter that throttles outbound market data fetches.
State survives process restarts because it lives in the key-value store.
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from loguru import logger

from .kv_store import KeyValueStore

RATE_LIMIT_CACHE_KEY = "@crypto_rate_limit"
RATE_LIMIT_WINDOW_SECONDS = 5 * 60
MAX_REQUESTS_PER_WINDOW = 5


@dataclass
class RateLimitState:
    """Request window persisted as {"timestamp", "count", "isLimited"}."""
    window_start: float
    request_count: int = 0
    limited: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.window_start,
            "count": self.request_count,
            "isLimited": self.limited,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RateLimitState":
        timestamp = data.get("timestamp", data.get("windowStart"))
        count = data.get("count", 0)
        if not isinstance(timestamp, (int, float)) or not isinstance(count, int):
            raise ValueError(f"invalid rate limit state: {data!r}")
        return cls(
            window_start=float(timestamp),
            request_count=count,
            limited=bool(data.get("isLimited", False)),
        )


class RateLimitTracker:
    """
    Tracks API calls per window and the "rate limited" flag.

    Corrupt or missing state is treated as a fresh window. Storage failures
    are logged, never raised.
    """

    def __init__(
        self,
        store: KeyValueStore,
        key: str = RATE_LIMIT_CACHE_KEY,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        max_requests: int = MAX_REQUESTS_PER_WINDOW,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize rate-limit tracker.

        Args:
            store: Persisted key-value store
            key: Storage key for the state
            window_seconds: Length of the tracking/limited window
            max_requests: Requests allowed per window
            clock: Time source (Unix seconds)
        """
        self.store = store
        self.key = key
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock

    def _window_elapsed(self, state: RateLimitState) -> bool:
        return self._clock() - state.window_start >= self.window_seconds

    async def is_limited(self) -> bool:
        """
        Check whether outbound calls should be held back.

        Returns:
            True while the limited window is running, or when the request
            count in the current window has reached the threshold
        """
        try:
            state = await self._load()
            if state is None:
                return False

            if state.limited:
                if self._window_elapsed(state):
                    logger.info("Rate limit window elapsed, resetting")
                    await self.reset()
                    return False
                return True

            if not self._window_elapsed(state) and state.request_count >= self.max_requests:
                logger.warning(
                    f"{state.request_count} requests in the current window, marking rate limited"
                )
                await self.mark_limited()
                return True

            return False

        except Exception as e:
            logger.error(f"Error checking rate limit: {e}")
            return False

    async def track_call(self) -> None:
        """Count one outbound call, starting a fresh window if the last one expired."""
        try:
            state = await self._load()
            if state is None or self._window_elapsed(state):
                state = RateLimitState(window_start=self._clock(), request_count=1)
            else:
                state.request_count += 1
            await self._save(state)
        except Exception as e:
            logger.error(f"Error tracking API call: {e}")

    async def mark_limited(self) -> None:
        """Force the limited state for a full window starting now."""
        try:
            await self._save(RateLimitState(
                window_start=self._clock(),
                request_count=self.max_requests,
                limited=True,
            ))
        except Exception as e:
            logger.error(f"Error marking rate limited: {e}")

    async def reset(self) -> None:
        """Clear to a fresh, unlimited window."""
        try:
            await self._save(RateLimitState(window_start=self._clock()))
        except Exception as e:
            logger.error(f"Error resetting rate limit: {e}")

    async def state(self) -> RateLimitState:
        """Current persisted state (a fresh window if none/corrupt)."""
        try:
            state = await self._load()
        except Exception as e:
            logger.error(f"Error reading rate limit state: {e}")
            state = None
        return state or RateLimitState(window_start=self._clock())

    async def _load(self) -> Optional[RateLimitState]:
        raw = await self.store.get_item(self.key)
        if not raw:
            return None
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("rate limit state must be an object")
            return RateLimitState.from_dict(data)
        except ValueError as e:
            logger.warning(f"Discarding corrupt rate limit state: {e}")
            return None

    async def _save(self, state: RateLimitState) -> None:
        await self.store.set_item(self.key, json.dumps(state.to_dict()))
