"""
Market Cache
Persists the last successful quote snapshot with its timestamp.
Used for expiry checks and for stale fallback when no fresh data is available.
"""

import json
import time
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from .kv_store import KeyValueStore
from .models import Quote

MARKET_DATA_CACHE_KEY = "@crypto_market_data"
CACHE_EXPIRY_SECONDS = 30 * 60


class MarketCache:
    """
    Best-effort snapshot cache.

    Nothing here raises: storage or decode failures are logged and reported
    as a cache miss.
    """

    def __init__(
        self,
        store: KeyValueStore,
        key: str = MARKET_DATA_CACHE_KEY,
        expiry_seconds: float = CACHE_EXPIRY_SECONDS,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize market cache.

        Args:
            store: Persisted key-value store
            key: Storage key for the snapshot
            expiry_seconds: Age after which the snapshot is expired
            clock: Time source (Unix seconds)
        """
        self.store = store
        self.key = key
        self.expiry_seconds = expiry_seconds
        self._clock = clock

    async def save(self, quotes: List[Quote]) -> None:
        """
        Persist quotes as the current snapshot, overwriting the previous one.

        Args:
            quotes: Quotes to cache
        """
        try:
            entry = {
                "timestamp": self._clock(),
                "data": [quote.to_dict() for quote in quotes],
            }
            await self.store.set_item(self.key, json.dumps(entry))
            logger.debug(f"Cached {len(quotes)} quotes")
        except Exception as e:
            logger.error(f"Error saving to cache: {e}")

    async def load(self, ignore_expiry: bool = False) -> Optional[List[Quote]]:
        """
        Load the cached snapshot.

        Args:
            ignore_expiry: Return the snapshot even if it has expired

        Returns:
            Cached quotes, or None on miss, expiry or corrupt entry
        """
        entry = await self._read_entry()
        if entry is None:
            return None

        if not ignore_expiry and self._age(entry) >= self.expiry_seconds:
            return None

        try:
            return [Quote.from_api(row) for row in entry["data"]]
        except (TypeError, ValueError) as e:
            logger.error(f"Error loading from cache: {e}")
            return None

    async def clear(self) -> None:
        """Remove the cached snapshot."""
        try:
            await self.store.remove_item(self.key)
            logger.info("Market cache cleared")
        except Exception as e:
            logger.error(f"Error clearing cache: {e}")

    async def info(self) -> Optional[Dict[str, Any]]:
        """
        Describe the cached snapshot.

        Returns:
            Dict with timestamp, age, count and expired flag, or None if empty
        """
        entry = await self._read_entry()
        if entry is None:
            return None

        age = self._age(entry)
        return {
            "timestamp": entry["timestamp"],
            "age_seconds": age,
            "count": len(entry["data"]),
            "expired": age >= self.expiry_seconds,
        }

    def _age(self, entry: Dict[str, Any]) -> float:
        return self._clock() - entry["timestamp"]

    async def _read_entry(self) -> Optional[Dict[str, Any]]:
        try:
            raw = await self.store.get_item(self.key)
            if not raw:
                return None

            entry = json.loads(raw)
            if (
                not isinstance(entry, dict)
                or not isinstance(entry.get("timestamp"), (int, float))
                or not isinstance(entry.get("data"), list)
            ):
                logger.warning("Ignoring malformed cache entry")
                return None
            return entry

        except Exception as e:
            logger.error(f"Error loading from cache: {e}")
            return None
