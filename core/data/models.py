"""
Market Data Models
Quote records, stream ticks and status values shared across the sync pipeline.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ConnectionStatus(str, Enum):
    """Price stream connection status."""
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class DataSource(str, Enum):
    """Where a fetched quote list came from."""
    LIVE = "live"
    CACHE = "cache"
    STALE_CACHE = "stale_cache"
    FALLBACK = "fallback"


def _to_float(value: Any, default: Optional[float] = 0.0) -> Optional[float]:
    try:
        if value is None or value == "":
            return default
        return float(value)
    except (TypeError, ValueError):
        return default


def _to_timestamp(value: Any) -> Optional[float]:
    """Epoch seconds from a number or an ISO-8601 string."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None


@dataclass
class Quote:
    """Latest price and metadata for one cryptocurrency."""
    id: str
    symbol: str
    name: str
    current_price: float
    price_change_percentage_24h: float
    image: str = ""
    last_updated: Optional[float] = None  # Unix seconds
    market_cap: Optional[float] = None
    total_volume: Optional[float] = None
    high_24h: Optional[float] = None
    low_24h: Optional[float] = None
    price_change_24h: Optional[float] = None

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "Quote":
        """
        Build a quote from a /coins/markets row (or a cached row).

        Args:
            payload: Raw row dict

        Returns:
            Parsed Quote

        Raises:
            ValueError: If the row has no id, symbol or name
        """
        if not isinstance(payload, dict):
            raise ValueError(f"quote row must be an object, got {type(payload).__name__}")

        missing = [key for key in ("id", "symbol", "name") if not payload.get(key)]
        if missing:
            raise ValueError(f"quote row missing {', '.join(missing)}")

        return cls(
            id=str(payload["id"]),
            symbol=str(payload["symbol"]),
            name=str(payload["name"]),
            current_price=_to_float(payload.get("current_price")),
            price_change_percentage_24h=_to_float(payload.get("price_change_percentage_24h")),
            image=str(payload.get("image") or ""),
            last_updated=_to_timestamp(payload.get("last_updated")),
            market_cap=_to_float(payload.get("market_cap"), default=None),
            total_volume=_to_float(payload.get("total_volume"), default=None),
            high_24h=_to_float(payload.get("high_24h"), default=None),
            low_24h=_to_float(payload.get("low_24h"), default=None),
            price_change_24h=_to_float(payload.get("price_change_24h"), default=None),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON persistence."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def merge(self, other: "Quote") -> "Quote":
        """
        Overwrite this quote's fields with the ones `other` carries.

        Fields that are None on `other` keep their current value.

        Args:
            other: Newer quote for the same id

        Returns:
            self
        """
        for f in fields(self):
            value = getattr(other, f.name)
            if value is not None:
                setattr(self, f.name, value)
        return self

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match on name or symbol."""
        needle = query.lower()
        return needle in self.name.lower() or needle in self.symbol.lower()


@dataclass(frozen=True)
class PriceTick:
    """A ticker update from the price stream, keyed by quote id."""
    id: str
    price: float
    price_change_percentage_24h: float


@dataclass
class FetchResult:
    """Quotes returned by the fetcher together with their origin."""
    quotes: List[Quote] = field(default_factory=list)
    source: DataSource = DataSource.LIVE
