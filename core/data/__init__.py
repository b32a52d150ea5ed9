"""
Market Data Module
Handles fetching, caching and streaming market quotes.
"""

from .cache_store import MarketCache
from .kv_store import FileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from .market_client import MarketDataClient, MarketDataError, RateLimitExceededError
from .models import ConnectionStatus, DataSource, FetchResult, PriceTick, Quote
from .price_stream import PriceStreamClient
from .rate_limit import RateLimitState, RateLimitTracker

__all__ = [
    "ConnectionStatus",
    "DataSource",
    "FetchResult",
    "FileKeyValueStore",
    "KeyValueStore",
    "MarketCache",
    "MarketDataClient",
    "MarketDataError",
    "MemoryKeyValueStore",
    "PriceStreamClient",
    "PriceTick",
    "Quote",
    "RateLimitExceededError",
    "RateLimitState",
    "RateLimitTracker",
]
