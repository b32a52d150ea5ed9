"""
Component wiring: builds the store, cache, rate-limit tracker, fetcher,
stream client and orchestrator from a MarketSyncConfig.
"""

from typing import Optional

from core.config import MarketSyncConfig
from core.data.cache_store import MarketCache
from core.data.kv_store import FileKeyValueStore, KeyValueStore
from core.data.market_client import MarketDataClient
from core.data.price_stream import PriceStreamClient
from core.data.rate_limit import RateLimitTracker
from core.market_sync import MarketSync


def create_store(cfg: Optional[MarketSyncConfig] = None) -> KeyValueStore:
    cfg = cfg or MarketSyncConfig()
    return FileKeyValueStore(cfg.data_dir)


def create_market_client(
    cfg: Optional[MarketSyncConfig] = None,
    store: Optional[KeyValueStore] = None
) -> MarketDataClient:
    """
    Build a MarketDataClient backed by the persisted store.

    Args:
        cfg: Configuration (global instance if None)
        store: Key-value store (file store under cfg.data_dir if None)

    Returns:
        Configured MarketDataClient
    """
    cfg = cfg or MarketSyncConfig()
    store = store or create_store(cfg)

    cache = MarketCache(store, expiry_seconds=cfg.cache_expiry)
    rate_limiter = RateLimitTracker(
        store,
        window_seconds=cfg.rate_limit_window,
        max_requests=cfg.rate_limit_max_requests,
    )
    return MarketDataClient(
        cache,
        rate_limiter,
        base_url=cfg.api_base_url,
        params=cfg.api_params,
        timeout=cfg.api_timeout,
    )


def create_market_sync(
    cfg: Optional[MarketSyncConfig] = None,
    store: Optional[KeyValueStore] = None
) -> MarketSync:
    """
    Build a MarketSync with a live REST fetcher and price stream.

    Args:
        cfg: Configuration (global instance if None)
        store: Key-value store (file store under cfg.data_dir if None)

    Returns:
        MarketSync that owns (and closes) its fetcher
    """
    cfg = cfg or MarketSyncConfig()
    fetcher = create_market_client(cfg, store)
    symbol_map = cfg.symbol_map

    def stream_factory(on_message, on_status_change) -> PriceStreamClient:
        return PriceStreamClient(
            on_message=on_message,
            on_status_change=on_status_change,
            url=cfg.stream_url,
            symbol_map=symbol_map,
            ping_interval=cfg.ping_interval,
            health_check_interval=cfg.health_check_interval,
        )

    return MarketSync(
        fetcher,
        symbol_map=symbol_map,
        stream_factory=stream_factory,
        refresh_interval=cfg.refresh_interval,
        debounce_delay=cfg.debounce_delay,
        freshness_window=cfg.freshness_window,
        stream_top_n=cfg.stream_top_n,
        owns_fetcher=True,
    )
