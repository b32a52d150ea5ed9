import os
import yaml
from typing import Any, Dict, Optional
from dotenv import load_dotenv
from loguru import logger

from core.data.cache_store import CACHE_EXPIRY_SECONDS
from core.data.market_client import COINGECKO_API_URL, REQUEST_TIMEOUT_SECONDS
from core.data.price_stream import (
    BINANCE_WS_URL,
    HEALTH_CHECK_INTERVAL_SECONDS,
    PING_INTERVAL_SECONDS,
)
from core.data.rate_limit import MAX_REQUESTS_PER_WINDOW, RATE_LIMIT_WINDOW_SECONDS
from core.data.symbols import DEFAULT_SYMBOL_MAP

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DEFAULT_CONFIG_PATH = os.path.join(BASE_DIR, "config", "market_sync.yaml")


class MarketSyncConfig:
    """
    Centralized configuration for market sync.
    Loads settings from config/market_sync.yaml (or $MARKET_SYNC_CONFIG),
    with endpoint and data directory overrides from the environment / .env.
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(MarketSyncConfig, cls).__new__(cls)
            cls._instance.load()
        return cls._instance

    def load(self, config_path: Optional[str] = None):
        """
        (Re)load configuration.

        Args:
            config_path: YAML file; defaults to $MARKET_SYNC_CONFIG or the bundled file
        """
        load_dotenv()
        config_path = str(config_path or os.getenv("MARKET_SYNC_CONFIG") or DEFAULT_CONFIG_PATH)

        self.config_path = config_path
        self.config: Dict[str, Any] = {}
        try:
            if os.path.exists(config_path):
                with open(config_path, 'r') as f:
                    loaded = yaml.safe_load(f) or {}
                if isinstance(loaded, dict):
                    self.config = loaded
                    logger.info(f"Loaded configuration from {config_path}")
                else:
                    logger.warning(f"Config at {config_path} is not a mapping, using defaults")
            else:
                logger.warning(f"Config file not found at {config_path}, using defaults")
        except Exception as e:
            logger.error(f"Error loading config: {e}")

    # --- REST API ---

    @property
    def api_base_url(self) -> str:
        return os.getenv("MARKET_DATA_URL") or self.get('api.base_url', COINGECKO_API_URL)

    @property
    def api_params(self) -> Dict[str, str]:
        """Query parameters for the markets endpoint."""
        return {
            "vs_currency": str(self.get('api.vs_currency', 'usd')),
            "order": "market_cap_desc",
            "per_page": str(self.get('api.per_page', 20)),
            "page": "1",
            "sparkline": "false",
            "price_change_percentage": "24h",
        }

    @property
    def api_timeout(self) -> float:
        return float(self.get('api.timeout_seconds', REQUEST_TIMEOUT_SECONDS))

    # --- Persistence ---

    @property
    def data_dir(self) -> str:
        """Directory for the persisted key/value store."""
        path = os.getenv("MARKET_SYNC_DATA_DIR") or self.get('storage.data_dir', 'data/market_sync')
        if not os.path.isabs(path):
            path = os.path.join(BASE_DIR, path)
        return path

    @property
    def cache_expiry(self) -> float:
        return float(self.get('cache.expiry_seconds', CACHE_EXPIRY_SECONDS))

    @property
    def rate_limit_window(self) -> float:
        return float(self.get('rate_limit.window_seconds', RATE_LIMIT_WINDOW_SECONDS))

    @property
    def rate_limit_max_requests(self) -> int:
        return int(self.get('rate_limit.max_requests', MAX_REQUESTS_PER_WINDOW))

    # --- Stream ---

    @property
    def stream_url(self) -> str:
        return os.getenv("PRICE_STREAM_URL") or self.get('stream.url', BINANCE_WS_URL)

    @property
    def ping_interval(self) -> float:
        return float(self.get('stream.ping_interval_seconds', PING_INTERVAL_SECONDS))

    @property
    def health_check_interval(self) -> float:
        return float(self.get('stream.health_check_interval_seconds', HEALTH_CHECK_INTERVAL_SECONDS))

    @property
    def symbol_map(self) -> Dict[str, str]:
        """Quote id -> stream channel. Config entries extend the built-in map."""
        mapping = dict(DEFAULT_SYMBOL_MAP)
        overrides = self.get('stream.symbol_map', {})
        if isinstance(overrides, dict):
            mapping.update({str(k): str(v).lower() for k, v in overrides.items()})
        return mapping

    # --- Sync ---

    @property
    def refresh_interval(self) -> float:
        return float(self.get('sync.refresh_interval_seconds', 60))

    @property
    def debounce_delay(self) -> float:
        return float(self.get('sync.debounce_seconds', 0.5))

    @property
    def freshness_window(self) -> float:
        return float(self.get('sync.freshness_window_seconds', 60))

    @property
    def stream_top_n(self) -> int:
        return int(self.get('sync.stream_top_n', 10))

    def get(self, key: str, default: Any = None) -> Any:
        """Get arbitrary config value using dot notation (e.g. 'api.per_page')."""
        keys = key.split('.')
        value = self.config
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default
        return value if value is not None else default


# Global instance
config = MarketSyncConfig()
