"""
Market Data Client
Fetches the top-of-market quote list from the CoinGecko REST API.
Handles timeouts, retry with backoff, rate limiting and cache/fallback degradation.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp
from loguru import logger

from core.retry import FETCH_RETRY_POLICY, RetryPolicy

from .cache_store import MarketCache
from .fallback_data import fallback_quotes
from .models import DataSource, FetchResult, Quote
from .rate_limit import RateLimitTracker

COINGECKO_API_URL = "https://api.coingecko.com/api/v3"
MARKETS_ENDPOINT = "/coins/markets"

DEFAULT_PARAMS = {
    "vs_currency": "usd",
    "order": "market_cap_desc",
    "per_page": "20",
    "page": "1",
    "sparkline": "false",
    "price_change_percentage": "24h",
}

REQUEST_TIMEOUT_SECONDS = 10.0


class MarketDataError(Exception):
    """Transport or HTTP failure while fetching market data."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitExceededError(MarketDataError):
    """The API answered 429 Too Many Requests."""

    def __init__(self, message: str = "API rate limit exceeded (429)"):
        super().__init__(message, status_code=429)


class MarketDataClient:
    """
    CoinGecko market data fetcher.

    fetch_market_data() never raises: it resolves to live data, the cached
    snapshot (fresh or stale), or the built-in fallback dataset.
    """

    def __init__(
        self,
        cache: MarketCache,
        rate_limiter: RateLimitTracker,
        base_url: str = COINGECKO_API_URL,
        params: Optional[Dict[str, str]] = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        retry_policy: RetryPolicy = FETCH_RETRY_POLICY,
        session: Optional[Any] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Initialize market data client.

        Args:
            cache: Snapshot cache
            rate_limiter: Persisted rate-limit tracker
            base_url: API base URL
            params: Query parameters (defaults to top 20 by market cap, USD)
            timeout: Per-request timeout in seconds
            retry_policy: Retry/backoff policy for transport errors
            session: aiohttp-compatible session (created lazily if None)
            sleep: Async sleep used between retries
        """
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.base_url = base_url.rstrip("/")
        self.params = dict(params or DEFAULT_PARAMS)
        self.timeout = timeout
        self.retry_policy = retry_policy
        self._session = session
        self._owns_session = False
        self._sleep = sleep

        logger.info(f"MarketDataClient initialized: {self.url}")

    @property
    def url(self) -> str:
        return f"{self.base_url}{MARKETS_ENDPOINT}"

    async def fetch_market_data(self, force_refresh: bool = False) -> List[Quote]:
        """
        Get the market quote list.

        Args:
            force_refresh: Skip the fresh-cache shortcut and hit the API

        Returns:
            Live, cached or fallback quotes
        """
        result = await self.fetch(force_refresh)
        return result.quotes

    async def fetch(self, force_refresh: bool = False) -> FetchResult:
        """
        Get the market quote list together with where it came from.

        Args:
            force_refresh: Skip the fresh-cache shortcut and hit the API

        Returns:
            FetchResult with quotes and DataSource
        """
        try:
            return await self._fetch(force_refresh)
        except Exception as e:
            logger.error(f"Unexpected error fetching market data: {e}")
            return FetchResult(fallback_quotes(), DataSource.FALLBACK)

    async def _fetch(self, force_refresh: bool) -> FetchResult:
        if not force_refresh:
            cached = await self.cache.load()
            if cached:
                logger.debug("Using cached market data")
                return FetchResult(cached, DataSource.CACHE)

        if await self.rate_limiter.is_limited():
            logger.warning("Rate limited, using fallback data")
            return await self._degrade()

        await self.rate_limiter.track_call()

        try:
            quotes = await self._fetch_with_retry()
        except RateLimitExceededError as e:
            logger.warning(f"{e} - marking as limited")
            await self.rate_limiter.mark_limited()
            return await self._degrade()
        except Exception as e:
            logger.error(f"Error fetching market data: {e}")
            return await self._degrade()

        if not quotes:
            logger.warning("API returned no usable quotes")
            return await self._degrade()

        await self.cache.save(quotes)
        logger.info(f"Fetched {len(quotes)} quotes from {self.url}")
        return FetchResult(quotes, DataSource.LIVE)

    async def _degrade(self) -> FetchResult:
        """Stale cache if there is one, otherwise the fallback dataset."""
        stale = await self.cache.load(ignore_expiry=True)
        if stale:
            return FetchResult(stale, DataSource.STALE_CACHE)
        logger.warning("No cached market data available, using fallback dataset")
        return FetchResult(fallback_quotes(), DataSource.FALLBACK)

    async def _fetch_with_retry(self) -> List[Quote]:
        attempt = 0
        while True:
            try:
                return await self._request_once()
            except RateLimitExceededError:
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError, MarketDataError) as e:
                if self.retry_policy.exhausted(attempt):
                    raise
                delay = self.retry_policy.delay_for(attempt)
                attempt += 1
                logger.info(
                    f"Retrying API call in {delay:.0f}s "
                    f"(attempt {attempt}/{self.retry_policy.max_attempts}): {e}"
                )
                await self._sleep(delay)

    async def _request_once(self) -> List[Quote]:
        session = self._get_session()
        async with session.get(
            self.url,
            params=self.params,
            headers={"Accept": "application/json"},
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        ) as response:
            if response.status == 429:
                raise RateLimitExceededError()
            if response.status != 200:
                raise MarketDataError(
                    f"API request failed with status {response.status}",
                    status_code=response.status,
                )
            payload = await response.json()

        return self._parse_markets(payload)

    def _parse_markets(self, payload: Any) -> List[Quote]:
        if not isinstance(payload, list):
            raise MarketDataError(f"Unexpected payload type: {type(payload).__name__}")

        quotes = []
        for row in payload:
            try:
                quotes.append(Quote.from_api(row))
            except ValueError as e:
                logger.warning(f"Skipping malformed market row: {e}")
        return quotes

    def _get_session(self) -> Any:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None
            self._owns_session = False
        logger.debug("MarketDataClient closed")
