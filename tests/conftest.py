"""
Shared fixtures and fakes for market sync tests.
No network: HTTP sessions and WebSocket connections are in-memory fakes,
and time is driven by FakeClock wherever a component accepts a clock.
"""

import asyncio
import json
from typing import Any, List, Optional

import pytest

from core.data.cache_store import MarketCache
from core.data.kv_store import KeyValueStore, MemoryKeyValueStore
from core.data.models import ConnectionStatus, DataSource, FetchResult, Quote
from core.data.rate_limit import RateLimitTracker

START_TIME = 1_700_000_000.0


class FakeClock:
    """Callable clock returning a controllable Unix time."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FailingStore(KeyValueStore):
    """Store whose every operation fails."""

    async def get_item(self, key):
        raise OSError("disk unavailable")

    async def set_item(self, key, value):
        raise OSError("disk unavailable")

    async def remove_item(self, key):
        raise OSError("disk unavailable")


# --- HTTP ---

class FakeResponse:
    def __init__(self, status: int = 200, payload: Any = None):
        self.status = status
        self._payload = payload

    async def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """
    aiohttp.ClientSession stand-in.

    Each queued item is a FakeResponse or an exception raised by get().
    The last item repeats once the queue runs dry.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: List[dict] = []
        self.closed = False

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self):
        self.closed = True


# --- WebSocket ---

class FakeWebSocket:
    """Server side is driven through push() / close_from_server() / fail()."""

    _CLOSE = object()

    def __init__(self):
        self.sent: List[Any] = []
        self._incoming: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def send(self, message):
        self.sent.append(json.loads(message))

    def push(self, message: Any):
        self._incoming.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def close_from_server(self):
        self._incoming.put_nowait(self._CLOSE)

    def fail(self, exc: Exception):
        self._incoming.put_nowait(exc)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is self._CLOSE:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item


class _FakeConnection:
    def __init__(self, factory: "FakeConnectFactory", url: str):
        self.factory = factory
        self.url = url

    async def __aenter__(self):
        if self.factory.open_errors:
            raise self.factory.open_errors.pop(0)
        self.ws = FakeWebSocket()
        self.factory.sockets.append(self.ws)
        return self.ws

    async def __aexit__(self, exc_type, exc, tb):
        self.ws.closed = True
        return False


class FakeConnectFactory:
    """connect_factory for PriceStreamClient that records every socket it opens."""

    def __init__(self, open_errors: Optional[List[Exception]] = None):
        self.urls: List[str] = []
        self.sockets: List[FakeWebSocket] = []
        self.open_errors = list(open_errors or [])

    def __call__(self, url: str):
        self.urls.append(url)
        return _FakeConnection(self, url)

    @property
    def last(self) -> FakeWebSocket:
        return self.sockets[-1]

    async def wait_for_socket(self, count: int = 1, timeout: float = 1.0):
        async def _wait():
            while len(self.sockets) < count:
                await asyncio.sleep(0.001)
        await asyncio.wait_for(_wait(), timeout)


class FakeStream:
    """PriceStreamClient stand-in for orchestrator tests."""

    def __init__(self, on_message, on_status_change):
        self.on_message = on_message
        self.on_status_change = on_status_change
        self.status = ConnectionStatus.DISCONNECTED
        self.symbols: List[str] = []
        self.connect_calls: List[List[str]] = []
        self.disconnect_calls = 0
        self.closed = False

    def connect(self, symbols):
        self.symbols = list(symbols)
        self.connect_calls.append(list(symbols))
        self.status = ConnectionStatus.CONNECTING

    def disconnect(self):
        self.disconnect_calls += 1
        self.status = ConnectionStatus.DISCONNECTED

    async def close(self):
        self.disconnect()
        self.closed = True

    def emit_status(self, status: ConnectionStatus):
        self.status = status
        self.on_status_change(status)

    @property
    def open_connections(self) -> int:
        return 0 if self.status == ConnectionStatus.DISCONNECTED else 1


class FakeStreamFactory:
    def __init__(self):
        self.streams: List[FakeStream] = []

    def __call__(self, on_message, on_status_change) -> FakeStream:
        stream = FakeStream(on_message, on_status_change)
        self.streams.append(stream)
        return stream


class FakeFetcher:
    """Fetcher returning queued FetchResults (last one repeats)."""

    def __init__(self, *results: FetchResult):
        self.results = list(results)
        self.calls: List[bool] = []
        self.closed = False

    async def fetch(self, force_refresh: bool = False) -> FetchResult:
        self.calls.append(force_refresh)
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return FetchResult([Quote(**q.to_dict()) for q in result.quotes], result.source)

    async def close(self):
        self.closed = True


# --- Data ---

def make_row(coin_id: str, symbol: str, name: str, price: float, change: float = 0.0, **extra) -> dict:
    row = {
        "id": coin_id,
        "symbol": symbol,
        "name": name,
        "current_price": price,
        "price_change_percentage_24h": change,
        "image": f"https://example.com/{coin_id}.png",
    }
    row.update(extra)
    return row


SAMPLE_ROWS = [
    make_row("bitcoin", "btc", "Bitcoin", 60000.0, 1.5, market_cap=1.2e12),
    make_row("ethereum", "eth", "Ethereum", 3000.0, -2.0, market_cap=3.6e11),
    make_row("tether", "usdt", "Tether", 1.0, 0.0, market_cap=1.1e11),
    make_row("solana", "sol", "Solana", 150.0, 4.2, market_cap=6.8e10),
]


def make_quotes(rows=None) -> List[Quote]:
    return [Quote.from_api(row) for row in (rows or SAMPLE_ROWS)]


def live_result(rows=None) -> FetchResult:
    return FetchResult(make_quotes(rows), DataSource.LIVE)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryKeyValueStore()


@pytest.fixture
def cache(store, clock):
    return MarketCache(store, clock=clock)


@pytest.fixture
def rate_limiter(store, clock):
    return RateLimitTracker(store, clock=clock)


@pytest.fixture
def no_sleep():
    """Async sleep replacement recording requested delays."""
    delays: List[float] = []

    async def _sleep(delay: float):
        delays.append(delay)

    _sleep.delays = delays
    return _sleep
