"""
Market Sync
Orchestrates quote fetching, merge-by-id, the live price stream and the
foreground/background lifecycle. Owns the state the presentation layer reads.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from loguru import logger

from core.data.models import ConnectionStatus, DataSource, FetchResult, PriceTick, Quote
from core.data.price_stream import PriceStreamClient
from core.data.symbols import DEFAULT_SYMBOL_MAP, freeze_symbol_map, streamable_symbols
from core.retry import RESYNC_POLICY, RetryPolicy

REFRESH_INTERVAL_SECONDS = 60.0
DEBOUNCE_SECONDS = 0.5
FRESHNESS_WINDOW_SECONDS = 60.0
STREAM_TOP_N = 10

NO_DATA_ERROR = "Unable to load market data. Pull down to retry."
FALLBACK_DATA_WARNING = "Live market data is unavailable. Showing demo prices."
STALE_DATA_WARNING = "Live market data is unavailable. Showing last saved prices."

StreamFactory = Callable[
    [Callable[[PriceTick], Any], Callable[[ConnectionStatus], Any]],
    Any,
]


@dataclass
class MarketState:
    """Everything the presentation layer renders."""
    quotes: List[Quote] = field(default_factory=list)
    is_loading: bool = True
    is_refreshing: bool = False
    error: Optional[str] = None
    search_query: str = ""
    connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED

    @property
    def visible_quotes(self) -> List[Quote]:
        """Quotes filtered by the search query."""
        if not self.search_query:
            return list(self.quotes)
        return [quote for quote in self.quotes if quote.matches(self.search_query)]


class MarketSync:
    """
    Process-wide market data orchestrator.

    Create one instance per app lifetime. All timers, the debounce handle and
    the price stream are owned here and released by stop().

    Lifecycle:
        sync = MarketSync(fetcher)
        await sync.start()          # immediate sync + periodic timer
        sync.set_active(False)      # host went to background
        sync.set_active(True)       # back to foreground
        await sync.refresh()        # pull-to-refresh
        await sync.stop()
    """

    def __init__(
        self,
        fetcher: Any,
        symbol_map: Mapping[str, str] = DEFAULT_SYMBOL_MAP,
        stream_factory: Optional[StreamFactory] = None,
        refresh_interval: float = REFRESH_INTERVAL_SECONDS,
        debounce_delay: float = DEBOUNCE_SECONDS,
        freshness_window: float = FRESHNESS_WINDOW_SECONDS,
        stream_top_n: int = STREAM_TOP_N,
        resync_policy: RetryPolicy = RESYNC_POLICY,
        owns_fetcher: bool = False,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize market sync.

        Args:
            fetcher: Object with `async fetch(force_refresh) -> FetchResult`
            symbol_map: Quote id -> stream channel mapping
            stream_factory: Builds the stream client from (on_message, on_status_change)
            refresh_interval: Seconds between periodic passive syncs
            debounce_delay: Quiet period before a passive sync fetches
            freshness_window: Passive sync is skipped if a quote was updated this recently
            stream_top_n: Number of leading quotes to stream
            resync_policy: Backoff for resyncs after the stream disconnects
            owns_fetcher: Close the fetcher on stop()
            clock: Time source (Unix seconds)
        """
        self._fetcher = fetcher
        self.symbol_map = freeze_symbol_map(symbol_map)
        self._stream_factory = stream_factory or self._default_stream_factory
        self.refresh_interval = refresh_interval
        self.debounce_delay = debounce_delay
        self.freshness_window = freshness_window
        self.stream_top_n = stream_top_n
        self.resync_policy = resync_policy
        self._owns_fetcher = owns_fetcher
        self._clock = clock

        self.state = MarketState()
        self._started = False
        self._active = False
        self._stream: Any = None
        self._resync_attempt = 0
        self._refreshes_in_flight = 0
        self._loads_in_flight = 0

        self._refresh_task: Optional[asyncio.Task] = None
        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._resync_handle: Optional[asyncio.TimerHandle] = None
        self._fetch_tasks: Set[asyncio.Task] = set()
        self._listeners: List[Callable[[MarketState], Any]] = []

    async def __aenter__(self) -> "MarketSync":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    def _default_stream_factory(self, on_message, on_status_change) -> PriceStreamClient:
        return PriceStreamClient(
            on_message=on_message,
            on_status_change=on_status_change,
            symbol_map=self.symbol_map,
            clock=self._clock,
        )

    # --- Consumer view ---

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def stream(self) -> Any:
        return self._stream

    @property
    def visible_quotes(self) -> List[Quote]:
        return self.state.visible_quotes

    def snapshot(self) -> Dict[str, Any]:
        """State as consumed by the presentation layer."""
        return {
            "quotes": self.state.visible_quotes,
            "is_loading": self.state.is_loading,
            "is_refreshing": self.state.is_refreshing,
            "error": self.state.error,
            "search_query": self.state.search_query,
            "connection_status": self.state.connection_status,
        }

    def set_search_query(self, query: str):
        """Filter visible quotes by name or symbol. Does not trigger a fetch."""
        self.state.search_query = query or ""
        self._notify()

    def add_listener(self, listener: Callable[[MarketState], Any]) -> Callable[[], None]:
        """
        Register a state change listener.

        Args:
            listener: Called with the MarketState after every change

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # --- Lifecycle ---

    async def start(self):
        """First activation: immediate sync, then the periodic timer."""
        if self._started:
            return
        self._started = True
        self._active = True
        logger.info(f"Starting market sync (refresh every {self.refresh_interval:.0f}s)")

        await self._do_fetch(force_refresh=False)
        if self._active:
            self._start_refresh_timer()

    async def stop(self):
        """Cancel every timer and task and disconnect the stream."""
        self._started = False
        self._active = False
        refresh_task = self._refresh_task
        self._stop_refresh_timer()
        self._cancel_debounce()
        self._cancel_resync()

        tasks = list(self._fetch_tasks)
        if refresh_task is not None:
            tasks.append(refresh_task)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._stream is not None:
            await self._stream.close()
        self.state.connection_status = ConnectionStatus.DISCONNECTED

        if self._owns_fetcher and hasattr(self._fetcher, "close"):
            await self._fetcher.close()

        logger.info("Market sync stopped")
        self._notify()

    def set_active(self, active: bool):
        """
        Host foreground/background signal.

        Args:
            active: True when the app is in the foreground
        """
        if not self._started:
            logger.debug("Ignoring activity change before start()")
            return
        if active == self._active:
            return

        if not active:
            logger.info("App backgrounded: pausing market sync")
            self._active = False
            self._stop_refresh_timer()
            self._cancel_debounce()
            self._cancel_resync()
            if self._stream is not None:
                self._stream.disconnect()
            self.state.connection_status = ConnectionStatus.DISCONNECTED
            self._notify()
            return

        logger.info("App foregrounded: resuming market sync")
        self._active = True
        if self.state.quotes:
            self._point_stream(self.state.quotes, force=True)
        self.sync()
        self._start_refresh_timer()

    # --- Fetching ---

    async def refresh(self):
        """Forced refresh: no debounce, no freshness check."""
        self._cancel_debounce()
        await self._do_fetch(force_refresh=True)

    def sync(self):
        """Passive sync: skipped while quotes are fresh, otherwise debounced."""
        self._cancel_debounce()

        if self._is_fresh():
            logger.debug("Quotes updated recently, skipping sync")
            if self.state.is_loading and not self._loads_in_flight:
                self.state.is_loading = False
                self._notify()
            return

        self._debounce_handle = asyncio.get_running_loop().call_later(
            self.debounce_delay, self._fire_debounced
        )

    def _fire_debounced(self):
        self._debounce_handle = None
        task = asyncio.get_running_loop().create_task(
            self._do_fetch(force_refresh=False), name="market-sync-fetch"
        )
        self._fetch_tasks.add(task)
        task.add_done_callback(self._fetch_tasks.discard)

    def _is_fresh(self) -> bool:
        stamps = [q.last_updated for q in self.state.quotes if q.last_updated is not None]
        if not stamps:
            return False
        return self._clock() - max(stamps) < self.freshness_window

    async def _do_fetch(self, force_refresh: bool):
        # Flags reflect every fetch in flight, not just the latest one
        loading = not force_refresh and not self.state.quotes
        if force_refresh:
            self._refreshes_in_flight += 1
        if loading:
            self._loads_in_flight += 1
        self._update_fetch_flags()
        self._notify()

        try:
            result = await self._fetcher.fetch(force_refresh)
        except Exception as e:
            logger.error(f"Error fetching market data: {e}")
            result = FetchResult([], DataSource.FALLBACK)
        finally:
            if force_refresh:
                self._refreshes_in_flight -= 1
            if loading:
                self._loads_in_flight -= 1
            self._update_fetch_flags()

        if result.quotes:
            self._merge_quotes(result.quotes)
        else:
            logger.warning("No market data received")

        self.state.error = self._error_for(result)

        if result.quotes:
            self._point_stream(result.quotes)
        self._notify()

    def _update_fetch_flags(self):
        self.state.is_refreshing = self._refreshes_in_flight > 0
        self.state.is_loading = self._loads_in_flight > 0

    def _merge_quotes(self, fresh: List[Quote]):
        """Replace the list order with `fresh`, merging fields into known ids."""
        existing = {quote.id: quote for quote in self.state.quotes}
        merged = []
        for quote in fresh:
            current = existing.get(quote.id)
            merged.append(current.merge(quote) if current is not None else quote)
        self.state.quotes = merged

    def _error_for(self, result: FetchResult) -> Optional[str]:
        if not self.state.quotes:
            return NO_DATA_ERROR
        if not result.quotes:
            return self.state.error
        if result.source == DataSource.FALLBACK:
            return FALLBACK_DATA_WARNING
        if result.source == DataSource.STALE_CACHE:
            return STALE_DATA_WARNING
        return None

    # --- Streaming ---

    def _point_stream(self, quotes: List[Quote], force: bool = False):
        """Point the stream at the top mapped symbols of `quotes`."""
        if not self._active:
            return

        symbols = streamable_symbols(quotes, self.symbol_map, self.stream_top_n)
        if not symbols:
            if self._stream is not None:
                self._stream.disconnect()
            self.state.connection_status = ConnectionStatus.DISCONNECTED
            return

        if self._stream is None:
            self._stream = self._stream_factory(self._handle_tick, self._handle_stream_status)
        elif (
            not force
            and self._stream.symbols == symbols
            and self._stream.status != ConnectionStatus.DISCONNECTED
        ):
            return

        logger.info(f"Streaming {len(symbols)} symbols: {', '.join(symbols)}")
        self._stream.connect(symbols)

    def _handle_tick(self, tick: PriceTick):
        for quote in self.state.quotes:
            if quote.id == tick.id:
                quote.current_price = tick.price
                quote.price_change_percentage_24h = tick.price_change_percentage_24h
                quote.last_updated = self._clock()
                self._notify()
                return

    def _handle_stream_status(self, status: ConnectionStatus):
        self.state.connection_status = status

        if status == ConnectionStatus.CONNECTED:
            self._resync_attempt = 0
        elif status == ConnectionStatus.DISCONNECTED and self._active:
            delay = self.resync_policy.delay_for(self._resync_attempt)
            self._resync_attempt += 1
            logger.info(f"Stream disconnected, resyncing in {delay:.0f}s")
            self._cancel_resync()
            self._resync_handle = asyncio.get_running_loop().call_later(delay, self._resync)

        self._notify()

    def _resync(self):
        self._resync_handle = None
        if self._active:
            self.sync()

    # --- Timers ---

    def _start_refresh_timer(self):
        self._stop_refresh_timer()
        self._refresh_task = asyncio.get_running_loop().create_task(
            self._refresh_loop(), name="market-sync-refresh"
        )

    def _stop_refresh_timer(self):
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        self._refresh_task = None

    async def _refresh_loop(self):
        while True:
            await asyncio.sleep(self.refresh_interval)
            self.sync()

    def _cancel_debounce(self):
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

    def _cancel_resync(self):
        if self._resync_handle is not None:
            self._resync_handle.cancel()
            self._resync_handle = None

    def _notify(self):
        for listener in list(self._listeners):
            try:
                listener(self.state)
            except Exception as e:
                logger.error(f"Error in market state listener: {e}")
