"""
Price Stream Client
Binance ticker WebSocket client with heartbeat, liveness check and
reconnect backoff. One live connection per client instance.
"""

import asyncio
import json
import time
from typing import Any, Callable, List, Mapping, Optional, Set

import websockets
from loguru import logger

from core.retry import STREAM_RECONNECT_POLICY, RetryPolicy

from .models import ConnectionStatus, PriceTick
from .symbols import QUOTE_CURRENCY_SUFFIX, reverse_symbol_map

BINANCE_WS_URL = "wss://stream.binance.com:9443/ws"
PING_INTERVAL_SECONDS = 10.0
HEALTH_CHECK_INTERVAL_SECONDS = 15.0


def _default_connect(url: str) -> Any:
    # Heartbeat is application-level ({"ping": ts}), so disable the library's own
    return websockets.connect(url, ping_interval=None, open_timeout=10)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class PriceStreamClient:
    """
    Live price stream for a set of ticker channels.

    Status moves disconnected -> connecting -> connected -> disconnected and
    every transition is reported through `on_status_change`. Transport and
    parse errors never propagate; they only drive status and reconnects.

    Usage:
        client = PriceStreamClient(on_message=handle_tick, on_status_change=handle_status)
        client.connect(["btcusdt", "ethusdt"])
        ...
        client.disconnect()
    """

    def __init__(
        self,
        on_message: Callable[[PriceTick], Any],
        on_status_change: Callable[[ConnectionStatus], Any],
        url: str = BINANCE_WS_URL,
        symbol_map: Optional[Mapping[str, str]] = None,
        quote_suffix: str = QUOTE_CURRENCY_SUFFIX,
        ping_interval: float = PING_INTERVAL_SECONDS,
        health_check_interval: float = HEALTH_CHECK_INTERVAL_SECONDS,
        reconnect_policy: RetryPolicy = STREAM_RECONNECT_POLICY,
        connect_factory: Optional[Callable[[str], Any]] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize price stream client.

        Args:
            on_message: Called with a PriceTick for every ticker frame
            on_status_change: Called with the new ConnectionStatus
            url: WebSocket endpoint
            symbol_map: Quote id -> channel mapping used to resolve tick ids
            quote_suffix: Quote currency stripped from unmapped wire symbols
            ping_interval: Seconds between heartbeat pings
            health_check_interval: Max silence (and check period) in seconds
            reconnect_policy: Backoff for reconnect attempts
            connect_factory: Returns an async context manager yielding a socket
            clock: Time source (Unix seconds)
        """
        self._on_message = on_message
        self._on_status_change = on_status_change
        self.url = url
        self.quote_suffix = quote_suffix.lower()
        self.ping_interval = ping_interval
        self.health_check_interval = health_check_interval
        self.reconnect_policy = reconnect_policy
        self._connect_factory = connect_factory or _default_connect
        self._clock = clock
        self._channel_to_id = reverse_symbol_map(symbol_map or {})

        self._status = ConnectionStatus.DISCONNECTED
        self._symbols: List[str] = []
        self._retry_count = 0
        self._ws: Any = None
        self._last_message_at = 0.0

        self._connection_task: Optional[asyncio.Task] = None
        self._ping_task: Optional[asyncio.Task] = None
        self._health_task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._closing: Set[asyncio.Task] = set()

        self.last_reconnect_delay: Optional[float] = None
        self.connection_attempts = 0

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def symbols(self) -> List[str]:
        return list(self._symbols)

    @property
    def retry_count(self) -> int:
        return self._retry_count

    def connect(self, symbols: List[str]):
        """
        Open a stream for `symbols`, replacing any existing connection.

        Args:
            symbols: Channel names (e.g. 'btcusdt')
        """
        self._cancel_reconnect()
        self._teardown()

        self._symbols = [symbol.lower() for symbol in symbols]
        self._retry_count = 0
        self._open()

    def disconnect(self):
        """Close the connection and cancel timers. Safe to call at any time."""
        self._cancel_reconnect()
        self._teardown()
        if self._status != ConnectionStatus.DISCONNECTED:
            logger.info("Price stream disconnected")
        self._status = ConnectionStatus.DISCONNECTED

    async def close(self):
        """Disconnect and wait for the connection tasks to finish."""
        self.disconnect()
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

    # --- Connection lifecycle ---

    def _open(self):
        self._set_status(ConnectionStatus.CONNECTING)
        self._connection_task = asyncio.get_running_loop().create_task(
            self._run(), name="price-stream"
        )

    async def _run(self):
        reason = "closed by server"
        try:
            self.connection_attempts += 1
            async with self._connect_factory(self.url) as ws:
                self._ws = ws
                self._last_message_at = self._clock()
                self._retry_count = 0
                logger.info(f"Connected to {self.url}")
                self._set_status(ConnectionStatus.CONNECTED)

                await self._subscribe(ws)
                self._start_health_checks(ws)

                async for raw_message in ws:
                    self._handle_raw_message(raw_message)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = str(e) or type(e).__name__

        if self._connection_task is _current_task():
            self._connection_task = None
        self._handle_connection_lost(reason)

    async def _subscribe(self, ws: Any):
        message = {
            "method": "SUBSCRIBE",
            "params": [f"{symbol}@ticker" for symbol in self._symbols],
            "id": 1,
        }
        await ws.send(json.dumps(message))
        logger.info(f"Subscribed to {len(self._symbols)} ticker channels")

    def _handle_connection_lost(self, reason: str):
        logger.warning(f"Price stream connection lost: {reason}")
        self._teardown()
        self._set_status(ConnectionStatus.DISCONNECTED)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> Optional[float]:
        """
        Schedule the next reconnect attempt.

        Returns:
            Delay in seconds, or None if the policy gave up
        """
        self._cancel_reconnect()
        policy = self.reconnect_policy

        if not policy.exhausted(self._retry_count):
            self._retry_count += 1
            delay = policy.delay_for(self._retry_count)
            callback = self._reconnect
        elif policy.cooldown is not None:
            delay = policy.cooldown
            callback = self._reconnect_after_cooldown
        else:
            logger.error("Price stream reconnect attempts exhausted, giving up")
            return None

        self.last_reconnect_delay = delay
        logger.info(
            f"Reconnecting price stream in {delay:.0f}s "
            f"(attempt {self._retry_count}/{policy.max_attempts})"
        )
        self._reconnect_handle = asyncio.get_running_loop().call_later(delay, callback)
        return delay

    def _reconnect(self):
        self._reconnect_handle = None
        if self._symbols:
            self._open()

    def _reconnect_after_cooldown(self):
        self._retry_count = 0
        self._reconnect()

    def _cancel_reconnect(self):
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _teardown(self):
        """Cancel the connection and heartbeat tasks (except the caller's own)."""
        current = _current_task()
        for task in (self._ping_task, self._health_task, self._connection_task):
            if task is None or task.done() or task is current:
                continue
            task.cancel()
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)

        self._ping_task = None
        self._health_task = None
        self._connection_task = None
        self._ws = None

    def _set_status(self, status: ConnectionStatus):
        if status == self._status:
            return
        self._status = status
        try:
            self._on_status_change(status)
        except Exception as e:
            logger.error(f"Error in status callback: {e}")

    # --- Heartbeat ---

    def _start_health_checks(self, ws: Any):
        loop = asyncio.get_running_loop()
        self._ping_task = loop.create_task(self._ping_loop(ws), name="price-stream-ping")
        self._health_task = loop.create_task(self._health_check_loop(), name="price-stream-health")

    async def _ping_loop(self, ws: Any):
        while True:
            await asyncio.sleep(self.ping_interval)
            try:
                await ws.send(json.dumps({"ping": int(self._clock() * 1000)}))
            except Exception as e:
                logger.debug(f"Ping failed: {e}")

    async def _health_check_loop(self):
        while True:
            await asyncio.sleep(self.health_check_interval)
            silence = self._clock() - self._last_message_at
            if silence > self.health_check_interval:
                self._health_task = None
                self._handle_connection_lost(f"no messages for {silence:.0f}s")
                return

    # --- Messages ---

    def _handle_raw_message(self, raw_message: Any):
        self._last_message_at = self._clock()
        try:
            data = json.loads(raw_message)
        except (TypeError, ValueError) as e:
            logger.debug(f"Skipping undecodable frame: {e}")
            return

        tick = self.parse_ticker(data)
        if tick is None:
            return

        try:
            self._on_message(tick)
        except Exception as e:
            logger.error(f"Error in price callback: {e}")

    def parse_ticker(self, data: Any) -> Optional[PriceTick]:
        """
        Convert a ticker frame into a PriceTick.

        Args:
            data: Decoded frame

        Returns:
            PriceTick, or None for pong/ack/other frames
        """
        if not isinstance(data, dict) or "pong" in data or data.get("e") != "ticker":
            return None

        try:
            return PriceTick(
                id=self.resolve_id(str(data["s"])),
                price=float(data["c"]),
                price_change_percentage_24h=float(data["P"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.debug(f"Skipping malformed ticker frame: {e}")
            return None

    def resolve_id(self, wire_symbol: str) -> str:
        """Translate a wire symbol (e.g. 'BTCUSDT') back to a quote id."""
        channel = wire_symbol.lower()
        if channel in self._channel_to_id:
            return self._channel_to_id[channel]
        if self.quote_suffix and channel.endswith(self.quote_suffix):
            return channel[: -len(self.quote_suffix)]
        return channel
