"""
Unit tests for the ticker WebSocket client.
Tests with fake WebSocket connections to avoid real network calls.
"""

import asyncio
import time

import pytest

from core.data.models import ConnectionStatus, PriceTick
from core.data.price_stream import PriceStreamClient
from core.data.symbols import DEFAULT_SYMBOL_MAP
from core.retry import RetryPolicy

from conftest import FakeConnectFactory

FAST_POLICY = RetryPolicy(max_attempts=3, base_delay=0.001, max_delay=1.0, cooldown=0.01)


async def settle(rounds: int = 10):
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_for(predicate, timeout: float = 1.0):
    async def _wait():
        while not predicate():
            await asyncio.sleep(0.001)
    await asyncio.wait_for(_wait(), timeout)


def make_client(factory, ticks=None, statuses=None, **kwargs):
    ticks = ticks if ticks is not None else []
    statuses = statuses if statuses is not None else []
    kwargs.setdefault("reconnect_policy", FAST_POLICY)
    return PriceStreamClient(
        on_message=ticks.append,
        on_status_change=statuses.append,
        url="wss://example.test/ws",
        symbol_map=DEFAULT_SYMBOL_MAP,
        connect_factory=factory,
        **kwargs,
    )


def ticker(symbol: str, price: str, change: str) -> dict:
    return {"e": "ticker", "s": symbol, "c": price, "P": change}


@pytest.mark.asyncio
async def test_connect_subscribes_to_ticker_channels():
    factory = FakeConnectFactory()
    statuses = []
    client = make_client(factory, statuses=statuses)

    client.connect(["BTCUSDT", "ethusdt"])
    await factory.wait_for_socket()
    await settle()

    assert statuses == [ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED]
    assert client.status == ConnectionStatus.CONNECTED
    assert factory.urls == ["wss://example.test/ws"]
    assert factory.last.sent[0] == {
        "method": "SUBSCRIBE",
        "params": ["btcusdt@ticker", "ethusdt@ticker"],
        "id": 1,
    }

    await client.close()

    print("✅ test_connect_subscribes_to_ticker_channels passed")


@pytest.mark.asyncio
async def test_ticker_frames_become_ticks():
    factory = FakeConnectFactory()
    ticks = []
    client = make_client(factory, ticks=ticks)

    client.connect(["btcusdt"])
    await factory.wait_for_socket()
    ws = factory.last
    ws.push({"pong": 123})
    ws.push({"result": None, "id": 1})
    ws.push("not json")
    ws.push(ticker("BTCUSDT", "not-a-price", "1.0"))
    ws.push(ticker("BTCUSDT", "61000.50", "2.5"))
    ws.push(ticker("XYZUSDT", "0.5", "-1.25"))
    await wait_for(lambda: len(ticks) == 2)

    assert ticks == [
        PriceTick(id="bitcoin", price=61000.5, price_change_percentage_24h=2.5),
        PriceTick(id="xyz", price=0.5, price_change_percentage_24h=-1.25),
    ]
    assert client.status == ConnectionStatus.CONNECTED

    await client.close()


def test_parse_ticker_resolves_mapped_ids():
    client = make_client(FakeConnectFactory())

    assert client.parse_ticker(ticker("AVAXUSDT", "30", "1")).id == "avalanche-2"
    assert client.parse_ticker(ticker("ETHUSDT", "3000", "-0.5")).id == "ethereum"
    assert client.parse_ticker({"e": "ticker", "s": "BTCUSDT"}) is None
    assert client.parse_ticker({"e": "trade", "s": "BTCUSDT", "c": "1", "P": "1"}) is None
    assert client.parse_ticker(["not", "a", "dict"]) is None


@pytest.mark.asyncio
async def test_reconnect_backoff_schedule():
    client = make_client(FakeConnectFactory(), reconnect_policy=RetryPolicy(
        max_attempts=3, base_delay=1.0, max_delay=30.0, cooldown=30.0
    ))

    delays = [client._schedule_reconnect() for _ in range(5)]

    assert delays == [2.0, 4.0, 8.0, 30.0, 30.0]
    assert client.retry_count == 3

    client.disconnect()
    client._reconnect_after_cooldown()
    assert client.retry_count == 0


@pytest.mark.asyncio
async def test_server_close_triggers_reconnect():
    factory = FakeConnectFactory()
    statuses = []
    client = make_client(factory, statuses=statuses)

    client.connect(["btcusdt"])
    await factory.wait_for_socket()
    factory.last.close_from_server()
    await factory.wait_for_socket(2)
    await wait_for(lambda: client.status == ConnectionStatus.CONNECTED)

    assert statuses == [
        ConnectionStatus.CONNECTING,
        ConnectionStatus.CONNECTED,
        ConnectionStatus.DISCONNECTED,
        ConnectionStatus.CONNECTING,
        ConnectionStatus.CONNECTED,
    ]
    assert factory.sockets[0].closed
    assert client.retry_count == 0
    assert factory.last.sent[0]["params"] == ["btcusdt@ticker"]

    await client.close()


@pytest.mark.asyncio
async def test_failed_opens_retry_until_connected():
    factory = FakeConnectFactory(open_errors=[OSError("refused"), OSError("refused")])
    client = make_client(factory)

    client.connect(["btcusdt"])
    await factory.wait_for_socket()
    await wait_for(lambda: client.status == ConnectionStatus.CONNECTED)

    assert client.connection_attempts == 3
    assert client.retry_count == 0

    await client.close()


@pytest.mark.asyncio
async def test_socket_error_reports_disconnected():
    factory = FakeConnectFactory()
    statuses = []
    client = make_client(factory, statuses=statuses, reconnect_policy=RetryPolicy(
        max_attempts=3, base_delay=1.0
    ))

    client.connect(["btcusdt"])
    await factory.wait_for_socket()
    factory.last.fail(ConnectionError("reset by peer"))
    await wait_for(lambda: client.status == ConnectionStatus.DISCONNECTED)

    assert statuses[-1] == ConnectionStatus.DISCONNECTED
    assert client.retry_count == 1
    assert client.last_reconnect_delay == 2.0

    await client.close()


@pytest.mark.asyncio
async def test_disconnect_is_silent_and_idempotent():
    factory = FakeConnectFactory()
    statuses = []
    client = make_client(factory, statuses=statuses)

    client.connect(["btcusdt"])
    await factory.wait_for_socket()
    await settle()

    client.disconnect()
    client.disconnect()
    await client.close()
    await asyncio.sleep(0.05)

    assert client.status == ConnectionStatus.DISCONNECTED
    assert statuses == [ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED]
    assert len(factory.urls) == 1
    assert factory.last.closed


@pytest.mark.asyncio
async def test_connect_replaces_existing_connection():
    factory = FakeConnectFactory()
    client = make_client(factory)

    client.connect(["btcusdt"])
    await factory.wait_for_socket()
    client.connect(["ethusdt", "solusdt"])
    await factory.wait_for_socket(2)
    await wait_for(lambda: client.status == ConnectionStatus.CONNECTED)
    await settle()

    assert factory.sockets[0].closed
    assert not factory.sockets[1].closed
    assert client.symbols == ["ethusdt", "solusdt"]

    await client.close()


@pytest.mark.asyncio
async def test_heartbeat_pings_and_idle_reconnect():
    factory = FakeConnectFactory()
    statuses = []
    client = make_client(
        factory,
        statuses=statuses,
        ping_interval=0.01,
        health_check_interval=0.05,
        clock=time.time,
    )

    client.connect(["btcusdt"])
    await factory.wait_for_socket()
    first = factory.last

    # No frames arrive, so the health check drops the connection
    await factory.wait_for_socket(2, timeout=2.0)

    assert any("ping" in message for message in first.sent)
    assert first.closed
    assert ConnectionStatus.DISCONNECTED in statuses

    await client.close()

    print("✅ test_heartbeat_pings_and_idle_reconnect passed")
