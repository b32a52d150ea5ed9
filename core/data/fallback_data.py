"""
Fallback market data shown when neither the API nor the cache can supply quotes.
Prices are illustrative, not live.
"""

from typing import List

from .models import Quote

_IMAGE_BASE = "https://assets.coingecko.com/coins/images"

FALLBACK_MARKET_DATA = [
    {
        "id": "bitcoin",
        "symbol": "btc",
        "name": "Bitcoin",
        "current_price": 64250.0,
        "price_change_percentage_24h": 1.42,
        "image": f"{_IMAGE_BASE}/1/large/bitcoin.png",
        "market_cap": 1265000000000.0,
    },
    {
        "id": "ethereum",
        "symbol": "eth",
        "name": "Ethereum",
        "current_price": 3120.5,
        "price_change_percentage_24h": -0.85,
        "image": f"{_IMAGE_BASE}/279/large/ethereum.png",
        "market_cap": 375000000000.0,
    },
    {
        "id": "tether",
        "symbol": "usdt",
        "name": "Tether",
        "current_price": 1.0,
        "price_change_percentage_24h": 0.01,
        "image": f"{_IMAGE_BASE}/325/large/Tether.png",
        "market_cap": 112000000000.0,
    },
    {
        "id": "binancecoin",
        "symbol": "bnb",
        "name": "BNB",
        "current_price": 585.3,
        "price_change_percentage_24h": 0.64,
        "image": f"{_IMAGE_BASE}/825/large/bnb-icon2_2x.png",
        "market_cap": 86000000000.0,
    },
    {
        "id": "solana",
        "symbol": "sol",
        "name": "Solana",
        "current_price": 148.75,
        "price_change_percentage_24h": 3.21,
        "image": f"{_IMAGE_BASE}/4128/large/solana.png",
        "market_cap": 68000000000.0,
    },
    {
        "id": "ripple",
        "symbol": "xrp",
        "name": "XRP",
        "current_price": 0.52,
        "price_change_percentage_24h": -1.12,
        "image": f"{_IMAGE_BASE}/44/large/xrp-symbol-white-128.png",
        "market_cap": 29000000000.0,
    },
    {
        "id": "dogecoin",
        "symbol": "doge",
        "name": "Dogecoin",
        "current_price": 0.124,
        "price_change_percentage_24h": 2.05,
        "image": f"{_IMAGE_BASE}/5/large/dogecoin.png",
        "market_cap": 18000000000.0,
    },
    {
        "id": "cardano",
        "symbol": "ada",
        "name": "Cardano",
        "current_price": 0.45,
        "price_change_percentage_24h": -0.37,
        "image": f"{_IMAGE_BASE}/975/large/cardano.png",
        "market_cap": 16000000000.0,
    },
    {
        "id": "polkadot",
        "symbol": "dot",
        "name": "Polkadot",
        "current_price": 6.85,
        "price_change_percentage_24h": 0.92,
        "image": f"{_IMAGE_BASE}/12171/large/polkadot.png",
        "market_cap": 9800000000.0,
    },
    {
        "id": "chainlink",
        "symbol": "link",
        "name": "Chainlink",
        "current_price": 14.2,
        "price_change_percentage_24h": 1.76,
        "image": f"{_IMAGE_BASE}/877/large/chainlink-new-logo.png",
        "market_cap": 8600000000.0,
    },
]


def fallback_quotes() -> List[Quote]:
    """Fresh Quote objects for the fallback dataset (safe to mutate)."""
    return [Quote.from_api(row) for row in FALLBACK_MARKET_DATA]
