"""
Symbol Map
Static mapping from quote id (CoinGecko) to ticker stream channel (Binance).
Ids without a mapping are never streamed.
"""

from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping

from .models import Quote

QUOTE_CURRENCY_SUFFIX = "usdt"

DEFAULT_SYMBOL_MAP: Mapping[str, str] = MappingProxyType({
    "bitcoin": "btcusdt",
    "ethereum": "ethusdt",
    "binancecoin": "bnbusdt",
    "ripple": "xrpusdt",
    "cardano": "adausdt",
    "solana": "solusdt",
    "polkadot": "dotusdt",
    "dogecoin": "dogeusdt",
    "tron": "trxusdt",
    "chainlink": "linkusdt",
    "avalanche-2": "avaxusdt",
    "litecoin": "ltcusdt",
})


def freeze_symbol_map(symbol_map: Mapping[str, str]) -> Mapping[str, str]:
    """Read-only copy with lower-cased channel names."""
    return MappingProxyType({
        str(quote_id): str(channel).lower()
        for quote_id, channel in symbol_map.items()
    })


def reverse_symbol_map(symbol_map: Mapping[str, str]) -> Dict[str, str]:
    """Map channel name back to quote id."""
    return {channel.lower(): quote_id for quote_id, channel in symbol_map.items()}


def streamable_symbols(
    quotes: Iterable[Quote],
    symbol_map: Mapping[str, str],
    limit: int = 10
) -> List[str]:
    """
    Channels to stream for the top quotes.

    Args:
        quotes: Quotes in market-cap order
        symbol_map: Quote id -> channel mapping
        limit: Number of leading quotes to consider

    Returns:
        Channel names for the mapped ids among the first `limit` quotes
    """
    symbols = []
    for index, quote in enumerate(quotes):
        if index >= limit:
            break
        channel = symbol_map.get(quote.id)
        if channel:
            symbols.append(channel)
    return symbols
