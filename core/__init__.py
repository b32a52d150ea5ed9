"""
Core module for Crypto Market Sync.
Provides the market sync orchestrator, retry policies and component wiring.
"""

from .market_sync import MarketState, MarketSync
from .retry import RetryPolicy

__all__ = [
    "MarketState",
    "MarketSync",
    "RetryPolicy",
]
