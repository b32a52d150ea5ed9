"""
Display formatting helpers for prices, percentages and timestamps.
"""

from datetime import datetime
from typing import Any, Optional


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    try:
        return float(str(value).replace(",", "."))
    except (TypeError, ValueError):
        return None


def format_price(price: Any, decimals: int = 2) -> str:
    """
    Format price with thousands separators.

    Args:
        price: Number or numeric string
        decimals: Number of decimal places

    Returns:
        Formatted price, e.g. '64,250.00'
    """
    value = _to_number(price)
    if value is None:
        return f"{0:.{decimals}f}"
    return f"{value:,.{decimals}f}"


def format_percentage(value: Any, include_sign: bool = True) -> str:
    """
    Format percentage value.

    Args:
        value: Percentage (1.5 means 1.5%)
        include_sign: Prefix positive values with '+'

    Returns:
        Formatted percentage, e.g. '+1.50%'
    """
    number = _to_number(value)
    if number is None:
        return "0.00%"
    if include_sign and number > 0:
        return f"+{number:.2f}%"
    return f"{number:.2f}%"


def format_currency(value: Any, currency_symbol: str = "$") -> str:
    number = _to_number(value)
    if number is None:
        return f"{currency_symbol}0.00"
    return f"{currency_symbol}{number:,.2f}"


def format_time(timestamp: Any) -> str:
    """Format a datetime or Unix timestamp (seconds) as HH:MM local time."""
    if timestamp is None:
        return "--:--"
    if isinstance(timestamp, datetime):
        moment = timestamp
    else:
        number = _to_number(timestamp)
        if number is None:
            return "--:--"
        moment = datetime.fromtimestamp(number)
    return moment.strftime("%H:%M")
