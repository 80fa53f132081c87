"""
Display formatting for valuation summaries.
"""

from typing import Final, Optional


CURRENCY_SYMBOLS: Final[dict[str, str]] = {
    "EUR": "€",
    "GBP": "£",
    "USD": "$",
}


def format_currency(amount: float, currency: str = "EUR") -> str:
    """
    Format a price rounded to whole units with thousands separators.

    Args:
        amount: Amount in whole currency units
        currency: ISO code; unknown codes are used as a prefix

    Returns:
        e.g. "€234,250" or "-£1,500"
    """
    symbol = CURRENCY_SYMBOLS.get(currency, currency + " ")
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{round(abs(amount)):,}"


def format_percent(value: float, decimals: int = 1) -> str:
    return f"{value:.{decimals}f}%"


def format_sqm(sqm: float) -> str:
    return f"{sqm:.0f} m²"


def format_distance(distance_m: Optional[float]) -> str:
    """Metres below 1 km, kilometres with one decimal above."""
    if distance_m is None:
        return "-"
    if distance_m < 1000:
        return f"{distance_m:.0f} m"
    return f"{distance_m / 1000:.1f} km"
