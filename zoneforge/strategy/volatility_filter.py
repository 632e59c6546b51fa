"""Volatility filter — rejects entries when ATR is outside the configured band.

Volatility is expressed as ATR relative to price, in percent, so a single
band works across instruments with different quote scales.
"""


def volatility_pct(atr: float, price: float) -> float:
    """ATR as a percentage of *price* (``0.0`` for a non-positive price)."""
    if price <= 0:
        return 0.0
    return atr / price * 100.0


def is_volatility_acceptable(
    atr: float,
    price: float,
    min_pct: float = 0.01,
    max_pct: float = 2.0,
) -> bool:
    """Return ``True`` if ``min_pct <= ATR / price × 100 <= max_pct``.

    Args:
        atr: Current ATR of the signal's timeframe.
        price: Current price of the instrument.
        min_pct: Lower bound (too quiet to trade).
        max_pct: Upper bound (too wild to trade).
    """
    vol = volatility_pct(atr, price)
    return min_pct <= vol <= max_pct
