"""Technical indicators — ATR, average volume, directional movement. Pure functions, no I/O."""

from zoneforge.strategy.models import CandleData


def true_ranges(candles: list[CandleData]) -> list[float]:
    """Return the True Range of every candle after the first.

        TR = max(high - low, |high - prev_close|, |low - prev_close|)
    """
    ranges: list[float] = []
    for i in range(1, len(candles)):
        high = candles[i].high
        low = candles[i].low
        prev_close = candles[i - 1].close
        ranges.append(max(high - low, abs(high - prev_close), abs(low - prev_close)))
    return ranges


def calculate_atr(candles: list[CandleData], period: int = 14) -> float:
    """Calculate the Average True Range over *period* candles.

    Requires at least ``period + 1`` candles (need a previous close for TR).
    Returns the simple average of the last *period* true ranges.

    Raises ``ValueError`` if insufficient data.
    """
    if len(candles) < period + 1:
        raise ValueError(
            f"Need at least {period + 1} candles for ATR({period}), "
            f"got {len(candles)}"
        )

    recent = true_ranges(candles)[-period:]
    return sum(recent) / len(recent)


def safe_atr(candles: list[CandleData], period: int = 14) -> float:
    """ATR that degrades instead of raising.

    Falls back to the average of whatever true ranges exist when there are
    fewer than ``period + 1`` candles, and to ``0.0`` with fewer than two.
    """
    if len(candles) >= period + 1:
        return calculate_atr(candles, period)
    ranges = true_ranges(candles)
    if not ranges:
        return 0.0
    return sum(ranges) / len(ranges)


def average_volume(candles: list[CandleData]) -> float:
    """Mean volume of *candles* (``0.0`` for an empty list)."""
    if not candles:
        return 0.0
    return sum(c.volume for c in candles) / len(candles)


def directional_movement(
    candles: list[CandleData], lookback: int = 14
) -> tuple[float, float]:
    """Sum the +DM and −DM moves over the last *lookback* bars.

    Per bar:
        up_move   = high - prev_high
        down_move = prev_low - low
        +DM = up_move   if up_move > down_move and up_move > 0 else 0
        −DM = down_move if down_move > up_move and down_move > 0 else 0

    Uses every available bar when fewer than ``lookback + 1`` exist.

    Returns:
        ``(sum_plus_dm, sum_minus_dm)``.
    """
    window = candles[-(lookback + 1):]
    up_total = 0.0
    down_total = 0.0
    for i in range(1, len(window)):
        up_move = window[i].high - window[i - 1].high
        down_move = window[i - 1].low - window[i].low
        if up_move > down_move and up_move > 0:
            up_total += up_move
        elif down_move > up_move and down_move > 0:
            down_total += down_move
    return up_total, down_total
