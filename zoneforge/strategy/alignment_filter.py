"""Multi-timeframe alignment — pure function over per-timeframe trends."""

from zoneforge.strategy.models import Direction, Timeframe, Trend


def is_aligned(
    direction: Direction,
    trends: dict[Timeframe, Trend],
    timeframes: tuple[Timeframe, ...],
) -> bool:
    """Return True when the *timeframes* agree with *direction*.

    No listed timeframe may trend against the direction, and at least one
    must trend with it.  Timeframes without a known trend are ignored.
    """
    wanted = Trend.UP if direction == Direction.BULLISH else Trend.DOWN
    opposite = Trend.DOWN if wanted == Trend.UP else Trend.UP

    known = [trends[tf] for tf in timeframes if tf in trends]
    if any(t == opposite for t in known):
        return False
    return any(t == wanted for t in known)
