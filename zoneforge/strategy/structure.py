"""Market structure — swing highs/lows and directional-movement trend state.

``find_swing_highs`` / ``find_swing_lows`` / ``detect_trend`` are pure
functions.  ``MarketStructureAnalyzer`` keeps the last structure per
(symbol, timeframe) and merges new swings into it on every pass.
"""

import logging
from datetime import datetime
from typing import Optional

from zoneforge.config import Config
from zoneforge.strategy.indicators import directional_movement
from zoneforge.strategy.models import (
    CandleData,
    MarketStructure,
    SwingPoint,
    Timeframe,
    Trend,
    clamp_unit,
)

logger = logging.getLogger("zoneforge.structure")


def find_swing_highs(candles: list[CandleData], window: int = 5) -> list[SwingPoint]:
    """Identify swing highs.

    A swing high is a candle whose high is higher than the highs of the
    *window* candles on each side.
    """
    highs: list[SwingPoint] = []
    for i in range(window, len(candles) - window):
        high = candles[i].high
        is_swing = True
        for j in range(1, window + 1):
            if candles[i - j].high >= high or candles[i + j].high >= high:
                is_swing = False
                break
        if is_swing:
            highs.append(SwingPoint(time=candles[i].time, price=high, kind="high", index=i))
    return highs


def find_swing_lows(candles: list[CandleData], window: int = 5) -> list[SwingPoint]:
    """Identify swing lows.

    A swing low is a candle whose low is lower than the lows of the
    *window* candles on each side.
    """
    lows: list[SwingPoint] = []
    for i in range(window, len(candles) - window):
        low = candles[i].low
        is_swing = True
        for j in range(1, window + 1):
            if candles[i - j].low <= low or candles[i + j].low <= low:
                is_swing = False
                break
        if is_swing:
            lows.append(SwingPoint(time=candles[i].time, price=low, kind="low", index=i))
    return lows


def detect_trend(
    candles: list[CandleData],
    lookback: int = 14,
    threshold: float = 0.25,
) -> tuple[Trend, float]:
    """Classify the trend from directional movement over *lookback* bars.

    Rules:
        - strength = |up - down| / (up + down)   (0 when both are 0)
        - **up**: up > down and strength > *threshold*
        - **down**: down > up and strength > *threshold*
        - **ranging**: everything else

    Returns:
        ``(trend, strength)``.
    """
    if len(candles) < 2:
        return Trend.RANGING, 0.0

    up, down = directional_movement(candles, lookback)
    total = up + down
    if total == 0:
        return Trend.RANGING, 0.0

    strength = clamp_unit(abs(up - down) / total)
    if up > down and strength > threshold:
        return Trend.UP, strength
    if down > up and strength > threshold:
        return Trend.DOWN, strength
    return Trend.RANGING, strength


class MarketStructureAnalyzer:
    """Builds and caches ``MarketStructure`` per (symbol, timeframe).

    Args:
        config: Application configuration (swing window, trend settings).
    """

    def __init__(self, config: Config) -> None:
        self._config = config
        self._structures: dict[tuple[str, Timeframe], MarketStructure] = {}

    def analyze(
        self,
        symbol: str,
        timeframe: Timeframe,
        candles: list[CandleData],
        now: Optional[datetime] = None,
    ) -> MarketStructure:
        """Rebuild the structure for *symbol*/*timeframe* from *candles*.

        Swings found in this window are merged with the swings already
        known (deduplicated by timestamp).  With fewer than
        ``2 * swing_window + 1`` candles an empty, ranging structure is
        returned and nothing is cached.
        """
        timeframe = Timeframe(timeframe)
        window = self._config.swing_window
        updated_at = now or (candles[-1].time if candles else None)

        if len(candles) < 2 * window + 1:
            logger.debug(
                "%s %s: %d candles, need %d for swings",
                symbol, timeframe.value, len(candles), 2 * window + 1,
            )
            return MarketStructure.empty(symbol, timeframe, updated_at)

        found = find_swing_highs(candles, window) + find_swing_lows(candles, window)
        previous = self._structures.get((symbol, timeframe))
        merged: dict[tuple[datetime, str], SwingPoint] = {}
        if previous is not None:
            for swing in previous.swings:
                merged[(swing.time, swing.kind)] = swing
        for swing in found:
            merged[(swing.time, swing.kind)] = swing

        swings = sorted(merged.values(), key=lambda s: (s.time, s.kind))
        swings = swings[-self._config.max_swings:]

        trend, strength = detect_trend(
            candles,
            lookback=self._config.trend_lookback,
            threshold=self._config.trend_threshold,
        )

        structure = MarketStructure(
            symbol=symbol,
            timeframe=timeframe,
            swings=tuple(swings),
            trend=trend,
            trend_strength=strength,
            updated_at=updated_at,
        )
        self._structures[(symbol, timeframe)] = structure
        return structure

    def get(self, symbol: str, timeframe: Timeframe) -> MarketStructure:
        """Return the last structure, or an empty one if never analysed."""
        timeframe = Timeframe(timeframe)
        return self._structures.get(
            (symbol, timeframe), MarketStructure.empty(symbol, timeframe)
        )

    def trends(self, symbol: str) -> dict[Timeframe, Trend]:
        """Latest trend per timeframe for *symbol*."""
        return {
            tf: s.trend
            for (sym, tf), s in self._structures.items()
            if sym == symbol
        }
