"""Structural zone detection, scoring and storage.

A structural zone is the full range of a strong-bodied candle that sits at
a level price had already visited (liquidity) and is large enough to trade.
Candidate evaluation is pure (``evaluate_candidate``); ``ZoneDetector``
wires it to a bar provider, the market-structure analyzer, the lifecycle
state machine and a keyed ``ZoneStore``.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from zoneforge.config import Config
from zoneforge.market.provider import BarSeriesProvider
from zoneforge.strategy import lifecycle
from zoneforge.strategy.indicators import average_volume
from zoneforge.strategy.models import (
    CandleData,
    Direction,
    MarketStructure,
    StructuralZone,
    Timeframe,
    Trend,
    ZoneKey,
    ZoneStatus,
    price_to_pips,
)
from zoneforge.strategy.structure import MarketStructureAnalyzer

logger = logging.getLogger("zoneforge.zones")

CONFLUENCE_PER_TIMEFRAME = 0.25
CONFLUENCE_TREND_BONUS = 0.2


# ── Candidate tests ──────────────────────────────────────────────────────


def is_break_of_structure(candle: CandleData, body_ratio: float = 0.70) -> bool:
    """Body must exceed *body_ratio* of the candle's full range."""
    full_range = candle.high - candle.low
    if full_range <= 0:
        return False
    return candle.body > body_ratio * full_range


def count_liquidity_touches(candle: CandleData, preceding: list[CandleData]) -> int:
    """Count preceding candles whose high or low lies inside *candle*'s range.

    Each preceding candle counts at most once.
    """
    touches = 0
    for prev in preceding:
        high_inside = candle.low <= prev.high <= candle.high
        low_inside = candle.low <= prev.low <= candle.high
        if high_inside or low_inside:
            touches += 1
    return touches


def zone_size_pips(price_high: float, price_low: float, digits: int) -> float:
    return price_to_pips(price_high - price_low, digits)


def score_strength(
    candle: CandleData,
    preceding: list[CandleData],
    atr: float,
    age_hours: float,
    volume_surge_ratio: float = 1.5,
) -> float:
    """Weighted strength score, capped at 1.0.

    - +0.3 if volume ≥ *volume_surge_ratio* × mean preceding volume.
    - ``min(0.4, 0.2 × height / ATR)`` (skipped when ATR is 0).
    - +0.3 if younger than 24h, +0.2 if younger than one week.
    """
    score = 0.0

    avg_vol = average_volume(preceding)
    if avg_vol > 0 and candle.volume >= volume_surge_ratio * avg_vol:
        score += 0.3

    if atr > 0:
        score += min(0.4, 0.2 * (candle.range / atr))

    if age_hours < 24:
        score += 0.3
    elif age_hours < 168:
        score += 0.2

    return min(score, 1.0)


def score_confluence(
    zone: StructuralZone,
    others: list[StructuralZone],
    structure: Optional[MarketStructure] = None,
) -> float:
    """Confluence from overlapping zones on other timeframes and trend agreement.

    +0.25 for each *other* timeframe holding a live, same-direction zone
    overlapping *zone*; +0.2 when the timeframe trend agrees.
    """
    timeframes = {
        other.timeframe
        for other in others
        if other.timeframe != zone.timeframe
        and other.symbol == zone.symbol
        and other.direction == zone.direction
        and not other.is_terminal
        and zone.overlaps(other)
    }
    score = CONFLUENCE_PER_TIMEFRAME * len(timeframes)

    if structure is not None:
        agrees = (
            (zone.direction == Direction.BULLISH and structure.trend == Trend.UP)
            or (zone.direction == Direction.BEARISH and structure.trend == Trend.DOWN)
        )
        if agrees:
            score += CONFLUENCE_TREND_BONUS

    return min(score, 1.0)


def evaluate_candidate(
    symbol: str,
    timeframe: Timeframe,
    candles: list[CandleData],
    index: int,
    digits: int,
    atr: float,
    now: datetime,
    config: Config,
) -> Optional[StructuralZone]:
    """Evaluate ``candles[index]`` as a zone anchor.

    Returns an unscored-for-confluence ``StructuralZone`` that passed the
    break-of-structure, liquidity, size and strength gates, else ``None``.
    """
    candle = candles[index]

    if not is_break_of_structure(candle, config.bos_body_ratio):
        return None

    liq_start = max(0, index - config.liquidity_lookback)
    if count_liquidity_touches(candle, candles[liq_start:index]) < config.liquidity_min_touches:
        return None

    if zone_size_pips(candle.high, candle.low, digits) < config.min_zone_pips:
        return None

    age_hours = (now - candle.time).total_seconds() / 3600.0
    if age_hours > config.zone_retention_hours:
        return None

    vol_start = max(0, index - config.volume_lookback)
    strength = score_strength(
        candle,
        candles[vol_start:index],
        atr,
        age_hours,
        config.volume_surge_ratio,
    )
    if strength < config.min_zone_strength:
        return None

    return StructuralZone(
        symbol=symbol,
        timeframe=timeframe,
        formed_at=candle.time,
        price_high=candle.high,
        price_low=candle.low,
        direction=Direction.BULLISH if candle.close > candle.open else Direction.BEARISH,
        strength_score=strength,
    )


# ── Store ────────────────────────────────────────────────────────────────


class ZoneStore:
    """Zones keyed by ``(symbol, timeframe, formed_at)`` with a per-symbol index."""

    def __init__(self) -> None:
        self._zones: dict[ZoneKey, StructuralZone] = {}
        self._by_symbol: dict[str, list[ZoneKey]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def lock(self, symbol: str) -> threading.Lock:
        """Per-symbol lock held for the duration of a timeframe scan."""
        with self._registry_lock:
            return self._locks.setdefault(symbol, threading.Lock())

    def get(self, key: ZoneKey) -> Optional[StructuralZone]:
        return self._zones.get(key)

    def add(self, zone: StructuralZone) -> None:
        """Insert a new zone.  Raises ``RuntimeError`` on a duplicate key."""
        if zone.key in self._zones:
            raise RuntimeError(f"Zone {zone.key} already stored")
        self._zones[zone.key] = zone
        self._by_symbol.setdefault(zone.symbol, []).append(zone.key)

    def zones(
        self,
        symbol: str,
        timeframe: Optional[Timeframe] = None,
    ) -> list[StructuralZone]:
        keys = self._by_symbol.get(symbol, [])
        result = []
        for key in keys:
            zone = self._zones.get(key)
            if zone is None:
                raise RuntimeError(f"Zone index for {symbol} references missing key {key}")
            if timeframe is None or zone.timeframe == timeframe:
                result.append(zone)
        return result

    def remove(self, key: ZoneKey) -> None:
        zone = self._zones.pop(key, None)
        if zone is not None:
            self._by_symbol[zone.symbol].remove(key)

    def clear(self, symbol: Optional[str] = None) -> None:
        if symbol is None:
            self._zones.clear()
            self._by_symbol.clear()
            return
        for key in self._by_symbol.pop(symbol, []):
            self._zones.pop(key, None)

    def purge(self, symbol: str, now: datetime, retention_hours: float) -> int:
        """Drop expired zones and terminal zones past the retention horizon."""
        stale = [
            z.key for z in self.zones(symbol)
            if z.status == ZoneStatus.EXPIRED
            or (z.is_terminal and z.age_hours(now) > retention_hours)
        ]
        for key in stale:
            self.remove(key)
        return len(stale)

    @property
    def symbols(self) -> list[str]:
        return [s for s, keys in self._by_symbol.items() if keys]

    def __len__(self) -> int:
        return len(self._zones)


# ── Detector ─────────────────────────────────────────────────────────────


class ZoneDetector:
    """Scans bar windows per timeframe and maintains the zone store.

    Args:
        config: Application configuration.
        provider: Bar/quote source.
        analyzer: Market-structure analyzer (shared with the engine).
        store: Optional pre-populated ``ZoneStore``.
    """

    def __init__(
        self,
        config: Config,
        provider: BarSeriesProvider,
        analyzer: Optional[MarketStructureAnalyzer] = None,
        store: Optional[ZoneStore] = None,
    ) -> None:
        self._config = config
        self._provider = provider
        self._analyzer = analyzer or MarketStructureAnalyzer(config)
        self._store = store or ZoneStore()
        self._last_scan: dict[str, datetime] = {}

    @property
    def store(self) -> ZoneStore:
        return self._store

    @property
    def analyzer(self) -> MarketStructureAnalyzer:
        return self._analyzer

    # ── Queries ──────────────────────────────────────────────────────────

    def get_zones(
        self,
        symbol: str,
        timeframe: Optional[Timeframe] = None,
    ) -> list[StructuralZone]:
        return self._store.zones(symbol, Timeframe(timeframe) if timeframe else None)

    def clear(self, symbol: Optional[str] = None) -> None:
        self._store.clear(symbol)
        if symbol is None:
            self._last_scan.clear()
        else:
            self._last_scan.pop(symbol, None)

    def cleanup_expired(self, symbol: str, now: datetime) -> int:
        removed = self._store.purge(symbol, now, self._config.zone_retention_hours)
        if removed:
            logger.debug("%s: purged %d stale zone(s)", symbol, removed)
        return removed

    # ── Scanning ─────────────────────────────────────────────────────────

    def scan_symbol(self, symbol: str, now: Optional[datetime] = None) -> list[StructuralZone]:
        """Scan every configured timeframe, at most once per rescan interval.

        A call arriving within ``rescan_interval_seconds`` of the previous
        scan of *symbol* is skipped and returns ``[]``.
        """
        if now is None:
            now = datetime.now(timezone.utc)

        last = self._last_scan.get(symbol)
        if last is not None:
            elapsed = (now - last).total_seconds()
            if 0 <= elapsed < self._config.rescan_interval_seconds:
                logger.debug("%s: rescan throttled (%.1fs since last scan)", symbol, elapsed)
                return []
        self._last_scan[symbol] = now

        changed: list[StructuralZone] = []
        for timeframe in self._config.timeframes:
            changed.extend(self.scan(symbol, timeframe, now))
        return changed

    def scan(
        self,
        symbol: str,
        timeframe: Timeframe,
        now: Optional[datetime] = None,
    ) -> list[StructuralZone]:
        """Scan one timeframe of *symbol*.  Returns new or updated zones.

        Never raises for expected conditions: an unknown symbol or an
        empty bar window simply yields ``[]``.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        timeframe = Timeframe(timeframe)
        cfg = self._config

        digits = self._provider.get_digits(symbol)
        if digits is None:
            logger.warning("%s: unknown symbol, skipping %s scan", symbol, timeframe.value)
            return []

        context = max(cfg.liquidity_lookback, cfg.volume_lookback)
        candles = self._provider.get_bars(symbol, timeframe, cfg.scan_lookback + context)
        if not candles:
            logger.debug("%s %s: no bars available", symbol, timeframe.value)
            return []

        with self._store.lock(symbol):
            return self._update_zones(symbol, timeframe, candles, digits, now)

    def _update_zones(
        self,
        symbol: str,
        timeframe: Timeframe,
        candles: list[CandleData],
        digits: int,
        now: datetime,
    ) -> list[StructuralZone]:
        """Lifecycle pass then candidate pass; the caller holds the symbol lock."""
        cfg = self._config
        self.cleanup_expired(symbol, now)
        structure = self._analyzer.analyze(symbol, timeframe, candles, now)
        atr = self._provider.get_atr(symbol, timeframe, cfg.atr_period)

        changed: dict[ZoneKey, StructuralZone] = {}

        # 1 ── Lifecycle of zones already stored on this timeframe
        for zone in self._store.zones(symbol, timeframe):
            if lifecycle.advance(zone, candles, now, cfg.zone_retention_hours):
                changed[zone.key] = zone

        # 2 ── New candidates
        all_zones = self._store.zones(symbol)
        start = max(0, len(candles) - cfg.scan_lookback)
        for i in range(start, len(candles)):
            candidate = evaluate_candidate(
                symbol, timeframe, candles, i, digits, atr, now, cfg,
            )
            if candidate is None:
                continue

            confluence = score_confluence(candidate, all_zones, structure)
            existing = self._store.get(candidate.key)

            if existing is not None:
                if existing.is_terminal:
                    continue
                before = (existing.strength_score, existing.confluence_score)
                existing.set_scores(candidate.strength_score, confluence)
                if (existing.strength_score, existing.confluence_score) != before:
                    changed[existing.key] = existing
                continue

            candidate.set_scores(confluence=confluence)
            lifecycle.advance(candidate, candles[i + 1:], now, cfg.zone_retention_hours)
            self._store.add(candidate)
            all_zones.append(candidate)
            changed[candidate.key] = candidate
            logger.info(
                "%s %s: new %s zone %.5f-%.5f (strength %.2f, confluence %.2f, %s)",
                symbol, timeframe.value, candidate.direction.value,
                candidate.price_low, candidate.price_high,
                candidate.strength_score, candidate.confluence_score,
                candidate.status.value,
            )

        return list(changed.values())
