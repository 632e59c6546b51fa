"""Signal generation from structural zones — pure evaluation plus a signal store.

Given a confirmed zone and the current quote, proposes an entry at the
zone's near boundary with ATR-based stop and target.  A zone that price
has closed through against its direction yields an exit instruction.
Anything that fails a quality gate returns ``None``, never an error.
"""

import copy
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

from zoneforge.config import Config
from zoneforge.risk.sl_tp import calculate_atr_levels
from zoneforge.strategy.models import (
    CandleData,
    Signal,
    SignalSource,
    SignalType,
    StructuralZone,
    Timeframe,
)

logger = logging.getLogger("zoneforge.signals")

CONFIRMATION_BONUS = 0.3


def freshness_bonus(age_hours: float) -> float:
    """+0.1 under 4 hours old, +0.05 under 24 hours."""
    if age_hours < 4:
        return 0.1
    if age_hours < 24:
        return 0.05
    return 0.0


def zone_confidence(zone: StructuralZone, now: datetime) -> float:
    """Strength + confirmation + timeframe + freshness bonuses, capped at 1.0."""
    score = zone.strength_score
    if zone.is_confirmed:
        score += CONFIRMATION_BONUS
    score += zone.timeframe.confidence_bonus
    score += freshness_bonus(zone.age_hours(now))
    return min(score, 1.0)


class SignalGenerator:
    """Turns zones into entry and exit signals.

    Args:
        config: Application configuration (ATR multipliers, gates).
    """

    def __init__(self, config: Config) -> None:
        self._config = config

    def is_eligible(
        self,
        zone: StructuralZone,
        price: float,
        atr: float,
        now: datetime,
    ) -> bool:
        """Confirmed, live, young enough and within reach of *price*."""
        cfg = self._config
        if not zone.is_confirmed or zone.is_terminal:
            return False
        if zone.age_hours(now) > cfg.max_zone_age_hours:
            return False
        return zone.distance_to(price) <= cfg.max_distance_atr * atr

    def generate_from_zone(
        self,
        zone: StructuralZone,
        bid: float,
        ask: float,
        atr: float,
        now: Optional[datetime] = None,
        digits: int = 5,
    ) -> Optional[Signal]:
        """Propose an entry for *zone*, or ``None`` if it does not qualify.

        Bullish zones are measured against the ask and bearish zones
        against the bid.  The entry is the near boundary; the stop and
        target are ``sl_atr_mult`` / ``tp_atr_mult`` ATRs from it.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        cfg = self._config

        if atr <= 0 or bid <= 0 or ask <= 0:
            return None

        price = ask if zone.is_bullish else bid
        if not self.is_eligible(zone, price, atr, now):
            return None

        direction = "buy" if zone.is_bullish else "sell"
        entry = round(zone.near_boundary, digits)
        levels = calculate_atr_levels(
            entry, direction, atr, cfg.sl_atr_mult, cfg.tp_atr_mult, digits,
        )
        if levels is None:
            return None

        rr = levels.reward_risk(entry)
        if rr < cfg.min_reward_risk:
            logger.debug("%s: R:R %.2f below %.2f, discarded", zone.symbol, rr, cfg.min_reward_risk)
            return None

        confidence = zone_confidence(zone, now)
        if confidence < cfg.min_signal_confidence:
            logger.debug("%s: confidence %.2f too low, discarded", zone.symbol, confidence)
            return None

        return Signal(
            symbol=zone.symbol,
            signal_type=SignalType.BUY_ENTRY if zone.is_bullish else SignalType.SELL_ENTRY,
            source=SignalSource.ZONE,
            entry_price=entry,
            stop_loss=levels.sl,
            take_profit=levels.tp,
            confidence=confidence,
            created_at=now,
            expires_at=now + timedelta(minutes=cfg.signal_expiry_minutes),
            reason=(
                f"{zone.timeframe.value} {zone.direction.value} zone "
                f"{zone.price_low:.{digits}f}-{zone.price_high:.{digits}f} "
                f"({zone.status.value}, strength {zone.strength_score:.2f}, R:R {rr:.1f})"
            ),
            timeframe=zone.timeframe,
            formed_at=zone.formed_at,
            zone_key=zone.key,
        )

    def generate_exit(
        self,
        zone: StructuralZone,
        bid: float,
        ask: float,
        last_close: float,
        now: Optional[datetime] = None,
    ) -> Optional[Signal]:
        """Exit instruction when price closed through *zone*'s far side.

        A bullish zone closed below its low exits buys at the bid; a
        bearish zone closed above its high exits sells at the ask.
        """
        if now is None:
            now = datetime.now(timezone.utc)

        if zone.is_bullish and last_close < zone.price_low:
            signal_type, price = SignalType.BUY_EXIT, bid
        elif not zone.is_bullish and last_close > zone.price_high:
            signal_type, price = SignalType.SELL_EXIT, ask
        else:
            return None

        if price <= 0:
            return None

        return Signal(
            symbol=zone.symbol,
            signal_type=signal_type,
            source=SignalSource.ZONE,
            entry_price=price,
            confidence=zone.strength_score,
            created_at=now,
            expires_at=now + timedelta(minutes=self._config.signal_expiry_minutes),
            reason=(
                f"{zone.timeframe.value} {zone.direction.value} zone "
                f"broken at close {last_close}"
            ),
            timeframe=zone.timeframe,
            formed_at=zone.formed_at,
            zone_key=zone.key,
        )

    def generate_for_symbol(
        self,
        zones: list[StructuralZone],
        bid: float,
        ask: float,
        atr_by_timeframe: dict[Timeframe, float],
        last_candle_by_timeframe: dict[Timeframe, CandleData],
        now: Optional[datetime] = None,
        digits: int = 5,
    ) -> list[Signal]:
        """Every entry and exit candidate for one symbol's zones.

        A zone that has already gone terminal only exits while its
        timeframe's latest bar is the one that ended it.
        """
        if now is None:
            now = datetime.now(timezone.utc)

        candidates: list[Signal] = []
        for zone in zones:
            atr = atr_by_timeframe.get(zone.timeframe, 0.0)
            entry = self.generate_from_zone(zone, bid, ask, atr, now, digits)
            if entry is not None:
                candidates.append(entry)

            candle = last_candle_by_timeframe.get(zone.timeframe)
            if candle is None or not zone.is_confirmed:
                continue
            if zone.is_terminal and candle.time > zone.updated_at:
                continue
            exit_signal = self.generate_exit(zone, bid, ask, candle.close, now)
            if exit_signal is not None:
                candidates.append(exit_signal)
        return candidates


class SignalStore:
    """Per-symbol signal lists with supersession and retention purging.

    Args:
        retention_hours: Age after which signals are purged.
    """

    def __init__(self, retention_hours: float = 24.0) -> None:
        self._retention = timedelta(hours=retention_hours)
        self._signals: dict[str, list[Signal]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def lock(self, symbol: str) -> threading.Lock:
        with self._registry_lock:
            return self._locks.setdefault(symbol, threading.Lock())

    def add(self, signal: Signal) -> bool:
        """Store *signal*, superseding any older signal with the same identity.

        Returns ``False`` when a superseded, still-live signal carried
        identical levels (a repeat of something already emitted), ``True``
        otherwise.

        Exits are kept once per identity whatever their price, and storing
        one withdraws the live entry taken from the same zone.
        """
        with self.lock(signal.symbol):
            bucket = self._signals.setdefault(signal.symbol, [])
            previous = [s for s in bucket if s.identity == signal.identity]

            if signal.is_exit:
                if previous:
                    return False
                for s in bucket:
                    if s.is_entry and s.zone_key is not None and s.zone_key == signal.zone_key:
                        self._withdraw(s, signal.created_at)
                bucket.append(signal)
                return True

            is_new = not any(
                (p.entry_price, p.stop_loss, p.take_profit)
                == (signal.entry_price, signal.stop_loss, signal.take_profit)
                for p in previous
                if not p.is_expired(signal.created_at)
            )
            if previous:
                if any(p.processed for p in previous) and not is_new:
                    signal.processed = True
                bucket[:] = [s for s in bucket if s.identity != signal.identity]
            bucket.append(signal)
            return is_new

    def get(self, symbol: str) -> list[Signal]:
        return list(self._signals.get(symbol, []))

    def active(self, symbol: str, now: datetime) -> list[Signal]:
        """Unprocessed, unexpired signals for *symbol*."""
        return [
            s for s in self._signals.get(symbol, [])
            if not s.processed and not s.is_expired(now)
        ]

    def has_active_entry(self, symbol: str, now: datetime) -> bool:
        return any(s.is_entry for s in self.active(symbol, now))

    def withdraw_entries(self, keep: Signal, window: timedelta) -> int:
        """Expire every other live entry of *keep*'s symbol created within
        *window* before it.  Returns how many were withdrawn.
        """
        withdrawn = 0
        with self.lock(keep.symbol):
            for s in self._signals.get(keep.symbol, []):
                if s is keep or not s.is_entry or s.processed:
                    continue
                if s.is_expired(keep.created_at) or keep.created_at - s.created_at > window:
                    continue
                self._withdraw(s, keep.created_at)
                withdrawn += 1
        return withdrawn

    @staticmethod
    def _withdraw(signal: Signal, at: datetime) -> None:
        if signal.expires_at > at:
            signal.expires_at = at
            logger.debug(
                "%s: %s from %s withdrawn", signal.symbol, signal.signal_type.value,
                signal.created_at.isoformat(),
            )

    def mark_processed(self, signal: Signal) -> None:
        with self.lock(signal.symbol):
            signal.processed = True

    def purge(self, now: datetime, symbol: Optional[str] = None) -> int:
        """Drop signals older than the retention horizon."""
        symbols = [symbol] if symbol is not None else list(self._signals)
        removed = 0
        for sym in symbols:
            with self.lock(sym):
                bucket = self._signals.get(sym, [])
                kept = [s for s in bucket if now - s.created_at <= self._retention]
                removed += len(bucket) - len(kept)
                self._signals[sym] = kept
        return removed

    def snapshot(self) -> dict[str, list[Signal]]:
        """Consistent deep copy of every symbol's signals."""
        symbols = sorted(self._signals)
        locks = [self.lock(sym) for sym in symbols]
        for lk in locks:
            lk.acquire()
        try:
            return {sym: copy.deepcopy(self._signals[sym]) for sym in symbols}
        finally:
            for lk in reversed(locks):
                lk.release()

    @property
    def symbols(self) -> list[str]:
        return list(self._signals)
