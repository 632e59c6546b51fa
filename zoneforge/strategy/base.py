"""Signal source protocol and the two built-in sources.

A signal source turns one symbol's current analysis state into candidate
signals for the combiner.  Sources receive everything through
``SourceContext``; none of them hold references to other components.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable

from zoneforge.config import Config
from zoneforge.risk.sl_tp import calculate_atr_levels
from zoneforge.strategy.models import (
    CandleData,
    MarketStructure,
    Signal,
    SignalSource,
    SignalType,
    StructuralZone,
    Timeframe,
    Trend,
)
from zoneforge.strategy.signals import SignalGenerator


@dataclass
class SourceContext:
    """Snapshot of one symbol's state handed to every signal source."""

    symbol: str
    now: datetime
    bid: float
    ask: float
    digits: int
    zones: list[StructuralZone] = field(default_factory=list)
    structures: dict[Timeframe, MarketStructure] = field(default_factory=dict)
    atr: dict[Timeframe, float] = field(default_factory=dict)
    last_candle: dict[Timeframe, CandleData] = field(default_factory=dict)


@runtime_checkable
class SignalSourceProtocol(Protocol):
    """Interface that all signal sources must satisfy."""

    name: str

    def generate(self, context: SourceContext) -> list[Signal]:
        """Return candidate signals (possibly empty)."""
        ...


class ZoneSignalSource:
    """Entry and exit candidates from the structural zones."""

    name = "zone"

    def __init__(self, config: Config) -> None:
        self._generator = SignalGenerator(config)

    def generate(self, context: SourceContext) -> list[Signal]:
        return self._generator.generate_for_symbol(
            context.zones,
            context.bid,
            context.ask,
            context.atr,
            context.last_candle,
            context.now,
            context.digits,
        )


class StructureSignalSource:
    """Break-of-swing entries in the direction of the prevailing trend.

    A buy is proposed when the latest close clears the most recent swing
    high while the trend is up; a sell when it clears the most recent
    swing low in a downtrend.  Confidence grows with trend strength.
    """

    name = "structure"

    def __init__(self, config: Config) -> None:
        self._config = config

    def generate(self, context: SourceContext) -> list[Signal]:
        cfg = self._config
        signals: list[Signal] = []
        for timeframe, structure in context.structures.items():
            candle = context.last_candle.get(timeframe)
            atr = context.atr.get(timeframe, 0.0)
            if candle is None or atr <= 0:
                continue

            if structure.trend == Trend.UP and structure.swing_highs:
                swing = structure.swing_highs[-1]
                if not (candle.close > swing.price and candle.time > swing.time):
                    continue
                direction, signal_type, entry = "buy", SignalType.BUY_ENTRY, context.ask
            elif structure.trend == Trend.DOWN and structure.swing_lows:
                swing = structure.swing_lows[-1]
                if not (candle.close < swing.price and candle.time > swing.time):
                    continue
                direction, signal_type, entry = "sell", SignalType.SELL_ENTRY, context.bid
            else:
                continue

            levels = calculate_atr_levels(
                entry, direction, atr, cfg.sl_atr_mult, cfg.tp_atr_mult, context.digits,
            )
            if levels is None or levels.reward_risk(entry) < cfg.min_reward_risk:
                continue

            confidence = min(1.0, 0.4 + 0.5 * structure.trend_strength)
            signals.append(
                Signal(
                    symbol=context.symbol,
                    signal_type=signal_type,
                    source=SignalSource.STRUCTURE,
                    entry_price=entry,
                    stop_loss=levels.sl,
                    take_profit=levels.tp,
                    confidence=confidence,
                    created_at=context.now,
                    expires_at=context.now + timedelta(minutes=cfg.signal_expiry_minutes),
                    reason=(
                        f"{timeframe.value} close {candle.close} broke swing "
                        f"{swing.kind} {swing.price} in {structure.trend.value}trend"
                    ),
                    timeframe=timeframe,
                    formed_at=swing.time,
                )
            )
        return signals
