"""Strategy data models — typed representations for zones, swings and signals."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class CandleData:
    """A single OHLCV bar. Candle lists are always ordered oldest-first."""

    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def range(self) -> float:
        return self.high - self.low


# ── Enumerations ─────────────────────────────────────────────────────────


class Direction(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"


class ZoneStatus(str, Enum):
    """Lifecycle states of a structural zone."""

    FRESH = "fresh"
    TESTED = "tested"
    RESPECTED = "respected"
    WEAKENED = "weakened"
    BROKEN = "broken"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (ZoneStatus.BROKEN, ZoneStatus.EXPIRED)


class SignalType(str, Enum):
    """The one canonical signal type shared by every component."""

    BUY_ENTRY = "buy_entry"
    SELL_ENTRY = "sell_entry"
    BUY_EXIT = "buy_exit"
    SELL_EXIT = "sell_exit"
    HOLD = "hold"
    REDUCE = "reduce"


class SignalSource(str, Enum):
    ZONE = "zone"
    STRUCTURE = "structure"
    EXTERNAL = "external"


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    RANGING = "ranging"


class Timeframe(str, Enum):
    """Supported scan timeframes."""

    M15 = "M15"
    H1 = "H1"
    H4 = "H4"
    D1 = "D1"

    @property
    def duration(self) -> timedelta:
        return _TIMEFRAME_DURATIONS[self]

    @property
    def confidence_bonus(self) -> float:
        """Confidence bonus for signals born on this timeframe."""
        return _TIMEFRAME_BONUS[self]


_TIMEFRAME_DURATIONS: dict[Timeframe, timedelta] = {
    Timeframe.M15: timedelta(minutes=15),
    Timeframe.H1: timedelta(hours=1),
    Timeframe.H4: timedelta(hours=4),
    Timeframe.D1: timedelta(days=1),
}

_TIMEFRAME_BONUS: dict[Timeframe, float] = {
    Timeframe.M15: 0.05,
    Timeframe.H1: 0.10,
    Timeframe.H4: 0.15,
    Timeframe.D1: 0.20,
}


def clamp_unit(value: float) -> float:
    """Clamp *value* into ``[0, 1]``."""
    return max(0.0, min(1.0, value))


# ── Market structure ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class SwingPoint:
    """A confirmed swing high or swing low."""

    time: datetime
    price: float
    kind: str  # "high" or "low"
    index: int = -1


@dataclass(frozen=True)
class MarketStructure:
    """Swings and trend state for one symbol on one timeframe."""

    symbol: str
    timeframe: Timeframe
    swings: tuple[SwingPoint, ...] = ()
    trend: Trend = Trend.RANGING
    trend_strength: float = 0.0
    updated_at: Optional[datetime] = None

    @classmethod
    def empty(
        cls,
        symbol: str,
        timeframe: Timeframe,
        updated_at: Optional[datetime] = None,
    ) -> "MarketStructure":
        return cls(symbol=symbol, timeframe=timeframe, updated_at=updated_at)

    @property
    def swing_highs(self) -> list[SwingPoint]:
        return [s for s in self.swings if s.kind == "high"]

    @property
    def swing_lows(self) -> list[SwingPoint]:
        return [s for s in self.swings if s.kind == "low"]


# ── Structural zones ─────────────────────────────────────────────────────

ZoneKey = tuple[str, Timeframe, datetime]


@dataclass
class StructuralZone:
    """A price interval where a strong directional move originated.

    Identified by ``(symbol, timeframe, formed_at)``.  Scores are always
    held in ``[0, 1]``; use :meth:`set_scores` to update them.
    """

    symbol: str
    timeframe: Timeframe
    formed_at: datetime
    price_high: float
    price_low: float
    direction: Direction
    updated_at: Optional[datetime] = None
    status: ZoneStatus = ZoneStatus.FRESH
    strength_score: float = 0.0
    confluence_score: float = 0.0
    touch_count: int = 0
    rejection_count: int = 0
    last_touch: Optional[datetime] = None
    is_confirmed: bool = False

    def __post_init__(self) -> None:
        if self.price_high < self.price_low:
            raise ValueError(
                f"price_high ({self.price_high}) must be >= "
                f"price_low ({self.price_low})"
            )
        self.timeframe = Timeframe(self.timeframe)
        self.direction = Direction(self.direction)
        self.status = ZoneStatus(self.status)
        if self.updated_at is None:
            self.updated_at = self.formed_at
        self.set_scores(self.strength_score, self.confluence_score)

    def set_scores(
        self,
        strength: Optional[float] = None,
        confluence: Optional[float] = None,
    ) -> None:
        """Write strength/confluence, clamped into ``[0, 1]``."""
        if strength is not None:
            self.strength_score = clamp_unit(strength)
        if confluence is not None:
            self.confluence_score = clamp_unit(confluence)

    @property
    def key(self) -> ZoneKey:
        return (self.symbol, self.timeframe, self.formed_at)

    @property
    def height(self) -> float:
        return self.price_high - self.price_low

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_bullish(self) -> bool:
        return self.direction == Direction.BULLISH

    @property
    def near_boundary(self) -> float:
        """Boundary price returns to first: the high of a bullish zone."""
        return self.price_high if self.is_bullish else self.price_low

    @property
    def far_boundary(self) -> float:
        return self.price_low if self.is_bullish else self.price_high

    def age_hours(self, now: datetime) -> float:
        return (now - self.formed_at).total_seconds() / 3600.0

    def overlaps(self, other: "StructuralZone") -> bool:
        return self.price_low <= other.price_high and other.price_low <= self.price_high

    def distance_to(self, price: float) -> float:
        """Price distance from *price* to the zone (0 when inside)."""
        if price > self.price_high:
            return price - self.price_high
        if price < self.price_low:
            return self.price_low - price
        return 0.0

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "timeframe": self.timeframe.value,
            "formed_at": self.formed_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "price_high": self.price_high,
            "price_low": self.price_low,
            "direction": self.direction.value,
            "status": self.status.value,
            "strength_score": round(self.strength_score, 4),
            "confluence_score": round(self.confluence_score, 4),
            "touch_count": self.touch_count,
            "rejection_count": self.rejection_count,
            "last_touch": self.last_touch.isoformat() if self.last_touch else None,
            "is_confirmed": self.is_confirmed,
        }


# ── Signals ──────────────────────────────────────────────────────────────


@dataclass
class Signal:
    """A directional trade proposal (or an exit instruction)."""

    symbol: str
    signal_type: SignalType
    source: SignalSource
    entry_price: float
    confidence: float
    created_at: datetime
    expires_at: datetime
    reason: str
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    processed: bool = False
    timeframe: Optional[Timeframe] = None
    formed_at: Optional[datetime] = None
    zone_key: Optional[ZoneKey] = None
    metadata: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.signal_type = SignalType(self.signal_type)
        self.source = SignalSource(self.source)
        self.confidence = clamp_unit(self.confidence)
        if self.formed_at is None:
            self.formed_at = self.created_at

    @property
    def is_entry(self) -> bool:
        return self.signal_type in (SignalType.BUY_ENTRY, SignalType.SELL_ENTRY)

    @property
    def is_exit(self) -> bool:
        return self.signal_type in (SignalType.BUY_EXIT, SignalType.SELL_EXIT)

    @property
    def direction(self) -> Optional[Direction]:
        """Market direction of an entry signal (``None`` for non-entries)."""
        if self.signal_type == SignalType.BUY_ENTRY:
            return Direction.BULLISH
        if self.signal_type == SignalType.SELL_ENTRY:
            return Direction.BEARISH
        return None

    @property
    def reward_risk(self) -> Optional[float]:
        """Target distance ÷ stop distance, ``None`` without both levels."""
        if self.stop_loss is None or self.take_profit is None:
            return None
        risk = abs(self.entry_price - self.stop_loss)
        if risk == 0:
            return None
        return abs(self.take_profit - self.entry_price) / risk

    @property
    def identity(self) -> tuple:
        """What a newer signal must share to supersede this one."""
        if self.zone_key is not None:
            return (self.signal_type, self.zone_key)
        return (self.signal_type, self.source, self.timeframe, self.formed_at)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "type": self.signal_type.value,
            "source": self.source.value,
            "entry_price": self.entry_price,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "confidence": round(self.confidence, 4),
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "reason": self.reason,
            "processed": self.processed,
            "timeframe": self.timeframe.value if self.timeframe else None,
        }


# ── Instrument metadata ──────────────────────────────────────────────────

INSTRUMENT_DIGITS: dict[str, int] = {
    "EURUSD": 5,
    "GBPUSD": 5,
    "USDJPY": 3,
    "USDCHF": 5,
    "AUDUSD": 5,
    "NZDUSD": 5,
    "USDCAD": 5,
    "XAUUSD": 2,
}


def pip_size(digits: int) -> float:
    """Price distance of one pip for a quote with *digits* decimals.

    2–3 digit quotes → 0.01, 4–5 digit quotes → 0.0001.
    """
    if digits <= 0:
        raise ValueError(f"digits must be positive, got {digits}")
    if digits % 2 == 1:
        digits -= 1
    return 10.0 ** -digits


def price_to_pips(distance: float, digits: int) -> float:
    return distance / pip_size(digits)
