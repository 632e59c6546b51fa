"""Market data models — quotes and instrument metadata supplied by a bar provider."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class Quote:
    """Current bid/ask for an instrument."""

    symbol: str
    bid: float
    ask: float
    time: Optional[datetime] = None


@dataclass(frozen=True)
class InstrumentInfo:
    """Quote precision for converting price distances to pips."""

    symbol: str
    digits: int
