"""Bar series provider — the interface the core reads price history through.

``BarSeriesProvider`` is the protocol; ``DataFrameBarProvider`` is a
pandas-backed implementation for replay from CSV files and for tests.
Unknown symbols or timeframes yield empty results, never exceptions.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

import pandas as pd

from zoneforge.market.models import InstrumentInfo, Quote
from zoneforge.strategy.indicators import safe_atr
from zoneforge.strategy.models import INSTRUMENT_DIGITS, CandleData, Timeframe

logger = logging.getLogger("zoneforge.market")

_COLUMNS = ["time", "open", "high", "low", "close", "volume"]


@runtime_checkable
class BarSeriesProvider(Protocol):
    """Read-only access to bars, quotes and instrument precision."""

    def get_bars(self, symbol: str, timeframe: Timeframe, count: int) -> list[CandleData]:
        """Return up to *count* most recent bars, oldest first."""
        ...

    def get_bar(self, symbol: str, timeframe: Timeframe, bars_ago: int) -> Optional[CandleData]:
        """Return the bar *bars_ago* positions back (0 = latest)."""
        ...

    def get_atr(self, symbol: str, timeframe: Timeframe, period: int = 14) -> float:
        ...

    def get_bid(self, symbol: str) -> Optional[float]:
        ...

    def get_ask(self, symbol: str) -> Optional[float]:
        ...

    def get_digits(self, symbol: str) -> Optional[int]:
        ...


def frame_to_candles(df: pd.DataFrame) -> list[CandleData]:
    """Convert an OHLCV DataFrame into ``CandleData`` (oldest first)."""
    if df.empty:
        return []
    times = pd.to_datetime(df["time"], utc=True)
    return [
        CandleData(
            time=t.to_pydatetime(),
            open=float(o),
            high=float(h),
            low=float(lo),
            close=float(c),
            volume=float(v),
        )
        for t, o, h, lo, c, v in zip(
            times, df["open"], df["high"], df["low"], df["close"], df["volume"]
        )
    ]


class DataFrameBarProvider:
    """In-memory provider over per-(symbol, timeframe) OHLCV DataFrames.

    Args:
        frames: ``{(symbol, timeframe): DataFrame}`` with columns
            ``time, open, high, low, close, volume``.
        quotes: Optional ``{symbol: Quote}``.  Without a quote the last
            close of the lowest timeframe is used for both bid and ask.
        digits: Optional ``{symbol: digits}`` overriding
            ``INSTRUMENT_DIGITS``.
    """

    def __init__(
        self,
        frames: Optional[dict[tuple[str, Timeframe], pd.DataFrame]] = None,
        quotes: Optional[dict[str, Quote]] = None,
        digits: Optional[dict[str, int]] = None,
    ) -> None:
        self._frames: dict[tuple[str, Timeframe], pd.DataFrame] = {}
        self._quotes: dict[str, Quote] = dict(quotes or {})
        self._instruments: dict[str, InstrumentInfo] = {
            sym: InstrumentInfo(sym, d) for sym, d in (digits or {}).items()
        }
        for (symbol, timeframe), df in (frames or {}).items():
            self.set_frame(symbol, timeframe, df)

    # ── Mutation (replay / tests) ────────────────────────────────────────

    def set_frame(self, symbol: str, timeframe: Timeframe, df: pd.DataFrame) -> None:
        """Register bars for *symbol*/*timeframe*, sorted oldest first."""
        missing = [c for c in _COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(f"DataFrame for {symbol} missing column(s): {', '.join(missing)}")
        df = df[_COLUMNS].copy()
        df["time"] = pd.to_datetime(df["time"], utc=True)
        df = df.sort_values("time").reset_index(drop=True)
        self._frames[(symbol, Timeframe(timeframe))] = df

    def set_candles(self, symbol: str, timeframe: Timeframe, candles: list[CandleData]) -> None:
        df = pd.DataFrame(
            [(c.time, c.open, c.high, c.low, c.close, c.volume) for c in candles],
            columns=_COLUMNS,
        )
        self.set_frame(symbol, timeframe, df)

    def set_quote(self, symbol: str, bid: float, ask: float) -> None:
        self._quotes[symbol] = Quote(symbol=symbol, bid=bid, ask=ask)

    @classmethod
    def from_csv_dir(
        cls,
        data_dir: str | Path,
        digits: Optional[dict[str, int]] = None,
    ) -> "DataFrameBarProvider":
        """Load every ``SYMBOL_TIMEFRAME.csv`` file in *data_dir*."""
        provider = cls(digits=digits)
        for path in sorted(Path(data_dir).glob("*_*.csv")):
            symbol, _, tf = path.stem.rpartition("_")
            try:
                timeframe = Timeframe(tf.upper())
            except ValueError:
                logger.warning("Skipping %s: unknown timeframe '%s'", path.name, tf)
                continue
            provider.set_frame(symbol.upper(), timeframe, pd.read_csv(path))
            logger.info("Loaded %s %s from %s", symbol.upper(), timeframe.value, path.name)
        return provider

    # ── BarSeriesProvider ────────────────────────────────────────────────

    @property
    def symbols(self) -> list[str]:
        return sorted({sym for sym, _ in self._frames})

    def latest_time(self) -> Optional[datetime]:
        """Timestamp of the newest bar across all frames."""
        times = [df["time"].iloc[-1] for df in self._frames.values() if not df.empty]
        if not times:
            return None
        return max(times).to_pydatetime()

    def get_bars(self, symbol: str, timeframe: Timeframe, count: int) -> list[CandleData]:
        df = self._frames.get((symbol, Timeframe(timeframe)))
        if df is None or count <= 0:
            return []
        return frame_to_candles(df.tail(count))

    def get_bar(self, symbol: str, timeframe: Timeframe, bars_ago: int) -> Optional[CandleData]:
        df = self._frames.get((symbol, Timeframe(timeframe)))
        if df is None or bars_ago < 0 or bars_ago >= len(df):
            return None
        return frame_to_candles(df.iloc[[len(df) - 1 - bars_ago]])[0]

    def get_atr(self, symbol: str, timeframe: Timeframe, period: int = 14) -> float:
        return safe_atr(self.get_bars(symbol, timeframe, period + 1), period)

    def _quote(self, symbol: str) -> Optional[Quote]:
        quote = self._quotes.get(symbol)
        if quote is not None:
            return quote
        frames = [
            (tf.duration, df) for (sym, tf), df in self._frames.items()
            if sym == symbol and not df.empty
        ]
        if not frames:
            return None
        _, df = min(frames, key=lambda item: item[0])
        last = float(df["close"].iloc[-1])
        return Quote(symbol=symbol, bid=last, ask=last)

    def get_bid(self, symbol: str) -> Optional[float]:
        quote = self._quote(symbol)
        return quote.bid if quote else None

    def get_ask(self, symbol: str) -> Optional[float]:
        quote = self._quote(symbol)
        return quote.ask if quote else None

    def get_digits(self, symbol: str) -> Optional[int]:
        info = self._instruments.get(symbol)
        if info is not None:
            return info.digits
        if symbol in INSTRUMENT_DIGITS:
            return INSTRUMENT_DIGITS[symbol]
        if any(sym == symbol for sym, _ in self._frames):
            return 5
        return None
