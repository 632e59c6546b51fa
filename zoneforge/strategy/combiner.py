"""Signal combiner — quality filters, conflict resolution and ensemble merging.

Flow per symbol:
    1. Exit signals pass straight through.
    2. Each entry must clear every quality filter (confidence floor,
       correlation, volatility band, news blackout, MTF alignment).
    3. Survivors and the symbol's live entries from earlier passes are
       grouped into creation-time windows; each window keeps one entry:
       highest confidence, ties to the most recent formation.  A live entry
       that wins keeps its place and nothing new is returned.
    4. In ensemble mode, agreeing sources blend their confidences by weight.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from zoneforge.config import Config
from zoneforge.strategy.alignment_filter import is_aligned
from zoneforge.strategy.correlation_filter import find_correlated_conflict
from zoneforge.strategy.ensemble import EnsembleWeights
from zoneforge.strategy.models import Signal, SignalSource, Timeframe, Trend
from zoneforge.strategy.news_filter import in_news_window
from zoneforge.strategy.volatility_filter import is_volatility_acceptable

logger = logging.getLogger("zoneforge.combiner")


@dataclass
class CombineContext:
    """Market state the filters need, captured once per symbol pass."""

    now: datetime
    price: float = 0.0
    atr: dict[Timeframe, float] = field(default_factory=dict)
    trends: dict[Timeframe, Trend] = field(default_factory=dict)
    news_windows: list[tuple[datetime, datetime]] = field(default_factory=list)
    active_symbols: list[str] = field(default_factory=list)
    correlations: dict[tuple[str, str], float] = field(default_factory=dict)
    recent_entries: list[Signal] = field(default_factory=list)


class SignalCombiner:
    """Reduces one symbol's candidate signals to the final set.

    Args:
        config: Application configuration (filter thresholds, modes).
        weights: Ensemble weights; only consulted when
            ``config.ensemble_enabled``.
    """

    def __init__(self, config: Config, weights: Optional[EnsembleWeights] = None) -> None:
        self._config = config
        self._weights = weights or EnsembleWeights()

    @property
    def weights(self) -> EnsembleWeights:
        return self._weights

    # ── Filters ──────────────────────────────────────────────────────────

    def rejection_reason(self, signal: Signal, context: CombineContext) -> Optional[str]:
        """Name of the first filter *signal* fails, or ``None`` if it passes."""
        cfg = self._config

        if signal.confidence < cfg.combiner_min_confidence:
            return "low_confidence"

        if cfg.correlation_filter_enabled:
            other = find_correlated_conflict(
                signal.symbol,
                context.active_symbols,
                context.correlations,
                cfg.correlation_threshold,
            )
            if other is not None:
                return f"correlated_with_{other}"

        atr = context.atr.get(signal.timeframe) if signal.timeframe else None
        if atr is not None and context.price > 0:
            if not is_volatility_acceptable(
                atr, context.price, cfg.volatility_min_pct, cfg.volatility_max_pct,
            ):
                return "volatility_out_of_band"

        if in_news_window(context.now, context.news_windows):
            return "news_window"

        if cfg.require_mtf_alignment and signal.direction is not None:
            if not is_aligned(signal.direction, context.trends, cfg.alignment_timeframes):
                return "mtf_misaligned"

        return None

    # ── Combination ──────────────────────────────────────────────────────

    def combine(
        self,
        symbol: str,
        candidates: list[Signal],
        context: CombineContext,
    ) -> list[Signal]:
        """Return the final signals for *symbol*.

        Candidates for other symbols are ignored.  Exits are always kept;
        at most one entry survives per conflict window.  Live entries from
        earlier passes (``context.recent_entries``) compete in the window
        too; when one of them wins, no new entry is returned for it.
        """
        own = [s for s in candidates if s.symbol == symbol]
        exits = [s for s in own if s.is_exit]

        entries: list[Signal] = []
        for signal in own:
            if not signal.is_entry:
                continue
            reason = self.rejection_reason(signal, context)
            if reason is not None:
                logger.debug(
                    "%s: %s signal from %s rejected (%s)",
                    symbol, signal.signal_type.value, signal.source.value, reason,
                )
                continue
            entries.append(signal)

        # A candidate re-proposing a held signal replaces it rather than competing
        fresh = {s.identity for s in entries}
        held = [
            s for s in context.recent_entries
            if s.symbol == symbol and s.is_entry and s.identity not in fresh
        ]
        held_ids = {id(s) for s in held}

        winners: list[Signal] = []
        for window in self._windows(entries + held):
            winner = self._resolve_window(window, held_ids)
            if id(winner) in held_ids:
                if any(id(s) not in held_ids for s in window):
                    logger.info(
                        "%s: active %s (confidence %.2f) outranks new candidates",
                        symbol, winner.signal_type.value, winner.confidence,
                    )
                continue
            winners.append(winner)

        final = sorted(exits + winners, key=lambda s: s.created_at)
        if winners:
            logger.info(
                "%s: %d candidate(s) → %d entry, %d exit",
                symbol, len(own), len(winners), len(exits),
            )
        return final

    def _windows(self, entries: list[Signal]) -> list[list[Signal]]:
        """Group entries whose creation times fall within one conflict window."""
        span = timedelta(minutes=self._config.conflict_window_minutes)
        windows: list[list[Signal]] = []
        start: Optional[datetime] = None
        for signal in sorted(entries, key=lambda s: s.created_at):
            if start is None or signal.created_at - start > span:
                windows.append([])
                start = signal.created_at
            windows[-1].append(signal)
        return windows

    def _resolve_window(self, window: list[Signal], held_ids: set[int]) -> Signal:
        winner = max(window, key=lambda s: (s.confidence, s.formed_at))

        if len({s.signal_type for s in window}) > 1:
            logger.info(
                "%s: conflicting directions, keeping %s (confidence %.2f)",
                winner.symbol, winner.signal_type.value, winner.confidence,
            )

        if self._config.ensemble_enabled and id(winner) not in held_ids:
            self._apply_ensemble(winner, [s for s in window if id(s) not in held_ids])
        return winner

    def _apply_ensemble(self, winner: Signal, window: list[Signal]) -> None:
        best: dict[SignalSource, float] = {}
        for signal in window:
            if signal.signal_type != winner.signal_type:
                continue
            best[signal.source] = max(best.get(signal.source, 0.0), signal.confidence)

        if len(best) < 2:
            return

        blended = self._weights.weighted_confidence(best)
        winner.metadata["ensemble"] = {
            src.value: round(conf, 4) for src, conf in best.items()
        }
        winner.metadata["single_source_confidence"] = winner.confidence
        winner.confidence = min(1.0, max(0.0, blended))
        winner.reason += f" | ensemble of {len(best)} sources"
