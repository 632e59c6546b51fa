"""ZoneForge — analysis engine (orchestration loop).

Connects the bar provider, structure analyzer, zone detector, signal
sources and combiner into one synchronous pass per symbol.  The async
``run`` loop only sleeps between passes; all work happens in
``run_cycle`` on the calling thread.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from zoneforge.config import Config
from zoneforge.market.provider import BarSeriesProvider
from zoneforge.repos.signal_repo import SignalRepo
from zoneforge.repos.zone_repo import ZoneRepo
from zoneforge.strategy.base import SignalSourceProtocol, SourceContext
from zoneforge.strategy.combiner import CombineContext, SignalCombiner
from zoneforge.strategy.correlation_filter import calculate_correlation, pair_key
from zoneforge.strategy.ensemble import EnsembleWeights
from zoneforge.strategy.models import Signal, StructuralZone, Timeframe
from zoneforge.strategy.news_filter import parse_window
from zoneforge.strategy.registry import get_source
from zoneforge.strategy.signals import SignalStore
from zoneforge.strategy.structure import MarketStructureAnalyzer
from zoneforge.strategy.zones import ZoneDetector

logger = logging.getLogger("zoneforge.engine")


class ZoneEngine:
    """Runs one detection-and-signalling pass per symbol per cycle.

    Args:
        config: Application configuration.
        provider: Bar/quote source (``BarSeriesProvider``).
        analyzer: Market-structure analyzer; built from *config* if omitted.
        detector: Zone detector; built from *config* if omitted.
        combiner: Signal combiner; built from *config* if omitted.
        sources: Signal sources; resolved from ``config.signal_sources``
            via the registry if omitted.
        signal_store: Store for final signals.
        zone_repo: Optional SQLite repo zones are persisted to.
        signal_repo: Optional SQLite repo signals are persisted to.

    Realised trade results are fed back through :meth:`record_outcome`;
    the ensemble weights file is rewritten there and when :meth:`run`
    returns.
    """

    def __init__(
        self,
        config: Config,
        provider: BarSeriesProvider,
        analyzer: Optional[MarketStructureAnalyzer] = None,
        detector: Optional[ZoneDetector] = None,
        combiner: Optional[SignalCombiner] = None,
        sources: Optional[list[SignalSourceProtocol]] = None,
        signal_store: Optional[SignalStore] = None,
        zone_repo: Optional[ZoneRepo] = None,
        signal_repo: Optional[SignalRepo] = None,
    ) -> None:
        self._config = config
        self._provider = provider
        self._analyzer = analyzer or MarketStructureAnalyzer(config)
        self._detector = detector or ZoneDetector(config, provider, self._analyzer)
        self._combiner = combiner or SignalCombiner(
            config,
            EnsembleWeights(
                config.weights_path if config.ensemble_enabled else None,
                learning_rate=config.ensemble_learning_rate,
            ),
        )
        self._sources = sources if sources is not None else [
            get_source(name, config) for name in config.signal_sources
        ]
        self._signal_store = signal_store or SignalStore(config.signal_retention_hours)
        self._zone_repo = zone_repo
        self._signal_repo = signal_repo
        self._news_windows = [parse_window(s, e) for s, e in config.news_windows]
        self._running: bool = False
        self._cycle_count: int = 0
        self._last_cycle_at: Optional[datetime] = None

    # ── Accessors ────────────────────────────────────────────────────────

    @property
    def symbols(self) -> tuple[str, ...]:
        return self._config.symbols

    @property
    def detector(self) -> ZoneDetector:
        return self._detector

    @property
    def signal_store(self) -> SignalStore:
        return self._signal_store

    @property
    def combiner(self) -> SignalCombiner:
        return self._combiner

    def zones(self, symbol: str) -> list[StructuralZone]:
        return self._detector.get_zones(symbol)

    def signals(self, symbol: str) -> list[Signal]:
        return self._signal_store.get(symbol)

    def status(self) -> dict:
        return {
            "running": self._running,
            "cycle_count": self._cycle_count,
            "last_cycle_at": self._last_cycle_at.isoformat() if self._last_cycle_at else None,
            "symbols": list(self._config.symbols),
            "timeframes": [tf.value for tf in self._config.timeframes],
            "sources": [s.name for s in self._sources],
        }

    def stop(self) -> None:
        """Signal the engine to stop after the current cycle."""
        self._running = False

    def record_outcome(self, signal: Signal, success: bool) -> float:
        """Feed a realised trade result back into the ensemble weights.

        Marks *signal* processed, adjusts its source's weight and rewrites
        the weights file.  Returns the source's new weight.
        """
        self._signal_store.mark_processed(signal)
        weights = self._combiner.weights
        weight = weights.record_outcome(signal.source, success)
        weights.save()
        logger.info(
            "%s: %s outcome from %s recorded (%s), weight now %.3f",
            signal.symbol, signal.signal_type.value, signal.source.value,
            "win" if success else "loss", weight,
        )
        return weight

    # ── Polling loop ─────────────────────────────────────────────────────

    async def run(
        self,
        poll_interval: int | None = None,
        max_cycles: int = 0,
    ) -> list[dict]:
        """Run analysis cycles until stopped.

        Args:
            poll_interval: Seconds between cycles. Defaults to config.
            max_cycles: Stop after this many cycles (0 = unlimited).

        Returns:
            List of per-cycle result dicts.
        """
        if poll_interval is None:
            poll_interval = self._config.poll_interval_seconds
        self._running = True
        results: list[dict] = []
        cycle = 0

        while self._running:
            cycle += 1
            results.append(self.run_cycle())

            if max_cycles > 0 and cycle >= max_cycles:
                break

            # Interruptible sleep, checks _running every second
            for _ in range(poll_interval):
                if not self._running:
                    break
                await asyncio.sleep(1)

        self._running = False
        self._combiner.weights.save()
        return results

    # ── Single cycle ─────────────────────────────────────────────────────

    def run_cycle(self, utc_now: Optional[datetime] = None) -> dict:
        """Execute one pass over every configured symbol.

        Args:
            utc_now: Current UTC datetime.  Defaults to ``datetime.now(UTC)``.

        Returns:
            ``{symbol: result}`` where each result has an ``action`` of
            ``"signals"``, ``"no_signal"``, ``"skipped"`` or ``"error"``.
        """
        if utc_now is None:
            utc_now = datetime.now(timezone.utc)
        self._cycle_count += 1
        self._last_cycle_at = utc_now

        purged = self._signal_store.purge(utc_now)
        if purged:
            logger.debug("Purged %d stale signal(s)", purged)

        snapshot = self._signal_store.snapshot()
        active = {
            sym for sym, sigs in snapshot.items()
            if any(s.is_entry and not s.processed and not s.is_expired(utc_now) for s in sigs)
        }
        correlations = self._correlations() if self._config.correlation_filter_enabled else {}

        results: dict[str, dict] = {}
        for symbol in self._config.symbols:
            try:
                results[symbol] = self._run_symbol(symbol, utc_now, active, correlations)
            except Exception as exc:
                logger.error("%s: analysis pass failed: %s", symbol, exc)
                results[symbol] = {"action": "error", "reason": str(exc)}
            # Symbols later in this pass see entries stored just now
            if self._signal_store.has_active_entry(symbol, utc_now):
                active.add(symbol)

        logger.info(
            "Cycle %d: %s",
            self._cycle_count,
            ", ".join(f"{s}={r['action']}" for s, r in results.items()),
        )
        return results

    def _run_symbol(
        self,
        symbol: str,
        now: datetime,
        active_symbols: set[str],
        correlations: dict[tuple[str, str], float],
    ) -> dict:
        provider = self._provider
        cfg = self._config

        digits = provider.get_digits(symbol)
        if digits is None:
            logger.warning("%s: unknown symbol, skipping", symbol)
            return {"action": "skipped", "reason": "unknown_symbol"}

        bid = provider.get_bid(symbol)
        ask = provider.get_ask(symbol)
        if not bid or not ask:
            logger.warning("%s: no quote available, skipping", symbol)
            return {"action": "skipped", "reason": "no_quote"}

        # 1 ── Zones (rate-limited per symbol)
        changed = self._detector.scan_symbol(symbol, now)

        # 2 ── Per-timeframe state for the sources and filters
        structures = {}
        atr: dict[Timeframe, float] = {}
        last_candle = {}
        for tf in cfg.timeframes:
            structures[tf] = self._analyzer.get(symbol, tf)
            atr[tf] = provider.get_atr(symbol, tf, cfg.atr_period)
            candle = provider.get_bar(symbol, tf, 0)
            if candle is not None:
                last_candle[tf] = candle

        context = SourceContext(
            symbol=symbol,
            now=now,
            bid=bid,
            ask=ask,
            digits=digits,
            zones=self._detector.get_zones(symbol),
            structures=structures,
            atr=atr,
            last_candle=last_candle,
        )

        # 3 ── Candidates from every source
        candidates: list[Signal] = []
        for source in self._sources:
            candidates.extend(source.generate(context))

        # 4 ── Filter, resolve conflicts against live entries, merge
        window = timedelta(minutes=cfg.conflict_window_minutes)
        recent = [
            s for s in self._signal_store.active(symbol, now)
            if s.is_entry and now - s.created_at <= window
        ]
        combine_context = CombineContext(
            now=now,
            price=(bid + ask) / 2,
            atr=atr,
            trends=self._analyzer.trends(symbol),
            news_windows=self._news_windows,
            active_symbols=sorted(active_symbols - {symbol}),
            correlations=correlations,
            recent_entries=recent,
        )
        final = self._combiner.combine(symbol, candidates, combine_context)

        # 5 ── Store and persist
        emitted: list[Signal] = []
        for signal in final:
            is_new = self._signal_store.add(signal)
            if signal.is_entry:
                self._signal_store.withdraw_entries(signal, window)
            if is_new:
                emitted.append(signal)
                if self._signal_repo is not None:
                    self._signal_repo.insert_signal(signal)
                logger.info(
                    "%s: %s @ %s (SL %s, TP %s, confidence %.2f) — %s",
                    symbol, signal.signal_type.value, signal.entry_price,
                    signal.stop_loss, signal.take_profit, signal.confidence,
                    signal.reason,
                )

        if self._zone_repo is not None and changed:
            self._zone_repo.upsert_zones(changed)

        return {
            "action": "signals" if emitted else "no_signal",
            "zones_updated": len(changed),
            "candidates": len(candidates),
            "signals": [s.to_dict() for s in emitted],
        }

    def _correlations(self) -> dict[tuple[str, str], float]:
        """Return-correlation for every configured symbol pair."""
        cfg = self._config
        timeframe = Timeframe.H1 if Timeframe.H1 in cfg.timeframes else cfg.timeframes[0]
        closes = {
            sym: [c.close for c in self._provider.get_bars(sym, timeframe, cfg.scan_lookback)]
            for sym in cfg.symbols
        }
        result: dict[tuple[str, str], float] = {}
        symbols = list(cfg.symbols)
        for i, a in enumerate(symbols):
            for b in symbols[i + 1:]:
                coef = calculate_correlation(closes[a], closes[b])
                if coef is not None:
                    result[pair_key(a, b)] = coef
        return result
