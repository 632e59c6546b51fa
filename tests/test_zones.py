"""Tests for structural zone detection, scoring, storage and the detector."""

import threading
from datetime import timedelta

import pytest

from tests.candles import T0, build_zone_window, make_candle
from zoneforge.config import Config
from zoneforge.market.provider import DataFrameBarProvider
from zoneforge.strategy.models import (
    Direction,
    MarketStructure,
    StructuralZone,
    Timeframe,
    Trend,
    ZoneStatus,
    pip_size,
    price_to_pips,
)
from zoneforge.strategy.zones import (
    ZoneDetector,
    ZoneStore,
    count_liquidity_touches,
    evaluate_candidate,
    is_break_of_structure,
    score_confluence,
    score_strength,
    zone_size_pips,
)


def _zone(
    timeframe: Timeframe = Timeframe.H1,
    direction: Direction = Direction.BULLISH,
    low: float = 1.1000,
    high: float = 1.1050,
    formed_offset_hours: int = 0,
    status: ZoneStatus = ZoneStatus.FRESH,
) -> StructuralZone:
    return StructuralZone(
        symbol="EURUSD",
        timeframe=timeframe,
        formed_at=T0 + timedelta(hours=formed_offset_hours),
        price_high=high,
        price_low=low,
        direction=direction,
        status=status,
    )


def _detector(candles, **overrides) -> tuple[ZoneDetector, DataFrameBarProvider]:
    provider = DataFrameBarProvider()
    provider.set_candles("EURUSD", Timeframe.H1, candles)
    config = Config.default(timeframes=(Timeframe.H1,), **overrides)
    return ZoneDetector(config, provider), provider


# ── Instrument math ──────────────────────────────────────────────────────


class TestPipMath:
    @pytest.mark.parametrize(
        "digits, expected",
        [(5, 0.0001), (4, 0.0001), (3, 0.01), (2, 0.01)],
    )
    def test_pip_size(self, digits, expected):
        assert pip_size(digits) == pytest.approx(expected)

    def test_pip_size_rejects_non_positive(self):
        with pytest.raises(ValueError):
            pip_size(0)

    def test_fifty_pip_range(self):
        assert price_to_pips(0.0050, 5) == pytest.approx(50.0)
        assert zone_size_pips(1.1050, 1.1000, 5) == pytest.approx(50.0)


# ── Candidate tests ──────────────────────────────────────────────────────


class TestCandidateChecks:
    def test_strong_body_is_break_of_structure(self, zone_window):
        assert is_break_of_structure(zone_window[20], 0.70) is True

    def test_weak_body_is_not_break_of_structure(self):
        candle = make_candle(0, 1.1015, 1.1050, 1.1000, 1.1035)
        assert is_break_of_structure(candle, 0.70) is False

    def test_zero_range_candle(self):
        assert is_break_of_structure(make_candle(0, 1.1, 1.1, 1.1, 1.1)) is False

    def test_liquidity_counts_each_bar_once(self):
        candle = make_candle(10, 1.1005, 1.1050, 1.1000, 1.1045)
        preceding = [
            make_candle(0, 1.1020, 1.1030, 1.1010, 1.1025),  # high and low both inside
            make_candle(1, 1.0990, 1.1010, 1.0985, 1.0995),  # high inside
            make_candle(2, 1.0900, 1.0905, 1.0895, 1.0902),  # outside
        ]
        assert count_liquidity_touches(candle, preceding) == 2

    def test_liquidity_in_fixture(self, zone_window):
        assert count_liquidity_touches(zone_window[20], zone_window[:20]) == 2

    def test_strength_components(self, zone_window):
        candle = zone_window[20]
        strength = score_strength(candle, zone_window[:20], atr=0.0010, age_hours=1)
        # volume surge 0.3 + capped height term 0.4 + young 0.3
        assert strength == pytest.approx(1.0)

    def test_strength_without_surge_or_atr(self, zone_window):
        candle = make_candle(20, 1.1005, 1.1050, 1.1000, 1.1045, vol=1000)
        strength = score_strength(candle, zone_window[:20], atr=0.0, age_hours=48)
        assert strength == pytest.approx(0.2)


class TestEvaluateCandidate:
    def test_accepts_strong_zone_candle(self, zone_window):
        now = zone_window[20].time + timedelta(hours=1)
        zone = evaluate_candidate(
            "EURUSD", Timeframe.H1, zone_window, 20, 5, 0.0010, now, Config.default(),
        )
        assert zone is not None
        assert zone.direction == Direction.BULLISH
        assert zone.price_low == 1.1000
        assert zone.price_high == 1.1050
        assert zone.formed_at == zone_window[20].time
        assert zone.status == ZoneStatus.FRESH
        assert zone.strength_score >= 0.3

    def test_bearish_candle_gives_bearish_zone(self):
        candles = build_zone_window(zone_open=1.1045, zone_close=1.1005)
        now = candles[20].time + timedelta(hours=1)
        zone = evaluate_candidate(
            "EURUSD", Timeframe.H1, candles, 20, 5, 0.0010, now, Config.default(),
        )
        assert zone is not None
        assert zone.direction == Direction.BEARISH

    def test_rejects_weak_body(self):
        candles = build_zone_window(zone_open=1.1015, zone_close=1.1035)
        now = candles[20].time + timedelta(hours=1)
        assert evaluate_candidate(
            "EURUSD", Timeframe.H1, candles, 20, 5, 0.0010, now, Config.default(),
        ) is None

    def test_rejects_without_liquidity(self, zone_window):
        now = zone_window[20].time + timedelta(hours=1)
        cfg = Config.default(liquidity_min_touches=3)
        assert evaluate_candidate(
            "EURUSD", Timeframe.H1, zone_window, 20, 5, 0.0010, now, cfg,
        ) is None

    def test_rejects_small_zone(self, zone_window):
        now = zone_window[20].time + timedelta(hours=1)
        cfg = Config.default(min_zone_pips=60)
        assert evaluate_candidate(
            "EURUSD", Timeframe.H1, zone_window, 20, 5, 0.0010, now, cfg,
        ) is None

    def test_rejects_stale_candle(self, zone_window):
        now = zone_window[20].time + timedelta(hours=200)
        assert evaluate_candidate(
            "EURUSD", Timeframe.H1, zone_window, 20, 5, 0.0010, now, Config.default(),
        ) is None

    def test_rejects_low_strength(self, zone_window):
        now = zone_window[20].time + timedelta(hours=1)
        cfg = Config.default(min_zone_strength=1.01)
        assert evaluate_candidate(
            "EURUSD", Timeframe.H1, zone_window, 20, 5, 0.0010, now, cfg,
        ) is None


class TestConfluence:
    def test_counts_distinct_timeframes_and_trend(self):
        zone = _zone(Timeframe.H1)
        others = [
            _zone(Timeframe.H4, low=1.1040, high=1.1100),
            _zone(Timeframe.H4, low=1.1020, high=1.1060, formed_offset_hours=4),
            _zone(Timeframe.D1, low=1.0950, high=1.1010),
            _zone(Timeframe.M15, direction=Direction.BEARISH),
            _zone(Timeframe.M15, status=ZoneStatus.BROKEN, formed_offset_hours=1),
            _zone(Timeframe.H1, formed_offset_hours=2),
            _zone(Timeframe.H4, low=1.2000, high=1.2050, formed_offset_hours=8),
        ]
        structure = MarketStructure("EURUSD", Timeframe.H1, trend=Trend.UP)
        # H4 and D1 overlap (0.25 each) plus trend agreement (0.2)
        assert score_confluence(zone, others, structure) == pytest.approx(0.7)

    def test_opposing_trend_adds_nothing(self):
        zone = _zone(Timeframe.H1)
        structure = MarketStructure("EURUSD", Timeframe.H1, trend=Trend.DOWN)
        assert score_confluence(zone, [], structure) == 0.0

    def test_every_timeframe_agreeing(self):
        zone = _zone(Timeframe.M15)
        others = [_zone(tf) for tf in (Timeframe.H1, Timeframe.H4, Timeframe.D1)]
        structure = MarketStructure("EURUSD", Timeframe.M15, trend=Trend.UP)
        assert score_confluence(zone, others, structure) == pytest.approx(0.95)


# ── Zone model ───────────────────────────────────────────────────────────


class TestStructuralZone:
    def test_inverted_bounds_rejected(self):
        with pytest.raises(ValueError, match="price_high"):
            _zone(low=1.1050, high=1.1000)

    def test_scores_clamped(self):
        zone = _zone()
        zone.set_scores(strength=1.7, confluence=-0.2)
        assert zone.strength_score == 1.0
        assert zone.confluence_score == 0.0

    def test_updated_at_defaults_to_formed_at(self):
        zone = _zone()
        assert zone.updated_at == zone.formed_at

    def test_boundaries(self):
        bull = _zone()
        bear = _zone(direction=Direction.BEARISH)
        assert bull.near_boundary == 1.1050
        assert bull.far_boundary == 1.1000
        assert bear.near_boundary == 1.1000
        assert bear.far_boundary == 1.1050

    def test_distance_to(self):
        zone = _zone()
        assert zone.distance_to(1.1020) == 0.0
        assert zone.distance_to(1.1060) == pytest.approx(0.0010)
        assert zone.distance_to(1.0990) == pytest.approx(0.0010)


# ── Store ────────────────────────────────────────────────────────────────


class TestZoneStore:
    def test_add_and_query(self):
        store = ZoneStore()
        store.add(_zone(Timeframe.H1))
        store.add(_zone(Timeframe.H4))
        assert len(store) == 2
        assert len(store.zones("EURUSD")) == 2
        assert len(store.zones("EURUSD", Timeframe.H4)) == 1
        assert store.zones("GBPUSD") == []
        assert store.symbols == ["EURUSD"]

    def test_duplicate_key_rejected(self):
        store = ZoneStore()
        store.add(_zone())
        with pytest.raises(RuntimeError, match="already stored"):
            store.add(_zone())

    def test_purge_expired_and_old_terminal(self):
        store = ZoneStore()
        store.add(_zone(status=ZoneStatus.EXPIRED))
        store.add(_zone(status=ZoneStatus.BROKEN, formed_offset_hours=1))
        store.add(_zone(status=ZoneStatus.BROKEN, formed_offset_hours=100))
        store.add(_zone(formed_offset_hours=2))
        removed = store.purge("EURUSD", T0 + timedelta(hours=170), 168)
        assert removed == 2
        remaining = {z.status for z in store.zones("EURUSD")}
        assert remaining == {ZoneStatus.BROKEN, ZoneStatus.FRESH}

    def test_clear_symbol(self):
        store = ZoneStore()
        store.add(_zone())
        store.clear("EURUSD")
        assert len(store) == 0
        assert store.symbols == []


# ── Detector ─────────────────────────────────────────────────────────────


class TestZoneDetector:
    def test_scan_creates_confirmed_zone(self, zone_window):
        detector, _ = _detector(zone_window)
        now = zone_window[-1].time + timedelta(hours=1)
        changed = detector.scan("EURUSD", Timeframe.H1, now)

        assert len(changed) == 1
        zone = changed[0]
        assert zone.direction == Direction.BULLISH
        assert zone.formed_at == zone_window[20].time
        assert zone.is_confirmed is True
        assert zone.status == ZoneStatus.FRESH
        assert zone.touch_count == 0
        assert zone.updated_at == zone_window[21].time
        assert detector.get_zones("EURUSD") == [zone]
        assert detector.get_zones("EURUSD", "H1") == [zone]

    def test_scan_waits_for_symbol_lock(self, zone_window):
        detector, _ = _detector(zone_window)
        now = zone_window[-1].time + timedelta(hours=1)
        lock = detector.store.lock("EURUSD")
        assert lock is detector.store.lock("EURUSD")

        results = []
        worker = threading.Thread(
            target=lambda: results.append(detector.scan("EURUSD", Timeframe.H1, now)),
        )
        with lock:
            worker.start()
            worker.join(timeout=0.2)
            assert worker.is_alive()
            assert len(detector.store) == 0
        worker.join(timeout=5)

        assert len(results[0]) == 1
        assert not lock.locked()

    def test_scan_is_idempotent(self, zone_window):
        detector, _ = _detector(zone_window)
        now = zone_window[-1].time + timedelta(hours=1)
        detector.scan("EURUSD", Timeframe.H1, now)
        before = detector.get_zones("EURUSD")[0].to_dict()

        assert detector.scan("EURUSD", Timeframe.H1, now) == []
        assert len(detector.store) == 1
        assert detector.get_zones("EURUSD")[0].to_dict() == before

    def test_zone_keys_are_unique(self, zone_window):
        detector, _ = _detector(zone_window)
        now = zone_window[-1].time + timedelta(hours=1)
        for minutes in (0, 5, 10):
            detector.scan("EURUSD", Timeframe.H1, now + timedelta(minutes=minutes))
        zones = detector.get_zones("EURUSD")
        assert len({z.key for z in zones}) == len(zones) == 1

    def test_weak_window_yields_no_zone(self):
        candles = build_zone_window(zone_open=1.1015, zone_close=1.1035)
        detector, _ = _detector(candles)
        now = candles[-1].time + timedelta(hours=1)
        assert detector.scan("EURUSD", Timeframe.H1, now) == []

    def test_retest_with_rejection_marks_respected(self, zone_window):
        detector, provider = _detector(zone_window)
        now = zone_window[-1].time + timedelta(hours=1)
        detector.scan("EURUSD", Timeframe.H1, now)

        retest = make_candle(22, 1.1070, 1.1075, 1.1045, 1.1068)
        provider.set_candles("EURUSD", Timeframe.H1, zone_window + [retest])
        changed = detector.scan("EURUSD", Timeframe.H1, retest.time + timedelta(hours=1))

        assert len(changed) == 1
        zone = changed[0]
        assert zone.status == ZoneStatus.RESPECTED
        assert zone.touch_count == 1
        assert zone.rejection_count == 1
        assert zone.last_touch == retest.time

    def test_close_through_breaks_zone(self, zone_window):
        detector, provider = _detector(zone_window)
        now = zone_window[-1].time + timedelta(hours=1)
        detector.scan("EURUSD", Timeframe.H1, now)

        breaker = make_candle(22, 1.1000, 1.1010, 1.0980, 1.0990)
        provider.set_candles("EURUSD", Timeframe.H1, zone_window + [breaker])
        changed = detector.scan("EURUSD", Timeframe.H1, breaker.time + timedelta(hours=1))
        assert [z.status for z in changed] == [ZoneStatus.BROKEN]

        # A later rejection bar cannot revive a broken zone
        bounce = make_candle(23, 1.1040, 1.1070, 1.1030, 1.1065)
        provider.set_candles("EURUSD", Timeframe.H1, zone_window + [breaker, bounce])
        detector.scan("EURUSD", Timeframe.H1, bounce.time + timedelta(hours=1))
        assert detector.get_zones("EURUSD")[0].status == ZoneStatus.BROKEN

    def test_expired_zone_is_purged_on_next_scan(self, zone_window):
        detector, _ = _detector(zone_window)
        now = zone_window[-1].time + timedelta(hours=1)
        detector.scan("EURUSD", Timeframe.H1, now)

        later = zone_window[20].time + timedelta(hours=169)
        changed = detector.scan("EURUSD", Timeframe.H1, later)
        assert [z.status for z in changed] == [ZoneStatus.EXPIRED]

        detector.scan("EURUSD", Timeframe.H1, later + timedelta(minutes=1))
        assert detector.get_zones("EURUSD") == []

    def test_unknown_symbol_returns_empty(self, zone_window):
        detector, _ = _detector(zone_window)
        now = zone_window[-1].time + timedelta(hours=1)
        assert detector.scan("XXXYYY", Timeframe.H1, now) == []

    def test_scan_symbol_is_rate_limited(self, zone_window):
        detector, _ = _detector(zone_window)
        now = zone_window[-1].time + timedelta(hours=1)
        assert len(detector.scan_symbol("EURUSD", now)) == 1

        detector.store.clear("EURUSD")
        assert detector.scan_symbol("EURUSD", now + timedelta(seconds=30)) == []
        assert len(detector.scan_symbol("EURUSD", now + timedelta(seconds=61))) == 1

    def test_clear_resets_rate_limit(self, zone_window):
        detector, _ = _detector(zone_window)
        now = zone_window[-1].time + timedelta(hours=1)
        detector.scan_symbol("EURUSD", now)
        detector.clear("EURUSD")
        assert len(detector.scan_symbol("EURUSD", now + timedelta(seconds=1))) == 1
