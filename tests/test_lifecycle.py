"""Tests for the zone lifecycle state machine."""

from datetime import timedelta

from tests.candles import T0, make_candle
from zoneforge.strategy import lifecycle
from zoneforge.strategy.models import Direction, StructuralZone, Timeframe, ZoneStatus


def _zone(direction: Direction = Direction.BULLISH) -> StructuralZone:
    return StructuralZone(
        symbol="EURUSD",
        timeframe=Timeframe.H1,
        formed_at=T0,
        price_high=1.1050,
        price_low=1.1000,
        direction=direction,
    )


def _inside(i: int):
    """Touches the zone and closes inside it."""
    return make_candle(i, 1.1030, 1.1040, 1.1020, 1.1025)


def _rejection(i: int):
    """Dips into a bullish zone and closes above it."""
    return make_candle(i, 1.1060, 1.1070, 1.1045, 1.1065)


def _away(i: int):
    """Closes above the zone without touching it."""
    return make_candle(i, 1.1060, 1.1080, 1.1055, 1.1075)


def _through(i: int):
    """Closes below a bullish zone's low."""
    return make_candle(i, 1.1010, 1.1015, 1.0980, 1.0990)


NOW = T0 + timedelta(hours=12)


class TestBarPredicates:
    def test_touch(self):
        zone = _zone()
        assert lifecycle.bar_touches_zone(_inside(1), zone)
        assert not lifecycle.bar_touches_zone(_away(1), zone)

    def test_break_depends_on_direction(self):
        bull = _zone(Direction.BULLISH)
        bear = _zone(Direction.BEARISH)
        assert lifecycle.bar_breaks_zone(_through(1), bull)
        assert not lifecycle.bar_breaks_zone(_through(1), bear)
        assert lifecycle.bar_breaks_zone(_away(1), bear)

    def test_closes_beyond(self):
        assert lifecycle.bar_closes_beyond(_away(1), _zone())
        assert lifecycle.bar_closes_beyond(_through(1), _zone(Direction.BEARISH))


class TestAdvance:
    def test_first_touch_moves_to_tested(self):
        zone = _zone()
        assert lifecycle.advance(zone, [_inside(1)], NOW, 168) is True
        assert zone.status == ZoneStatus.TESTED
        assert zone.touch_count == 1
        assert zone.last_touch == _inside(1).time
        assert zone.is_confirmed is False

    def test_close_away_confirms_without_touch(self):
        zone = _zone()
        lifecycle.advance(zone, [_away(1)], NOW, 168)
        assert zone.status == ZoneStatus.FRESH
        assert zone.is_confirmed is True
        assert zone.touch_count == 0

    def test_rejection_marks_respected(self):
        zone = _zone()
        lifecycle.advance(zone, [_inside(1), _rejection(2)], NOW, 168)
        assert zone.status == ZoneStatus.RESPECTED
        assert zone.touch_count == 2
        assert zone.rejection_count == 1
        assert zone.is_confirmed is True

    def test_repeated_touches_without_rejection_weaken(self):
        zone = _zone()
        lifecycle.advance(zone, [_inside(i) for i in range(1, 4)], NOW, 168)
        assert zone.touch_count == lifecycle.WEAKENED_TOUCHES
        assert zone.status == ZoneStatus.WEAKENED

    def test_respected_zone_is_not_weakened(self):
        zone = _zone()
        bars = [_rejection(1)] + [_inside(i) for i in range(2, 5)]
        lifecycle.advance(zone, bars, NOW, 168)
        assert zone.touch_count == 4
        assert zone.status == ZoneStatus.RESPECTED

    def test_close_through_breaks(self):
        zone = _zone()
        lifecycle.advance(zone, [_inside(1), _through(2)], NOW, 168)
        assert zone.status == ZoneStatus.BROKEN
        assert zone.updated_at == _through(2).time

    def test_bearish_mirror(self):
        zone = _zone(Direction.BEARISH)
        dip_and_drop = make_candle(1, 1.0990, 1.1005, 1.0970, 1.0980)
        lifecycle.advance(zone, [dip_and_drop], NOW, 168)
        assert zone.status == ZoneStatus.RESPECTED
        assert zone.rejection_count == 1

    def test_broken_is_terminal(self):
        zone = _zone()
        lifecycle.advance(zone, [_through(1)], NOW, 168)
        assert lifecycle.advance(zone, [_rejection(2), _rejection(3)], NOW, 168) is False
        assert zone.status == ZoneStatus.BROKEN
        assert zone.rejection_count == 0

    def test_bars_after_break_in_same_batch_are_ignored(self):
        zone = _zone()
        lifecycle.advance(zone, [_through(1), _rejection(2)], NOW, 168)
        assert zone.status == ZoneStatus.BROKEN
        assert zone.updated_at == _through(1).time

    def test_expiry(self):
        zone = _zone()
        assert lifecycle.advance(zone, [], T0 + timedelta(hours=169), 168) is True
        assert zone.status == ZoneStatus.EXPIRED
        assert lifecycle.advance(zone, [_inside(170)], T0 + timedelta(hours=171), 168) is False
        assert zone.touch_count == 0

    def test_replaying_same_bars_is_idempotent(self):
        zone = _zone()
        bars = [_inside(1), _rejection(2), _inside(3)]
        lifecycle.advance(zone, bars, NOW, 168)
        snapshot = zone.to_dict()
        assert lifecycle.advance(zone, bars, NOW, 168) is False
        assert zone.to_dict() == snapshot

    def test_bars_before_formation_are_skipped(self):
        zone = _zone()
        early = make_candle(-1, 1.1030, 1.1040, 1.1020, 1.1025)
        assert lifecycle.advance(zone, [early], NOW, 168) is False
        assert zone.touch_count == 0
