"""Zone lifecycle — advances a zone's status as price revisits it. Pure functions.

State machine::

    fresh ──touch──▶ tested ──close away──▶ respected
                       │
                       └──3+ touches, no rejection──▶ weakened

    any non-terminal ──close through far side──▶ broken   (terminal)
    any non-terminal ──age > retention──────────▶ expired  (terminal)

Only bars strictly newer than ``zone.updated_at`` are consumed, so
re-running over an unchanged window leaves every counter untouched.
"""

from datetime import datetime

from zoneforge.strategy.models import CandleData, StructuralZone, ZoneStatus

WEAKENED_TOUCHES = 3


def bar_touches_zone(candle: CandleData, zone: StructuralZone) -> bool:
    """A bar touches a zone when its high-low range intersects the zone."""
    return candle.low <= zone.price_high and candle.high >= zone.price_low


def bar_breaks_zone(candle: CandleData, zone: StructuralZone) -> bool:
    """Close fully through the zone against its direction."""
    if zone.is_bullish:
        return candle.close < zone.price_low
    return candle.close > zone.price_high


def bar_closes_beyond(candle: CandleData, zone: StructuralZone) -> bool:
    """Close fully beyond the zone in its own direction."""
    if zone.is_bullish:
        return candle.close > zone.price_high
    return candle.close < zone.price_low


def is_expired(zone: StructuralZone, now: datetime, retention_hours: float) -> bool:
    return zone.age_hours(now) > retention_hours


def apply_bar(zone: StructuralZone, candle: CandleData) -> bool:
    """Apply one bar to *zone*.  Returns ``True`` if anything changed."""
    if zone.is_terminal:
        return False

    changed = False
    if bar_breaks_zone(candle, zone):
        zone.status = ZoneStatus.BROKEN
        zone.updated_at = candle.time
        return True

    touched = bar_touches_zone(candle, zone)
    beyond = bar_closes_beyond(candle, zone)

    if touched:
        zone.touch_count += 1
        zone.last_touch = candle.time
        if zone.status == ZoneStatus.FRESH:
            zone.status = ZoneStatus.TESTED
        changed = True

    if beyond and not zone.is_confirmed:
        zone.is_confirmed = True
        changed = True

    if touched and beyond:
        zone.rejection_count += 1
        zone.status = ZoneStatus.RESPECTED
    elif zone.touch_count >= WEAKENED_TOUCHES and zone.rejection_count == 0:
        if zone.status != ZoneStatus.WEAKENED:
            zone.status = ZoneStatus.WEAKENED
            changed = True

    zone.updated_at = candle.time
    return changed


def advance(
    zone: StructuralZone,
    candles: list[CandleData],
    now: datetime,
    retention_hours: float,
) -> bool:
    """Run every unseen bar of *candles* through the state machine.

    Args:
        zone: Zone to mutate in place.
        candles: Bars of the zone's timeframe, oldest first.
        now: Current time, used for the expiry check.
        retention_hours: Age after which a zone expires.

    Returns:
        ``True`` if the zone changed.
    """
    if zone.is_terminal:
        return False

    changed = False
    for candle in candles:
        if candle.time <= zone.updated_at:
            continue
        if apply_bar(zone, candle):
            changed = True
        if zone.is_terminal:
            break

    if not zone.is_terminal and is_expired(zone, now, retention_hours):
        zone.status = ZoneStatus.EXPIRED
        changed = True

    return changed
