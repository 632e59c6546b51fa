"""News filter — pure function, checks whether a time falls inside a blackout window."""

from datetime import datetime, timezone


def parse_window(start: str, end: str) -> tuple[datetime, datetime]:
    """Parse an ISO-8601 window; naive timestamps are taken as UTC."""
    bounds = []
    for raw in (start, end):
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        bounds.append(dt)
    if bounds[1] < bounds[0]:
        raise ValueError(f"News window ends before it starts: {start} / {end}")
    return bounds[0], bounds[1]


def in_news_window(
    now: datetime,
    windows: list[tuple[datetime, datetime]],
) -> bool:
    """Return True if *now* falls inside any high-impact news window.

    Windows are inclusive at both ends.
    """
    return any(start <= now <= end for start, end in windows)
