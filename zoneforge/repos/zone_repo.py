"""Zone repository — SQLite upserts and reads for the zones table."""

from datetime import datetime
from typing import Optional

from zoneforge.repos.db import get_connection
from zoneforge.strategy.models import StructuralZone


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _parse(raw: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(raw) if raw else None


class ZoneRepo:
    """Data access layer for structural zones.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def upsert_zones(self, zones: list[StructuralZone]) -> int:
        """Insert or update *zones* keyed by (symbol, timeframe, formed_at)."""
        if not zones:
            return 0
        conn = get_connection(self._db_path)
        try:
            conn.executemany(
                """
                INSERT INTO zones
                    (symbol, timeframe, formed_at, updated_at, price_high,
                     price_low, direction, status, strength_score,
                     confluence_score, touch_count, rejection_count,
                     last_touch, is_confirmed)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (symbol, timeframe, formed_at) DO UPDATE SET
                    updated_at = excluded.updated_at,
                    status = excluded.status,
                    strength_score = excluded.strength_score,
                    confluence_score = excluded.confluence_score,
                    touch_count = excluded.touch_count,
                    rejection_count = excluded.rejection_count,
                    last_touch = excluded.last_touch,
                    is_confirmed = excluded.is_confirmed
                """,
                [
                    (
                        z.symbol, z.timeframe.value, _iso(z.formed_at),
                        _iso(z.updated_at), z.price_high, z.price_low,
                        z.direction.value, z.status.value, z.strength_score,
                        z.confluence_score, z.touch_count, z.rejection_count,
                        _iso(z.last_touch), int(z.is_confirmed),
                    )
                    for z in zones
                ],
            )
            conn.commit()
            return len(zones)
        finally:
            conn.close()

    def delete_symbol(self, symbol: str) -> None:
        conn = get_connection(self._db_path)
        try:
            conn.execute("DELETE FROM zones WHERE symbol = ?", (symbol,))
            conn.commit()
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def get_zones(self, symbol: str, timeframe: Optional[str] = None) -> list[StructuralZone]:
        """Return stored zones for *symbol*, oldest formation first."""
        conn = get_connection(self._db_path)
        try:
            if timeframe is None:
                rows = conn.execute(
                    "SELECT * FROM zones WHERE symbol = ? ORDER BY formed_at",
                    (symbol,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM zones WHERE symbol = ? AND timeframe = ? ORDER BY formed_at",
                    (symbol, timeframe),
                ).fetchall()
        finally:
            conn.close()

        return [
            StructuralZone(
                symbol=row["symbol"],
                timeframe=row["timeframe"],
                formed_at=_parse(row["formed_at"]),
                updated_at=_parse(row["updated_at"]),
                price_high=row["price_high"],
                price_low=row["price_low"],
                direction=row["direction"],
                status=row["status"],
                strength_score=row["strength_score"],
                confluence_score=row["confluence_score"],
                touch_count=row["touch_count"],
                rejection_count=row["rejection_count"],
                last_touch=_parse(row["last_touch"]),
                is_confirmed=bool(row["is_confirmed"]),
            )
            for row in rows
        ]
