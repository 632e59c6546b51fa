"""Signal repository — SQLite CRUD for the signals table."""

from typing import Optional

from zoneforge.repos.db import get_connection
from zoneforge.strategy.models import Signal


class SignalRepo:
    """Data access layer for emitted signals.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def insert_signal(self, signal: Signal) -> int:
        """Insert *signal* and return its ``id``."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO signals
                    (symbol, signal_type, source, entry_price, stop_loss,
                     take_profit, confidence, created_at, expires_at,
                     reason, processed, timeframe)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    signal.symbol, signal.signal_type.value, signal.source.value,
                    signal.entry_price, signal.stop_loss, signal.take_profit,
                    signal.confidence, signal.created_at.isoformat(),
                    signal.expires_at.isoformat(), signal.reason,
                    int(signal.processed),
                    signal.timeframe.value if signal.timeframe else None,
                ),
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    def mark_processed(self, signal_id: int) -> None:
        conn = get_connection(self._db_path)
        try:
            conn.execute("UPDATE signals SET processed = 1 WHERE id = ?", (signal_id,))
            conn.commit()
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def get_signals(
        self,
        symbol: Optional[str] = None,
        limit: int = 50,
        unprocessed_only: bool = False,
    ) -> list[dict]:
        """Return recent signals as dicts, newest first."""
        clauses: list[str] = []
        params: list = []
        if symbol is not None:
            clauses.append("symbol = ?")
            params.append(symbol)
        if unprocessed_only:
            clauses.append("processed = 0")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                f"SELECT * FROM signals {where} ORDER BY created_at DESC, id DESC LIMIT ?",
                params,
            ).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()
