"""Internal API routers — /status, /zones, /signals endpoints.

Read-only views for display and execution collaborators.  No business
logic; delegates to the engine and the signal repo.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query

logger = logging.getLogger("zoneforge.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_engine = None       # Set via configure_routers()
_signal_repo = None  # Set via configure_routers()


def configure_routers(engine=None, signal_repo=None) -> None:
    """Inject dependencies from the application startup.

    Args:
        engine: A ``ZoneEngine`` instance (or duck-type for tests).
        signal_repo: A ``SignalRepo`` for the signal history endpoint.
    """
    global _engine, _signal_repo  # noqa: PLW0603
    _engine = engine
    _signal_repo = signal_repo


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status():
    """Return engine status."""
    if _engine is None:
        return {"running": False, "symbols": []}
    return _engine.status()


@router.get("/zones/{symbol}")
async def get_zones(
    symbol: str,
    timeframe: Optional[str] = Query(default=None),
    include_terminal: bool = Query(default=True),
):
    """Return the stored structural zones for *symbol*."""
    if _engine is None:
        return {"symbol": symbol, "zones": []}
    zones = _engine.zones(symbol.upper())
    if timeframe is not None:
        zones = [z for z in zones if z.timeframe.value == timeframe.upper()]
    if not include_terminal:
        zones = [z for z in zones if not z.is_terminal]
    return {"symbol": symbol.upper(), "zones": [z.to_dict() for z in zones]}


@router.get("/signals/{symbol}")
async def get_signals(symbol: str):
    """Return the current (retained) signals for *symbol*."""
    if _engine is None:
        return {"symbol": symbol, "signals": []}
    signals = _engine.signals(symbol.upper())
    return {"symbol": symbol.upper(), "signals": [s.to_dict() for s in signals]}


@router.get("/history")
async def get_history(
    symbol: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
):
    """Return persisted signal history, newest first."""
    if _signal_repo is None:
        return {"signals": []}
    return {
        "signals": _signal_repo.get_signals(
            symbol=symbol.upper() if symbol else None, limit=limit,
        )
    }
