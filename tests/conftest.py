import pytest

from tests.candles import build_zone_window
from zoneforge.strategy.models import CandleData


@pytest.fixture
def zone_window() -> list[CandleData]:
    """Bullish zone candle at bar 20 with prior liquidity, confirmed by bar 21."""
    return build_zone_window()
