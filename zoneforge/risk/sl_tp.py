"""Stop-loss and take-profit calculation — pure math, no I/O.

Zone signals place both levels as ATR multiples from the entry (the near
zone boundary):

    - **Buy**:  SL = entry − sl_mult × ATR,  TP = entry + tp_mult × ATR
    - **Sell**: SL = entry + sl_mult × ATR,  TP = entry − tp_mult × ATR

With the default 1.5 / 3.0 multipliers the reward:risk is 2.0.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RiskLevels:
    """Computed stop-loss and take-profit for a trade."""

    sl: float
    tp: float

    def reward_risk(self, entry_price: float) -> float:
        risk = abs(entry_price - self.sl)
        if risk == 0:
            return 0.0
        return abs(self.tp - entry_price) / risk


def calculate_sl(entry_price: float, direction: str, atr: float, sl_mult: float = 1.5) -> float:
    """Stop-loss *sl_mult* × ATR away from entry, on the losing side.

    Raises:
        ValueError: If *direction* is not ``"buy"`` or ``"sell"``.
    """
    if direction == "buy":
        return entry_price - sl_mult * atr
    if direction == "sell":
        return entry_price + sl_mult * atr
    raise ValueError(f"direction must be 'buy' or 'sell', got '{direction}'")


def calculate_tp(entry_price: float, direction: str, atr: float, tp_mult: float = 3.0) -> float:
    """Take-profit *tp_mult* × ATR away from entry, on the winning side.

    Raises:
        ValueError: If *direction* is not ``"buy"`` or ``"sell"``.
    """
    if direction == "buy":
        return entry_price + tp_mult * atr
    if direction == "sell":
        return entry_price - tp_mult * atr
    raise ValueError(f"direction must be 'buy' or 'sell', got '{direction}'")


def levels_on_correct_side(entry_price: float, direction: str, sl: float, tp: float) -> bool:
    """Stop below and target above entry for buys; the reverse for sells."""
    if direction == "buy":
        return sl < entry_price < tp
    return tp < entry_price < sl


def calculate_atr_levels(
    entry_price: float,
    direction: str,
    atr: float,
    sl_mult: float = 1.5,
    tp_mult: float = 3.0,
    digits: int = 5,
) -> Optional[RiskLevels]:
    """Stop and target from ATR multiples, rounded to *digits*.

    Returns ``None`` when ATR or the entry is non-positive, or when a
    level would land on the wrong side of entry or at a non-positive price.
    """
    if atr <= 0 or entry_price <= 0:
        return None

    sl = round(calculate_sl(entry_price, direction, atr, sl_mult), digits)
    tp = round(calculate_tp(entry_price, direction, atr, tp_mult), digits)

    if sl <= 0 or tp <= 0:
        return None
    if not levels_on_correct_side(entry_price, direction, sl, tp):
        return None
    return RiskLevels(sl=sl, tp=tp)
