"""Correlation filter — blocks entries on instruments that move with an already-signalled one.

Correlation is measured on close-to-close returns with numpy.
"""

import math
from typing import Optional

import numpy as np


def calculate_correlation(closes_a: list[float], closes_b: list[float]) -> Optional[float]:
    """Pearson correlation of the two series' simple returns.

    The series are aligned on their most recent values.  Returns ``None``
    when fewer than three overlapping closes exist or either return
    series is flat.
    """
    n = min(len(closes_a), len(closes_b))
    if n < 3:
        return None

    a = np.asarray(closes_a[-n:], dtype=float)
    b = np.asarray(closes_b[-n:], dtype=float)
    if np.any(a[:-1] == 0) or np.any(b[:-1] == 0):
        return None

    ret_a = np.diff(a) / a[:-1]
    ret_b = np.diff(b) / b[:-1]
    if np.std(ret_a) == 0 or np.std(ret_b) == 0:
        return None

    coef = float(np.corrcoef(ret_a, ret_b)[0, 1])
    if math.isnan(coef):
        return None
    return coef


def pair_key(symbol_a: str, symbol_b: str) -> tuple[str, str]:
    """Order-independent key for a symbol pair."""
    return (symbol_a, symbol_b) if symbol_a <= symbol_b else (symbol_b, symbol_a)


def find_correlated_conflict(
    symbol: str,
    active_symbols: list[str],
    correlations: dict[tuple[str, str], float],
    threshold: float = 0.8,
) -> Optional[str]:
    """Return the first actively-signalled symbol correlated beyond *threshold*.

    Pairs with no known correlation never block.
    """
    for other in active_symbols:
        if other == symbol:
            continue
        coef = correlations.get(pair_key(symbol, other))
        if coef is not None and abs(coef) > threshold:
            return other
    return None
