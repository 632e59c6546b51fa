"""Per-source ensemble weights with online adjustment, persisted as JSON.

Weights start at 1.0.  Each realised outcome nudges the source's weight by
``learning_rate`` up (success) or down (failure), clamped to
``[min_weight, max_weight]``.  The file at *path* is rewritten on
:meth:`save`.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from zoneforge.strategy.models import SignalSource

logger = logging.getLogger("zoneforge.ensemble")

DEFAULT_WEIGHT = 1.0


class EnsembleWeights:
    """Tunable source weights used by the combiner's ensemble mode.

    Args:
        path: JSON file to load from / save to.  ``None`` keeps weights
            in memory only.
        learning_rate: Step applied per recorded outcome.
        min_weight: Lower clamp.
        max_weight: Upper clamp.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        learning_rate: float = 0.05,
        min_weight: float = 0.1,
        max_weight: float = 3.0,
    ) -> None:
        self._path = Path(path) if path else None
        self._learning_rate = learning_rate
        self._min = min_weight
        self._max = max_weight
        self._weights: dict[str, float] = {}
        self._outcomes: dict[str, dict[str, int]] = {}
        if self._path is not None and self._path.exists():
            self.load()

    def weight(self, source: SignalSource | str) -> float:
        return self._weights.get(SignalSource(source).value, DEFAULT_WEIGHT)

    def set_weight(self, source: SignalSource | str, value: float) -> None:
        self._weights[SignalSource(source).value] = max(self._min, min(self._max, value))

    def accuracy(self, source: SignalSource | str) -> Optional[float]:
        stats = self._outcomes.get(SignalSource(source).value)
        if not stats or stats["total"] == 0:
            return None
        return stats["wins"] / stats["total"]

    def record_outcome(self, source: SignalSource | str, success: bool) -> float:
        """Register a realised outcome and return the adjusted weight."""
        key = SignalSource(source).value
        stats = self._outcomes.setdefault(key, {"wins": 0, "total": 0})
        stats["total"] += 1
        if success:
            stats["wins"] += 1
        step = self._learning_rate if success else -self._learning_rate
        self.set_weight(key, self.weight(key) + step)
        logger.debug("Source '%s' weight now %.3f", key, self.weight(key))
        return self.weight(key)

    def weighted_confidence(self, confidences: dict[SignalSource, float]) -> float:
        """Weighted average of per-source confidences (0 when empty)."""
        total_weight = sum(self.weight(src) for src in confidences)
        if total_weight == 0:
            return 0.0
        return sum(self.weight(src) * c for src, c in confidences.items()) / total_weight

    # ── Persistence ──────────────────────────────────────────────────────

    def load(self) -> None:
        if self._path is None:
            return
        data = json.loads(self._path.read_text(encoding="utf-8"))
        self._weights = {k: float(v) for k, v in data.get("weights", {}).items()}
        self._outcomes = {
            k: {"wins": int(v.get("wins", 0)), "total": int(v.get("total", 0))}
            for k, v in data.get("outcomes", {}).items()
        }
        logger.info("Loaded ensemble weights from %s", self._path)

    def save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"weights": self._weights, "outcomes": self._outcomes}
        self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
