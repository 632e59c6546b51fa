"""ZoneForge — application configuration.

Loads .env variables into a typed config object that is constructed once
and passed to every component.  Validates required variables on startup.
"""

import os
from dataclasses import dataclass, field, replace

from dotenv import load_dotenv

from zoneforge.strategy.models import Timeframe


_REQUIRED_VARS = [
    "ZONEFORGE_SYMBOLS",
]

DEFAULT_TIMEFRAMES: tuple[Timeframe, ...] = (
    Timeframe.M15,
    Timeframe.H1,
    Timeframe.H4,
    Timeframe.D1,
)


@dataclass(frozen=True)
class Config:
    """Typed configuration for the structure, zone, signal and combiner layers."""

    symbols: tuple[str, ...]
    timeframes: tuple[Timeframe, ...] = DEFAULT_TIMEFRAMES

    # Market structure
    swing_window: int = 5
    trend_lookback: int = 14
    trend_threshold: float = 0.25
    max_swings: int = 50

    # Zone detection
    scan_lookback: int = 100
    bos_body_ratio: float = 0.70
    liquidity_lookback: int = 20
    liquidity_min_touches: int = 2
    min_zone_pips: float = 10.0
    min_zone_strength: float = 0.3
    volume_lookback: int = 20
    volume_surge_ratio: float = 1.5
    atr_period: int = 14
    zone_retention_hours: float = 168.0
    rescan_interval_seconds: float = 60.0

    # Signal generation
    sl_atr_mult: float = 1.5
    tp_atr_mult: float = 3.0
    min_reward_risk: float = 1.5
    min_signal_confidence: float = 0.4
    max_zone_age_hours: float = 168.0
    max_distance_atr: float = 2.0
    signal_expiry_minutes: int = 240
    signal_retention_hours: float = 24.0
    signal_sources: tuple[str, ...] = ("zone",)

    # Combiner
    combiner_min_confidence: float = 0.5
    correlation_filter_enabled: bool = True
    correlation_threshold: float = 0.8
    volatility_min_pct: float = 0.01
    volatility_max_pct: float = 2.0
    require_mtf_alignment: bool = False
    alignment_timeframes: tuple[Timeframe, ...] = (Timeframe.H4, Timeframe.D1)
    conflict_window_minutes: int = 60
    ensemble_enabled: bool = False
    weights_path: str = "data/source_weights.json"
    ensemble_learning_rate: float = 0.05

    # Ambient
    poll_interval_seconds: int = 60
    db_path: str = "data/zoneforge.db"
    log_level: str = "INFO"
    api_port: int = 8080
    news_windows: tuple[tuple[str, str], ...] = field(default_factory=tuple)

    @classmethod
    def default(cls, symbols: list[str] | tuple[str, ...] = ("EURUSD",), **overrides) -> "Config":
        """Build a config with every tunable at its default value."""
        cfg = cls(symbols=tuple(symbols))
        if overrides:
            cfg = replace(cfg, **overrides)
        cfg.validate()
        return cfg

    def validate(self) -> None:
        """Raise ``ValueError`` on inconsistent settings."""
        if not self.symbols:
            raise ValueError("At least one symbol must be configured")
        if self.swing_window < 1:
            raise ValueError(f"swing_window must be >= 1, got {self.swing_window}")
        if not 0.0 < self.bos_body_ratio <= 1.0:
            raise ValueError(
                f"bos_body_ratio must be in (0, 1], got {self.bos_body_ratio}"
            )
        if self.sl_atr_mult <= 0 or self.tp_atr_mult <= 0:
            raise ValueError("ATR multipliers must be positive")
        if self.volatility_min_pct > self.volatility_max_pct:
            raise ValueError(
                f"volatility_min_pct ({self.volatility_min_pct}) exceeds "
                f"volatility_max_pct ({self.volatility_max_pct})"
            )
        if self.min_reward_risk <= 0:
            raise ValueError(f"min_reward_risk must be positive, got {self.min_reward_risk}")


def _parse_timeframes(raw: str) -> tuple[Timeframe, ...]:
    try:
        return tuple(Timeframe(t.strip().upper()) for t in raw.split(",") if t.strip())
    except ValueError as exc:
        raise ValueError(f"Unknown timeframe in '{raw}': {exc}") from exc


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _parse_news_windows(raw: str) -> tuple[tuple[str, str], ...]:
    """Parse ``start/end;start/end`` ISO-8601 pairs."""
    windows = []
    for chunk in raw.split(";"):
        chunk = chunk.strip()
        if not chunk:
            continue
        start, _, end = chunk.partition("/")
        if not end:
            raise ValueError(f"News window '{chunk}' must be 'start/end'")
        windows.append((start.strip(), end.strip()))
    return tuple(windows)


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    env = os.environ.get
    symbols = tuple(
        s.strip().upper() for s in os.environ["ZONEFORGE_SYMBOLS"].split(",") if s.strip()
    )

    cfg = Config(
        symbols=symbols,
        timeframes=_parse_timeframes(env("ZONEFORGE_TIMEFRAMES", "M15,H1,H4,D1")),
        swing_window=int(env("ZONEFORGE_SWING_WINDOW", "5")),
        trend_lookback=int(env("ZONEFORGE_TREND_LOOKBACK", "14")),
        trend_threshold=float(env("ZONEFORGE_TREND_THRESHOLD", "0.25")),
        scan_lookback=int(env("ZONEFORGE_SCAN_LOOKBACK", "100")),
        bos_body_ratio=float(env("ZONEFORGE_BOS_BODY_RATIO", "0.70")),
        min_zone_pips=float(env("ZONEFORGE_MIN_ZONE_PIPS", "10")),
        min_zone_strength=float(env("ZONEFORGE_MIN_ZONE_STRENGTH", "0.3")),
        zone_retention_hours=float(env("ZONEFORGE_ZONE_RETENTION_HOURS", "168")),
        rescan_interval_seconds=float(env("ZONEFORGE_RESCAN_INTERVAL", "60")),
        min_reward_risk=float(env("ZONEFORGE_MIN_REWARD_RISK", "1.5")),
        min_signal_confidence=float(env("ZONEFORGE_MIN_SIGNAL_CONFIDENCE", "0.4")),
        signal_expiry_minutes=int(env("ZONEFORGE_SIGNAL_EXPIRY_MINUTES", "240")),
        signal_sources=tuple(
            s.strip() for s in env("ZONEFORGE_SOURCES", "zone").split(",") if s.strip()
        ),
        combiner_min_confidence=float(env("ZONEFORGE_COMBINER_MIN_CONFIDENCE", "0.5")),
        correlation_filter_enabled=_parse_bool(env("ZONEFORGE_CORRELATION_FILTER", "true")),
        correlation_threshold=float(env("ZONEFORGE_CORRELATION_THRESHOLD", "0.8")),
        volatility_min_pct=float(env("ZONEFORGE_VOLATILITY_MIN_PCT", "0.01")),
        volatility_max_pct=float(env("ZONEFORGE_VOLATILITY_MAX_PCT", "2.0")),
        require_mtf_alignment=_parse_bool(env("ZONEFORGE_REQUIRE_MTF_ALIGNMENT", "false")),
        ensemble_enabled=_parse_bool(env("ZONEFORGE_ENSEMBLE", "false")),
        weights_path=env("ZONEFORGE_WEIGHTS_PATH", "data/source_weights.json"),
        poll_interval_seconds=int(env("ZONEFORGE_POLL_INTERVAL", "60")),
        db_path=env("ZONEFORGE_DB_PATH", "data/zoneforge.db"),
        log_level=env("ZONEFORGE_LOG_LEVEL", "INFO"),
        api_port=int(env("ZONEFORGE_API_PORT", "8080")),
        news_windows=_parse_news_windows(env("ZONEFORGE_NEWS_WINDOWS", "")),
    )
    cfg.validate()
    return cfg
