"""SessionEdge — application configuration.

Loads .env variables into a typed config object.
Every variable has a default; values that do not parse raise on startup.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from dotenv import load_dotenv

from sessionedge.models.stream_config import StreamConfig
from sessionedge.strategy.confirmation import ConfirmationConfig
from sessionedge.strategy.imbalance import ImbalanceConfig
from sessionedge.strategy.opening_range import OpeningRangeConfig
from sessionedge.strategy.orchestrator import OrchestratorConfig
from sessionedge.strategy.profile import ProfileConfig

logger = logging.getLogger("sessionedge")


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    symbol: str
    candle_interval: str
    candle_count: int
    market_base_url: str
    log_level: str
    health_port: int
    poll_interval_seconds: float
    orb_window_minutes: int
    orb_hold_ms: int
    orb_confirm_pct: float
    zone_tolerance_pct: float
    min_signal_confidence: float
    min_wall_notional: float
    wall_proximity_bps: float
    depth_timeout_seconds: float
    vol_clamp_min: float
    vol_clamp_max: float
    vol_cache_ttl_seconds: float
    streams_path: str

    @property
    def vol_clamp(self) -> tuple[float, float]:
        return (self.vol_clamp_min, self.vol_clamp_max)

    def orchestrator_config(self) -> OrchestratorConfig:
        """Build the per-component strategy configs from this config."""
        return OrchestratorConfig(
            opening_range=OpeningRangeConfig(
                window_minutes=self.orb_window_minutes,
                hold_duration_ms=self.orb_hold_ms,
                breakout_confirmation_pct=self.orb_confirm_pct,
            ),
            profile=ProfileConfig(),
            confirmation=ConfirmationConfig(
                min_wall_notional=self.min_wall_notional,
                wall_proximity_bps=self.wall_proximity_bps,
                lookup_timeout_seconds=self.depth_timeout_seconds,
            ),
            imbalance=ImbalanceConfig(),
            zone_touch_tolerance_pct=self.zone_tolerance_pct,
            min_signal_confidence=self.min_signal_confidence,
        )


def _env(name: str, default: str, cast: Callable = str):
    raw = os.environ.get(name, default)
    try:
        return cast(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from exc


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the offending variable when
    a value cannot be parsed or the volatility clamp is inverted.
    """
    load_dotenv(dotenv_path=env_path)

    config = Config(
        symbol=_env("SYMBOL", "BTCUSDT"),
        candle_interval=_env("CANDLE_INTERVAL", "1"),
        candle_count=_env("CANDLE_COUNT", "500", int),
        market_base_url=_env("MARKET_BASE_URL", "https://api.bybit.com"),
        log_level=_env("LOG_LEVEL", "INFO"),
        health_port=_env("HEALTH_PORT", "8080", int),
        poll_interval_seconds=_env("POLL_INTERVAL_SECONDS", "5", float),
        orb_window_minutes=_env("ORB_WINDOW_MINUTES", "5", int),
        orb_hold_ms=_env("ORB_HOLD_MS", "30000", int),
        orb_confirm_pct=_env("ORB_CONFIRM_PCT", "0.001", float),
        zone_tolerance_pct=_env("ZONE_TOLERANCE_PCT", "0.0005", float),
        min_signal_confidence=_env("MIN_SIGNAL_CONFIDENCE", "0.4", float),
        min_wall_notional=_env("MIN_WALL_NOTIONAL", "50000", float),
        wall_proximity_bps=_env("WALL_PROXIMITY_BPS", "5", float),
        depth_timeout_seconds=_env("DEPTH_TIMEOUT_SECONDS", "2.0", float),
        vol_clamp_min=_env("VOL_CLAMP_MIN", "0.01", float),
        vol_clamp_max=_env("VOL_CLAMP_MAX", "0.10", float),
        vol_cache_ttl_seconds=_env("VOL_CACHE_TTL_SECONDS", "3600", float),
        streams_path=_env("STREAMS_PATH", "sessionedge.json"),
    )

    if config.vol_clamp_min >= config.vol_clamp_max:
        raise ValueError(
            f"VOL_CLAMP_MIN ({config.vol_clamp_min}) must be below "
            f"VOL_CLAMP_MAX ({config.vol_clamp_max})"
        )
    return config


def load_streams(
    path: str | None = None,
    config: Optional[Config] = None,
) -> list[StreamConfig]:
    """Load stream definitions from a JSON file.

    The file holds ``{"streams": [{...}, ...]}``.  When it does not exist,
    a single stream is built from *config* (or the environment).
    """
    if config is None:
        config = load_config()
    stream_file = Path(path or config.streams_path)

    if not stream_file.is_file():
        logger.info("No stream file at %s — using single stream for %s", stream_file, config.symbol)
        return [
            StreamConfig(
                name=config.symbol.lower(),
                symbol=config.symbol,
                interval=config.candle_interval,
                candle_count=config.candle_count,
                poll_interval_seconds=config.poll_interval_seconds,
            )
        ]

    with open(stream_file, "r", encoding="utf-8") as f:
        data = json.load(f)

    streams = [StreamConfig.from_dict(entry) for entry in data.get("streams", [])]
    names = [s.name for s in streams]
    if len(names) != len(set(names)):
        raise ValueError(f"Duplicate stream names in {stream_file}: {names}")
    return streams
