"""Stream configuration dataclass.

Represents one symbol/session in the multi-stream engine.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class StreamConfig:
    """Configuration for a single stream.

    Each stream runs its own ``SessionEngine`` and orchestrator with its own
    symbol, candle interval and polling interval.  Streams share nothing
    mutable.
    """

    name: str
    symbol: str
    interval: str = "1"  # Bybit kline interval for the intraday window
    candle_count: int = 500
    poll_interval_seconds: float = 5.0
    daily_interval: str = "D"  # volatility is estimated from these closes
    daily_count: int = 60
    vwap_source: str = "hl2"
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> "StreamConfig":
        """Build from a ``streams`` JSON entry; unknown keys are ignored.

        Raises ``ValueError`` if ``name`` or ``symbol`` is missing.
        """
        for key in ("name", "symbol"):
            if not data.get(key):
                raise ValueError(f"Stream entry missing required key '{key}': {data}")
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})
