"""Opening-range tracker — "Rule 0" of the decision hierarchy.

Tracks the high/low of the first ``window_minutes`` of the session, then
reports a breakout once price leaves that range.  A breakout is only
*confirmed* after it has held for ``hold_duration_ms`` with price still
clearing the level by ``breakout_confirmation_pct``.

State machine::

    tracking ──(window ends)──▶ closed ──(price outside range)──▶ broken_up
                                                               └─▶ broken_down

``broken_up`` / ``broken_down`` are terminal for the session.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sessionedge.strategy.models import Candle, OpeningRangeSignal, OpeningRangeState

logger = logging.getLogger("sessionedge.opening_range")

_MS_PER_MINUTE = 60_000


@dataclass(frozen=True)
class OpeningRangeConfig:
    """Opening-range tracker settings."""

    window_minutes: int = 5
    hold_duration_ms: int = 30_000
    breakout_confirmation_pct: float = 0.001


def utc_midnight_ms(timestamp: int) -> int:
    """Epoch ms of the UTC midnight at or before *timestamp*."""
    day = datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
    midnight = day.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp() * 1000)


class OpeningRangeTracker:
    """Incremental opening-range breakout state machine."""

    def __init__(self, config: Optional[OpeningRangeConfig] = None) -> None:
        self._config = config or OpeningRangeConfig()
        self._initialized = False
        self._session_start = 0
        self._window_end = 0
        self._high: Optional[float] = None
        self._low: Optional[float] = None
        self._state = "tracking"
        self._breakout_level: Optional[float] = None
        self._breakout_ts: Optional[int] = None
        self._confirmed = False

    @property
    def config(self) -> OpeningRangeConfig:
        return self._config

    # ── Lifecycle ────────────────────────────────────────────────────────

    def initialize(self, session_start: int, candles: list[Candle]) -> None:
        """Reset for a new session and seed the range from *candles*."""
        self._session_start = session_start
        self._window_end = session_start + self._config.window_minutes * _MS_PER_MINUTE
        self._high = None
        self._low = None
        self._state = "tracking"
        self._breakout_level = None
        self._breakout_ts = None
        self._confirmed = False
        self._initialized = True
        self._extend_range(candles)

    def update(self, price: float, timestamp: int, candles: list[Candle]) -> OpeningRangeSignal:
        """Advance the state machine with the latest price and candles."""
        if not self._initialized:
            self.initialize(utc_midnight_ms(timestamp), candles)

        if self._state == "tracking":
            if timestamp <= self._window_end:
                self._extend_range(candles)
            else:
                self._state = "closed"
                logger.debug(
                    "Opening range closed: high=%s low=%s", self._high, self._low,
                )

        if self._state == "closed":
            self._check_breakout(price, timestamp)

        if self._state in ("broken_up", "broken_down") and not self._confirmed:
            self._check_confirmation(price, timestamp)

        return self.signal()

    # ── Internals ────────────────────────────────────────────────────────

    def _in_window(self, candle: Candle) -> bool:
        return self._session_start <= candle.timestamp < self._window_end

    def _extend_range(self, candles: list[Candle]) -> None:
        for candle in candles:
            if not self._in_window(candle):
                continue
            self._high = candle.high if self._high is None else max(self._high, candle.high)
            self._low = candle.low if self._low is None else min(self._low, candle.low)

    def _check_breakout(self, price: float, timestamp: int) -> None:
        if self._high is None or self._low is None:
            return
        if price > self._high:
            self._state = "broken_up"
            self._breakout_level = self._high
        elif price < self._low:
            self._state = "broken_down"
            self._breakout_level = self._low
        else:
            return
        self._breakout_ts = timestamp
        logger.info(
            "Opening range %s at %.8g (price %.8g)",
            self._state, self._breakout_level, price,
        )

    def _check_confirmation(self, price: float, timestamp: int) -> None:
        if timestamp < self._breakout_ts + self._config.hold_duration_ms:
            return
        threshold = self._breakout_level * self._config.breakout_confirmation_pct
        if self._state == "broken_up":
            held = price >= self._breakout_level + threshold
        else:
            held = price <= self._breakout_level - threshold
        if held:
            self._confirmed = True
            logger.info("Opening range breakout confirmed (%s)", self._state)

    # ── Read accessors ───────────────────────────────────────────────────

    @property
    def state(self) -> str:
        return self._state

    @property
    def confirmed(self) -> bool:
        return self._confirmed

    @property
    def session_bias(self) -> str:
        """``long``/``short`` on a confirmed breakout, else ``neutral``."""
        if not self._confirmed:
            return "neutral"
        return "long" if self._state == "broken_up" else "short"

    def snapshot(self) -> OpeningRangeState:
        return OpeningRangeState(
            opening_high=self._high,
            opening_low=self._low,
            session_start=self._session_start,
            window_end=self._window_end,
            state=self._state,
            breakout_level=self._breakout_level,
            breakout_timestamp=self._breakout_ts,
            confirmed=self._confirmed,
        )

    def signal(self) -> OpeningRangeSignal:
        if self._state == "broken_up":
            side = "long"
        elif self._state == "broken_down":
            side = "short"
        else:
            side = None
        return OpeningRangeSignal(
            side=side,
            level=self._breakout_level,
            state=self._state,
            session_bias=self.session_bias,
            confirmed=self._confirmed,
        )

    def is_window_active(self, timestamp: int) -> bool:
        if not self._initialized:
            return False
        return self._session_start <= timestamp < self._window_end
