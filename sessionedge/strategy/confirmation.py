"""Confirmation layer — order-book walls and candle-volume fallback.

Reads resting liquidity around a candidate level to decide whether the book
supports the proposed side.  When no snapshot is available (or the lookup
times out) a reduced-confidence heuristic based on recent candle volume is
used instead.

Only directionally relevant liquidity is counted: bids at or below the
level and asks at or above it, within ``wall_proximity_bps`` of the level.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from sessionedge.strategy.base import DepthProvider
from sessionedge.strategy.models import (
    Candle,
    ConfirmationFlags,
    ConfirmationResult,
    DepthSnapshot,
)

logger = logging.getLogger("sessionedge.confirmation")

# Book confidence below this is blended with the fallback heuristic.
_BLEND_BELOW = 0.2
_NEUTRAL_PASS_CONFIDENCE = 0.3
_FAR_FROM_LEVEL_PCT = 0.5
_WALL_RATIO = 0.7
_AT_LEVEL_PCT = 0.001
_MIN_SURGE_CANDLES = 5


@dataclass(frozen=True)
class ConfirmationConfig:
    """Confirmation layer settings."""

    min_wall_notional: float = 50_000.0
    wall_proximity_bps: float = 5.0
    volume_surge_multiplier: float = 2.0
    min_confidence: float = 0.3
    fallback_min_confidence: float = 0.2
    lookup_timeout_seconds: float = 2.0
    candle_window: int = 20
    absorption_min_notional: float = 20_000.0
    absorption_distance_pct: float = 0.002
    absorption_max_move_pct: float = 0.001


class ConfirmationLayer:
    """Directional bias from depth, with a candle-volume fallback."""

    def __init__(
        self,
        config: Optional[ConfirmationConfig] = None,
        depth_provider: Optional[DepthProvider] = None,
    ) -> None:
        self._config = config or ConfirmationConfig()
        self._provider = depth_provider
        self._candles: list[Candle] = []
        self._latest: Optional[DepthSnapshot] = None
        self._previous: Optional[DepthSnapshot] = None
        self._latest_price: Optional[float] = None
        self._previous_price: Optional[float] = None

    @property
    def config(self) -> ConfirmationConfig:
        return self._config

    @property
    def latest_snapshot(self) -> Optional[DepthSnapshot]:
        return self._latest

    @property
    def previous_snapshot(self) -> Optional[DepthSnapshot]:
        return self._previous

    def update_candles(self, candles: list[Candle]) -> None:
        """Keep the most recent ``candle_window`` candles for surge checks."""
        self._candles = list(candles[-self._config.candle_window:])

    def record_snapshot(self, snapshot: DepthSnapshot, price: float) -> None:
        """Store *snapshot* as the latest, rotating the old one to previous.

        Re-recording a snapshot with the same timestamp replaces the latest
        without rotating, so repeated evaluation of one tick is stable.
        """
        if self._latest is not None and self._latest.timestamp != snapshot.timestamp:
            self._previous = self._latest
            self._previous_price = self._latest_price
        self._latest = snapshot
        self._latest_price = price

    # ── Lookup ───────────────────────────────────────────────────────────

    async def analyze(
        self, symbol: str, level: float, price: float, side: str,
    ) -> ConfirmationResult:
        """Fetch depth (bounded by the lookup timeout) and analyse it.

        Any timeout, provider error or missing snapshot falls back to the
        candle-volume heuristic; nothing is raised.
        """
        if self._provider is None:
            return self.fallback(level, price, side)

        try:
            snapshot = await asyncio.wait_for(
                self._provider.fetch_depth(symbol),
                timeout=self._config.lookup_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Depth lookup for %s timed out, using fallback", symbol)
            return self.fallback(level, price, side)
        except Exception as exc:
            logger.warning("Depth lookup for %s failed (%s), using fallback", symbol, exc)
            return self.fallback(level, price, side)

        if snapshot is None or snapshot.is_empty:
            logger.debug("No order book for %s, using fallback", symbol)
            return self.fallback(level, price, side)

        self.record_snapshot(snapshot, price)
        return self.analyze_snapshot(snapshot, level, price, side)

    # ── Book path ────────────────────────────────────────────────────────

    def wall_notional(self, snapshot: DepthSnapshot, level: float) -> tuple[float, float]:
        """Return ``(bid_notional, ask_notional)`` near *level*."""
        proximity = level * self._config.wall_proximity_bps / 10_000
        bid_notional = sum(
            b.notional for b in snapshot.bids
            if abs(b.price - level) <= proximity and b.price <= level
        )
        ask_notional = sum(
            a.notional for a in snapshot.asks
            if abs(a.price - level) <= proximity and a.price >= level
        )
        return bid_notional, ask_notional

    def analyze_snapshot(
        self, snapshot: DepthSnapshot, level: float, price: float, side: str,
    ) -> ConfirmationResult:
        """Score *snapshot* for *side* at *level*.  Pure apart from reading
        the retained candles and previous snapshot."""
        cfg = self._config
        bid_notional, ask_notional = self.wall_notional(snapshot, level)
        total = bid_notional + ask_notional
        bid_ratio = bid_notional / total if total > 0 else 0.5
        ask_ratio = 1 - bid_ratio

        bias = "neutral"
        confidence = 0.0
        absorbing_bids = False
        absorbing_asks = False
        double_min = cfg.min_wall_notional * 2

        if side == "long":
            if bid_notional >= cfg.min_wall_notional:
                bias = "long"
                confidence = min(1.0, bid_notional / double_min)
                absorbing_bids = bid_ratio > _WALL_RATIO
            elif ask_notional >= cfg.min_wall_notional and price < level:
                bias = "short"
                confidence = min(0.5, ask_notional / double_min)
                absorbing_asks = True
        else:
            if ask_notional >= cfg.min_wall_notional:
                bias = "short"
                confidence = min(1.0, ask_notional / double_min)
                absorbing_asks = ask_ratio > _WALL_RATIO
            elif bid_notional >= cfg.min_wall_notional and price > level:
                bias = "long"
                confidence = min(0.5, bid_notional / double_min)
                absorbing_bids = True

        if abs(price - level) / level * 100 > _FAR_FROM_LEVEL_PCT:
            confidence *= 0.5
        confidence = max(0.0, min(1.0, confidence))

        vanished_bids, vanished_asks = self._vanished_orders(snapshot, price)
        buy_surge, sell_surge = self.volume_surge()
        flags = ConfirmationFlags(
            absorbing_bids=absorbing_bids or vanished_bids,
            absorbing_asks=absorbing_asks or vanished_asks,
            buy_volume_surge=buy_surge,
            sell_volume_surge=sell_surge,
        )
        side_surge = buy_surge if side == "long" else sell_surge

        if confidence < _BLEND_BELOW:
            fb = self.fallback(level, price, side)
            combined_bias = fb.bias
            combined_conf = fb.confidence
            if bias != "neutral" and confidence > 0:
                combined_bias = bias
                if bias == fb.bias:
                    combined_conf = min(0.5, fb.confidence + confidence * 0.2)
            if side_surge and combined_bias == side:
                combined_conf = max(combined_conf, 0.4)
            logger.debug(
                "Book confidence %.2f too low at %.8g, blended to %s %.2f",
                confidence, level, combined_bias, combined_conf,
            )
            return ConfirmationResult(
                bias=combined_bias,
                confidence=combined_conf,
                flags=flags,
                mode="fallback",
                bid_notional=bid_notional,
                ask_notional=ask_notional,
            )

        if side_surge:
            confidence = min(1.0, confidence * 1.1)

        logger.debug(
            "Book at %.8g: bids=$%.0f asks=$%.0f -> %s %.2f",
            level, bid_notional, ask_notional, bias, confidence,
        )
        return ConfirmationResult(
            bias=bias,
            confidence=confidence,
            flags=flags,
            mode="orderbook",
            bid_notional=bid_notional,
            ask_notional=ask_notional,
        )

    def _vanished_orders(self, snapshot: DepthSnapshot, price: float) -> tuple[bool, bool]:
        """Detect large resting orders that disappeared while price held.

        An order is "large" at or above ``absorption_min_notional`` and
        within ``absorption_distance_pct`` of price.  It only counts if price
        moved no more than ``absorption_max_move_pct`` since the previous
        snapshot.
        """
        prev = self._previous
        prev_price = self._previous_price
        if prev is None or prev_price is None or prev is snapshot:
            return False, False
        cfg = self._config
        if abs(price - prev_price) / prev_price > cfg.absorption_max_move_pct:
            return False, False

        def _gone(old_levels, new_levels) -> bool:
            current = {lvl.price: lvl.size for lvl in new_levels}
            for lvl in old_levels:
                if lvl.notional < cfg.absorption_min_notional:
                    continue
                if abs(lvl.price - price) / price > cfg.absorption_distance_pct:
                    continue
                if current.get(lvl.price, 0.0) * lvl.price < cfg.absorption_min_notional:
                    return True
            return False

        return _gone(prev.bids, snapshot.bids), _gone(prev.asks, snapshot.asks)

    # ── Fallback path ────────────────────────────────────────────────────

    def volume_surge(self) -> tuple[bool, bool]:
        """Return ``(buy_surge, sell_surge)`` from the retained candles.

        A surge needs the last three candles' mean volume to reach
        ``volume_surge_multiplier`` × the window mean; the side follows at
        least two of those three candles.
        """
        candles = self._candles
        if len(candles) < _MIN_SURGE_CANDLES:
            return False, False
        average = sum(c.volume for c in candles) / len(candles)
        recent = candles[-3:]
        recent_average = sum(c.volume for c in recent) / 3
        if average <= 0 or recent_average < average * self._config.volume_surge_multiplier:
            return False, False
        bullish = sum(1 for c in recent if c.close > c.open)
        bearish = sum(1 for c in recent if c.close < c.open)
        return bullish >= 2, bearish >= 2

    def fallback(self, level: float, price: float, side: str) -> ConfirmationResult:
        """Reduced-confidence bias (at most 0.4) without order-book data."""
        buy_surge, sell_surge = self.volume_surge()
        bias = "neutral"
        confidence = 0.3

        if side == "long":
            if level <= price <= level * (1 + _AT_LEVEL_PCT):
                bias, confidence = "long", 0.4
            elif buy_surge:
                bias, confidence = "long", 0.35
        else:
            if level * (1 - _AT_LEVEL_PCT) <= price <= level:
                bias, confidence = "short", 0.4
            elif sell_surge:
                bias, confidence = "short", 0.35

        return ConfirmationResult(
            bias=bias,
            confidence=confidence,
            flags=ConfirmationFlags(
                buy_volume_surge=buy_surge,
                sell_volume_surge=sell_surge,
            ),
            mode="fallback",
        )

    # ── Decision ─────────────────────────────────────────────────────────

    def confirms(self, result: ConfirmationResult, side: str) -> bool:
        """True if *result* supports a trade on *side*."""
        if result.mode == "fallback":
            threshold = self._config.fallback_min_confidence
        else:
            threshold = self._config.min_confidence
        if result.confidence < threshold:
            return False
        if result.bias == side:
            return True
        return result.bias == "neutral" and result.confidence >= _NEUTRAL_PASS_CONFIDENCE
