"""Volume profile classifier — high/low participation nodes.

Builds a volume-by-price histogram over a candle window and classifies each
bucket as a high-volume node (HVN), low-volume node (LVN) or neutral.  HVNs
are treated as likely rejection levels, LVNs as likely breakout levels.
The profile is rebuilt from scratch on every ``build`` call.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from sessionedge.strategy.errors import ProfileConfigurationError
from sessionedge.strategy.models import (
    NEUTRAL_PROFILE,
    Candle,
    ProfileContext,
    VolumeProfileNode,
)

logger = logging.getLogger("sessionedge.profile")


@dataclass(frozen=True)
class ProfileConfig:
    """Volume profile settings."""

    bucket_size_pct: float = 0.001  # bucket width as a fraction of the range
    proximity_threshold_pct: float = 0.002
    hvn_percentile: float = 75.0
    lvn_percentile: float = 25.0


def nearest_rank_percentile(values: np.ndarray, percentile: float) -> float:
    """Nearest-rank percentile: the value at rank ``ceil(p/100 × n)``."""
    if values.size == 0:
        return 0.0
    ordered = np.sort(values)
    index = int(np.ceil(percentile / 100.0 * ordered.size)) - 1
    index = max(0, min(index, ordered.size - 1))
    return float(ordered[index])


class ProfileClassifier:
    """Volume-by-price histogram with HVN/LVN classification."""

    def __init__(self, config: Optional[ProfileConfig] = None) -> None:
        self._config = config or ProfileConfig()
        self._prices = np.empty(0)
        self._volumes = np.empty(0)
        self._touches = np.empty(0, dtype=int)
        self._hvn: list[float] = []
        self._lvn: list[float] = []
        self._bucket_size = 0.0

    @property
    def config(self) -> ProfileConfig:
        return self._config

    @property
    def bucket_size(self) -> float:
        return self._bucket_size

    # ── Build ────────────────────────────────────────────────────────────

    def build(
        self,
        candles: list[Candle],
        price_range: Optional[tuple[float, float]] = None,
    ) -> None:
        """Rebuild the profile from *candles*.

        Args:
            candles: Candle window to profile.
            price_range: Optional ``(min, max)`` override for the bucket
                grid; defaults to the candle extremes.

        Raises ``ProfileConfigurationError`` if the bucket grid would be
        empty or have a non-positive width.
        """
        self._prices = np.empty(0)
        self._volumes = np.empty(0)
        self._touches = np.empty(0, dtype=int)
        self._hvn = []
        self._lvn = []

        if not candles:
            return

        if price_range is not None:
            min_price, max_price = price_range
        else:
            min_price = min(c.low for c in candles)
            max_price = max(c.high for c in candles)

        span = max_price - min_price
        bucket_size = span * self._config.bucket_size_pct
        if bucket_size <= 0:
            bucket_size = min_price * self._config.bucket_size_pct
        if not np.isfinite(bucket_size) or bucket_size <= 0:
            raise ProfileConfigurationError(
                f"Invalid bucket size {bucket_size} for range [{min_price}, {max_price}]"
            )

        # Small epsilon keeps the top bucket when span is an exact multiple.
        count = int(np.floor(span / bucket_size + 1e-9)) + 1
        if count <= 0:
            raise ProfileConfigurationError(
                f"Profile has no buckets for range [{min_price}, {max_price}]"
            )

        self._bucket_size = bucket_size
        self._prices = min_price + bucket_size * np.arange(count)
        self._volumes = np.zeros(count)
        self._touches = np.zeros(count, dtype=int)

        half = bucket_size / 2
        lower_edges = self._prices - half
        upper_edges = self._prices + half

        for candle in candles:
            if candle.high == candle.low:
                idx = int(np.argmin(np.abs(self._prices - candle.high)))
                self._volumes[idx] += candle.volume
                self._touches[idx] += 1
                continue

            overlap = (
                np.minimum(upper_edges, candle.high)
                - np.maximum(lower_edges, candle.low)
            )
            hit = overlap > 0
            if not hit.any():
                continue
            per_unit = candle.volume / (candle.high - candle.low)
            self._volumes[hit] += per_unit * overlap[hit]
            self._touches[hit] += 1

        self._classify()
        logger.debug(
            "Profile built: %d buckets, %d HVN, %d LVN",
            count, len(self._hvn), len(self._lvn),
        )

    def _classify(self) -> None:
        traded = self._volumes[self._volumes > 0]
        if traded.size == 0:
            return

        hvn_threshold = nearest_rank_percentile(traded, self._config.hvn_percentile)
        lvn_threshold = nearest_rank_percentile(traded, self._config.lvn_percentile)

        for price, volume in zip(self._prices, self._volumes):
            if volume >= hvn_threshold:
                self._hvn.append(float(price))
            elif volume <= lvn_threshold:
                self._lvn.append(float(price))

    # ── Queries ──────────────────────────────────────────────────────────

    def context_at(self, level: float) -> ProfileContext:
        """Classify *level* by the nearest HVN/LVN within the proximity band.

        The closer node wins; ties favour the HVN.  Confidence decays
        linearly from 1 at the node to 0 at the proximity boundary.
        """
        proximity = level * self._config.proximity_threshold_pct
        hvn, hvn_dist = self._nearest(self._hvn, level, proximity)
        lvn, lvn_dist = self._nearest(self._lvn, level, proximity)

        if hvn is not None and (lvn is None or hvn_dist <= lvn_dist):
            return self._context("HVN", hvn, hvn_dist, level, proximity)
        if lvn is not None:
            return self._context("LVN", lvn, lvn_dist, level, proximity)
        return NEUTRAL_PROFILE

    @staticmethod
    def _nearest(
        nodes: list[float], level: float, proximity: float,
    ) -> tuple[Optional[float], float]:
        best: Optional[float] = None
        best_dist = float("inf")
        for node in nodes:
            distance = abs(level - node)
            if distance < proximity and distance < best_dist:
                best = node
                best_dist = distance
        return best, best_dist

    @staticmethod
    def _context(
        node_type: str, node: float, distance: float, level: float, proximity: float,
    ) -> ProfileContext:
        return ProfileContext(
            node_type=node_type,
            distance=distance,
            distance_pct=distance / level * 100,
            confidence=max(0.0, 1.0 - distance / proximity),
            nearest_node_price=node,
        )

    def hvn_levels(self) -> list[float]:
        return sorted(self._hvn)

    def lvn_levels(self) -> list[float]:
        return sorted(self._lvn)

    def nodes(self) -> list[VolumeProfileNode]:
        """All buckets, ascending by price."""
        return [
            VolumeProfileNode(price=float(p), volume=float(v), touches=int(t))
            for p, v, t in zip(self._prices, self._volumes, self._touches)
        ]
