"""Inefficiency detector — fair value gaps and volume voids.

Two scans feed one zone list:

* **Fair value gap** — three consecutive candles where the first candle's
  high is below the third candle's low (bullish), or its low is above the
  third's high (bearish), with the gap size between the configured limits.
* **Volume void** — a sliding window of ``min_candle_count`` candles whose
  mean volume is below half the overall mean.

Findings are then sorted by midpoint and adjacent same-direction zones that
sit close together are merged.
"""

import logging
from dataclasses import dataclass, replace
from typing import Callable, Optional

from sessionedge.strategy.models import Candle, ImbalanceZone

logger = logging.getLogger("sessionedge.imbalance")

_VOID_VOLUME_FRACTION = 0.5
_MERGE_RANGE_FRACTION = 0.5


@dataclass(frozen=True)
class ImbalanceConfig:
    """Inefficiency detector settings."""

    min_gap_size_pct: float = 0.001
    max_gap_size_pct: float = 0.01
    min_candle_count: int = 3
    detect_fvg: bool = True
    detect_volume_voids: bool = True


class InefficiencyDetector:
    """Scans candles for imbalance zones; keeps the latest scan's result."""

    def __init__(self, config: Optional[ImbalanceConfig] = None) -> None:
        self._config = config or ImbalanceConfig()
        self._zones: list[ImbalanceZone] = []

    @property
    def config(self) -> ImbalanceConfig:
        return self._config

    def detect(
        self,
        candles: list[Candle],
        quadrant_of: Optional[Callable[[float], str]] = None,
    ) -> list[ImbalanceZone]:
        """Replace the zone list with a fresh scan of *candles*.

        *quadrant_of*, when given, tags each zone with the quadrant of its
        midpoint.
        """
        found: list[ImbalanceZone] = []
        if self._config.detect_fvg:
            found.extend(self._fair_value_gaps(candles))
        if self._config.detect_volume_voids:
            found.extend(self._volume_voids(candles))

        if quadrant_of is not None:
            found = [replace(z, quadrant=quadrant_of(z.midpoint)) for z in found]

        self._zones = _merge(found)
        if self._zones:
            logger.debug("Detected %d imbalance zone(s)", len(self._zones))
        return list(self._zones)

    # ── Scans ────────────────────────────────────────────────────────────

    def _gap_in_range(self, gap_pct: float) -> bool:
        return self._config.min_gap_size_pct <= gap_pct <= self._config.max_gap_size_pct

    def _fair_value_gaps(self, candles: list[Candle]) -> list[ImbalanceZone]:
        zones = []
        max_gap = self._config.max_gap_size_pct
        for c1, c3 in zip(candles, candles[2:]):
            if c1.high < c3.low:
                gap_pct = (c3.low - c1.high) / c1.high
                if self._gap_in_range(gap_pct):
                    zones.append(ImbalanceZone(
                        upper=c3.low,
                        lower=c1.high,
                        midpoint=(c1.high + c3.low) / 2,
                        direction="bullish",
                        strength=min(1.0, gap_pct / max_gap),
                        created_at=c3.timestamp,
                    ))
            if c1.low > c3.high:
                gap_pct = (c1.low - c3.high) / c1.low
                if self._gap_in_range(gap_pct):
                    zones.append(ImbalanceZone(
                        upper=c1.low,
                        lower=c3.high,
                        midpoint=(c1.low + c3.high) / 2,
                        direction="bearish",
                        strength=min(1.0, gap_pct / max_gap),
                        created_at=c3.timestamp,
                    ))
        return zones

    def _volume_voids(self, candles: list[Candle]) -> list[ImbalanceZone]:
        size = self._config.min_candle_count
        if size <= 0 or len(candles) < size * 2:
            return []

        average = sum(c.volume for c in candles) / len(candles)
        threshold = average * _VOID_VOLUME_FRACTION
        if threshold <= 0:
            return []

        zones = []
        for end in range(size, len(candles) + 1):
            window = candles[end - size:end]
            window_avg = sum(c.volume for c in window) / size
            if window_avg >= threshold:
                continue
            high = max(c.high for c in window)
            low = min(c.low for c in window)
            if (high - low) / low < self._config.min_gap_size_pct:
                continue
            direction = "bullish" if window[-1].close > window[0].close else "bearish"
            zones.append(ImbalanceZone(
                upper=high,
                lower=low,
                midpoint=(high + low) / 2,
                direction=direction,
                strength=min(1.0, (threshold - window_avg) / threshold),
                created_at=window[-1].timestamp,
                source="volume_void",
            ))
        return zones

    # ── Queries ──────────────────────────────────────────────────────────

    def zones(self) -> list[ImbalanceZone]:
        return list(self._zones)

    def near(self, level: float, proximity_pct: float = 0.002) -> list[ImbalanceZone]:
        """Zones with an edge or midpoint within the band, or containing *level*."""
        proximity = level * proximity_pct
        return [
            z for z in self._zones
            if any(abs(p - level) <= proximity for p in (z.lower, z.upper, z.midpoint))
            or z.contains(level)
        ]

    def containing(self, price: float, tolerance_pct: float = 0.0) -> list[ImbalanceZone]:
        tolerance = price * tolerance_pct
        return [z for z in self._zones if z.contains(price, tolerance)]

    def at_price(self, price: float, tolerance_pct: float = 0.0005) -> Optional[ImbalanceZone]:
        """First zone that *price* touches (edge, midpoint or inside)."""
        tolerance = price * tolerance_pct
        for zone in self._zones:
            if zone.contains(price):
                return zone
            if any(abs(price - p) <= tolerance for p in (zone.lower, zone.upper, zone.midpoint)):
                return zone
        return None

    def prune(self, now_ms: int, max_age_ms: int) -> int:
        """Drop zones older than *max_age_ms*; returns how many were removed."""
        if max_age_ms <= 0:
            return 0
        kept = [z for z in self._zones if now_ms - z.created_at <= max_age_ms]
        removed = len(self._zones) - len(kept)
        self._zones = kept
        return removed


def _overlapping(a: ImbalanceZone, b: ImbalanceZone) -> bool:
    distance = abs(a.midpoint - b.midpoint)
    return distance < max(a.size, b.size) * _MERGE_RANGE_FRACTION


def _merge(zones: list[ImbalanceZone]) -> list[ImbalanceZone]:
    """Merge adjacent same-direction zones after sorting by midpoint."""
    if len(zones) <= 1:
        return list(zones)

    ordered = sorted(zones, key=lambda z: z.midpoint)
    merged = []
    current = ordered[0]
    for nxt in ordered[1:]:
        if current.direction == nxt.direction and _overlapping(current, nxt):
            upper = max(current.upper, nxt.upper)
            lower = min(current.lower, nxt.lower)
            current = ImbalanceZone(
                upper=upper,
                lower=lower,
                midpoint=(upper + lower) / 2,
                direction=current.direction,
                strength=max(current.strength, nxt.strength),
                created_at=min(current.created_at, nxt.created_at),
                source="merged",
                quadrant=current.quadrant or nxt.quadrant,
            )
        else:
            merged.append(current)
            current = nxt
    merged.append(current)
    return merged
