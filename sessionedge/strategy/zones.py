"""Zone map — volatility bands around the session's daily open.

The expected daily range ``daily_open × (1 ± volatility_fraction)`` is split
into two quadrants above and two below the open.  Boundaries are fixed for
the session once ``initialize`` has run.
"""

import math
from typing import Optional

from sessionedge.strategy.errors import ZoneConfigurationError
from sessionedge.strategy.models import ZoneInfo, ZoneLevels

DEFAULT_TOUCH_TOLERANCE_PCT = 0.0005
DEFAULT_HOLD_PCT = 0.001


def compute_zone_levels(daily_open: float, volatility_fraction: float) -> ZoneLevels:
    """Compute the five zone boundaries.

    Raises ``ZoneConfigurationError`` if the inputs cannot produce strictly
    increasing boundaries (non-finite values, ``daily_open <= 0`` or a
    fraction outside ``(0, 1)``).
    """
    if not (math.isfinite(daily_open) and math.isfinite(volatility_fraction)):
        raise ZoneConfigurationError(
            f"Non-finite zone inputs: daily_open={daily_open}, "
            f"volatility_fraction={volatility_fraction}"
        )
    if daily_open <= 0:
        raise ZoneConfigurationError(f"daily_open must be positive, got {daily_open}")
    if not 0 < volatility_fraction < 1:
        raise ZoneConfigurationError(
            f"volatility_fraction must be in (0, 1), got {volatility_fraction}"
        )

    upper_range = daily_open * (1 + volatility_fraction)
    lower_range = daily_open * (1 - volatility_fraction)
    q1 = daily_open + (upper_range - daily_open) / 2
    q_minus_1 = daily_open - (daily_open - lower_range) / 2

    levels = ZoneLevels(
        daily_open=daily_open,
        upper_range=upper_range,
        lower_range=lower_range,
        q1=q1,
        q2=upper_range,
        q_minus_1=q_minus_1,
        q_minus_2=lower_range,
        volatility_fraction=volatility_fraction,
    )

    bounds = levels.boundaries
    if any(lo >= hi for lo, hi in zip(bounds, bounds[1:])):
        raise ZoneConfigurationError(f"Zone boundaries out of order: {bounds}")
    return levels


class ZoneMap:
    """Holds the session's zone levels and answers price-location queries."""

    def __init__(self) -> None:
        self._levels: Optional[ZoneLevels] = None

    def initialize(self, daily_open: float, volatility_fraction: float) -> ZoneLevels:
        self._levels = compute_zone_levels(daily_open, volatility_fraction)
        return self._levels

    @property
    def levels(self) -> Optional[ZoneLevels]:
        return self._levels

    @property
    def is_initialized(self) -> bool:
        return self._levels is not None

    def _require(self) -> ZoneLevels:
        if self._levels is None:
            raise ZoneConfigurationError("Zone map not initialized")
        return self._levels

    def boundaries(self) -> list[float]:
        """All five boundaries, ascending."""
        return list(self._require().boundaries)

    def current_zone(self, price: float) -> ZoneInfo:
        """Return the quadrant containing *price*.

        Quadrants use half-open ``[lower, upper)`` bounds from lowest to
        highest.  Prices below the lower range default to ``Q-2``; prices at
        or above ``Q1`` (including beyond the upper range) are ``Q2``.
        """
        lv = self._require()

        if price >= lv.q1:
            quadrant = "Q2"
        elif price >= lv.daily_open:
            quadrant = "Q1"
        elif price >= lv.q_minus_1:
            quadrant = "Q-1"
        else:
            quadrant = "Q-2"

        nearest = self.nearest_boundary(price)
        return ZoneInfo(
            quadrant=quadrant,
            nearest_boundary=nearest,
            distance_to_boundary_pct=abs(price - nearest) / lv.daily_open * 100,
        )

    def nearest_boundary(self, price: float) -> float:
        """Linear scan over the five boundaries; ties keep the lower one."""
        bounds = self._require().boundaries
        nearest = bounds[0]
        best = abs(price - nearest)
        for boundary in bounds[1:]:
            distance = abs(price - boundary)
            if distance < best:
                best = distance
                nearest = boundary
        return nearest

    def quadrant_bounds(self, quadrant: str) -> Optional[tuple[float, float]]:
        """Return ``(lower, upper)`` for a quadrant label, or None."""
        if self._levels is None:
            return None
        lv = self._levels
        return {
            "Q2": (lv.q1, lv.q2),
            "Q1": (lv.daily_open, lv.q1),
            "Q-1": (lv.q_minus_1, lv.daily_open),
            "Q-2": (lv.q_minus_2, lv.q_minus_1),
        }.get(quadrant)

    def is_extreme(self, boundary: float) -> bool:
        """True for the upper-range or lower-range boundary."""
        lv = self._require()
        return boundary == lv.upper_range or boundary == lv.lower_range

    @staticmethod
    def boundary_touched(
        price: float,
        boundary: float,
        tolerance_pct: float = DEFAULT_TOUCH_TOLERANCE_PCT,
    ) -> bool:
        """True iff ``|price - boundary| <= boundary × tolerance_pct``."""
        return abs(price - boundary) <= boundary * tolerance_pct

    @staticmethod
    def broken_and_held(
        price: float,
        boundary: float,
        direction: str,
        hold_pct: float = DEFAULT_HOLD_PCT,
    ) -> bool:
        """True if *price* has cleared *boundary* by *hold_pct* in *direction*.

        *direction* is ``"above"`` or ``"below"``.
        """
        threshold = boundary * hold_pct
        if direction == "above":
            return price >= boundary + threshold
        return price <= boundary - threshold
