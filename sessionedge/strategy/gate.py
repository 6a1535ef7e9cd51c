"""Five-rule validation gate.

Every candidate produced by the decision hierarchy must pass all five rules,
checked in order; the first failure vetoes the candidate:

1. Level proximity — price within 0.1% of an opening-range level, 0.2% of
   any other level.
2. Bias alignment — candidate side equals the session bias (neutral fails).
3. Profile plausibility — HVN levels only admit reversal setups, LVN
   levels only breakout setups; neutral levels admit both.  Touches of
   the upper or lower range pass regardless of the node type.
4. Confirmation — the confirmation layer backs the side at the level.
5. Clean trigger — break-and-hold, rejection wick with follow-through, or
   directional closes, depending on the candidate's trigger type.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sessionedge.strategy.confirmation import ConfirmationLayer
from sessionedge.strategy.models import (
    NEUTRAL_PROFILE,
    SETUP_IMBALANCE_CONTINUATION,
    SETUP_IMBALANCE_RETEST,
    SETUP_OPENING_RANGE,
    SETUP_ZONE_BREAKOUT,
    SETUP_ZONE_REJECTION,
    Candle,
    ConfirmationResult,
    ImbalanceZone,
    ProfileContext,
)
from sessionedge.strategy.profile import ProfileClassifier

logger = logging.getLogger("sessionedge.gate")

OPENING_RANGE_PROXIMITY_PCT = 0.001
LEVEL_PROXIMITY_PCT = 0.002
HOLD_CLEARANCE_PCT = 0.001
WICK_REACH_PCT = 0.001

REVERSAL_SETUPS = frozenset({SETUP_ZONE_REJECTION, SETUP_IMBALANCE_RETEST})
BREAKOUT_SETUPS = frozenset({
    SETUP_OPENING_RANGE, SETUP_ZONE_BREAKOUT, SETUP_IMBALANCE_CONTINUATION,
})


@dataclass(frozen=True)
class Candidate:
    """A level the decision hierarchy wants to trade."""

    setup_type: str
    side: str  # "long" or "short"
    level: float
    level_kind: str  # "opening_range", "zone", or "imbalance"
    trigger: str  # "breakout", "reversal", or "imbalance"
    imbalance: Optional[ImbalanceZone] = None
    extreme: bool = False  # upper/lower range touch; skips the profile rule
    note: str = ""


@dataclass(frozen=True)
class GateResult:
    """Outcome of running a candidate through the gate."""

    passed: bool
    failed_rule: Optional[int]
    reason: str
    profile: ProfileContext = NEUTRAL_PROFILE
    confirmation: Optional[ConfirmationResult] = None


# ── Wick ratio ───────────────────────────────────────────────────────────
# A rejection wick must be longer than the candle body by this factor.
DEFAULT_WICK_RATIO = 1.0


def is_rejection_wick_long(candle: Candle, wick_ratio: float = DEFAULT_WICK_RATIO) -> bool:
    """Bullish rejection: lower wick > *wick_ratio* × body."""
    body = abs(candle.close - candle.open)
    if body == 0:
        # Doji — treat entire range as wick
        return candle.close - candle.low > 0
    lower_wick = min(candle.open, candle.close) - candle.low
    return lower_wick > wick_ratio * body


def is_rejection_wick_short(candle: Candle, wick_ratio: float = DEFAULT_WICK_RATIO) -> bool:
    """Bearish rejection: upper wick > *wick_ratio* × body."""
    body = abs(candle.close - candle.open)
    if body == 0:
        return candle.high - candle.close > 0
    upper_wick = candle.high - max(candle.open, candle.close)
    return upper_wick > wick_ratio * body


# ── Individual rules ─────────────────────────────────────────────────────


def level_proximity_ok(candidate: Candidate, price: float) -> bool:
    limit = (
        OPENING_RANGE_PROXIMITY_PCT
        if candidate.level_kind == "opening_range"
        else LEVEL_PROXIMITY_PCT
    )
    return abs(price - candidate.level) / candidate.level <= limit


def bias_aligned(candidate: Candidate, bias: str) -> bool:
    return bias != "neutral" and candidate.side == bias


def profile_plausible(candidate: Candidate, profile: ProfileContext) -> bool:
    if candidate.extreme:
        return True
    if profile.node_type == "HVN":
        return candidate.setup_type in REVERSAL_SETUPS
    if profile.node_type == "LVN":
        return candidate.setup_type in BREAKOUT_SETUPS
    return True


def break_and_hold(candles: list[Candle], level: float, side: str) -> bool:
    """Last candle closes beyond *level* and its far extreme stays within
    0.1% of it."""
    if not candles:
        return False
    last = candles[-1]
    if side == "long":
        return last.close > level and last.low >= level * (1 - HOLD_CLEARANCE_PCT)
    return last.close < level and last.high <= level * (1 + HOLD_CLEARANCE_PCT)


def rejection_with_follow_through(
    candles: list[Candle],
    level: float,
    side: str,
    wick_ratio: float = DEFAULT_WICK_RATIO,
) -> bool:
    """Second-to-last candle rejects *level*; last candle closes past it."""
    if len(candles) < 2:
        return False
    wick, follow = candles[-2], candles[-1]
    if side == "long":
        return (
            is_rejection_wick_long(wick, wick_ratio)
            and wick.low <= level * (1 + WICK_REACH_PCT)
            and follow.close > wick.close
        )
    return (
        is_rejection_wick_short(wick, wick_ratio)
        and wick.high >= level * (1 - WICK_REACH_PCT)
        and follow.close < wick.close
    )


def directional_closes(candles: list[Candle], side: str, needed: int = 2) -> bool:
    """At least *needed* of the last three close-to-close moves favour *side*."""
    if len(candles) < 4:
        return False
    closes = [c.close for c in candles[-4:]]
    moves = [b - a for a, b in zip(closes, closes[1:])]
    if side == "long":
        count = sum(1 for m in moves if m > 0)
    else:
        count = sum(1 for m in moves if m < 0)
    return count >= needed


def clean_trigger(candidate: Candidate, candles: list[Candle]) -> bool:
    if candidate.trigger == "breakout":
        return break_and_hold(candles, candidate.level, candidate.side)
    if candidate.trigger == "reversal":
        return rejection_with_follow_through(candles, candidate.level, candidate.side)
    return directional_closes(candles, candidate.side)


# ── Gate ─────────────────────────────────────────────────────────────────


class FiveRuleGate:
    """Runs candidates through the five rules against live components."""

    def __init__(
        self,
        profile: ProfileClassifier,
        confirmation: ConfirmationLayer,
        symbol: str = "",
    ) -> None:
        self._profile = profile
        self._confirmation = confirmation
        self._symbol = symbol

    async def validate(
        self,
        candidate: Candidate,
        price: float,
        candles: list[Candle],
        bias: str,
    ) -> GateResult:
        """Return the first failing rule, or a pass with the context used."""
        if not level_proximity_ok(candidate, price):
            return self._fail(1, candidate, f"price {price:.8g} too far from level")

        if not bias_aligned(candidate, bias):
            return self._fail(2, candidate, f"side {candidate.side} vs bias {bias}")

        profile = self._profile.context_at(candidate.level)
        if not profile_plausible(candidate, profile):
            return self._fail(
                3, candidate, f"{candidate.setup_type} at {profile.node_type}", profile,
            )

        result = await self._confirmation.analyze(
            self._symbol, candidate.level, price, candidate.side,
        )
        if not self._confirmation.confirms(result, candidate.side):
            return self._fail(
                4, candidate,
                f"confirmation {result.bias} {result.confidence:.2f} ({result.mode})",
                profile, result,
            )

        if not clean_trigger(candidate, candles):
            return self._fail(5, candidate, f"no clean {candidate.trigger} trigger", profile, result)

        return GateResult(
            passed=True,
            failed_rule=None,
            reason="all rules passed",
            profile=profile,
            confirmation=result,
        )

    @staticmethod
    def _fail(
        rule: int,
        candidate: Candidate,
        reason: str,
        profile: ProfileContext = NEUTRAL_PROFILE,
        confirmation: Optional[ConfirmationResult] = None,
    ) -> GateResult:
        logger.debug(
            "%s %s @ %.8g failed rule %d: %s",
            candidate.setup_type, candidate.side, candidate.level, rule, reason,
        )
        return GateResult(
            passed=False,
            failed_rule=rule,
            reason=reason,
            profile=profile,
            confirmation=confirmation,
        )
