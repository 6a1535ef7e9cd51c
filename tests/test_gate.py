"""Tests for sessionedge.strategy.gate — the five-rule validation gate."""

import pytest

from sessionedge.strategy.confirmation import ConfirmationLayer
from sessionedge.strategy.gate import (
    Candidate,
    FiveRuleGate,
    break_and_hold,
    directional_closes,
    is_rejection_wick_long,
    is_rejection_wick_short,
    level_proximity_ok,
    profile_plausible,
    rejection_with_follow_through,
)
from sessionedge.strategy.models import (
    NEUTRAL_PROFILE,
    SETUP_IMBALANCE_RETEST,
    SETUP_OPENING_RANGE,
    SETUP_ZONE_BREAKOUT,
    SETUP_ZONE_REJECTION,
    Candle,
    DepthLevel,
    DepthSnapshot,
    ProfileContext,
)
from sessionedge.strategy.profile import ProfileClassifier


def _make_candle(o: float, h: float, l: float, c: float, ts: int = 0) -> Candle:
    return Candle(timestamp=ts, open=o, high=h, low=l, close=c, volume=10.0)


def _make_candidate(**overrides) -> Candidate:
    defaults = dict(
        setup_type=SETUP_ZONE_BREAKOUT,
        side="long",
        level=100.0,
        level_kind="zone",
        trigger="breakout",
    )
    defaults.update(overrides)
    return Candidate(**defaults)


def _profile(node_type: str) -> ProfileContext:
    return ProfileContext(node_type=node_type, distance=0.0, distance_pct=0.0, confidence=1.0)


class _FixedProfile:
    """Stands in for ProfileClassifier with a fixed context."""

    def __init__(self, context: ProfileContext):
        self.context = context

    def context_at(self, level):
        return self.context


class _CountingProvider:
    def __init__(self, snapshot=None):
        self.snapshot = snapshot
        self.calls = 0

    async def fetch_depth(self, symbol):
        self.calls += 1
        return self.snapshot


BREAKOUT_CANDLES = [
    _make_candle(99.9, 100.0, 99.85, 99.95, ts=0),
    _make_candle(99.95, 100.1, 99.95, 100.05, ts=1),
]


def _make_gate(profile=None, provider=None) -> FiveRuleGate:
    return FiveRuleGate(
        profile or ProfileClassifier(),
        ConfirmationLayer(depth_provider=provider),
        symbol="BTCUSDT",
    )


class TestRules:
    def test_proximity_limits(self):
        assert level_proximity_ok(_make_candidate(), 100.15)
        assert not level_proximity_ok(_make_candidate(), 100.3)
        orb = _make_candidate(level_kind="opening_range", setup_type=SETUP_OPENING_RANGE)
        assert level_proximity_ok(orb, 100.05)
        assert not level_proximity_ok(orb, 100.15)

    def test_profile_plausibility(self):
        rejection = _make_candidate(setup_type=SETUP_ZONE_REJECTION, trigger="reversal")
        breakout = _make_candidate()
        assert profile_plausible(rejection, _profile("HVN"))
        assert not profile_plausible(breakout, _profile("HVN"))
        assert profile_plausible(breakout, _profile("LVN"))
        assert not profile_plausible(rejection, _profile("LVN"))
        assert profile_plausible(rejection, NEUTRAL_PROFILE)
        assert profile_plausible(breakout, NEUTRAL_PROFILE)
        retest = _make_candidate(setup_type=SETUP_IMBALANCE_RETEST, trigger="imbalance")
        assert profile_plausible(retest, _profile("HVN"))

    def test_range_extreme_ignores_node_type(self):
        extreme = _make_candidate(setup_type=SETUP_ZONE_REJECTION, trigger="reversal", extreme=True)
        assert profile_plausible(extreme, _profile("LVN"))
        assert profile_plausible(extreme, _profile("HVN"))


class TestTriggers:
    def test_break_and_hold(self):
        assert break_and_hold(BREAKOUT_CANDLES, 100.0, "long")
        deep = [_make_candle(99.9, 100.1, 99.8, 100.05)]
        assert not break_and_hold(deep, 100.0, "long")
        short = [_make_candle(100.05, 100.05, 99.9, 99.95)]
        assert break_and_hold(short, 100.0, "short")
        assert not break_and_hold([], 100.0, "long")

    def test_rejection_long(self):
        wick = _make_candle(100.3, 100.4, 99.98, 100.35)
        assert rejection_with_follow_through([wick, _make_candle(100.35, 100.6, 100.3, 100.5)], 100.0, "long")
        assert not rejection_with_follow_through([wick, _make_candle(100.35, 100.4, 100.1, 100.2)], 100.0, "long")

    def test_rejection_short(self):
        wick = _make_candle(99.7, 100.02, 99.6, 99.65)
        follow = _make_candle(99.65, 99.7, 99.4, 99.5)
        assert rejection_with_follow_through([wick, follow], 100.0, "short")

    def test_rejection_needs_two_candles(self):
        assert not rejection_with_follow_through([_make_candle(100, 100.1, 99.0, 100.05)], 100.0, "long")

    def test_wick_helpers(self):
        assert is_rejection_wick_long(_make_candle(100.3, 100.4, 99.98, 100.35))
        assert not is_rejection_wick_long(_make_candle(100.0, 100.5, 99.98, 100.45))
        assert is_rejection_wick_short(_make_candle(99.7, 100.02, 99.6, 99.65))
        # doji
        assert is_rejection_wick_long(_make_candle(100.0, 100.0, 99.9, 100.0))

    def test_directional_closes(self):
        candles = [_make_candle(c, c, c, c) for c in (100.0, 100.1, 100.05, 100.2)]
        assert directional_closes(candles, "long")
        assert not directional_closes(candles, "short")
        assert not directional_closes(candles[:3], "long")


class TestFiveRuleGate:
    @pytest.mark.asyncio
    async def test_passes_all_rules(self):
        result = await _make_gate().validate(_make_candidate(), 100.05, BREAKOUT_CANDLES, "long")
        assert result.passed
        assert result.failed_rule is None
        assert result.confirmation.mode == "fallback"
        assert result.profile.node_type == "neutral"

    @pytest.mark.asyncio
    async def test_rule1_far_from_level(self):
        provider = _CountingProvider()
        result = await _make_gate(provider=provider).validate(
            _make_candidate(), 100.5, BREAKOUT_CANDLES, "long",
        )
        assert result.failed_rule == 1
        assert provider.calls == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bias", ["neutral", "short"])
    async def test_rule2_bias(self, bias):
        result = await _make_gate().validate(_make_candidate(), 100.05, BREAKOUT_CANDLES, bias)
        assert result.failed_rule == 2

    @pytest.mark.asyncio
    async def test_rule3_breakout_at_hvn(self):
        provider = _CountingProvider()
        gate = _make_gate(profile=_FixedProfile(_profile("HVN")), provider=provider)
        result = await gate.validate(_make_candidate(), 100.05, BREAKOUT_CANDLES, "long")
        assert result.failed_rule == 3
        assert result.profile.node_type == "HVN"
        assert provider.calls == 0

    @pytest.mark.asyncio
    async def test_range_extreme_rejection_at_lvn_passes(self):
        candidate = _make_candidate(
            setup_type=SETUP_ZONE_REJECTION,
            side="short",
            level=102.0,
            trigger="reversal",
            extreme=True,
        )
        candles = [
            _make_candle(101.90, 102.05, 101.85, 101.95, ts=0),
            _make_candle(101.95, 101.97, 101.88, 101.90, ts=1),
        ]
        gate = _make_gate(profile=_FixedProfile(_profile("LVN")))
        result = await gate.validate(candidate, 101.99, candles, "short")
        assert result.passed
        assert result.profile.node_type == "LVN"
        assert result.confirmation.bias == "short"

    @pytest.mark.asyncio
    async def test_rule4_opposing_wall(self):
        snapshot = DepthSnapshot(
            timestamp=1,
            bids=(DepthLevel(99.9, 1.0),),
            asks=(DepthLevel(100.0, 600.0),),
        )
        provider = _CountingProvider(snapshot)
        result = await _make_gate(provider=provider).validate(
            _make_candidate(), 99.95, BREAKOUT_CANDLES, "long",
        )
        assert result.failed_rule == 4
        assert result.confirmation.bias == "short"
        assert provider.calls == 1

    @pytest.mark.asyncio
    async def test_rule5_no_trigger(self):
        candles = BREAKOUT_CANDLES[:1]
        result = await _make_gate().validate(_make_candidate(), 100.05, candles, "long")
        assert result.failed_rule == 5
        assert result.confirmation is not None
