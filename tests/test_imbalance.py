"""Tests for sessionedge.strategy.imbalance — fair value gaps and volume voids."""

import pytest

from sessionedge.strategy.imbalance import ImbalanceConfig, InefficiencyDetector
from sessionedge.strategy.models import Candle

MINUTE = 60_000


def _make_candle(i: int, o: float, h: float, l: float, c: float, volume: float = 10.0) -> Candle:
    return Candle(timestamp=i * MINUTE, open=o, high=h, low=l, close=c, volume=volume)


def _bullish_gap() -> list[Candle]:
    """c1.high = 100.0, c3.low = 100.5 — a 0.5% bullish gap."""
    return [
        _make_candle(0, 99.6, 100.0, 99.5, 99.9),
        _make_candle(1, 99.9, 100.6, 99.9, 100.55),
        _make_candle(2, 100.55, 101.0, 100.5, 100.9),
    ]


def _make_detector(candles=None, **overrides) -> InefficiencyDetector:
    detector = InefficiencyDetector(ImbalanceConfig(**overrides))
    detector.detect(candles if candles is not None else _bullish_gap())
    return detector


class TestFairValueGap:
    def test_bullish_gap(self):
        zones = _make_detector().zones()
        assert len(zones) == 1
        zone = zones[0]
        assert zone.direction == "bullish"
        assert zone.lower == pytest.approx(100.0)
        assert zone.upper == pytest.approx(100.5)
        assert zone.midpoint == pytest.approx(100.25)
        assert zone.strength == pytest.approx(0.5)
        assert zone.created_at == 2 * MINUTE
        assert zone.source == "fvg"

    def test_bearish_gap(self):
        candles = [
            _make_candle(0, 100.4, 100.5, 100.0, 100.1),
            _make_candle(1, 100.1, 100.1, 99.4, 99.45),
            _make_candle(2, 99.45, 99.5, 99.0, 99.1),
        ]
        zone = _make_detector(candles).zones()[0]
        assert zone.direction == "bearish"
        assert zone.upper == pytest.approx(100.0)
        assert zone.lower == pytest.approx(99.5)

    @pytest.mark.parametrize("c3_low", [100.05, 102.0])
    def test_gap_outside_size_limits_ignored(self, c3_low):
        candles = _bullish_gap()
        candles[2] = _make_candle(2, c3_low, c3_low + 0.5, c3_low, c3_low + 0.4)
        assert _make_detector(candles).zones() == []

    def test_disabled(self):
        assert _make_detector(detect_fvg=False).zones() == []

    def test_quadrant_tagging(self):
        detector = InefficiencyDetector()
        zones = detector.detect(_bullish_gap(), quadrant_of=lambda price: "Q1")
        assert zones[0].quadrant == "Q1"

    def test_too_few_candles(self):
        assert _make_detector(_bullish_gap()[:2]).zones() == []


class TestVolumeVoid:
    def _void_candles(self) -> list[Candle]:
        volumes = [100.0, 100.0, 100.0, 1.0, 1.0, 1.0, 100.0, 100.0, 100.0]
        closes = [100.1, 100.1, 100.1, 100.05, 100.1, 100.15, 100.1, 100.1, 100.1]
        return [
            _make_candle(i, 100.1, 100.2, 100.0, c, volume=v)
            for i, (c, v) in enumerate(zip(closes, volumes))
        ]

    def test_thin_window_detected(self):
        zones = _make_detector(self._void_candles()).zones()
        assert len(zones) == 1
        zone = zones[0]
        assert zone.source == "volume_void"
        assert zone.direction == "bullish"
        assert zone.lower == pytest.approx(100.0)
        assert zone.upper == pytest.approx(100.2)
        assert zone.created_at == 5 * MINUTE
        threshold = 603.0 / 9 * 0.5
        assert zone.strength == pytest.approx((threshold - 1.0) / threshold)

    def test_needs_two_windows_of_candles(self):
        assert _make_detector(self._void_candles()[:5]).zones() == []

    def test_disabled(self):
        assert _make_detector(self._void_candles(), detect_volume_voids=False).zones() == []


class TestMerge:
    def test_adjacent_same_direction_gaps_merge(self):
        candles = [
            _make_candle(0, 99.6, 100.0, 99.5, 99.9),
            _make_candle(1, 100.0, 100.3, 100.0, 100.3),
            _make_candle(2, 100.5, 101.0, 100.5, 100.9),
            _make_candle(3, 100.9, 101.2, 100.6, 101.1),
        ]
        zones = _make_detector(candles).zones()
        assert len(zones) == 1
        zone = zones[0]
        assert zone.source == "merged"
        assert zone.lower == pytest.approx(100.0)
        assert zone.upper == pytest.approx(100.6)
        assert zone.strength == pytest.approx(0.5)
        assert zone.created_at == 2 * MINUTE


class TestQueries:
    def test_containing(self):
        detector = _make_detector()
        assert len(detector.containing(100.25)) == 1
        assert detector.containing(100.6) == []
        assert len(detector.containing(100.6, tolerance_pct=0.001)) == 1

    def test_at_price(self):
        detector = _make_detector()
        assert detector.at_price(100.55) is not None
        assert detector.at_price(101.0) is None

    def test_near(self):
        detector = _make_detector()
        assert len(detector.near(100.7)) == 1
        assert detector.near(101.0) == []

    def test_prune(self):
        detector = _make_detector()
        assert detector.prune(2 * MINUTE + 1_000, max_age_ms=5_000) == 0
        assert detector.prune(2 * MINUTE + 10_000, max_age_ms=5_000) == 1
        assert detector.zones() == []

    def test_prune_disabled(self):
        detector = _make_detector()
        assert detector.prune(10**12, max_age_ms=0) == 0
        assert len(detector.zones()) == 1

    def test_detect_replaces_zones(self):
        detector = _make_detector()
        detector.detect([])
        assert detector.zones() == []
