"""Tests for the session engine polling loop.

Verifies the per-cycle flow: fetch candles → (re)initialise the session on a
new UTC day → VWAP → evaluate → publish status.  Uses a mock market feed to
avoid real Bybit calls.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from sessionedge.api import routers
from sessionedge.api.routers import configure_routers
from sessionedge.config import Config
from sessionedge.engine import SessionEngine
from sessionedge.models.stream_config import StreamConfig
from sessionedge.strategy.models import (
    NEUTRAL_PROFILE,
    SETUP_ZONE_REJECTION,
    Candle,
    ConfirmationResult,
    SignalContext,
    TradeSignal,
    ZoneInfo,
)

MIDNIGHT = datetime(2024, 1, 1, tzinfo=timezone.utc)
MIDNIGHT_MS = int(MIDNIGHT.timestamp() * 1000)


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_config(**overrides) -> Config:
    """Build a Config with sensible test defaults."""
    defaults = dict(
        symbol="BTCUSDT",
        candle_interval="1",
        candle_count=500,
        market_base_url="https://api.bybit.test",
        log_level="WARNING",
        health_port=8080,
        poll_interval_seconds=0.0,
        orb_window_minutes=5,
        orb_hold_ms=30_000,
        orb_confirm_pct=0.001,
        zone_tolerance_pct=0.0005,
        min_signal_confidence=0.4,
        min_wall_notional=50_000.0,
        wall_proximity_bps=5.0,
        depth_timeout_seconds=2.0,
        vol_clamp_min=0.01,
        vol_clamp_max=0.10,
        vol_cache_ttl_seconds=3600.0,
        streams_path="sessionedge.json",
    )
    defaults.update(overrides)
    return Config(**defaults)


def _intraday_candles(start_ms: int = MIDNIGHT_MS, count: int = 10) -> list[Candle]:
    """One-minute candles drifting up from 100.0."""
    candles = []
    for i in range(count):
        base = 100.0 + 0.01 * i
        candles.append(Candle(
            timestamp=start_ms + i * 60_000,
            open=base, high=base + 0.05, low=base - 0.05, close=base + 0.01,
            volume=10.0,
        ))
    return candles


def _daily_candles() -> list[Candle]:
    return [
        Candle(timestamp=MIDNIGHT_MS - (60 - i) * 86_400_000,
               open=100.0, high=101.0, low=99.0, close=100.0, volume=1000.0)
        for i in range(60)
    ]


def _make_signal() -> TradeSignal:
    return TradeSignal(
        setup_type=SETUP_ZONE_REJECTION,
        side="long",
        entry=99.0,
        take_profit=100.0,
        stop_loss=98.0,
        confidence=0.8,
        context=SignalContext(
            session_bias="long",
            profile=NEUTRAL_PROFILE,
            confirmation=ConfirmationResult(bias="long", confidence=0.4, mode="fallback"),
            zone=ZoneInfo(quadrant="Q-1", nearest_boundary=99.0, distance_to_boundary_pct=0.0),
            imbalance=None,
            reason="test",
        ),
    )


class MockFeed:
    """Fake market feed returning canned candles and no order book."""

    def __init__(self, candles=None, daily=None):
        self.candles = candles if candles is not None else _intraday_candles()
        self.daily = daily if daily is not None else _daily_candles()
        self.calls: list[tuple] = []

    async def fetch_candles(self, symbol, interval, count=200):
        self.calls.append((symbol, interval, count))
        return self.daily if interval == "D" else self.candles

    async def fetch_depth(self, symbol, limit=50):
        return None

    def daily_calls(self) -> int:
        return sum(1 for _, interval, _ in self.calls if interval == "D")


def _make_engine(feed=None, **stream_overrides) -> SessionEngine:
    stream = StreamConfig(name="btc-1m", symbol="BTCUSDT", **stream_overrides)
    return SessionEngine(_make_config(), feed or MockFeed(), stream_config=stream)


@pytest.fixture(autouse=True)
def _reset_status():
    configure_routers(reset=True)
    yield
    configure_routers(reset=True)


# ── Tests ────────────────────────────────────────────────────────────────


class TestSessionEngine:
    @pytest.mark.asyncio
    async def test_skips_without_candles(self):
        engine = _make_engine(MockFeed(candles=[]))
        result = await engine.run_once(MIDNIGHT + timedelta(minutes=10))
        assert result == {"action": "skipped", "reason": "no_candles"}
        assert not engine.orchestrator.is_initialized
        assert routers._stream_statuses["btc-1m"]["last_result"] == "skipped"

    @pytest.mark.asyncio
    async def test_first_cycle_starts_session(self):
        feed = MockFeed()
        engine = _make_engine(feed)
        result = await engine.run_once(MIDNIGHT + timedelta(minutes=10))

        assert result["action"] == "no_signal"
        assert engine.session_day == "2024-01-01"
        assert engine.orchestrator.is_initialized
        assert feed.calls[1] == ("BTCUSDT", "D", 60)

        levels = engine.orchestrator.zones.levels
        assert levels.daily_open == pytest.approx(100.0)
        # flat daily closes sit on the volatility floor
        assert levels.volatility_fraction == pytest.approx(0.01)

        status = routers._stream_statuses["btc-1m"]
        assert status["session_day"] == "2024-01-01"
        assert status["zones"]["upper_range"] == pytest.approx(101.0)
        assert status["price"] == pytest.approx(100.1)
        assert status["vwap"] is not None
        assert status["opening_range"]["opening_high"] == pytest.approx(100.09)
        assert status["cycle_count"] == 1

    @pytest.mark.asyncio
    async def test_same_day_keeps_session(self):
        feed = MockFeed()
        engine = _make_engine(feed)
        await engine.run_once(MIDNIGHT + timedelta(minutes=10))
        await engine.run_once(MIDNIGHT + timedelta(minutes=11))
        assert feed.daily_calls() == 1
        assert engine.cycle_count == 2

    @pytest.mark.asyncio
    async def test_new_day_reinitialises(self):
        feed = MockFeed()
        engine = _make_engine(feed)
        await engine.run_once(MIDNIGHT + timedelta(minutes=10))

        next_day = MIDNIGHT + timedelta(days=1, minutes=2)
        feed.candles = _intraday_candles(start_ms=MIDNIGHT_MS + 86_400_000, count=3)
        await engine.run_once(next_day)

        assert feed.daily_calls() == 2
        assert engine.session_day == "2024-01-02"
        assert engine.orchestrator.opening_range.state == "tracking"

    @pytest.mark.asyncio
    async def test_signal_is_recorded(self):
        engine = _make_engine()
        signal = _make_signal()
        await engine.run_once(MIDNIGHT + timedelta(minutes=10))
        engine.orchestrator.evaluate = AsyncMock(return_value=signal)

        now = MIDNIGHT + timedelta(minutes=11)
        result = await engine.run_once(now)

        assert result["action"] == "signal"
        assert result["signal"]["side"] == "long"
        assert result["signal"]["context"]["profile"]["distance"] is None
        status = routers._stream_statuses["btc-1m"]
        assert status["last_signal"]["entry"] == 99.0
        assert status["last_signal_time"] == now.isoformat()
        assert routers._signal_history[-1]["stream_name"] == "btc-1m"

    @pytest.mark.asyncio
    async def test_vwap_source_from_stream(self):
        engine = _make_engine(vwap_source="close")
        engine.orchestrator.initialize(100.0, 0.02, MIDNIGHT_MS, _intraday_candles())
        engine._session_day = "2024-01-01"
        engine.orchestrator.evaluate = AsyncMock(return_value=None)

        await engine.run_once(MIDNIGHT + timedelta(minutes=10))

        kwargs = engine.orchestrator.evaluate.call_args.kwargs
        closes = [c.close for c in _intraday_candles()]
        assert kwargs["vwap"] == pytest.approx(sum(closes) / len(closes))


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_max_cycles(self):
        engine = _make_engine()
        results = await engine.run(poll_interval=0, max_cycles=2)
        assert len(results) == 2
        assert not engine.running
        assert routers._stream_statuses["btc-1m"]["running"] is False

    @pytest.mark.asyncio
    async def test_cycle_error_is_reported(self):
        feed = MockFeed()
        feed.fetch_candles = AsyncMock(side_effect=RuntimeError("feed down"))
        engine = _make_engine(feed)
        results = await engine.run(poll_interval=0, max_cycles=1)
        assert results == [{"action": "error", "reason": "feed down"}]
        assert routers._stream_statuses["btc-1m"]["last_result"] == "error"

    @pytest.mark.asyncio
    async def test_stop_ends_loop(self):
        feed = MockFeed()
        engine = _make_engine(feed)

        async def _fetch_and_stop(symbol, interval, count=200):
            engine.stop()
            return []

        feed.fetch_candles = _fetch_and_stop
        results = await engine.run(poll_interval=5.0)
        assert results == [{"action": "skipped", "reason": "no_candles"}]
        assert not engine.running
