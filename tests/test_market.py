"""Tests for sessionedge.market — Bybit client with mocked HTTP responses."""

import asyncio

import httpx
import pytest

from sessionedge.config import Config
from sessionedge.market.bybit_client import MarketDataClient, MarketDataError
from sessionedge.strategy.base import DepthProvider
from sessionedge.strategy.models import Candle, DepthSnapshot


def _make_config(**overrides) -> Config:
    defaults = dict(
        symbol="BTCUSDT",
        candle_interval="1",
        candle_count=500,
        market_base_url="https://api.bybit.test/",
        log_level="WARNING",
        health_port=8080,
        poll_interval_seconds=5.0,
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


# ── Mock Bybit responses ─────────────────────────────────────────────────

MOCK_KLINE_RESPONSE = {
    "retCode": 0,
    "retMsg": "OK",
    "result": {
        "category": "linear",
        "symbol": "BTCUSDT",
        "list": [
            ["1704067260000", "42010.5", "42050.0", "42000.0", "42040.0", "12.5", "525000"],
            ["1704067200000", "42000.0", "42020.0", "41980.0", "42010.5", "8.25", "346500"],
        ],
    },
}

MOCK_ORDERBOOK_RESPONSE = {
    "retCode": 0,
    "retMsg": "OK",
    "result": {
        "s": "BTCUSDT",
        "b": [["42000.0", "1.2"], ["41999.0", "0"], ["42001.0", "0.5"]],
        "a": [["42010.0", "0.3"], ["42005.0", "1.0"]],
        "ts": 1704067200123,
        "u": 18521288,
    },
}


def _response(payload: dict, url: str, status: int = 200) -> httpx.Response:
    return httpx.Response(status, json=payload, request=httpx.Request("GET", url))


@pytest.fixture
def no_sleep(monkeypatch):
    """Record retry delays instead of sleeping."""
    delays = []

    async def _sleep(delay):
        delays.append(delay)

    monkeypatch.setattr(asyncio, "sleep", _sleep)
    return delays


# ── Candles ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_parse_candles(monkeypatch):
    """Klines come back newest-first and are returned oldest-first."""
    client = MarketDataClient(_make_config())
    captured = {}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        captured["url"] = url
        captured["params"] = params
        return _response(MOCK_KLINE_RESPONSE, url)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    candles = await client.fetch_candles("BTCUSDT", "1", count=2)
    assert len(candles) == 2
    first = candles[0]
    assert isinstance(first, Candle)
    assert first.timestamp == 1704067200000
    assert first.open == pytest.approx(42000.0)
    assert first.close == pytest.approx(42010.5)
    assert first.volume == pytest.approx(8.25)
    assert candles[1].timestamp > first.timestamp

    assert captured["url"] == "https://api.bybit.test/v5/market/kline"
    assert captured["params"] == {
        "category": "linear", "symbol": "BTCUSDT", "interval": "1", "limit": 2,
    }


# ── Depth ────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_parse_depth(monkeypatch):
    """Zero-size levels are dropped and both sides sorted away from the touch."""
    client = MarketDataClient(_make_config())

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return _response(MOCK_ORDERBOOK_RESPONSE, url)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    snapshot = await client.fetch_depth("BTCUSDT")
    assert isinstance(snapshot, DepthSnapshot)
    assert snapshot.timestamp == 1704067200123
    assert [b.price for b in snapshot.bids] == [42001.0, 42000.0]
    assert [a.price for a in snapshot.asks] == [42005.0, 42010.0]
    assert snapshot.bids[1].notional == pytest.approx(50400.0)


@pytest.mark.asyncio
async def test_depth_one_sided_book_is_none(monkeypatch):
    client = MarketDataClient(_make_config())
    payload = {"retCode": 0, "result": {"b": [["42000.0", "1"]], "a": [], "ts": 1}}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return _response(payload, url)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    assert await client.fetch_depth("BTCUSDT") is None


def test_client_is_depth_provider():
    assert isinstance(MarketDataClient(_make_config()), DepthProvider)


# ── Errors and retry ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_nonzero_ret_code_raises(monkeypatch):
    client = MarketDataClient(_make_config())
    payload = {"retCode": 10001, "retMsg": "params error: symbol invalid", "result": {}}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return _response(payload, url)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    with pytest.raises(MarketDataError, match="10001"):
        await client.fetch_candles("NOPE", "1")


@pytest.mark.asyncio
async def test_retries_on_server_error(monkeypatch, no_sleep):
    """503 then 200 succeeds after one backoff."""
    client = MarketDataClient(_make_config())
    calls = []

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        calls.append(url)
        if len(calls) == 1:
            return _response({}, url, status=503)
        return _response(MOCK_KLINE_RESPONSE, url)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    candles = await client.fetch_candles("BTCUSDT", "1")
    assert len(candles) == 2
    assert len(calls) == 2
    assert no_sleep == [1.0]


@pytest.mark.asyncio
async def test_transport_errors_exhaust_retries(monkeypatch, no_sleep):
    client = MarketDataClient(_make_config())

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        raise httpx.ConnectError("connection refused", request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    with pytest.raises(httpx.ConnectError):
        await client.fetch_depth("BTCUSDT")
    assert no_sleep == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_client_error_not_retried(monkeypatch, no_sleep):
    client = MarketDataClient(_make_config())
    calls = []

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        calls.append(url)
        return _response({}, url, status=404)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    with pytest.raises(httpx.HTTPStatusError):
        await client.fetch_candles("BTCUSDT", "1")
    assert len(calls) == 1
    assert no_sleep == []
