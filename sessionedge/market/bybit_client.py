"""Bybit v5 public REST client (linear perpetuals).

Read-only market data: klines and order-book depth.  No authentication
and no order placement.
"""

import asyncio
import logging
from typing import Optional

import httpx

from sessionedge.config import Config
from sessionedge.strategy.models import Candle, DepthLevel, DepthSnapshot

logger = logging.getLogger("sessionedge.market")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 1.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}
_REQUEST_TIMEOUT = 10.0
_CATEGORY = "linear"


class MarketDataError(RuntimeError):
    """The exchange answered with a non-zero ``retCode``."""


class MarketDataClient:
    """Async client wrapping the Bybit v5 market endpoints."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._base_url = config.market_base_url.rstrip("/")
        self._headers = {"Accept": "application/json"}

    # ── Transport ────────────────────────────────────────────────────────

    async def _get(self, url: str, params: dict) -> httpx.Response:
        """GET with exponential backoff.

        Gateway errors (502/503/504), 429 and transport failures are retried
        up to ``_MAX_RETRIES`` times; any other HTTP error is raised at once.
        """
        failure: Optional[Exception] = None

        for attempt in range(1, _MAX_RETRIES + 1):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await client.get(
                        url,
                        headers=self._headers,
                        params=params,
                        timeout=_REQUEST_TIMEOUT,
                    )
            except httpx.TransportError as exc:
                failure = exc
                await self._backoff(attempt, url, f"transport error ({exc})")
                continue

            if resp.status_code not in _RETRYABLE_STATUS_CODES:
                resp.raise_for_status()
                return resp

            failure = httpx.HTTPStatusError(
                f"Bybit answered {resp.status_code}",
                request=resp.request,
                response=resp,
            )
            await self._backoff(attempt, url, f"HTTP {resp.status_code}")

        raise failure  # type: ignore[misc]

    @staticmethod
    async def _backoff(attempt: int, url: str, cause: str) -> None:
        delay = _RETRY_BASE_DELAY * 2 ** (attempt - 1)
        logger.warning(
            "GET %s failed with %s; attempt %d/%d, sleeping %.1fs",
            url, cause, attempt, _MAX_RETRIES, delay,
        )
        await asyncio.sleep(delay)

    async def _get_result(self, path: str, params: dict) -> dict:
        resp = await self._get(f"{self._base_url}{path}", params)
        data = resp.json()
        if data.get("retCode", 0) != 0:
            raise MarketDataError(
                f"Bybit {path} failed: retCode={data.get('retCode')} "
                f"retMsg={data.get('retMsg', '')}"
            )
        return data.get("result") or {}

    # ── Candle data ──────────────────────────────────────────────────────

    async def fetch_candles(
        self,
        symbol: str,
        interval: str,
        count: int = 200,
    ) -> list[Candle]:
        """Fetch klines for *symbol*.

        Args:
            symbol: e.g. ``"BTCUSDT"``
            interval: Bybit interval, e.g. ``"1"``, ``"5"``, ``"D"``
            count: number of candles to request (max 1000)

        Returns:
            List of ``Candle`` objects ordered oldest-first.
        """
        result = await self._get_result(
            "/v5/market/kline",
            {
                "category": _CATEGORY,
                "symbol": symbol,
                "interval": interval,
                "limit": count,
            },
        )

        candles: list[Candle] = []
        # Bybit returns newest first: [start, open, high, low, close, volume, turnover]
        for row in reversed(result.get("list", [])):
            candles.append(
                Candle(
                    timestamp=int(row[0]),
                    open=float(row[1]),
                    high=float(row[2]),
                    low=float(row[3]),
                    close=float(row[4]),
                    volume=float(row[5]),
                )
            )
        return candles

    # ── Order book ───────────────────────────────────────────────────────

    async def fetch_depth(self, symbol: str, limit: int = 50) -> Optional[DepthSnapshot]:
        """Fetch the current order book, or None if either side is empty."""
        result = await self._get_result(
            "/v5/market/orderbook",
            {"category": _CATEGORY, "symbol": symbol, "limit": limit},
        )

        bids = _parse_levels(result.get("b", []))
        asks = _parse_levels(result.get("a", []))
        if not bids or not asks:
            return None

        return DepthSnapshot(
            timestamp=int(result.get("ts", 0)),
            bids=tuple(sorted(bids, key=lambda lvl: -lvl.price)),
            asks=tuple(sorted(asks, key=lambda lvl: lvl.price)),
        )


def _parse_levels(rows: list) -> list[DepthLevel]:
    levels = []
    for price, size in rows:
        level = DepthLevel(price=float(price), size=float(size))
        if level.price > 0 and level.size > 0:
            levels.append(level)
    return levels
