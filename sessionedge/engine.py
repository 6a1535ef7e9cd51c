"""SessionEdge — session engine (polling loop).

Connects the market-data client, volatility/VWAP collaborators and one
``SessionOrchestrator`` into a polling loop for a single stream.  The engine
only reports signals; it never places orders.
"""

import asyncio
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Optional

from sessionedge.api.routers import record_signal, update_stream_status
from sessionedge.config import Config
from sessionedge.indicators.volatility import VolatilityCache, VolatilityEstimator
from sessionedge.indicators.vwap import daily_open, session_vwap, utc_session_start
from sessionedge.market.bybit_client import MarketDataClient
from sessionedge.models.stream_config import StreamConfig
from sessionedge.strategy.orchestrator import SessionOrchestrator

logger = logging.getLogger("sessionedge")


class SessionEngine:
    """Runs one evaluation cycle per call for one stream.

    Args:
        config: Process-wide configuration.
        feed: A ``MarketDataClient`` (or compatible duck-type / mock).
        stream_config: Per-stream settings. If None, one is built from
            *config*.
        estimator: Volatility estimator; one with its own cache is created
            if omitted.
    """

    def __init__(
        self,
        config: Config,
        feed: MarketDataClient,
        stream_config: Optional[StreamConfig] = None,
        estimator: Optional[VolatilityEstimator] = None,
    ) -> None:
        self._config = config
        self._feed = feed
        self._stream_config = stream_config or StreamConfig(
            name=config.symbol.lower(),
            symbol=config.symbol,
            interval=config.candle_interval,
            candle_count=config.candle_count,
            poll_interval_seconds=config.poll_interval_seconds,
        )
        self._estimator = estimator or VolatilityEstimator(
            cache=VolatilityCache(ttl_seconds=config.vol_cache_ttl_seconds),
            clamp=config.vol_clamp,
        )
        self._orchestrator = SessionOrchestrator(
            config.orchestrator_config(),
            depth_provider=feed,
            symbol=self._stream_config.symbol,
        )
        self._session_day: Optional[str] = None
        self._running: bool = False
        self._cycle_count: int = 0

    @property
    def stream_name(self) -> str:
        return self._stream_config.name

    @property
    def symbol(self) -> str:
        return self._stream_config.symbol

    @property
    def orchestrator(self) -> SessionOrchestrator:
        return self._orchestrator

    @property
    def session_day(self) -> Optional[str]:
        return self._session_day

    @property
    def running(self) -> bool:
        return self._running

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    # ── Lifecycle ────────────────────────────────────────────────────────

    def start(self) -> None:
        self._running = True
        update_stream_status(
            self.stream_name,
            running=True,
            symbol=self.symbol,
            started_at=datetime.now(timezone.utc).isoformat(),
        )

    def stop(self) -> None:
        """Let the in-flight cycle finish, then leave the loop."""
        self._running = False

    # ── Polling loop ─────────────────────────────────────────────────────

    async def run(
        self,
        poll_interval: float | None = None,
        max_cycles: int = 0,
    ) -> list[dict]:
        """Run the evaluation loop until stopped.

        Args:
            poll_interval: Seconds between cycles. Defaults to the stream
                config.
            max_cycles: Cycle limit; 0 runs until ``stop()``.

        Returns:
            One result dict per completed cycle.
        """
        if poll_interval is None:
            poll_interval = self._stream_config.poll_interval_seconds
        if not self._running:
            self.start()

        results: list[dict] = []
        cycle = 0

        while self._running:
            cycle += 1
            try:
                result = await self.run_once()
            except Exception as exc:
                logger.error("Stream '%s' cycle %d error: %s", self.stream_name, cycle, exc)
                result = {"action": "error", "reason": str(exc)}
                update_stream_status(self.stream_name, last_result="error")
            results.append(result)
            logger.debug("Stream '%s' cycle %d: %s", self.stream_name, cycle, result["action"])

            if max_cycles > 0 and cycle >= max_cycles:
                break

            # sleep in 1s slices so stop() takes effect promptly
            remaining = poll_interval
            while remaining > 0 and self._running:
                step = min(1.0, remaining)
                await asyncio.sleep(step)
                remaining -= step

        self._running = False
        update_stream_status(self.stream_name, running=False)
        return results

    # ── Single cycle ─────────────────────────────────────────────────────

    async def run_once(self, utc_now: Optional[datetime] = None) -> dict:
        """Execute one evaluation cycle.

        Returns a dict describing the outcome:

        - ``{"action": "skipped", "reason": "..."}``
        - ``{"action": "no_signal", "session_bias": ...}``
        - ``{"action": "signal", "signal": {...}}``

        Args:
            utc_now: Evaluation time; wall-clock UTC when omitted.
        """
        if utc_now is None:
            utc_now = datetime.now(timezone.utc)
        self._cycle_count += 1
        sc = self._stream_config

        candles = await self._feed.fetch_candles(sc.symbol, sc.interval, sc.candle_count)
        if not candles:
            result = {"action": "skipped", "reason": "no_candles"}
            self._publish(utc_now, result)
            return result

        day = utc_now.date().isoformat()
        if day != self._session_day or not self._orchestrator.is_initialized:
            await self._start_session(day, utc_now, candles)

        price = candles[-1].close
        timestamp = int(utc_now.timestamp() * 1000)
        vwap = session_vwap(candles, source=sc.vwap_source)

        signal = await self._orchestrator.evaluate(price, timestamp, candles, vwap=vwap)

        if signal is None:
            result = {"action": "no_signal", "session_bias": self._orchestrator.session_bias}
        else:
            signal_data = signal.to_dict()
            record_signal(self.stream_name, signal_data, utc_now.isoformat())
            result = {"action": "signal", "signal": signal_data}

        self._publish(utc_now, result, price=price, vwap=vwap)
        return result

    async def _start_session(self, day: str, utc_now: datetime, candles: list) -> None:
        """Re-initialise the orchestrator for a new UTC day."""
        sc = self._stream_config
        daily = await self._feed.fetch_candles(sc.symbol, sc.daily_interval, sc.daily_count)
        volatility = self._estimator.estimate(
            sc.symbol, sc.daily_interval, day, [c.close for c in daily],
        )
        session_start = utc_session_start(int(utc_now.timestamp() * 1000))
        self._orchestrator.initialize(
            daily_open(candles), volatility, session_start, candles,
        )
        self._session_day = day
        levels = self._orchestrator.zones.levels
        update_stream_status(
            self.stream_name,
            session_day=day,
            zones=asdict(levels) if levels else None,
        )
        logger.info(
            "Stream '%s' — new session %s (volatility %.4f)",
            self.stream_name, day, volatility,
        )

    def _publish(
        self,
        utc_now: datetime,
        result: dict,
        price: Optional[float] = None,
        vwap: Optional[float] = None,
    ) -> None:
        orb = None
        if self._orchestrator.is_initialized:
            orb = asdict(self._orchestrator.opening_range.snapshot())
        update_stream_status(
            self.stream_name,
            session_bias=self._orchestrator.session_bias,
            opening_range=orb,
            price=price,
            vwap=vwap,
            cycle_count=self._cycle_count,
            last_cycle_at=utc_now.isoformat(),
            last_result=result["action"],
        )
