"""EngineManager — runs multiple SessionEngine streams concurrently.

Each enabled stream in ``sessionedge.json`` (or synthesised from env) gets
its own ``SessionEngine`` and orchestrator.  Streams share the market-data
client but no session state, and run as concurrent ``asyncio`` tasks that
can be stopped individually or en masse.
"""

import asyncio
import logging
from typing import Optional

from sessionedge.config import Config
from sessionedge.engine import SessionEngine
from sessionedge.market.bybit_client import MarketDataClient
from sessionedge.models.stream_config import StreamConfig

logger = logging.getLogger("sessionedge.engine_manager")


class EngineManager:
    """Owns one ``SessionEngine`` per enabled stream.

    Args:
        config:  Process-wide ``Config``.
        feed:    Market-data client shared by every stream.
        streams: Stream definitions; entries with ``enabled=False`` are ignored.
    """

    def __init__(
        self,
        config: Config,
        feed: MarketDataClient,
        streams: list[StreamConfig],
    ) -> None:
        self._config = config
        self._feed = feed
        self._active = [stream for stream in streams if stream.enabled]
        self._engines: dict[str, SessionEngine] = {}

    # ── Stream registry ──────────────────────────────────────────────────

    @property
    def engines(self) -> dict[str, SessionEngine]:
        """Copy of the stream-name → engine mapping."""
        return dict(self._engines)

    @property
    def stream_names(self) -> list[str]:
        return list(self._engines)

    def build_engines(self) -> None:
        """Create the per-stream engines.  Idempotent for a given name."""
        for stream in self._active:
            if stream.name in self._engines:
                continue
            self._engines[stream.name] = SessionEngine(
                config=self._config,
                feed=self._feed,
                stream_config=stream,
            )
            logger.info(
                "Registered stream '%s' on %s (%s-minute candles)",
                stream.name, stream.symbol, stream.interval,
            )

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def run_all(self) -> dict[str, list[dict]]:
        """Run every stream until it stops; return each stream's cycle results."""
        if not self._engines:
            self.build_engines()

        names = list(self._engines)
        outcomes = await asyncio.gather(
            *(self._run_stream(name) for name in names),
            return_exceptions=True,
        )

        results: dict[str, list[dict]] = {}
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, Exception):
                logger.error("Stream '%s' terminated abnormally: %s", name, outcome)
                results[name] = [{"action": "error", "reason": str(outcome)}]
            else:
                results[name] = outcome
        return results

    async def _run_stream(self, name: str) -> list[dict]:
        engine = self._engines[name]
        logger.info("Stream '%s' starting", name)
        engine.start()
        return await engine.run()

    def stop_all(self) -> None:
        for name in self._engines:
            self.stop_stream(name)

    def stop_stream(self, name: str) -> None:
        """Ask one stream to finish its current cycle and exit."""
        engine = self._engines.get(name)
        if engine is None:
            logger.warning("Cannot stop unknown stream '%s'", name)
            return
        engine.stop()
        logger.info("Stream '%s' asked to stop", name)

    # ── Status ───────────────────────────────────────────────────────────

    def get_status(self, name: Optional[str] = None) -> dict:
        """Summarise every stream, or only ``name`` when given."""
        if name is None:
            return {
                "streams": {n: _engine_status(e) for n, e in self._engines.items()}
            }
        engine = self._engines.get(name)
        if engine is None:
            return {"error": f"Unknown stream: {name}"}
        return {"stream_name": name, **_engine_status(engine)}


def _engine_status(engine: SessionEngine) -> dict:
    return {
        "symbol": engine.symbol,
        "running": engine.running,
        "cycle_count": engine.cycle_count,
        "session_day": engine.session_day,
        "session_bias": engine.orchestrator.get_session_bias(),
    }
