"""SessionEdge — application entry point.

Boots the read-only FastAPI server and provides the CLI entry point that
runs every configured stream.
"""

import logging

from fastapi import FastAPI

from sessionedge.api.routers import router

app = FastAPI(title="SessionEdge Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("sessionedge")


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and start the engines (and API server)."""
    import argparse
    import asyncio
    import signal

    from sessionedge.api.routers import configure_routers
    from sessionedge.config import load_config, load_streams
    from sessionedge.engine_manager import EngineManager
    from sessionedge.market.bybit_client import MarketDataClient

    parser = argparse.ArgumentParser(description="SessionEdge signal engine")
    parser.add_argument(
        "--engine-only",
        action="store_true",
        help="Run the engines without the API server",
    )
    parser.add_argument("--port", type=int, default=None, help="API port (default: HEALTH_PORT)")
    parser.add_argument("--env", default=None, help="Path to a .env file")
    parser.add_argument("--streams", default=None, help="Path to the streams JSON file")
    args = parser.parse_args()

    config = load_config(args.env)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    feed = MarketDataClient(config)
    streams = load_streams(args.streams, config=config)
    manager = EngineManager(config=config, feed=feed, streams=streams)
    manager.build_engines()
    configure_routers(engine_manager=manager)

    def handle_shutdown(signum, frame):
        logger.info("SIGINT received, stopping all streams")
        manager.stop_all()

    signal.signal(signal.SIGINT, handle_shutdown)

    if args.engine_only:
        asyncio.run(_run_engines_only(manager))
    else:
        asyncio.run(_run_engine_manager(manager, port=args.port or config.health_port))


async def _run_engine_manager(manager, port: int = 8080) -> None:
    """Start the API server and all streams concurrently."""
    import asyncio

    import uvicorn

    logger.info("Starting SessionEdge with %d stream(s).", len(manager.stream_names))

    uvi_config = uvicorn.Config(
        app,
        host="0.0.0.0",
        port=port,
        log_level="info",
    )
    server = uvicorn.Server(uvi_config)

    logger.info("Status API available at http://localhost:%d/status", port)
    results = await asyncio.gather(
        server.serve(),
        manager.run_all(),
        return_exceptions=True,
    )
    logger.info("SessionEdge stopped. Results: %s", results)


async def _run_engines_only(manager) -> None:
    """Run the streams without starting the API server."""
    logger.info(
        "Starting SessionEdge engines (no API) with %d stream(s).",
        len(manager.stream_names),
    )
    await manager.run_all()
    logger.info("SessionEdge engines stopped.")


if __name__ == "__main__":
    _run_cli()
