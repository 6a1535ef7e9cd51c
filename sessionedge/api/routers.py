"""Internal API routers — read-only /status, /streams and /signals endpoints.

No business logic and no control actions.  Engines push their per-cycle
state into the shared status dicts below; the endpoints only read them.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

logger = logging.getLogger("sessionedge")
router = APIRouter()

# ── Shared state (updated by engines) ────────────────────────────────────

_DEFAULT_STREAM_STATUS: dict = {
    "running": False,
    "symbol": None,
    "session_day": None,
    "session_bias": "neutral",
    "opening_range": None,
    "zones": None,
    "price": None,
    "vwap": None,
    "last_signal": None,
    "last_signal_time": None,
    "last_result": None,
    "started_at": None,
    "cycle_count": 0,
    "last_cycle_at": None,
}

# stream name -> latest published status
_stream_statuses: dict[str, dict] = {}
_signal_history: list = []  # Recent emitted signals (max 50 entries)
_engine_manager = None  # Set via configure_routers()

_HISTORY_LIMIT = 50


def configure_routers(engine_manager=None, reset: bool = False) -> None:
    """Inject dependencies from the application startup.

    Args:
        engine_manager: An ``EngineManager`` whose streams seed the status
            table so every configured stream is visible before its first
            cycle.
        reset: Clear all stream status and signal history first.
    """
    global _engine_manager  # noqa: PLW0603
    if reset:
        _stream_statuses.clear()
        _signal_history.clear()
    _engine_manager = engine_manager
    if engine_manager is not None:
        for name in engine_manager.stream_names:
            update_stream_status(name, symbol=engine_manager.engines[name].symbol)
        logger.info("Status API serving %d stream(s)", len(engine_manager.stream_names))


def update_stream_status(stream_name: str, **fields) -> None:
    """Merge *fields* into the status entry for *stream_name*."""
    if stream_name not in _stream_statuses:
        _stream_statuses[stream_name] = {
            **_DEFAULT_STREAM_STATUS,
            "stream_name": stream_name,
        }
    _stream_statuses[stream_name].update(fields)


def record_signal(stream_name: str, signal_data: dict, emitted_at: str) -> None:
    """Store an emitted signal as the stream's latest and in the history log."""
    update_stream_status(
        stream_name, last_signal=signal_data, last_signal_time=emitted_at,
    )
    _signal_history.append({
        "stream_name": stream_name,
        "emitted_at": emitted_at,
        **signal_data,
    })
    if len(_signal_history) > _HISTORY_LIMIT:
        del _signal_history[0]


def _require_stream(stream_name: str) -> dict:
    status = _stream_statuses.get(stream_name)
    if status is None:
        raise HTTPException(status_code=404, detail=f"Unknown stream: {stream_name}")
    return status


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status():
    """Return status for all streams."""
    return {"streams": _stream_statuses}


@router.get("/streams/{stream_name}/bias")
async def get_stream_bias(stream_name: str):
    """Session bias and opening-range state for one stream."""
    status = _require_stream(stream_name)
    return {
        "stream_name": stream_name,
        "session_bias": status["session_bias"],
        "opening_range": status["opening_range"],
    }


@router.get("/streams/{stream_name}/signal")
async def get_stream_signal(stream_name: str):
    """Most recent emitted signal for one stream (None until the first)."""
    status = _require_stream(stream_name)
    return {
        "stream_name": stream_name,
        "signal": status["last_signal"],
        "emitted_at": status["last_signal_time"],
    }


@router.get("/streams/{stream_name}/zones")
async def get_stream_zones(stream_name: str):
    """Zone levels for the stream's current session."""
    status = _require_stream(stream_name)
    return {
        "stream_name": stream_name,
        "session_day": status["session_day"],
        "zones": status["zones"],
    }


@router.get("/signals/history")
async def get_signal_history(
    limit: int = Query(default=20, ge=1, le=50),
    stream: Optional[str] = Query(default=None),
):
    """Return recently emitted signals, newest first."""
    entries = [
        s for s in _signal_history
        if stream is None or s["stream_name"] == stream
    ]
    recent = entries[-limit:]
    recent.reverse()
    return {"signals": recent}
