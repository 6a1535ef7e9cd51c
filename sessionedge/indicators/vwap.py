"""Session-anchored VWAP and daily open. Pure functions, no I/O.

VWAP = Σ(typical price × volume) / Σ(volume), reset at UTC midnight.
"""

from typing import Optional

from sessionedge.strategy.models import Candle
from sessionedge.strategy.opening_range import utc_midnight_ms


def utc_session_start(timestamp_ms: int) -> int:
    """Epoch ms of the UTC midnight that starts *timestamp_ms*'s session."""
    return utc_midnight_ms(timestamp_ms)


def typical_price(candle: Candle, source: str = "hl2") -> float:
    """Price source: ``close``, ``hl2``, ``hlc3`` or ``ohlc4``.

    Raises ``ValueError`` for an unknown source.
    """
    if source == "close":
        return candle.close
    if source == "hl2":
        return (candle.high + candle.low) / 2
    if source == "hlc3":
        return (candle.high + candle.low + candle.close) / 3
    if source == "ohlc4":
        return (candle.open + candle.high + candle.low + candle.close) / 4
    raise ValueError(f"Unknown VWAP source '{source}'")


def session_vwap(
    candles: list[Candle],
    source: str = "hl2",
    session_start: Optional[int] = None,
    lookback: Optional[int] = None,
) -> float:
    """VWAP over the current session (or the last *lookback* candles).

    The session defaults to the UTC day of the last candle.  With no
    traded volume the last close is returned.

    Raises ``ValueError`` if *candles* is empty.
    """
    if not candles:
        raise ValueError("No candles provided for VWAP")

    last = candles[-1]
    if lookback is not None and lookback > 0:
        window = candles[-lookback:]
    else:
        start = session_start if session_start is not None else utc_session_start(last.timestamp)
        window = [c for c in candles if c.timestamp >= start]

    total_volume = sum(c.volume for c in window)
    if not window or total_volume == 0:
        return last.close
    return sum(typical_price(c, source) * c.volume for c in window) / total_volume


def daily_open(candles: list[Candle]) -> float:
    """Open of the first candle of the last candle's UTC day.

    If the window starts mid-day this is simply the first candle's open.
    Raises ``ValueError`` if *candles* is empty.
    """
    if not candles:
        raise ValueError("No candles provided for daily open")
    start = utc_session_start(candles[-1].timestamp)
    return next(c.open for c in candles if c.timestamp >= start)
