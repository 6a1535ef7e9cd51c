"""Expected daily move — fixed-parameter GARCH(1,1) on daily closes.

    sigma2_t = alpha0 + alpha1 × r_{t-1}² + beta1 × sigma2_{t-1}

where ``r_t = ln(P_t / P_{t-1})``.  The result is a fraction (0.025 = 2.5%)
clamped to a documented band so zone boundaries always stay ordered.

Results are cached per ``(symbol, timeframe, day)`` in an explicit
``VolatilityCache`` owned by the caller.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

logger = logging.getLogger("sessionedge.volatility")

DEFAULT_ALPHA0 = 1e-6
DEFAULT_ALPHA1 = 0.10
DEFAULT_BETA1 = 0.85
DEFAULT_CLAMP = (0.01, 0.10)

_MAX_ABS_LOG_RETURN = math.log(2)
_INIT_WINDOW = 30
_MIN_VARIANCE = 1e-8
_EWMA_LAMBDA = 0.94
_EWMA_DEFAULT_VOL = 0.02


def log_returns(closes) -> np.ndarray:
    """Log returns between consecutive positive closes.

    Moves of 100% or more either way are dropped as bad prints.
    """
    prices = np.asarray(closes, dtype=float)
    if prices.size < 2:
        return np.empty(0)
    prev, curr = prices[:-1], prices[1:]
    valid = (prev > 0) & (curr > 0) & np.isfinite(prev) & np.isfinite(curr)
    with np.errstate(divide="ignore", invalid="ignore"):
        returns = np.log(curr[valid] / prev[valid])
    return returns[np.isfinite(returns) & (np.abs(returns) < _MAX_ABS_LOG_RETURN)]


def _ewma_volatility(returns: np.ndarray) -> float:
    if returns.size < 2:
        return _EWMA_DEFAULT_VOL
    variance = returns[0] ** 2
    for r in returns[1:]:
        variance = _EWMA_LAMBDA * variance + (1 - _EWMA_LAMBDA) * r ** 2
    return math.sqrt(max(variance, _MIN_VARIANCE))


def garch_volatility_fraction(
    closes,
    alpha0: float = DEFAULT_ALPHA0,
    alpha1: float = DEFAULT_ALPHA1,
    beta1: float = DEFAULT_BETA1,
    clamp: tuple[float, float] = DEFAULT_CLAMP,
) -> float:
    """Daily sigma from *closes* as a clamped fraction.

    Raises ``ValueError`` for a non-stationary or non-positive parameter set.
    """
    if alpha0 <= 0 or alpha1 < 0 or beta1 < 0 or alpha1 + beta1 >= 0.999:
        raise ValueError(
            f"Invalid GARCH parameters: alpha0={alpha0}, alpha1={alpha1}, beta1={beta1}"
        )
    lo, hi = clamp

    returns = log_returns(closes)
    if returns.size < 2:
        vol = _ewma_volatility(returns)
        return max(lo, min(hi, vol))

    seed = returns[:_INIT_WINDOW]
    if seed.size >= 2:
        sigma2 = max(float(np.var(seed, ddof=1)), _MIN_VARIANCE)
    else:
        sigma2 = float(returns[0] ** 2)

    for r_prev in returns[:-1]:
        sigma2 = max(alpha0 + alpha1 * r_prev ** 2 + beta1 * sigma2, _MIN_VARIANCE)

    vol = math.sqrt(sigma2)
    return max(lo, min(hi, vol))


class VolatilityCache:
    """TTL cache keyed by ``(symbol, timeframe, day)``.

    When full, the oldest entry is evicted first.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        max_entries: int = 128,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max = max_entries
        self._clock = clock
        self._entries: dict[tuple[str, str, str], tuple[float, float]] = {}

    def get(self, key: tuple[str, str, str]) -> Optional[float]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at > self._ttl:
            del self._entries[key]
            return None
        return value

    def set(self, key: tuple[str, str, str], value: float) -> None:
        self._entries.pop(key, None)
        while len(self._entries) >= self._max:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
        self._entries[key] = (self._clock(), value)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True)
class GarchParams:
    alpha0: float = DEFAULT_ALPHA0
    alpha1: float = DEFAULT_ALPHA1
    beta1: float = DEFAULT_BETA1


class VolatilityEstimator:
    """Cached GARCH(1,1) estimate of the expected daily move."""

    def __init__(
        self,
        cache: Optional[VolatilityCache] = None,
        clamp: tuple[float, float] = DEFAULT_CLAMP,
        params: Optional[GarchParams] = None,
    ) -> None:
        self._cache = cache if cache is not None else VolatilityCache()
        self._clamp = clamp
        self._params = params or GarchParams()

    @property
    def cache(self) -> VolatilityCache:
        return self._cache

    def estimate(self, symbol: str, timeframe: str, day: str, closes) -> float:
        key = (symbol, timeframe, day)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        value = garch_volatility_fraction(
            closes,
            alpha0=self._params.alpha0,
            alpha1=self._params.alpha1,
            beta1=self._params.beta1,
            clamp=self._clamp,
        )
        self._cache.set(key, value)
        logger.info("Volatility %s %s %s: %.4f", symbol, timeframe, day, value)
        return value
