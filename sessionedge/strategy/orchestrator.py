"""Session orchestrator — owns the leaf components and the decision hierarchy.

On each tick the orchestrator refreshes its leaf components, updates the
session bias, then walks the candidate generators in priority order:

1. confirmed opening-range breakout,
2. zone boundaries touched this tick (ascending),
3. the nearest imbalance zone containing price.

The first candidate that passes the five-rule gate and the minimum
confidence becomes the tick's ``TradeSignal``.  Everything else is a
no-signal tick, reported only through debug logging.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Iterator, Optional

from sessionedge.risk.sl_tp import calculate_zone_risk
from sessionedge.strategy.base import DepthProvider
from sessionedge.strategy.confirmation import ConfirmationConfig, ConfirmationLayer
from sessionedge.strategy.errors import (
    EngineNotInitializedError,
    SessionInitializationError,
)
from sessionedge.strategy.gate import Candidate, FiveRuleGate, GateResult
from sessionedge.strategy.imbalance import ImbalanceConfig, InefficiencyDetector
from sessionedge.strategy.models import (
    SETUP_IMBALANCE_CONTINUATION,
    SETUP_IMBALANCE_RETEST,
    SETUP_OPENING_RANGE,
    SETUP_ZONE_BREAKOUT,
    SETUP_ZONE_REJECTION,
    Candle,
    OpeningRangeSignal,
    ProfileContext,
    SignalContext,
    TradeSignal,
)
from sessionedge.strategy.opening_range import OpeningRangeConfig, OpeningRangeTracker
from sessionedge.strategy.profile import ProfileClassifier, ProfileConfig
from sessionedge.strategy.zones import DEFAULT_TOUCH_TOLERANCE_PCT, ZoneMap

logger = logging.getLogger("sessionedge.orchestrator")


@dataclass(frozen=True)
class OrchestratorConfig:
    """Orchestrator settings, including each leaf component's config."""

    opening_range: OpeningRangeConfig = field(default_factory=OpeningRangeConfig)
    profile: ProfileConfig = field(default_factory=ProfileConfig)
    confirmation: ConfirmationConfig = field(default_factory=ConfirmationConfig)
    imbalance: ImbalanceConfig = field(default_factory=ImbalanceConfig)
    zone_touch_tolerance_pct: float = DEFAULT_TOUCH_TOLERANCE_PCT
    min_signal_confidence: float = 0.4
    imbalance_max_age_ms: int = 0  # 0 disables pruning


def calculate_confidence(
    confirmation_confidence: float,
    profile: ProfileContext,
    session_bias: str,
    setup_type: str,
) -> float:
    """Score a gate-passed candidate, clamped to ``[0, 1]``.

    0.5 base, plus 0.4 × confirmation confidence, plus 0.3 × profile
    confidence at an HVN/LVN, plus 0.2 for an opening-range setup under a
    non-neutral bias (the top of the hierarchy), plus 0.1 for any
    opening-range setup.
    """
    score = 0.5 + confirmation_confidence * 0.4
    if profile.node_type in ("HVN", "LVN"):
        score += profile.confidence * 0.3
    if setup_type == SETUP_OPENING_RANGE:
        if session_bias != "neutral":
            score += 0.2
        score += 0.1
    return min(1.0, max(0.0, score))


class SessionOrchestrator:
    """One trading session on one symbol.

    Not safe to share across symbols; run one instance per stream.
    """

    def __init__(
        self,
        config: Optional[OrchestratorConfig] = None,
        depth_provider: Optional[DepthProvider] = None,
        symbol: str = "",
    ) -> None:
        self._config = config or OrchestratorConfig()
        self._symbol = symbol
        self._zones = ZoneMap()
        self._opening_range = OpeningRangeTracker(self._config.opening_range)
        self._profile = ProfileClassifier(self._config.profile)
        self._confirmation = ConfirmationLayer(self._config.confirmation, depth_provider)
        self._imbalances = InefficiencyDetector(self._config.imbalance)
        self._gate = FiveRuleGate(self._profile, self._confirmation, symbol)
        self._session_bias = "neutral"
        self._last_signal: Optional[TradeSignal] = None
        self._initialized = False
        self._lock = asyncio.Lock()

    # ── Read accessors ───────────────────────────────────────────────────

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    @property
    def symbol(self) -> str:
        return self._symbol

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def session_bias(self) -> str:
        return self._session_bias

    @property
    def last_signal(self) -> Optional[TradeSignal]:
        return self._last_signal

    @property
    def zones(self) -> ZoneMap:
        return self._zones

    @property
    def opening_range(self) -> OpeningRangeTracker:
        return self._opening_range

    @property
    def profile(self) -> ProfileClassifier:
        return self._profile

    @property
    def imbalances(self) -> InefficiencyDetector:
        return self._imbalances

    @property
    def confirmation(self) -> ConfirmationLayer:
        return self._confirmation

    def get_session_bias(self) -> str:
        return self._session_bias

    def get_last_signal(self) -> Optional[TradeSignal]:
        return self._last_signal

    # ── Session lifecycle ────────────────────────────────────────────────

    def initialize(
        self,
        daily_open: float,
        volatility_fraction: float,
        session_start: int,
        candles: list[Candle],
    ) -> None:
        """Start a new session.

        Raises:
            SessionInitializationError: If *candles* is empty.
            ZoneConfigurationError: If the zone boundaries are not ordered.
            ProfileConfigurationError: If the profile grid is empty.
        """
        if not candles:
            raise SessionInitializationError(
                f"Cannot initialize session for {self._symbol or 'symbol'} without candles"
            )

        levels = self._zones.initialize(daily_open, volatility_fraction)
        self._opening_range.initialize(session_start, candles)
        self._profile.build(candles, price_range=(levels.lower_range, levels.upper_range))
        self._imbalances.detect(candles, quadrant_of=self._quadrant_of)
        self._session_bias = "neutral"
        self._last_signal = None
        self._initialized = True

        logger.info(
            "Session initialized %s: open=%.8g vol=%.4f range=[%.8g, %.8g]",
            self._symbol, daily_open, volatility_fraction,
            levels.lower_range, levels.upper_range,
        )

    def _quadrant_of(self, price: float) -> str:
        return self._zones.current_zone(price).quadrant

    # ── Per-tick evaluation ──────────────────────────────────────────────

    async def evaluate(
        self,
        current_price: float,
        timestamp: int,
        candles: list[Candle],
        vwap: Optional[float] = None,
    ) -> Optional[TradeSignal]:
        """Run one tick; return a fully validated signal or None.

        Raises:
            EngineNotInitializedError: If ``initialize`` has not run.
        """
        if not self._initialized:
            raise EngineNotInitializedError("evaluate called before initialize")

        if not math.isfinite(current_price) or (vwap is not None and not math.isfinite(vwap)):
            logger.debug("Skipping tick with non-finite input: price=%s vwap=%s", current_price, vwap)
            return None
        if not candles:
            logger.debug("Skipping tick with empty candle window")
            return None

        async with self._lock:
            self._confirmation.update_candles(candles)
            orb = self._opening_range.update(current_price, timestamp, candles)
            self._update_bias(orb, current_price, vwap)

            self._imbalances.detect(candles, quadrant_of=self._quadrant_of)
            if self._config.imbalance_max_age_ms > 0:
                self._imbalances.prune(timestamp, self._config.imbalance_max_age_ms)

            for candidate in self._candidates(orb, current_price, candles):
                result = await self._gate.validate(
                    candidate, current_price, candles, self._session_bias,
                )
                if not result.passed:
                    continue

                confidence = calculate_confidence(
                    result.confirmation.confidence,
                    result.profile,
                    self._session_bias,
                    candidate.setup_type,
                )
                if confidence < self._config.min_signal_confidence:
                    logger.debug(
                        "%s %s discarded: confidence %.2f below %.2f",
                        candidate.setup_type, candidate.side, confidence,
                        self._config.min_signal_confidence,
                    )
                    continue

                signal = self._build_signal(candidate, result, confidence)
                self._last_signal = signal
                logger.info(
                    "Signal %s %s %s entry=%.8g tp=%.8g sl=%.8g conf=%.2f",
                    self._symbol, signal.setup_type, signal.side,
                    signal.entry, signal.take_profit, signal.stop_loss,
                    signal.confidence,
                )
                return signal

        return None

    def _update_bias(
        self, orb: OpeningRangeSignal, price: float, vwap: Optional[float],
    ) -> None:
        previous = self._session_bias
        if orb.confirmed:
            self._session_bias = orb.session_bias
        elif vwap is not None:
            if price > vwap:
                self._session_bias = "long"
            elif price < vwap:
                self._session_bias = "short"
            else:
                self._session_bias = "neutral"
        if self._session_bias != previous:
            logger.info("Session bias %s -> %s", previous, self._session_bias)

    # ── Candidate generators ─────────────────────────────────────────────

    def _candidates(
        self, orb: OpeningRangeSignal, price: float, candles: list[Candle],
    ) -> Iterator[Candidate]:
        yield from self._opening_range_candidates(orb)
        yield from self._zone_candidates(price)
        yield from self._imbalance_candidates(price, candles)

    def _opening_range_candidates(self, orb: OpeningRangeSignal) -> Iterator[Candidate]:
        if orb.confirmed and orb.side is not None and orb.level is not None:
            yield Candidate(
                setup_type=SETUP_OPENING_RANGE,
                side=orb.side,
                level=orb.level,
                level_kind="opening_range",
                trigger="breakout",
                note=f"opening range {orb.state}",
            )

    def _zone_candidates(self, price: float) -> Iterator[Candidate]:
        levels = self._zones.levels
        bias = self._session_bias
        for boundary in self._zones.boundaries():
            if not ZoneMap.boundary_touched(price, boundary, self._config.zone_touch_tolerance_pct):
                continue

            if self._zones.is_extreme(boundary):
                side = "short" if boundary == levels.upper_range else "long"
                yield Candidate(
                    setup_type=SETUP_ZONE_REJECTION,
                    side=side,
                    level=boundary,
                    level_kind="zone",
                    trigger="reversal",
                    note="extreme boundary",
                    extreme=True,
                )
                continue

            node_type = self._profile.context_at(boundary).node_type
            if node_type == "HVN":
                if bias == "long" and price >= boundary:
                    side = "short"
                elif bias == "short" and price <= boundary:
                    side = "long"
                elif price > boundary:
                    side = "short"
                else:
                    side = "long"
                yield Candidate(
                    setup_type=SETUP_ZONE_REJECTION,
                    side=side,
                    level=boundary,
                    level_kind="zone",
                    trigger="reversal",
                    note="high-volume node",
                )
            elif node_type == "LVN":
                if bias == "long" and price > boundary:
                    side = "long"
                elif bias == "short" and price < boundary:
                    side = "short"
                else:
                    continue
                yield Candidate(
                    setup_type=SETUP_ZONE_BREAKOUT,
                    side=side,
                    level=boundary,
                    level_kind="zone",
                    trigger="breakout",
                    note="low-volume node",
                )

    def _imbalance_candidates(self, price: float, candles: list[Candle]) -> Iterator[Candidate]:
        containing = self._imbalances.containing(price, self._config.zone_touch_tolerance_pct)
        if not containing:
            return
        zone = min(containing, key=lambda z: abs(z.midpoint - price))
        zone_side = "long" if zone.direction == "bullish" else "short"

        prev_close = candles[-2].close if len(candles) >= 2 else None
        if prev_close is not None and (
            (zone.direction == "bullish" and prev_close < zone.lower and price >= zone.lower)
            or (zone.direction == "bearish" and prev_close > zone.upper and price <= zone.upper)
        ):
            setup_type = SETUP_IMBALANCE_RETEST
        elif self._session_bias == zone_side:
            setup_type = SETUP_IMBALANCE_CONTINUATION
        else:
            return

        yield Candidate(
            setup_type=setup_type,
            side=zone_side,
            level=zone.midpoint,
            level_kind="imbalance",
            trigger="imbalance",
            imbalance=zone,
            note=f"{zone.direction} imbalance",
        )

    # ── Signal assembly ──────────────────────────────────────────────────

    def _build_signal(
        self, candidate: Candidate, result: GateResult, confidence: float,
    ) -> TradeSignal:
        entry = candidate.level
        risk = calculate_zone_risk(
            entry, candidate.side, self._zones.boundaries(), imbalance=candidate.imbalance,
        )
        imbalance = candidate.imbalance or self._imbalances.at_price(entry)
        reason = (
            f"{candidate.setup_type} {candidate.side} at {entry:.8g} "
            f"({candidate.note}; {result.profile.node_type}; "
            f"{result.confirmation.mode} {result.confirmation.bias} "
            f"{result.confirmation.confidence:.2f})"
        )
        return TradeSignal(
            setup_type=candidate.setup_type,
            side=candidate.side,
            entry=entry,
            take_profit=risk.tp,
            stop_loss=risk.sl,
            confidence=confidence,
            context=SignalContext(
                session_bias=self._session_bias,
                profile=result.profile,
                confirmation=result.confirmation,
                zone=self._zones.current_zone(entry),
                imbalance=imbalance,
                reason=reason,
            ),
        )
