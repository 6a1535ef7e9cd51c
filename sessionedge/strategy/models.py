"""Strategy data models — typed representations for engine inputs and outputs.

All timestamps are integer epoch milliseconds.  Sides are ``"long"`` or
``"short"``; biases add ``"neutral"``.
"""

from dataclasses import asdict, dataclass, field
from typing import Optional


@dataclass(frozen=True)
class Candle:
    """A single candlestick bar for strategy consumption."""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class DepthLevel:
    """One price level of an order book side."""

    price: float
    size: float  # base units

    @property
    def notional(self) -> float:
        return self.price * self.size


@dataclass(frozen=True)
class DepthSnapshot:
    """Point-in-time order book view.

    Bids are sorted descending by price, asks ascending.
    """

    timestamp: int
    bids: tuple[DepthLevel, ...] = ()
    asks: tuple[DepthLevel, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.bids or not self.asks


# ── Zones ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ZoneLevels:
    """Five volatility-derived boundaries around the session's daily open."""

    daily_open: float
    upper_range: float
    lower_range: float
    q1: float
    q2: float
    q_minus_1: float
    q_minus_2: float
    volatility_fraction: float

    @property
    def boundaries(self) -> tuple[float, ...]:
        """Boundaries sorted ascending: Q-2, Q-1, open, Q1, Q2."""
        return (self.q_minus_2, self.q_minus_1, self.daily_open, self.q1, self.q2)


@dataclass(frozen=True)
class ZoneInfo:
    """Where a price sits within the zone map."""

    quadrant: str  # "Q2", "Q1", "Q-1", "Q-2"
    nearest_boundary: float
    distance_to_boundary_pct: float


# ── Opening range ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class OpeningRangeState:
    """Snapshot of the opening-range tracker."""

    opening_high: Optional[float]
    opening_low: Optional[float]
    session_start: int
    window_end: int
    state: str  # "tracking", "closed", "broken_up", "broken_down"
    breakout_level: Optional[float] = None
    breakout_timestamp: Optional[int] = None
    confirmed: bool = False


@dataclass(frozen=True)
class OpeningRangeSignal:
    """Breakout report produced on every tracker update."""

    side: Optional[str]
    level: Optional[float]
    state: str
    session_bias: str
    confirmed: bool


# ── Imbalances ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ImbalanceZone:
    """A price inefficiency (fair value gap or volume void)."""

    upper: float
    lower: float
    midpoint: float
    direction: str  # "bullish" or "bearish"
    strength: float  # 0–1
    created_at: int
    source: str = "fvg"  # "fvg", "volume_void", or "merged"
    quadrant: Optional[str] = None

    @property
    def size(self) -> float:
        return self.upper - self.lower

    def contains(self, price: float, tolerance: float = 0.0) -> bool:
        return self.lower - tolerance <= price <= self.upper + tolerance


# ── Volume profile ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class VolumeProfileNode:
    """Volume credited to one price bucket."""

    price: float
    volume: float
    touches: int


@dataclass(frozen=True)
class ProfileContext:
    """Participation context near a price level."""

    node_type: str  # "HVN", "LVN", or "neutral"
    distance: float
    distance_pct: float
    confidence: float
    nearest_node_price: Optional[float] = None


NEUTRAL_PROFILE = ProfileContext(
    node_type="neutral",
    distance=float("inf"),
    distance_pct=float("inf"),
    confidence=0.0,
)


# ── Confirmation ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ConfirmationFlags:
    """Diagnostic flags from the order-book/tape read."""

    absorbing_bids: bool = False
    absorbing_asks: bool = False
    buy_volume_surge: bool = False
    sell_volume_surge: bool = False


@dataclass(frozen=True)
class ConfirmationResult:
    """Directional bias derived from depth or candle volume."""

    bias: str  # "long", "short", or "neutral"
    confidence: float
    flags: ConfirmationFlags = field(default_factory=ConfirmationFlags)
    mode: str = "orderbook"  # "orderbook" or "fallback"
    bid_notional: float = 0.0
    ask_notional: float = 0.0


# ── Engine output ────────────────────────────────────────────────────────

SETUP_OPENING_RANGE = "OPENING_RANGE_BREAKOUT"
SETUP_ZONE_BREAKOUT = "ZONE_BREAKOUT"
SETUP_ZONE_REJECTION = "ZONE_REJECTION"
SETUP_IMBALANCE_RETEST = "IMBALANCE_RETEST"
SETUP_IMBALANCE_CONTINUATION = "IMBALANCE_CONTINUATION"


@dataclass(frozen=True)
class SignalContext:
    """Everything the engine knew when it emitted a signal."""

    session_bias: str
    profile: ProfileContext
    confirmation: ConfirmationResult
    zone: ZoneInfo
    imbalance: Optional[ImbalanceZone]
    reason: str


@dataclass(frozen=True)
class TradeSignal:
    """A fully validated trade signal."""

    setup_type: str
    side: str  # "long" or "short"
    entry: float
    take_profit: float
    stop_loss: float
    confidence: float
    context: SignalContext

    def to_dict(self) -> dict:
        """Plain-dict view for logging and the status API."""
        data = asdict(self)
        profile = data["context"]["profile"]
        for key in ("distance", "distance_pct"):
            if profile[key] == float("inf"):
                profile[key] = None
        return data
