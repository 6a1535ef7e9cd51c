"""Stop-loss and take-profit calculation — pure math, no I/O.

Zone-anchored approach (primary):
    TP is the next zone boundary in the profit direction, SL the next
    boundary against it.  Boundaries within 0.1% of entry are treated as
    the entry's own level and skipped.

Fallback when entry sits at the edge of the boundary array:
    TP = entry ± 1%, SL = entry ∓ 0.5%, unless an imbalance zone supplies
    its own edges.
"""

from dataclasses import dataclass
from typing import Optional

from sessionedge.strategy.models import ImbalanceZone

DEFAULT_TP_FALLBACK_PCT = 0.01
DEFAULT_SL_FALLBACK_PCT = 0.005
DEFAULT_LEVEL_TOLERANCE_PCT = 0.001


@dataclass
class RiskLevels:
    """Computed stop-loss and take-profit for a trade."""
    sl: float
    tp: float
    tp_source: str  # "zone", "imbalance", or "pct_fallback"
    sl_source: str = "zone"


def _check_side(side: str) -> None:
    if side not in ("long", "short"):
        raise ValueError(f"side must be 'long' or 'short', got '{side}'")


def calculate_imbalance_risk(zone: ImbalanceZone, side: str) -> RiskLevels:
    """TP at the far edge of *zone*, SL at the near edge.

    - **Long**:  TP = upper, SL = lower
    - **Short**: TP = lower, SL = upper
    """
    _check_side(side)
    if side == "long":
        return RiskLevels(sl=zone.lower, tp=zone.upper, tp_source="imbalance", sl_source="imbalance")
    return RiskLevels(sl=zone.upper, tp=zone.lower, tp_source="imbalance", sl_source="imbalance")


def calculate_zone_risk(
    entry_price: float,
    side: str,
    boundaries: list[float],
    imbalance: Optional[ImbalanceZone] = None,
    tolerance_pct: float = DEFAULT_LEVEL_TOLERANCE_PCT,
    tp_fallback_pct: float = DEFAULT_TP_FALLBACK_PCT,
    sl_fallback_pct: float = DEFAULT_SL_FALLBACK_PCT,
) -> RiskLevels:
    """Calculate SL and TP from the sorted zone boundaries.

    Args:
        entry_price: Trade entry price.
        side: ``"long"`` or ``"short"``.
        boundaries: Zone boundaries (any order; sorted internally).
        imbalance: For imbalance-originated signals, supplies TP/SL when
            no boundary exists on that side.
        tolerance_pct: Boundaries closer than ``entry × tolerance_pct``
            count as the entry level itself.
        tp_fallback_pct: TP distance used at the array edge.
        sl_fallback_pct: SL distance used at the array edge.

    Returns:
        ``RiskLevels`` with sl, tp and where each came from.

    Raises:
        ValueError: If *side* is not ``"long"`` or ``"short"``.
    """
    _check_side(side)
    ordered = sorted(boundaries)
    tolerance = entry_price * tolerance_pct

    above = [b for b in ordered if b > entry_price + tolerance]
    below = [b for b in ordered if b < entry_price - tolerance]
    edges = calculate_imbalance_risk(imbalance, side) if imbalance is not None else None

    if side == "long":
        favourable = above[0] if above else None
        adverse = below[-1] if below else None
        pct_tp = entry_price * (1 + tp_fallback_pct)
        pct_sl = entry_price * (1 - sl_fallback_pct)
    else:
        favourable = below[-1] if below else None
        adverse = above[0] if above else None
        pct_tp = entry_price * (1 - tp_fallback_pct)
        pct_sl = entry_price * (1 + sl_fallback_pct)

    if favourable is not None:
        tp, tp_source = favourable, "zone"
    elif edges is not None:
        tp, tp_source = edges.tp, "imbalance"
    else:
        tp, tp_source = pct_tp, "pct_fallback"

    if adverse is not None:
        sl, sl_source = adverse, "zone"
    elif edges is not None:
        sl, sl_source = edges.sl, "imbalance"
    else:
        sl, sl_source = pct_sl, "pct_fallback"

    return RiskLevels(sl=sl, tp=tp, tp_source=tp_source, sl_source=sl_source)
