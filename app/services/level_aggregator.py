"""
Level Aggregator

Turns noisy technical levels into a small set of confluence-scored
derivative targets.

Candidate sources:
- Underlying pivots translated into derivative price space through
  delta (weight 2, +1 bonus when several timeframes agree)
- Swing highs/lows of the derivative itself (weight 1)
- Round figures around the entry price (weight 1)

Candidates within 2% of a running weighted center are clustered; the
nearest clusters above entry become T1..T4 and the nearest strong
cluster below entry becomes the stop.
"""

import math
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from app.core.logger import get_logger, TRADE_LOG_PREFIX

logger = get_logger(__name__)

DEFAULT_DELTA = 0.5

PIVOT_WEIGHT = 2
CONFLUENCE_BONUS = 1
SWING_WEIGHT = 1
ROUND_WEIGHT = 1

ROUND_STEPS_BELOW = 3
ROUND_STEPS_ABOVE = 8

CLUSTER_TOLERANCE = 0.02
SNAP_TOLERANCE = 0.01
ENTRY_BAND = 0.005
MIN_TARGET_CLUSTERS = 2
MIN_STOP_SCORE = 2

# "dailyR1" -> "daily", "prevWeeklyPivot" -> "prevWeekly"
_PIVOT_LABEL = re.compile(r"^(?P<timeframe>.+?)(Pivot|S\d|R\d|TC|BC)$")


@dataclass
class Candidate:
    price: float
    weight: int


@dataclass
class Cluster:
    center: float
    score: int


@dataclass
class SmartTargets:
    """Computed levels; a zero target means unavailable."""
    t1: float
    t2: float
    t3: float
    t4: float
    sl: float

    def targets(self) -> List[float]:
        return [self.t1, self.t2, self.t3, self.t4]


def round_step(entry_price: float) -> float:
    """Round-figure spacing for a price magnitude."""
    if entry_price < 50:
        return 5.0
    if entry_price < 200:
        return 10.0
    return 25.0


def round_half_up(value: float, increment: float) -> float:
    """Round to the nearest multiple of increment, halves going up."""
    return math.floor(value / increment + 0.5) * increment


def pivot_timeframe(label: str) -> str:
    match = _PIVOT_LABEL.match(label)
    return match.group("timeframe") if match else label


def pivot_candidates(
    entry_price: float,
    delta: float,
    spot: float,
    pivot_levels: Dict[str, float]
) -> List[Candidate]:
    """Delta-translate pivots and add multi-timeframe confluence bonuses."""
    candidates = []
    timeframes_by_price: Dict[float, set] = {}

    for label, level in pivot_levels.items():
        translated = entry_price + delta * (level - spot)
        if translated <= 0:
            continue
        translated = round(round_half_up(translated, 0.05), 2)
        candidates.append(Candidate(translated, PIVOT_WEIGHT))

        coarse = round(round_half_up(translated, 0.1), 1)
        timeframes_by_price.setdefault(coarse, set()).add(pivot_timeframe(label))

    for price, timeframes in timeframes_by_price.items():
        if len(timeframes) >= 2:
            candidates.append(Candidate(price, CONFLUENCE_BONUS))

    return candidates


def round_candidates(entry_price: float, step: float) -> List[Candidate]:
    base = math.ceil(entry_price / step) * step
    candidates = []
    for i in range(-ROUND_STEPS_BELOW, ROUND_STEPS_ABOVE + 1):
        level = base + i * step
        if level > 0:
            candidates.append(Candidate(level, ROUND_WEIGHT))
    return candidates


def _snap(center: float, step: float) -> float:
    nearest = round_half_up(center, step)
    if nearest > 0 and abs(center - nearest) / center < SNAP_TOLERANCE:
        return nearest
    return center


def cluster_candidates(candidates: List[Candidate], step: float) -> List[Cluster]:
    """
    Cluster price-sorted candidates.

    A candidate joins the running cluster when it is within 2% of the
    weighted-mean center. Emitted centers snap to the nearest round
    figure within 1%; consecutive clusters that snap onto the same price
    are merged.
    """
    if not candidates:
        return []

    ordered = sorted(candidates, key=lambda c: c.price)
    clusters: List[Cluster] = []

    def emit(weighted_sum: float, score: int):
        center = _snap(weighted_sum / score, step)
        if clusters and clusters[-1].center == center:
            clusters[-1].score += score
        else:
            clusters.append(Cluster(center, score))

    score = ordered[0].weight
    weighted_sum = ordered[0].price * ordered[0].weight

    for candidate in ordered[1:]:
        center = weighted_sum / score
        if abs(candidate.price - center) / center < CLUSTER_TOLERANCE:
            score += candidate.weight
            weighted_sum += candidate.price * candidate.weight
        else:
            emit(weighted_sum, score)
            score = candidate.weight
            weighted_sum = candidate.price * candidate.weight

    emit(weighted_sum, score)
    return clusters


def compute_smart_targets(
    entry_price: float,
    spot: float,
    delta: float = 0.0,
    pivot_levels: Optional[Dict[str, float]] = None,
    swing_highs: Sequence[float] = (),
    swing_lows: Sequence[float] = (),
    fallback_sl: float = 0.0,
    label: str = ""
) -> Optional[SmartTargets]:
    """
    Compute confluence-scored targets and stop.

    Args:
        entry_price: Estimated derivative entry
        spot: Underlying price at entry
        delta: Option delta (DEFAULT_DELTA when <= 0)
        pivot_levels: Underlying pivot label -> price
        swing_highs: Derivative swing highs
        swing_lows: Derivative swing lows
        fallback_sl: Stop to use when no strong support exists
        label: Instrument name for logging

    Returns:
        SmartTargets, or None when entry/spot are not positive or fewer
        than two clusters sit above entry
    """
    if entry_price <= 0 or spot <= 0:
        return None

    delta = delta if delta > 0 else DEFAULT_DELTA
    pivot_levels = pivot_levels or {}
    step = round_step(entry_price)

    candidates = pivot_candidates(entry_price, delta, spot, pivot_levels)
    candidates += [Candidate(p, SWING_WEIGHT) for p in swing_highs]
    candidates += [Candidate(p, SWING_WEIGHT) for p in swing_lows]
    candidates += round_candidates(entry_price, step)

    clusters = cluster_candidates(candidates, step)

    above = [c for c in clusters if c.center > entry_price * (1 + ENTRY_BAND)]
    below = [c for c in clusters if c.center < entry_price * (1 - ENTRY_BAND)]
    above.sort(key=lambda c: (c.center, -c.score))
    below.sort(key=lambda c: -c.center)

    if len(above) < MIN_TARGET_CLUSTERS:
        return None

    targets = [c.center for c in above[:4]]
    while len(targets) < 4:
        targets.append(math.ceil(targets[-1] / step) * step + step)

    sl = next((c.center for c in below if c.score >= MIN_STOP_SCORE), 0.0)
    if sl <= 0:
        sl = fallback_sl

    result = SmartTargets(t1=targets[0], t2=targets[1], t3=targets[2], t4=targets[3], sl=sl)

    logger.info(
        f"{TRADE_LOG_PREFIX} Smart targets computed for {label}: "
        f"T1={result.t1:.2f} T2={result.t2:.2f} T3={result.t3:.2f} T4={result.t4:.2f} SL={result.sl:.2f} "
        f"(pivots={len(pivot_levels)} swings={len(swing_highs) + len(swing_lows)} clusters={len(clusters)})"
    )
    return result
