"""
TrustScore Engine - Ensemble Logic
==================================

Weight renormalisation, recency weighting of windowed observations,
monotone calibration onto the score range and factor aggregation.
"""

import math
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .config import (
    RECENCY_HALF_LIFE_DAYS,
    SCORE_MAX,
    SCORE_MIN,
)
from .schemas import (
    CalibrationSpec,
    FeatureVector,
    ScoringFactor,
    WindowedObservation,
)


def renormalize_weights(
    weights: Dict[str, float],
    available: Iterable[str],
) -> Dict[str, float]:
    """
    Renormalise a version's signal weights over the signals that answered.

    Missing signals get weight 0.0 and their share is redistributed
    proportionally, so the returned weights sum to 1.0.

    Args:
        weights: Combination weights from the ModelVersion
        available: Names of the signals that produced a sub-score

    Returns:
        Dict mapping every signal in ``weights`` to its renormalised weight.
    """
    available = set(available)
    available_sum = sum(w for name, w in weights.items() if name in available)
    if available_sum <= 0:
        raise ValueError("No weighted signal is available")

    return {
        name: (w / available_sum if name in available else 0.0)
        for name, w in weights.items()
    }


def is_partial(weights: Dict[str, float], available: Iterable[str]) -> bool:
    """True when any positively weighted signal did not answer."""
    available = set(available)
    return any(w > 0 and name not in available for name, w in weights.items())


def recency_weight(age_days: float, half_life_days: float = RECENCY_HALF_LIFE_DAYS) -> float:
    return math.exp(-math.log(2) * max(age_days, 0.0) / half_life_days)


def recency_weighted_value(
    observations: List[WindowedObservation],
    as_of: datetime,
    half_life_days: float = RECENCY_HALF_LIFE_DAYS,
) -> Optional[float]:
    """Exponentially decayed mean: newer observations weigh more."""
    if not observations:
        return None
    total = 0.0
    weight_sum = 0.0
    for obs in observations:
        age_days = (as_of - obs.observed_at).total_seconds() / 86400.0
        w = recency_weight(age_days, half_life_days)
        total += w * obs.value
        weight_sum += w
    return total / weight_sum


def resolve_features(
    vector: FeatureVector,
    half_life_days: float = RECENCY_HALF_LIFE_DAYS,
) -> FeatureVector:
    """
    Collapse windowed observations into one value per feature.

    A feature with windowed observations takes their recency-weighted mean;
    other features pass through unchanged. Returns a new vector.
    """
    if not vector.windows:
        return vector

    features = dict(vector.features)
    for name, observations in vector.windows.items():
        value = recency_weighted_value(observations, vector.as_of, half_life_days)
        if value is not None:
            features[name] = round(value, 6)
    return vector.model_copy(update={"features": features})


def combine_sub_scores(
    sub_scores: Dict[str, Optional[float]],
    weights: Dict[str, float],
) -> float:
    """Weighted sum of available sub-scores, clipped to [0, 1]."""
    combined = 0.0
    for name, score in sub_scores.items():
        if score is not None and name in weights:
            combined += weights[name] * score
    return max(0.0, min(1.0, combined))


def calibrate(raw: float, calibration: CalibrationSpec) -> float:
    """Map a combined raw value in [0, 1] onto [0, 1], monotonically."""
    raw = max(0.0, min(1.0, raw))

    if calibration.kind == "piecewise":
        knots = calibration.knots
        if raw <= knots[0][0]:
            return _clip01(knots[0][1])
        for (x0, y0), (x1, y1) in zip(knots, knots[1:]):
            if raw <= x1:
                t = (raw - x0) / (x1 - x0)
                return _clip01(y0 + t * (y1 - y0))
        return _clip01(knots[-1][1])

    def sigmoid(x: float) -> float:
        return 1.0 / (1.0 + math.exp(-calibration.slope * (x - calibration.midpoint)))

    low, high = sigmoid(0.0), sigmoid(1.0)
    return _clip01((sigmoid(raw) - low) / (high - low))


def to_score_range(calibrated: float) -> int:
    score = SCORE_MIN + calibrated * (SCORE_MAX - SCORE_MIN)
    return int(max(SCORE_MIN, min(SCORE_MAX, round(score))))


def aggregate_factors(
    contributions: Dict[str, Dict[str, float]],
    weights: Dict[str, float],
) -> List[ScoringFactor]:
    """
    Merge per-signal feature contributions into ranked ScoringFactors.

    Each signal's contributions are scaled by its renormalised weight and
    summed per feature. Ranking is by |impact|, ties broken by name so the
    order is deterministic.
    """
    merged: Dict[str, float] = {}
    for signal, signal_contribs in contributions.items():
        weight = weights.get(signal, 0.0)
        if weight == 0 or not signal_contribs:
            continue
        for name, value in signal_contribs.items():
            merged[name] = merged.get(name, 0.0) + weight * value

    merged = {k: round(v, 6) for k, v in merged.items() if round(v, 6) != 0.0}
    total = sum(abs(v) for v in merged.values())

    factors = [
        ScoringFactor(
            category=name,
            impact=impact,
            description_key=f"{name}.{'positive' if impact > 0 else 'negative'}",
            weight=round(abs(impact) / total, 4) if total else 0.0,
        )
        for name, impact in merged.items()
    ]
    factors.sort(key=lambda f: (-abs(f.impact), f.category))
    return factors


def _clip01(x: float) -> float:
    return max(0.0, min(1.0, x))
