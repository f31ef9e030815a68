"""
TrustScore Engine - Confidence Adjustment Logic
===============================================

Confidence never feeds back into the score; it only annotates it.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .config import (
    BASE_CONFIDENCE,
    CONFIDENCE_PENALTIES,
    ERROR_PENALTY_PER_SIGNAL,
    INTEGRITY_UNAVAILABLE_CAP,
    INTERVAL_FLOOR,
    INTERVAL_SCALE,
    MAX_AGREEMENT_PENALTY,
    MAX_INTEGRITY_PENALTY,
    MAX_SIGNAL_SPREAD,
    MAX_TOTAL_PENALTY,
    PRELIMINARY_INTERVAL_MULTIPLIER,
    SCORE_MAX,
    SCORE_MIN,
)
from .schemas import IntegrityOutcome, IntegrityVerdict, Phase


@dataclass(frozen=True)
class ConfidenceAdjustment:
    base_confidence: float
    agreement_penalty: float
    availability_penalty: float
    maturity_penalty: float
    integrity_penalty: float
    capped: bool
    final_confidence: float


def calculate_base_confidence(
    sub_scores: Dict[str, Optional[float]],
    max_spread: float = MAX_SIGNAL_SPREAD,
) -> Tuple[float, float]:
    """Base confidence and the agreement penalty that was applied to it."""
    available = [s for s in sub_scores.values() if s is not None]
    if len(available) < 2:
        return BASE_CONFIDENCE, 0.0

    spread = max(available) - min(available)
    penalty = min(MAX_AGREEMENT_PENALTY, max(0.0, spread - max_spread))
    return round(BASE_CONFIDENCE - penalty, 4), round(penalty, 4)


def calculate_availability_penalty(partial: bool, failed_signals: List[str]) -> float:
    base_penalty = CONFIDENCE_PENALTIES["partial_ensemble"] if partial else 0.0
    error_penalty = len(failed_signals) * ERROR_PENALTY_PER_SIGNAL
    return round(base_penalty + error_penalty, 4)


def calculate_integrity_penalty(verdict: Optional[IntegrityVerdict]) -> float:
    if verdict is None or verdict.outcome != IntegrityOutcome.FLAG:
        return 0.0
    real_indicators = [i for i in verdict.indicators if i.severity > 0]
    penalty = (
        CONFIDENCE_PENALTIES["integrity_flag"]
        + CONFIDENCE_PENALTIES["integrity_indicator"] * len(real_indicators)
    )
    return round(min(MAX_INTEGRITY_PENALTY, penalty), 4)


def calculate_confidence_adjustment(
    sub_scores: Dict[str, Optional[float]],
    partial: bool,
    failed_signals: List[str],
    phase: Phase,
    verdict: Optional[IntegrityVerdict],
) -> ConfidenceAdjustment:
    """Calculate the full confidence adjustment with transparency."""
    base_confidence, agreement_penalty = calculate_base_confidence(sub_scores)
    availability_penalty = calculate_availability_penalty(partial, failed_signals)
    maturity_penalty = CONFIDENCE_PENALTIES["collecting"] if phase == Phase.COLLECTING else 0.0
    integrity_penalty = calculate_integrity_penalty(verdict)

    total_penalty = min(
        MAX_TOTAL_PENALTY,
        availability_penalty + maturity_penalty + integrity_penalty,
    )
    final_confidence = base_confidence * (1.0 - total_penalty)

    capped = False
    if verdict is not None and not verdict.check_available and final_confidence > INTEGRITY_UNAVAILABLE_CAP:
        final_confidence = INTEGRITY_UNAVAILABLE_CAP
        capped = True

    return ConfidenceAdjustment(
        base_confidence=base_confidence,
        agreement_penalty=agreement_penalty,
        availability_penalty=availability_penalty,
        maturity_penalty=maturity_penalty,
        integrity_penalty=integrity_penalty,
        capped=capped,
        final_confidence=round(max(0.0, min(1.0, final_confidence)), 4),
    )


def score_interval(score: int, confidence: float, phase: Phase) -> Tuple[int, int]:
    """Plausible score band; preliminary scores get a widened band."""
    half_width = INTERVAL_FLOOR + (1.0 - confidence) * INTERVAL_SCALE
    if phase == Phase.COLLECTING:
        half_width *= PRELIMINARY_INTERVAL_MULTIPLIER
    half_width = int(round(half_width))
    return max(SCORE_MIN, score - half_width), min(SCORE_MAX, score + half_width)
