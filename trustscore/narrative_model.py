"""trustscore.narrative_model

Narrative / behavioural-pattern constituent signal.

Where the numeric signal scores features one by one, this signal reads the
footprint as a story: groups of related features form patterns
(reliability, stability, resilience, financial stress), windowed
observations reveal trends, and categorical descriptors (how bills are paid,
how income is earned) shift the picture slightly.

Each pattern's contribution is spread evenly over the features that formed
it, so downstream explanations stay at feature level.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

from .config import FEATURE_BASELINE, FEATURE_CATALOG
from .schemas import FeatureVector, ModelVersion, SignalOutput


def _clip01(x: float) -> float:
    return max(0.0, min(1.0, float(x)))


@dataclass(frozen=True)
class Pattern:
    name: str
    members: Tuple[str, ...]
    weight: float
    direction: int


PATTERNS: Tuple[Pattern, ...] = (
    Pattern("reliability", ("payment_regularity", "utility_timeliness"), 0.35, 1),
    Pattern("stability", ("spending_stability", "income_consistency"), 0.20, 1),
    Pattern("resilience", ("savings_ratio", "device_consistency"), 0.10, 1),
    Pattern("financial_stress", ("overdraft_frequency", "late_payment_ratio", "gambling_share"), 0.25, -1),
)

TREND_WEIGHT = 0.10

CATEGORICAL_SIGNALS: Dict[str, Dict[str, float]] = {
    "bill_payment_method": {"autopay": 0.05, "manual": 0.0, "cash": -0.02},
    "employment_type": {"salaried": 0.04, "self_employed": 0.0, "gig": -0.01, "unemployed": -0.04},
}

MODEL_REF = "narrative-patterns-v1"


class NarrativeModelService:
    """In-process implementation of the narrative model service contract."""

    async def analyze(self, vector: FeatureVector, version: ModelVersion) -> SignalOutput:
        return analyze_patterns(vector)


def analyze_patterns(vector: FeatureVector) -> SignalOutput:
    numeric = vector.numeric_features()
    contributions: Dict[str, float] = {}

    for pattern in PATTERNS:
        present = [m for m in pattern.members if m in numeric]
        if not present:
            continue
        level = sum(_clip01(numeric[m]) for m in present) / len(present)
        impact = pattern.direction * pattern.weight * (level - FEATURE_BASELINE)
        for member in present:
            _add(contributions, member, impact / len(present))

    for name, impact in _trend_contributions(vector).items():
        _add(contributions, name, impact)

    for name, value in vector.features.items():
        table = CATEGORICAL_SIGNALS.get(name)
        if table is not None and isinstance(value, str):
            _add(contributions, name, table.get(value.strip().lower(), 0.0))

    sub_score = _clip01(0.5 + sum(contributions.values()))
    return SignalOutput(
        sub_score=round(sub_score, 6),
        contributions={k: round(v, 6) for k, v in contributions.items() if v != 0.0},
        model_ref=MODEL_REF,
    )


def _trend_contributions(vector: FeatureVector) -> Dict[str, float]:
    """Latest-minus-earliest movement of each windowed catalog feature."""
    trends: Dict[str, float] = {}
    windowed = {
        name: sorted(obs, key=lambda o: o.observed_at)
        for name, obs in vector.windows.items()
        if name in FEATURE_CATALOG and len(obs) >= 2
    }
    if not windowed:
        return trends

    share = TREND_WEIGHT / len(windowed)
    for name, observations in windowed.items():
        direction = FEATURE_CATALOG[name][1]
        movement = _clip01(observations[-1].value) - _clip01(observations[0].value)
        trends[name] = direction * share * max(-0.5, min(0.5, movement))
    return trends


def _add(target: Dict[str, float], key: str, value: float) -> None:
    target[key] = target.get(key, 0.0) + value
