"""
numeric_model.py
----------------
Numeric constituent signal of the ensemble.

Loads the gradient-boosted artifact referenced by a ModelVersion and returns a
sub-score in [0, 1] (probability of good repayment behaviour) together with
per-feature contributions. Contributions come from the booster's SHAP values
(``pred_contribs``) rescaled into sub-score units.

When the artifact is missing the service falls back to a fixed monotone
linear scorecard, so the ensemble stays callable in development.
"""

from __future__ import annotations

import logging
import math
import time
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

import joblib
import numpy as np
import xgboost as xgb

from .config import FEATURE_BASELINE, FEATURE_CATALOG, FEATURE_ORDER
from .schemas import FeatureVector, ModelVersion, SignalOutput

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Placeholder scorecard (used when no artifact is available)
# ---------------------------------------------------------------------------

SCORECARD_COEFFICIENTS: Dict[str, float] = {
    "payment_regularity": 0.30,
    "utility_timeliness": 0.25,
    "spending_stability": 0.15,
    "income_consistency": 0.12,
    "savings_ratio": 0.08,
    "device_consistency": 0.05,
    "overdraft_frequency": 0.20,
    "late_payment_ratio": 0.15,
    "gambling_share": 0.10,
}

PLACEHOLDER_REF = "scorecard-placeholder-v1"


@lru_cache(maxsize=8)
def load_artifact(artifact_ref: str) -> Optional[dict]:
    """Load and cache a persisted artifact bundle, or None if it is missing."""
    path = Path(artifact_ref)
    if not path.exists():
        logger.warning("Numeric artifact not found at %s, using placeholder scorecard.", path)
        return None
    bundle = joblib.load(path)
    logger.info("Numeric artifact loaded from %s", path)
    return bundle


class NumericModelService:
    """In-process implementation of the numeric model service contract."""

    async def predict(self, vector: FeatureVector, version: ModelVersion) -> SignalOutput:
        start = time.monotonic()
        features = vector.numeric_features()

        bundle = load_artifact(version.artifact_ref) if version.artifact_ref else None
        if bundle is not None:
            output = predict_with_artifact(bundle, features, version.artifact_ref)
        else:
            output = scorecard_predict(features)

        elapsed_ms = (time.monotonic() - start) * 1000
        if elapsed_ms > 50:
            logger.warning("Numeric inference slow: %.1f ms", elapsed_ms)
        return output


def scorecard_predict(features: Dict[str, float]) -> SignalOutput:
    contributions: Dict[str, float] = {}
    for name, coefficient in SCORECARD_COEFFICIENTS.items():
        if name not in features:
            continue
        direction = FEATURE_CATALOG[name][1]
        value = float(np.clip(features[name], 0.0, 1.0))
        contributions[name] = direction * coefficient * (value - FEATURE_BASELINE)

    sub_score = float(np.clip(0.5 + sum(contributions.values()), 0.0, 1.0))
    return SignalOutput(
        sub_score=round(sub_score, 6),
        contributions={k: round(v, 6) for k, v in contributions.items()},
        model_ref=PLACEHOLDER_REF,
    )


def predict_with_artifact(bundle: dict, features: Dict[str, float], artifact_ref: str) -> SignalOutput:
    model = bundle["model"]
    order = bundle.get("feature_order", list(FEATURE_ORDER))

    x = np.array(
        [features.get(name, np.nan) for name in order],
        dtype=np.float32,
    ).reshape(1, -1)

    sub_score = float(model.predict_proba(x)[0][1])

    # SHAP values in margin space; the last column is the bias term.
    contribs = model.get_booster().predict(xgb.DMatrix(x), pred_contribs=True)[0]
    margin_contribs = contribs[:-1]
    bias = float(contribs[-1])
    total = float(np.sum(margin_contribs))
    base_probability = 1.0 / (1.0 + math.exp(-bias))
    scale = (sub_score - base_probability) / total if abs(total) > 1e-9 else 0.0

    contributions = {
        name: round(float(c) * scale, 6)
        for name, c in zip(order, margin_contribs)
        if name in features
    }
    return SignalOutput(
        sub_score=round(float(np.clip(sub_score, 0.0, 1.0)), 6),
        contributions=contributions,
        model_ref=bundle.get("version", artifact_ref),
    )
