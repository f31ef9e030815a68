"""
training.py
-----------
Offline training pipeline for the numeric constituent signal.

Pipeline steps:
  1. Load labelled behavioural data (label 1 = repaid as agreed)
  2. Stratified train/validation split
  3. Train XGBoost with monotone constraints from the feature catalog, so a
     better value of a protective feature can never lower the sub-score
  4. Evaluate AUC-ROC and Brier score on the validation set
  5. Score the training population end to end and fit the drift baseline
  6. Persist the artifact bundle (joblib) and the baseline (JSON)

Run with: python -m trustscore.training --out models/
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Dict, Optional, Tuple

import joblib
import numpy as np
import pandas as pd
from sklearn.metrics import brier_score_loss, roc_auc_score
from sklearn.model_selection import train_test_split
from xgboost import XGBClassifier

from .config import DEFAULT_SIGNAL_WEIGHTS, FEATURE_CATALOG, FEATURE_ORDER
from .ensemble import calibrate, combine_sub_scores, to_score_range
from .monitor import build_drift_baseline, save_baseline
from .narrative_model import analyze_patterns
from .schemas import CalibrationSpec, DriftBaseline, FeatureVector

logger = logging.getLogger(__name__)

ARTIFACT_VERSION = "xgb-trust-v1"

XGB_PARAMS: Dict = {
    "n_estimators": 200,
    "max_depth": 4,
    "learning_rate": 0.05,
    "subsample": 0.8,
    "colsample_bytree": 0.8,
    "eval_metric": "auc",
    "random_state": 42,
    "n_jobs": -1,
}


# ---------------------------------------------------------------------------
# Data loading helpers
# ---------------------------------------------------------------------------

def load_dataset(data_path: Optional[Path] = None) -> Tuple[np.ndarray, np.ndarray]:
    """
    Return (X, y) with columns in FEATURE_ORDER.

    Reads a CSV with one column per catalog feature plus ``label`` when
    ``data_path`` exists; otherwise generates a synthetic population.
    """
    if data_path is not None and Path(data_path).exists():
        logger.info("Loading dataset from %s", data_path)
        df = pd.read_csv(data_path)
        missing = [c for c in (*FEATURE_ORDER, "label") if c not in df.columns]
        if missing:
            raise ValueError(f"Dataset is missing columns: {missing}")
        y = df["label"].values.astype(int)
        X = df[list(FEATURE_ORDER)].values.astype(np.float32)
        logger.info("Dataset loaded: %d samples, %.4f good rate", len(y), y.mean())
        return X, y

    logger.warning("No dataset found, generating synthetic data for development.")
    return generate_synthetic_dataset()


def generate_synthetic_dataset(
    n_samples: int = 5_000,
    random_state: int = 42,
) -> Tuple[np.ndarray, np.ndarray]:
    """Synthetic normalised features whose good-repayment odds follow the catalog directions."""
    rng = np.random.RandomState(random_state)
    X = rng.uniform(0.0, 1.0, size=(n_samples, len(FEATURE_ORDER))).astype(np.float32)
    directions = np.array([FEATURE_CATALOG[name][1] for name in FEATURE_ORDER], dtype=float)
    margin = 4.0 * ((X - 0.5) * directions).sum(axis=1) / np.sqrt(len(FEATURE_ORDER))
    p_good = 1.0 / (1.0 + np.exp(-(margin + rng.normal(0.0, 0.5, size=n_samples))))
    y = (rng.uniform(size=n_samples) < p_good).astype(int)
    return X, y


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------

def monotone_constraints() -> Tuple[int, ...]:
    return tuple(FEATURE_CATALOG[name][1] for name in FEATURE_ORDER)


def train_numeric_model(X: np.ndarray, y: np.ndarray) -> XGBClassifier:
    logger.info("Training XGBoost on %d samples with monotone constraints", len(y))
    model = XGBClassifier(**XGB_PARAMS, monotone_constraints=monotone_constraints())
    model.fit(X, y)
    logger.info("XGBoost training complete.")
    return model


def evaluate_model(model: XGBClassifier, X: np.ndarray, y: np.ndarray) -> Dict[str, float]:
    proba = model.predict_proba(X)[:, 1]
    metrics = {
        "auc_roc": round(float(roc_auc_score(y, proba)), 4),
        "brier": round(float(brier_score_loss(y, proba)), 4),
    }
    logger.info("Validation metrics: %s", metrics)
    return metrics


# ---------------------------------------------------------------------------
# Drift baseline
# ---------------------------------------------------------------------------

def population_scores(
    model: XGBClassifier,
    X: np.ndarray,
    weights: Optional[Dict[str, float]] = None,
    calibration: Optional[CalibrationSpec] = None,
) -> np.ndarray:
    """Final scores the live ensemble would give each row."""
    weights = weights or DEFAULT_SIGNAL_WEIGHTS
    calibration = calibration or CalibrationSpec()
    numeric = model.predict_proba(X)[:, 1]

    scores = np.empty(len(X), dtype=int)
    for i, row in enumerate(X):
        features = {name: float(v) for name, v in zip(FEATURE_ORDER, row)}
        narrative = analyze_patterns(FeatureVector(subject_id="training", features=features)).sub_score
        raw = combine_sub_scores({"numeric": float(numeric[i]), "narrative": narrative}, weights)
        scores[i] = to_score_range(calibrate(raw, calibration))
    return scores


def fit_drift_baseline(model: XGBClassifier, X: np.ndarray, version_id: Optional[str] = None) -> DriftBaseline:
    scores = population_scores(model, X)
    features = {name: X[:, j].tolist() for j, name in enumerate(FEATURE_ORDER)}
    return build_drift_baseline(scores.tolist(), features, version_id=version_id)


# ---------------------------------------------------------------------------
# Main training pipeline
# ---------------------------------------------------------------------------

def run_training_pipeline(
    out_dir: Path,
    data_path: Optional[Path] = None,
    val_size: float = 0.2,
    version_id: Optional[str] = None,
) -> Dict:
    """Train, evaluate and persist the numeric artifact and its drift baseline."""
    X, y = load_dataset(data_path)
    X_train, X_val, y_train, y_val = train_test_split(
        X, y, test_size=val_size, stratify=y, random_state=42,
    )

    model = train_numeric_model(X_train, y_train)
    metrics = evaluate_model(model, X_val, y_val)
    baseline = fit_drift_baseline(model, X_train, version_id=version_id)

    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    artifact_path = out_dir / "numeric_model.joblib"
    joblib.dump(
        {"model": model, "feature_order": list(FEATURE_ORDER), "version": ARTIFACT_VERSION},
        artifact_path,
    )
    logger.info("Numeric artifact saved to %s", artifact_path)
    baseline_path = save_baseline(baseline, out_dir / "drift_baseline.json")

    return {
        "artifact_path": str(artifact_path),
        "baseline_path": str(baseline_path),
        "metrics": metrics,
        "n_train": int(len(y_train)),
        "n_val": int(len(y_val)),
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Train the TrustScore numeric model")
    parser.add_argument("--out", type=Path, default=Path("models"))
    parser.add_argument("--data", type=Path, default=None)
    parser.add_argument("--version-id", default=None)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s | %(message)s")
    result = run_training_pipeline(args.out, args.data, version_id=args.version_id)
    logger.info("Training finished: %s", result)


if __name__ == "__main__":
    main()
