"""
TrustScore Engine - Configuration Constants
===========================================

Module-level defaults for every component. Selected values can be overridden
through ``TRUSTSCORE_*`` environment variables (a ``.env`` file is honoured).
"""

import os
from typing import Dict, Tuple

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


# =============================================================================
# SCORE RANGE
# =============================================================================

SCORE_MIN: int = 300
SCORE_MAX: int = 850

SCHEMA_VERSION: str = "1.0"

# =============================================================================
# FEATURE CATALOG
# =============================================================================

# feature name -> (source category, direction). Direction +1 means a higher
# normalised value is better for the subject.
FEATURE_CATALOG: Dict[str, Tuple[str, int]] = {
    "payment_regularity": ("payments", 1),
    "utility_timeliness": ("utilities", 1),
    "spending_stability": ("spending", 1),
    "income_consistency": ("income", 1),
    "savings_ratio": ("savings", 1),
    "device_consistency": ("device", 1),
    "overdraft_frequency": ("payments", -1),
    "late_payment_ratio": ("utilities", -1),
    "gambling_share": ("spending", -1),
}

FEATURE_ORDER: Tuple[str, ...] = tuple(FEATURE_CATALOG.keys())

# Neutral point of every normalised feature.
FEATURE_BASELINE: float = 0.5

# =============================================================================
# ENSEMBLE
# =============================================================================

SIGNALS: Tuple[str, ...] = ("numeric", "narrative")

DEFAULT_SIGNAL_WEIGHTS: Dict[str, float] = {
    "numeric": 0.60,
    "narrative": 0.40,
}

DEFAULT_CALIBRATION: Dict[str, float] = {
    "slope": 6.0,
    "midpoint": 0.5,
}

# Half-life of a windowed observation, in days.
RECENCY_HALF_LIFE_DAYS: float = _env_float("TRUSTSCORE_RECENCY_HALF_LIFE_DAYS", 30.0)

# =============================================================================
# CONFIDENCE
# =============================================================================

BASE_CONFIDENCE: float = 0.95
MAX_SIGNAL_SPREAD: float = _env_float("TRUSTSCORE_MAX_SIGNAL_SPREAD", 0.25)
MAX_AGREEMENT_PENALTY: float = 0.30

CONFIDENCE_PENALTIES: Dict[str, float] = {
    "partial_ensemble": 0.15,
    "collecting": 0.25,
    "integrity_flag": 0.10,
    "integrity_indicator": 0.05,
}

MAX_INTEGRITY_PENALTY: float = 0.30
ERROR_PENALTY_PER_SIGNAL: float = 0.05
MAX_TOTAL_PENALTY: float = 0.80

HIGH_CONFIDENCE_CEILING: float = 0.80
# Unverified batches never reach the high-confidence band.
INTEGRITY_UNAVAILABLE_CAP: float = round(HIGH_CONFIDENCE_CEILING - 0.01, 2)

# Half-width of the score interval, in points, at zero confidence.
INTERVAL_SCALE: float = 120.0
INTERVAL_FLOOR: float = 10.0
PRELIMINARY_INTERVAL_MULTIPLIER: float = 1.5

# =============================================================================
# COLLECTION PHASE
# =============================================================================

MATURITY_DAYS: int = 30
MIN_SOURCE_CATEGORIES: int = _env_int("TRUSTSCORE_MIN_SOURCE_CATEGORIES", 2)

# =============================================================================
# INTEGRITY GATE
# =============================================================================

REJECT_THRESHOLD: float = _env_float("TRUSTSCORE_REJECT_THRESHOLD", 0.85)
FLAG_THRESHOLD: float = _env_float("TRUSTSCORE_FLAG_THRESHOLD", 0.40)

# Most recent device and identity bindings remembered for duplicate checks.
OWNER_MEMORY_SIZE: int = _env_int("TRUSTSCORE_OWNER_MEMORY_SIZE", 100_000)

INDICATOR_SEVERITY: Dict[str, float] = {
    "synthetic_identity": 0.70,
    "duplicate_device": 0.45,
    "velocity_spike": 0.50,
    "location_spoof": 0.60,
    "document_checksum_mismatch": 0.90,
    "document_format_mismatch": 0.60,
    "document_timestamp_inconsistent": 0.40,
    "integrity_check_unavailable": 0.0,
}

VELOCITY_SPIKE_RISK: float = 0.85
MAX_REALISTIC_SPEED_KMH: float = 900.0
EARTH_RADIUS_KM: float = 6371.0

DOCUMENT_MAGIC_BYTES: Dict[str, bytes] = {
    "pdf": b"%PDF",
    "png": b"\x89PNG",
    "jpeg": b"\xff\xd8\xff",
    "zip": b"PK\x03\x04",
}

# =============================================================================
# SIGNAL CALLS
# =============================================================================

SIGNAL_TIMEOUTS: Dict[str, float] = {
    "numeric": _env_float("TRUSTSCORE_NUMERIC_TIMEOUT", 2.0),
    "narrative": _env_float("TRUSTSCORE_NARRATIVE_TIMEOUT", 3.0),
    "integrity": _env_float("TRUSTSCORE_INTEGRITY_TIMEOUT", 2.0),
}

SIGNAL_RETRIES: int = 1
SIGNAL_BACKOFF_SECONDS: float = 0.05

# =============================================================================
# EXPLAINABILITY
# =============================================================================

TOP_FACTORS_COUNT: int = 5
IMPACT_QUANTUM: float = 0.01
CHANGE_NOISE_THRESHOLD: float = 0.02
SUPPORTED_LANGUAGES: Tuple[str, ...] = ("en", "es")
DEFAULT_LANGUAGE: str = "en"

# =============================================================================
# FAIRNESS & DRIFT
# =============================================================================

DEMOGRAPHIC_ATTRIBUTES: Tuple[str, ...] = ("age_band", "gender", "geography")

REFERENCE_GROUPS: Dict[str, str] = {
    "age_band": "35-44",
    "gender": "female",
    "geography": "urban",
}

APPROVAL_CUTOFF: int = 650
ADVERSE_IMPACT_THRESHOLD: float = 0.80
MIN_GROUP_SIZE: int = _env_int("TRUSTSCORE_MIN_GROUP_SIZE", 30)
DRIFT_PSI_THRESHOLD: float = _env_float("TRUSTSCORE_DRIFT_PSI_THRESHOLD", 0.20)
DRIFT_PSI_WARNING: float = 0.10
PSI_BUCKETS: int = 10
MONITOR_INTERVAL_SECONDS: float = _env_float("TRUSTSCORE_MONITOR_INTERVAL", 3600.0)
MONITOR_WINDOW_DAYS: int = 30

# =============================================================================
# ORCHESTRATION / API
# =============================================================================

MAX_BATCH_SIZE: int = 1000
BATCH_CONCURRENCY: int = _env_int("TRUSTSCORE_BATCH_CONCURRENCY", 32)

SERVICE_VERSION: str = "1.0.0"
LOG_LEVEL: str = os.getenv("TRUSTSCORE_LOG_LEVEL", "INFO")
MONITOR_ENABLED: bool = os.getenv("TRUSTSCORE_MONITOR_ENABLED", "true").lower() in ("1", "true", "yes")
NUMERIC_ARTIFACT_DIR: str = os.getenv("TRUSTSCORE_ARTIFACT_DIR", "models")
