"""
TrustScore Engine - Pydantic Schema Definitions
===============================================

Every record produced by the engine is frozen: new events produce new
objects, old ones are never edited.
"""

from datetime import datetime, timezone
from typing import Optional, List, Dict, Literal, Tuple, Union
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .config import SCORE_MIN, SCORE_MAX, SCHEMA_VERSION


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(ts: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps are taken to be UTC."""
    if ts is None:
        return None
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    @field_validator("*", mode="after")
    @classmethod
    def _naive_datetimes_are_utc(cls, v):
        if isinstance(v, datetime):
            return as_utc(v)
        return v


# =============================================================================
# ENUMS
# =============================================================================

class Phase(str, Enum):
    COLLECTING = "collecting"
    MATURE = "mature"


class IntegrityOutcome(str, Enum):
    PASS = "pass"
    FLAG = "flag"
    REJECT = "reject"


class VersionStatus(str, Enum):
    CANDIDATE = "candidate"
    ACTIVE = "active"
    RETIRED = "retired"


class RecordFlag(str, Enum):
    INTEGRITY_FLAG = "integrity_flag"
    INTEGRITY_UNAVAILABLE = "integrity_unavailable"
    INSUFFICIENT_HISTORY = "insufficient_history"
    PARTIAL_ENSEMBLE = "partial_ensemble"
    SIGNAL_TIMEOUT = "signal_timeout"
    EXPERIMENT = "experiment"


class ReportVerdict(str, Enum):
    PASS = "pass"
    ALERT = "alert"


class AlertKind(str, Enum):
    FAIRNESS = "fairness"
    DRIFT = "drift"


class Difficulty(str, Enum):
    EASY = "easy"
    MODERATE = "moderate"
    HARD = "hard"


# =============================================================================
# FEATURE DATA
# =============================================================================

class WindowedObservation(FrozenModel):
    value: float
    observed_at: datetime


class SourceProvenance(FrozenModel):
    name: str
    category: str
    first_observed: Optional[datetime] = None


class FeatureVector(FrozenModel):
    subject_id: str = Field(..., min_length=1)
    as_of: datetime = Field(default_factory=utcnow)
    features: Dict[str, Union[float, str]] = Field(default_factory=dict)
    windows: Dict[str, List[WindowedObservation]] = Field(default_factory=dict)
    sources: List[SourceProvenance] = Field(default_factory=list)
    schema_version: str = Field(default=SCHEMA_VERSION)

    def numeric_features(self) -> Dict[str, float]:
        return {
            name: float(value)
            for name, value in self.features.items()
            if isinstance(value, (int, float)) and not isinstance(value, bool)
        }

    def source_categories(self) -> List[str]:
        return sorted({s.category for s in self.sources})


class ActivityEvent(FrozenModel):
    timestamp: datetime
    amount: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    device_id: Optional[str] = None


class UploadedDocument(FrozenModel):
    name: str
    declared_format: str
    content: bytes = b""
    declared_checksum: Optional[str] = None
    created_at: Optional[datetime] = None
    uploaded_at: Optional[datetime] = None


class IngestionBatch(FrozenModel):
    batch_id: str
    subject_id: str
    feature_vector: FeatureVector
    events: List[ActivityEvent] = Field(default_factory=list)
    documents: List[UploadedDocument] = Field(default_factory=list)
    device_ids: List[str] = Field(default_factory=list)
    identity_fingerprint: Optional[str] = None


# =============================================================================
# INTEGRITY
# =============================================================================

class AnomalyIndicator(FrozenModel):
    name: str
    severity: float = Field(..., ge=0, le=1)
    detail: Optional[str] = None


class AnomalyAssessment(FrozenModel):
    """What an external fraud/anomaly signal source reports for a batch."""
    indicators: List[AnomalyIndicator] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0, le=1)


class IntegrityVerdict(FrozenModel):
    subject_id: str
    batch_id: str
    outcome: IntegrityOutcome
    indicators: List[AnomalyIndicator] = Field(default_factory=list)
    confidence: float = Field(..., ge=0, le=1)
    check_available: bool = True
    evaluated_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# COLLECTION STATE
# =============================================================================

class CollectionState(FrozenModel):
    subject_id: str
    phase: Phase = Phase.COLLECTING
    collection_started_at: datetime
    observation_days: int = Field(default=0, ge=0)
    source_categories: List[str] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=utcnow)


# =============================================================================
# MODEL REGISTRY
# =============================================================================

class CalibrationSpec(FrozenModel):
    """Monotone map from the combined raw value in [0, 1] onto [0, 1].

    ``logistic`` uses slope/midpoint; ``piecewise`` interpolates between
    knots, which must be non-decreasing in both coordinates.
    """
    kind: Literal["logistic", "piecewise"] = "logistic"
    slope: float = Field(default=6.0, gt=0)
    midpoint: float = Field(default=0.5, ge=0, le=1)
    knots: List[Tuple[float, float]] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_knots(self) -> "CalibrationSpec":
        if self.kind != "piecewise":
            return self
        if len(self.knots) < 2:
            raise ValueError("piecewise calibration needs at least two knots")
        xs = [k[0] for k in self.knots]
        ys = [k[1] for k in self.knots]
        if xs != sorted(xs) or len(set(xs)) != len(xs):
            raise ValueError("calibration knots must have strictly increasing x")
        if ys != sorted(ys):
            raise ValueError("calibration must be monotonic (non-decreasing y)")
        return self


class ModelVersion(FrozenModel):
    version_id: str = Field(..., min_length=1)
    artifact_ref: Optional[str] = None
    weights: Dict[str, float] = Field(...)
    calibration: CalibrationSpec = Field(default_factory=CalibrationSpec)
    schema_version: str = Field(default=SCHEMA_VERSION)
    status: VersionStatus = VersionStatus.CANDIDATE
    registered_at: datetime = Field(default_factory=utcnow)
    activated_at: Optional[datetime] = None
    rollback_target: Optional[str] = None

    @field_validator("weights")
    @classmethod
    def weights_must_be_positive(cls, v: Dict[str, float]) -> Dict[str, float]:
        if not v:
            raise ValueError("a model version needs at least one signal weight")
        if any(w < 0 for w in v.values()):
            raise ValueError("signal weights must be non-negative")
        if sum(v.values()) <= 0:
            raise ValueError("signal weights must not all be zero")
        return v


class RetrainingRequest(FrozenModel):
    request_id: str
    version_id: str
    reason: str
    drift_metric: float
    filed_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# SCORING
# =============================================================================

class SignalOutput(FrozenModel):
    """Sub-score in [0, 1] plus per-feature contributions from one signal."""
    sub_score: float = Field(..., ge=0, le=1)
    contributions: Dict[str, float] = Field(default_factory=dict)
    model_ref: Optional[str] = None


class ScoringFactor(FrozenModel):
    category: str
    impact: float
    description_key: str
    weight: float = Field(..., ge=0, le=1)


class ScoreOutcome(FrozenModel):
    score: int = Field(..., ge=SCORE_MIN, le=SCORE_MAX)
    confidence: float = Field(..., ge=0, le=1)
    score_interval: Tuple[int, int]
    factors: List[ScoringFactor]
    flags: List[RecordFlag] = Field(default_factory=list)
    sub_scores: Dict[str, Optional[float]] = Field(default_factory=dict)
    features: Dict[str, float] = Field(default_factory=dict)


class TrustScoreRecord(FrozenModel):
    record_id: str
    subject_id: str
    score: int = Field(..., ge=SCORE_MIN, le=SCORE_MAX)
    confidence: float = Field(..., ge=0, le=1)
    score_interval: Tuple[int, int]
    factors: Tuple[ScoringFactor, ...]
    model_version: str
    phase: Phase
    flags: Tuple[RecordFlag, ...] = ()
    sub_scores: Dict[str, Optional[float]] = Field(default_factory=dict)
    features: Dict[str, float] = Field(default_factory=dict)
    integrity_batch_id: Optional[str] = None
    experiment_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def preliminary(self) -> bool:
        return self.phase == Phase.COLLECTING


class RejectedResult(FrozenModel):
    subject_id: str
    batch_id: str
    reason: str = "integrity_rejection"
    indicators: List[AnomalyIndicator] = Field(default_factory=list)
    confidence: float = Field(..., ge=0, le=1)
    rejected_at: datetime = Field(default_factory=utcnow)


class BatchItemResult(FrozenModel):
    subject_id: str
    status: Literal["scored", "rejected", "error"]
    record: Optional[TrustScoreRecord] = None
    rejection: Optional[RejectedResult] = None
    error: Optional[str] = None
    error_type: Optional[str] = None


# =============================================================================
# EXPLANATIONS
# =============================================================================

class Recommendation(FrozenModel):
    category: str
    action_key: str
    text: str
    expected_impact: Tuple[int, int]
    difficulty: Difficulty
    difficulty_label: str


class ExplanationFactor(FrozenModel):
    rank: int
    category: str
    impact: float
    direction: Literal["positive", "negative"]
    magnitude: Literal["strong", "moderate", "minor"]
    sentence: str


class Explanation(FrozenModel):
    record_id: str
    subject_id: str
    language: str
    score: int
    model_version: str
    summary: str
    factors: List[ExplanationFactor]
    recommendations: List[Recommendation] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)


class FactorDelta(FrozenModel):
    category: str
    previous_impact: float
    current_impact: float
    delta: float
    sentence: str


class ChangeExplanation(FrozenModel):
    subject_id: str
    language: str
    previous_record_id: str
    current_record_id: str
    score_delta: int
    summary: str
    changes: List[FactorDelta]


# =============================================================================
# FAIRNESS & DRIFT
# =============================================================================

class GroupSummary(FrozenModel):
    attribute: str
    group: str
    count: int
    mean: float
    median: float
    std: float
    p10: float
    p90: float
    approval_rate: float


class DisparityMetric(FrozenModel):
    attribute: str
    group: str
    reference_group: str
    mean_gap: float
    adverse_impact_ratio: Optional[float]
    sufficient_sample: bool
    breached: bool


class DriftMetric(FrozenModel):
    name: str
    psi: float
    breached: bool


class MonitorAlert(FrozenModel):
    kind: AlertKind
    message: str
    metric: float
    threshold: float


class FairnessReport(FrozenModel):
    report_id: str
    period_start: datetime
    period_end: datetime
    record_count: int
    model_versions: List[str] = Field(default_factory=list)
    group_summaries: List[GroupSummary] = Field(default_factory=list)
    disparities: List[DisparityMetric] = Field(default_factory=list)
    drift: List[DriftMetric] = Field(default_factory=list)
    alerts: List[MonitorAlert] = Field(default_factory=list)
    verdict: ReportVerdict = ReportVerdict.PASS
    retraining_requests: List[str] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=utcnow)


class DriftBaseline(FrozenModel):
    """Training-time reference distributions: bucket edges and proportions."""
    version_id: Optional[str] = None
    score_edges: List[float]
    score_proportions: List[float]
    feature_edges: Dict[str, List[float]] = Field(default_factory=dict)
    feature_proportions: Dict[str, List[float]] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class Demographics(FrozenModel):
    age_band: Optional[str] = None
    gender: Optional[str] = None
    geography: Optional[str] = None


# =============================================================================
# HEALTH
# =============================================================================

class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded", "unhealthy"] = Field(...)
    version: str = Field(...)
    active_model: Optional[str] = Field(default=None)
    timestamp: datetime = Field(default_factory=utcnow)


# =============================================================================
# API REQUESTS
# =============================================================================

class BatchScoreRequest(BaseModel):
    subject_ids: List[str] = Field(..., min_length=1)


class RegisterModelRequest(BaseModel):
    version_id: str = Field(..., min_length=1)
    weights: Optional[Dict[str, float]] = Field(default=None)
    artifact_ref: Optional[str] = Field(default=None)
    calibration: Optional[CalibrationSpec] = Field(default=None)
    schema_version: Optional[str] = Field(default=None)


class RollbackRequest(BaseModel):
    version_id: Optional[str] = Field(default=None, description="Defaults to the active version's rollback target")


class ExperimentRequest(BaseModel):
    candidate_id: str = Field(...)
    traffic_fraction: float = Field(..., ge=0, le=1)


class ExperimentResponse(BaseModel):
    experiment_id: Optional[str] = Field(default=None)
    candidate_id: str = Field(...)
    traffic_fraction: float = Field(...)
    active: bool = Field(...)
