"""
TrustScore Engine - Score Orchestrator
======================================

Single entry point for scoring and governance. One scoring request runs:

    capture model version -> fetch features -> schema check -> integrity gate
    -> collection tracker -> ensemble scorer -> build record -> persist

Persistence is the last step and is synchronous, so a request cancelled
anywhere before it leaves nothing behind.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from .collection import CollectionTracker
from .config import (
    BATCH_CONCURRENCY,
    DEFAULT_LANGUAGE,
    MAX_BATCH_SIZE,
    NUMERIC_ARTIFACT_DIR,
)
from .errors import SchemaMismatchError, SubjectNotFoundError, UnknownRecordError
from .explainer import explain, explain_change, supported_language
from .feature_store import FeatureStore, InMemoryFeatureStore
from .integrity import IntegrityGate
from .monitor import FairnessDriftMonitor, InMemoryDemographicDirectory, load_baseline
from .registry import Experiment, ModelRegistry
from .schemas import (
    BatchItemResult,
    CalibrationSpec,
    ChangeExplanation,
    CollectionState,
    Explanation,
    FairnessReport,
    FeatureVector,
    IngestionBatch,
    IntegrityOutcome,
    ModelVersion,
    RecordFlag,
    RejectedResult,
    TrustScoreRecord,
    as_utc,
    utcnow,
)
from .scorer import EnsembleScorer
from .store import InMemoryRecordStore

logger = logging.getLogger(__name__)

ScoreResult = Union[TrustScoreRecord, RejectedResult]

DEFAULT_VERSION_ID = "v1"
NUMERIC_ARTIFACT_NAME = "numeric_model.joblib"
DRIFT_BASELINE_NAME = "drift_baseline.json"


class ScoreOrchestrator:
    """Main orchestrator for the TrustScore Engine."""

    def __init__(
        self,
        feature_store: FeatureStore,
        store,
        registry: ModelRegistry,
        gate: Optional[IntegrityGate] = None,
        tracker: Optional[CollectionTracker] = None,
        scorer: Optional[EnsembleScorer] = None,
        monitor: Optional[FairnessDriftMonitor] = None,
        batch_concurrency: int = BATCH_CONCURRENCY,
    ):
        self.feature_store = feature_store
        self.store = store
        self.registry = registry
        self.gate = gate or IntegrityGate()
        self.tracker = tracker or CollectionTracker(store)
        self.scorer = scorer or EnsembleScorer()
        self.monitor = monitor or FairnessDriftMonitor(store, InMemoryDemographicDirectory(), registry)
        self.batch_concurrency = batch_concurrency

    # -- scoring -------------------------------------------------------------

    async def request_score(self, subject_id: str, as_of: Optional[datetime] = None) -> ScoreResult:
        """Score one subject; an integrity rejection is returned, not raised."""
        start_time = time.perf_counter()
        as_of = as_utc(as_of)

        # Step 1: Capture the serving version; later swaps do not affect this request
        resolved = self.registry.resolve(subject_id)
        version = resolved.version

        # Step 2: Fetch features
        vector = self.feature_store.get_feature_vector(subject_id, as_of)
        if vector is None:
            raise SubjectNotFoundError(subject_id)

        # Step 3: Schema check
        if vector.schema_version != version.schema_version:
            logger.warning(
                "Schema mismatch for %s: features %s, model %s expects %s",
                subject_id, vector.schema_version, version.version_id, version.schema_version,
            )
            raise SchemaMismatchError(subject_id, vector.schema_version, version.schema_version)

        # Step 4: Integrity gate
        batch = self._ingestion_batch(vector, as_of)
        verdict = await self.gate.evaluate(batch)
        if verdict.outcome == IntegrityOutcome.REJECT:
            logger.warning(
                "Integrity rejection for %s (batch %s, confidence=%.3f)",
                subject_id, batch.batch_id, verdict.confidence,
            )
            return RejectedResult(
                subject_id=subject_id,
                batch_id=batch.batch_id,
                indicators=verdict.indicators,
                confidence=verdict.confidence,
            )

        # Step 5: Collection phase
        state = await self.tracker.observe(vector)

        # Step 6: Ensemble score
        outcome = await self.scorer.score(vector, verdict, state, version)

        # Step 7: Build and persist the record
        flags = list(outcome.flags)
        if resolved.experiment_id is not None:
            flags.append(RecordFlag.EXPERIMENT)

        record = TrustScoreRecord(
            record_id=str(uuid.uuid4()),
            subject_id=subject_id,
            score=outcome.score,
            confidence=outcome.confidence,
            score_interval=outcome.score_interval,
            factors=outcome.factors,
            model_version=version.version_id,
            phase=state.phase,
            flags=flags,
            sub_scores=outcome.sub_scores,
            features=outcome.features,
            integrity_batch_id=verdict.batch_id,
            experiment_id=resolved.experiment_id,
            created_at=utcnow(),
        )
        self.store.append_record(record)

        logger.debug(
            "Scored %s: %d (confidence=%.3f, version=%s) in %.1f ms",
            subject_id, record.score, record.confidence, record.model_version,
            (time.perf_counter() - start_time) * 1000,
        )
        return record

    async def request_batch_score(self, subject_ids: Sequence[str]) -> List[BatchItemResult]:
        """Score up to MAX_BATCH_SIZE subjects; one subject's failure never affects another."""
        if not 1 <= len(subject_ids) <= MAX_BATCH_SIZE:
            raise ValueError(f"Batch size must be between 1 and {MAX_BATCH_SIZE}")

        semaphore = asyncio.Semaphore(self.batch_concurrency)

        async def score_one(subject_id: str) -> BatchItemResult:
            async with semaphore:
                try:
                    result = await self.request_score(subject_id)
                except Exception as e:
                    logger.warning("Batch scoring failed for %s: %s", subject_id, e)
                    return BatchItemResult(
                        subject_id=subject_id,
                        status="error",
                        error=str(e),
                        error_type=type(e).__name__,
                    )
            if isinstance(result, RejectedResult):
                return BatchItemResult(subject_id=subject_id, status="rejected", rejection=result)
            return BatchItemResult(subject_id=subject_id, status="scored", record=result)

        results = await asyncio.gather(*(score_one(s) for s in subject_ids))
        scored = sum(1 for r in results if r.status == "scored")
        logger.info("Batch of %d scored: %d ok, %d not scored", len(results), scored, len(results) - scored)
        return list(results)

    # -- explanations & history ---------------------------------------------

    def get_explanation(self, record_id: str, language: str = DEFAULT_LANGUAGE) -> Explanation:
        language = supported_language(language)
        return explain(self._record(record_id), language)

    def explain_change(self, subject_id: str, language: str = DEFAULT_LANGUAGE) -> ChangeExplanation:
        """What changed between a subject's two most recent records."""
        language = supported_language(language)
        history = self.store.history(subject_id)
        if not history:
            raise SubjectNotFoundError(subject_id)
        if len(history) < 2:
            raise ValueError(f"Subject {subject_id} has only one score record")
        return explain_change(history[-2], history[-1], language)

    def get_history(
        self,
        subject_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[TrustScoreRecord]:
        start, end = as_utc(start), as_utc(end)
        if start is not None and end is not None and start > end:
            raise ValueError("start must not be after end")
        return self.store.history(subject_id, start, end)

    def get_collection_state(self, subject_id: str) -> Optional[CollectionState]:
        return self.tracker.get_state(subject_id)

    async def reset_collection(self, subject_id: str, at: Optional[datetime] = None) -> CollectionState:
        return await self.tracker.reset(subject_id, at)

    # -- governance ----------------------------------------------------------

    def register_model(
        self,
        version_id: str,
        weights: Optional[Dict[str, float]] = None,
        artifact_ref: Optional[str] = None,
        calibration: Optional[CalibrationSpec] = None,
        schema_version: Optional[str] = None,
    ) -> ModelVersion:
        kwargs = {"schema_version": schema_version} if schema_version else {}
        return self.registry.register(version_id, weights, artifact_ref, calibration, **kwargs)

    def promote_model(self, version_id: str) -> ModelVersion:
        return self.registry.promote(version_id)

    def rollback_model(self, version_id: Optional[str] = None) -> ModelVersion:
        return self.registry.rollback(version_id)

    def route_experiment(self, candidate_id: str, traffic_fraction: float) -> Optional[Experiment]:
        return self.registry.route_experiment(candidate_id, traffic_fraction)

    def list_models(self) -> List[ModelVersion]:
        return self.registry.versions()

    def get_fairness_report(self, period_start: datetime, period_end: datetime) -> FairnessReport:
        period_start, period_end = as_utc(period_start), as_utc(period_end)
        if period_start >= period_end:
            raise ValueError("period_start must be before period_end")
        return self.monitor.report_for(period_start, period_end)

    # -- internals -----------------------------------------------------------

    def _record(self, record_id: str) -> TrustScoreRecord:
        record = self.store.get_record(record_id)
        if record is None:
            raise UnknownRecordError(record_id)
        return record

    def _ingestion_batch(self, vector: FeatureVector, as_of: Optional[datetime]) -> IngestionBatch:
        """The batch that carried ``vector``, or a bare one wrapping it."""
        batch = self.feature_store.get_ingestion_batch(vector.subject_id, as_of)
        if batch is not None and batch.feature_vector.as_of == vector.as_of:
            return batch
        return IngestionBatch(
            batch_id=f"fv-{vector.subject_id}-{vector.as_of:%Y%m%dT%H%M%S}",
            subject_id=vector.subject_id,
            feature_vector=vector,
        )


def build_default_orchestrator(artifact_dir: str = NUMERIC_ARTIFACT_DIR) -> ScoreOrchestrator:
    """In-memory wiring with version ``v1`` active, used by the API and local runs."""
    store = InMemoryRecordStore()
    registry = ModelRegistry(store)
    registry.register(DEFAULT_VERSION_ID, artifact_ref=str(Path(artifact_dir) / NUMERIC_ARTIFACT_NAME))
    registry.promote(DEFAULT_VERSION_ID)

    baseline = load_baseline(Path(artifact_dir) / DRIFT_BASELINE_NAME)
    monitor = FairnessDriftMonitor(store, InMemoryDemographicDirectory(), registry, baseline)

    return ScoreOrchestrator(
        feature_store=InMemoryFeatureStore(),
        store=store,
        registry=registry,
        monitor=monitor,
    )
