"""
TrustScore Engine - Model Registry
==================================

Indirection table from "the model to use" to an immutable ModelVersion.
Promotion and rollback are pointer swaps under a short lock; requests
already holding a version snapshot keep using it. A fraction of traffic can
be routed to a candidate, bucketed deterministically per subject.
"""

import hashlib
import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional

from .config import DEFAULT_CALIBRATION, DEFAULT_SIGNAL_WEIGHTS, SCHEMA_VERSION
from .errors import ModelRegistryError
from .schemas import (
    CalibrationSpec,
    ModelVersion,
    RetrainingRequest,
    VersionStatus,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Experiment:
    experiment_id: str
    candidate_id: str
    traffic_fraction: float


@dataclass(frozen=True)
class ResolvedVersion:
    version: ModelVersion
    experiment_id: Optional[str] = None


class ModelRegistry:

    def __init__(self, store=None):
        self.store = store
        self._versions: Dict[str, ModelVersion] = {}
        self._active_id: Optional[str] = None
        self._experiment: Optional[Experiment] = None
        self._retraining: List[RetrainingRequest] = []
        self._lock = threading.RLock()

    # -- lifecycle -----------------------------------------------------------

    def register(
        self,
        version_id: str,
        weights: Optional[Dict[str, float]] = None,
        artifact_ref: Optional[str] = None,
        calibration: Optional[CalibrationSpec] = None,
        schema_version: str = SCHEMA_VERSION,
    ) -> ModelVersion:
        """Register a new ``candidate`` version."""
        version = ModelVersion(
            version_id=version_id,
            artifact_ref=artifact_ref,
            weights=dict(weights or DEFAULT_SIGNAL_WEIGHTS),
            calibration=calibration or CalibrationSpec(**DEFAULT_CALIBRATION),
            schema_version=schema_version,
            status=VersionStatus.CANDIDATE,
        )
        with self._lock:
            if version_id in self._versions:
                raise ModelRegistryError(f"Model version {version_id} already registered")
            self._save(version)
        logger.info("Registered candidate model %s", version_id)
        return version

    def promote(self, version_id: str) -> ModelVersion:
        """Make a candidate active; the prior active version is retired."""
        with self._lock:
            candidate = self._require(version_id)
            if candidate.status != VersionStatus.CANDIDATE:
                raise ModelRegistryError(
                    f"Only candidates can be promoted; {version_id} is {candidate.status.value}"
                )
            previous = self._versions.get(self._active_id) if self._active_id else None
            now = utcnow()
            if previous is not None:
                self._save(previous.model_copy(update={"status": VersionStatus.RETIRED}))
            promoted = candidate.model_copy(update={
                "status": VersionStatus.ACTIVE,
                "activated_at": now,
                "rollback_target": previous.version_id if previous else None,
            })
            self._save(promoted)
            self._active_id = version_id
            if self._experiment is not None and self._experiment.candidate_id == version_id:
                self._experiment = None

        logger.info(
            "Promoted model %s (rollback target: %s)",
            version_id, promoted.rollback_target,
        )
        return promoted

    def rollback(self, version_id: Optional[str] = None) -> ModelVersion:
        """Re-activate the rollback target, or a named prior version."""
        with self._lock:
            current = self.active()
            target_id = version_id or current.rollback_target
            if target_id is None:
                raise ModelRegistryError(f"Active model {current.version_id} has no rollback target")
            if target_id == current.version_id:
                raise ModelRegistryError(f"{target_id} is already active")
            target = self._require(target_id)
            if target.status != VersionStatus.RETIRED:
                raise ModelRegistryError(
                    f"Can only roll back to a previously active version; {target_id} is {target.status.value}"
                )

            self._save(current.model_copy(update={"status": VersionStatus.RETIRED}))
            restored = target.model_copy(update={
                "status": VersionStatus.ACTIVE,
                "activated_at": utcnow(),
            })
            self._save(restored)
            self._active_id = target_id

        logger.warning("Rolled back model %s -> %s", current.version_id, target_id)
        return restored

    def route_experiment(self, candidate_id: str, traffic_fraction: float) -> Optional[Experiment]:
        """Send ``traffic_fraction`` of subjects to a candidate; 0 stops the experiment."""
        if not 0.0 <= traffic_fraction <= 1.0:
            raise ModelRegistryError("traffic_fraction must be within [0, 1]")
        with self._lock:
            candidate = self._require(candidate_id)
            if candidate.status != VersionStatus.CANDIDATE:
                raise ModelRegistryError(f"Experiments need a candidate; {candidate_id} is {candidate.status.value}")
            if traffic_fraction == 0.0:
                self._experiment = None
                logger.info("Experiment on %s stopped", candidate_id)
                return None
            self._experiment = Experiment(
                experiment_id=f"exp-{candidate_id}-{uuid.uuid4().hex[:8]}",
                candidate_id=candidate_id,
                traffic_fraction=traffic_fraction,
            )
            experiment = self._experiment
        logger.info("Routing %.1f%% of traffic to candidate %s", traffic_fraction * 100, candidate_id)
        return experiment

    # -- reads ---------------------------------------------------------------

    def active(self) -> ModelVersion:
        with self._lock:
            if self._active_id is None:
                raise ModelRegistryError("No active model version")
            return self._versions[self._active_id]

    def has_active(self) -> bool:
        with self._lock:
            return self._active_id is not None

    def get(self, version_id: str) -> ModelVersion:
        with self._lock:
            return self._require(version_id)

    def versions(self) -> List[ModelVersion]:
        with self._lock:
            return sorted(self._versions.values(), key=lambda v: v.registered_at)

    def experiment(self) -> Optional[Experiment]:
        with self._lock:
            return self._experiment

    def resolve(self, subject_id: str) -> ResolvedVersion:
        """Snapshot of the version a request for ``subject_id`` must use."""
        with self._lock:
            active = self.active()
            experiment = self._experiment
            if experiment is not None and _traffic_bucket(subject_id, experiment.experiment_id) < experiment.traffic_fraction:
                return ResolvedVersion(self._versions[experiment.candidate_id], experiment.experiment_id)
            return ResolvedVersion(active)

    # -- governance ----------------------------------------------------------

    def file_retraining_request(self, reason: str, drift_metric: float, version_id: Optional[str] = None) -> RetrainingRequest:
        with self._lock:
            target = version_id or self.active().version_id
            request = RetrainingRequest(
                request_id=f"rt-{uuid.uuid4().hex[:12]}",
                version_id=target,
                reason=reason,
                drift_metric=round(drift_metric, 4),
            )
            self._retraining.append(request)
        logger.warning("Retraining requested for %s: %s", target, reason)
        return request

    def retraining_requests(self) -> List[RetrainingRequest]:
        with self._lock:
            return list(self._retraining)

    # -- internals -----------------------------------------------------------

    def _require(self, version_id: str) -> ModelVersion:
        version = self._versions.get(version_id)
        if version is None:
            raise ModelRegistryError(f"Unknown model version {version_id}")
        return version

    def _save(self, version: ModelVersion) -> None:
        self._versions[version.version_id] = version
        if self.store is not None:
            self.store.append_model_version(version)


def _traffic_bucket(subject_id: str, experiment_id: str) -> float:
    """Deterministic bucket in [0, 1) for a subject within an experiment."""
    key = f"{subject_id}:{experiment_id}"
    hash_bytes = hashlib.sha256(key.encode()).digest()
    hash_int = int.from_bytes(hash_bytes[:8], byteorder="big")
    return hash_int / (2**64)
