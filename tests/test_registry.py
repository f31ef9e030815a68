"""
Tests for the model registry: lifecycle, rollback targets, experiment
routing and retraining requests.
"""

from __future__ import annotations

import pytest

from trustscore.errors import ModelRegistryError
from trustscore.registry import ModelRegistry
from trustscore.schemas import VersionStatus


@pytest.fixture
def two_versions(store):
    reg = ModelRegistry(store)
    reg.register("v1")
    reg.promote("v1")
    reg.register("v2", weights={"numeric": 0.7, "narrative": 0.3})
    return reg


def test_register_creates_candidate(registry):
    version = registry.register("v2")
    assert version.status == VersionStatus.CANDIDATE
    assert registry.active().version_id == "v1"


def test_duplicate_registration_rejected(registry):
    with pytest.raises(ModelRegistryError):
        registry.register("v1")


def test_invalid_weights_rejected(registry):
    with pytest.raises(ValueError):
        registry.register("bad", weights={"numeric": 0.0, "narrative": 0.0})


def test_promote_retires_previous_and_records_rollback_target(two_versions):
    promoted = two_versions.promote("v2")
    assert promoted.status == VersionStatus.ACTIVE
    assert promoted.rollback_target == "v1"
    assert two_versions.get("v1").status == VersionStatus.RETIRED
    assert two_versions.active().version_id == "v2"


def test_only_candidates_can_be_promoted(two_versions):
    two_versions.promote("v2")
    with pytest.raises(ModelRegistryError):
        two_versions.promote("v1")


def test_rollback_restores_previous_version(two_versions):
    two_versions.promote("v2")
    restored = two_versions.rollback()
    assert restored.version_id == "v1"
    assert restored.status == VersionStatus.ACTIVE
    assert two_versions.get("v2").status == VersionStatus.RETIRED
    assert two_versions.active().weights == {"numeric": 0.6, "narrative": 0.4}


def test_rollback_without_target_fails(registry):
    with pytest.raises(ModelRegistryError):
        registry.rollback()


def test_rollback_to_candidate_fails(two_versions):
    with pytest.raises(ModelRegistryError):
        two_versions.rollback("v2")


def test_snapshots_are_unaffected_by_later_swaps(two_versions):
    snapshot = two_versions.resolve("subj-1").version
    two_versions.promote("v2")
    assert snapshot.version_id == "v1"
    assert snapshot.status == VersionStatus.ACTIVE


def test_store_keeps_every_version_change(store, two_versions):
    two_versions.promote("v2")
    two_versions.rollback()
    log = [(v.version_id, v.status) for v in store.model_version_log()]
    assert log[-2:] == [("v2", VersionStatus.RETIRED), ("v1", VersionStatus.ACTIVE)]


# --- experiments ---


def test_experiment_routing_is_deterministic_and_proportional(two_versions):
    experiment = two_versions.route_experiment("v2", 0.3)
    subjects = [f"subj-{i}" for i in range(2000)]
    routed = [s for s in subjects if two_versions.resolve(s).experiment_id == experiment.experiment_id]

    assert 0.25 < len(routed) / len(subjects) < 0.35
    assert all(two_versions.resolve(s).version.version_id == "v2" for s in routed[:20])
    assert routed == [s for s in subjects if two_versions.resolve(s).experiment_id is not None]


def test_zero_fraction_stops_experiment(two_versions):
    two_versions.route_experiment("v2", 0.5)
    assert two_versions.route_experiment("v2", 0.0) is None
    assert two_versions.experiment() is None
    assert two_versions.resolve("subj-1").version.version_id == "v1"


def test_promotion_ends_experiment(two_versions):
    two_versions.route_experiment("v2", 0.5)
    two_versions.promote("v2")
    assert two_versions.experiment() is None


def test_experiment_requires_candidate(registry):
    with pytest.raises(ModelRegistryError):
        registry.route_experiment("v1", 0.2)
    with pytest.raises(ModelRegistryError):
        registry.route_experiment("v1", 1.5)


# --- retraining ---


def test_file_retraining_request(registry):
    request = registry.file_retraining_request("drift on score", 0.31)
    assert request.version_id == "v1"
    assert registry.retraining_requests() == [request]
