"""
Pytest fixtures for TrustScore tests. Everything runs in memory; no model
artifact is present, so the numeric signal uses its placeholder scorecard.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from trustscore.config import SCHEMA_VERSION
from trustscore.feature_store import InMemoryFeatureStore
from trustscore.orchestrator import ScoreOrchestrator
from trustscore.registry import ModelRegistry
from trustscore.schemas import FeatureVector, SourceProvenance
from trustscore.store import InMemoryRecordStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

GOOD_FEATURES = {
    "payment_regularity": 0.95,
    "utility_timeliness": 0.92,
    "spending_stability": 0.80,
    "income_consistency": 0.80,
    "savings_ratio": 0.60,
    "device_consistency": 0.70,
    "overdraft_frequency": 0.05,
    "late_payment_ratio": 0.05,
    "gambling_share": 0.0,
}

POOR_FEATURES = {
    "payment_regularity": 0.30,
    "utility_timeliness": 0.35,
    "spending_stability": 0.40,
    "income_consistency": 0.30,
    "savings_ratio": 0.05,
    "device_consistency": 0.50,
    "overdraft_frequency": 0.70,
    "late_payment_ratio": 0.60,
    "gambling_share": 0.30,
}


@pytest.fixture
def make_vector():
    """Factory for feature vectors with ``history_days`` of provenance."""

    def _make(
        subject_id: str = "subj-1",
        features: dict | None = None,
        history_days: int = 60,
        categories=("payments", "utilities"),
        as_of: datetime = NOW,
        schema_version: str = SCHEMA_VERSION,
        windows: dict | None = None,
    ) -> FeatureVector:
        first_observed = as_of - timedelta(days=history_days)
        return FeatureVector(
            subject_id=subject_id,
            as_of=as_of,
            features=dict(GOOD_FEATURES if features is None else features),
            windows=windows or {},
            sources=[
                SourceProvenance(name=f"{c}-feed", category=c, first_observed=first_observed)
                for c in categories
            ],
            schema_version=schema_version,
        )

    return _make


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def feature_store():
    return InMemoryFeatureStore()


@pytest.fixture
def registry(store):
    """Registry with ``v1`` active."""
    reg = ModelRegistry(store)
    reg.register("v1")
    reg.promote("v1")
    return reg


@pytest.fixture
def orchestrator(feature_store, store, registry):
    return ScoreOrchestrator(feature_store=feature_store, store=store, registry=registry)


@pytest.fixture
def client(monkeypatch, tmp_path):
    """FastAPI TestClient with the periodic monitor disabled and an empty artifact dir."""
    from fastapi.testclient import TestClient

    import trustscore.api as api
    from trustscore.orchestrator import build_default_orchestrator

    monkeypatch.setattr(api, "MONITOR_ENABLED", False)
    monkeypatch.setattr(api, "build_default_orchestrator", lambda: build_default_orchestrator(str(tmp_path)))

    with TestClient(api.app) as test_client:
        yield test_client
