"""
HTTP tests through FastAPI TestClient. Feature vectors are seeded straight
into the app's in-memory feature store.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import NOW
from trustscore.schemas import FeatureVector, IngestionBatch, SourceProvenance, UploadedDocument


def _seed(client, subject_id="alice", schema_version="1.0", history_days=60):
    vector = FeatureVector(
        subject_id=subject_id,
        as_of=NOW,
        features={"payment_regularity": 0.9, "utility_timeliness": 0.85, "overdraft_frequency": 0.1},
        sources=[
            SourceProvenance(name="bank", category="payments", first_observed=NOW - timedelta(days=history_days)),
            SourceProvenance(name="utility", category="utilities", first_observed=NOW - timedelta(days=history_days)),
        ],
        schema_version=schema_version,
    )
    client.app.state.orchestrator.feature_store.put(vector)
    return vector


def test_health(client):
    r = client.get("/api/v1/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "healthy"
    assert body["active_model"] == "v1"


def test_score_subject(client):
    _seed(client)
    r = client.post("/api/v1/scores/alice")
    assert r.status_code == 200
    body = r.json()
    assert 300 <= body["score"] <= 850
    assert 0 <= body["confidence"] <= 1
    assert body["model_version"] == "v1"
    assert body["phase"] == "mature"


def test_score_unknown_subject(client):
    r = client.post("/api/v1/scores/nobody")
    assert r.status_code == 404
    assert r.json()["error"] == "subject_not_found"


def test_score_schema_mismatch(client):
    _seed(client, schema_version="0.1")
    r = client.post("/api/v1/scores/alice")
    assert r.status_code == 422
    assert r.json()["expected"] == "1.0"


def test_integrity_rejection_returns_409(client):
    vector = _seed(client, subject_id="mallory")
    doc = UploadedDocument(name="id.png", declared_format="png", content=b"nope", declared_checksum="1" * 64)
    client.app.state.orchestrator.feature_store.put_batch(
        IngestionBatch(batch_id="b-1", subject_id="mallory", feature_vector=vector, documents=[doc])
    )
    r = client.post("/api/v1/scores/mallory")
    assert r.status_code == 409
    assert r.json()["reason"] == "integrity_rejection"
    assert client.get("/api/v1/subjects/mallory/history").json() == []


def test_batch_scoring(client):
    _seed(client, "alice")
    r = client.post("/api/v1/scores/batch", json={"subject_ids": ["alice", "ghost"]})
    assert r.status_code == 200
    statuses = {item["subject_id"]: item["status"] for item in r.json()}
    assert statuses == {"alice": "scored", "ghost": "error"}


def test_batch_too_large(client):
    r = client.post("/api/v1/scores/batch", json={"subject_ids": [f"s{i}" for i in range(1001)]})
    assert r.status_code == 400


def test_explanation_and_history(client):
    _seed(client)
    record = client.post("/api/v1/scores/alice").json()

    r = client.get(f"/api/v1/scores/{record['record_id']}/explanation", params={"language": "es"})
    assert r.status_code == 200
    assert r.json()["language"] == "es"
    assert len(r.json()["factors"]) <= 5

    assert client.get(f"/api/v1/scores/{record['record_id']}/explanation", params={"language": "xx"}).status_code == 400
    assert client.get("/api/v1/scores/missing/explanation").status_code == 404

    history = client.get("/api/v1/subjects/alice/history").json()
    assert [h["record_id"] for h in history] == [record["record_id"]]


def test_changes_need_two_records(client):
    _seed(client)
    client.post("/api/v1/scores/alice")
    assert client.get("/api/v1/subjects/alice/changes").status_code == 400
    client.post("/api/v1/scores/alice")
    r = client.get("/api/v1/subjects/alice/changes")
    assert r.status_code == 200
    assert r.json()["score_delta"] == 0


def test_model_lifecycle(client):
    r = client.post("/api/v1/models", json={"version_id": "v2", "weights": {"numeric": 0.3, "narrative": 0.7}})
    assert r.status_code == 201
    assert r.json()["status"] == "candidate"

    r = client.post("/api/v1/models/experiment", json={"candidate_id": "v2", "traffic_fraction": 0.2})
    assert r.json()["active"] is True

    r = client.post("/api/v1/models/v2/promote")
    assert r.status_code == 200
    assert r.json()["rollback_target"] == "v1"

    r = client.post("/api/v1/models/rollback")
    assert r.status_code == 200
    assert r.json()["version_id"] == "v1"

    statuses = {m["version_id"]: m["status"] for m in client.get("/api/v1/models").json()}
    assert statuses == {"v1": "active", "v2": "retired"}


@pytest.mark.parametrize("path,body", [
    ("/api/v1/models/rollback", None),
    ("/api/v1/models/nope/promote", None),
    ("/api/v1/models", {"version_id": "v1"}),
])
def test_registry_errors_are_conflicts(client, path, body):
    r = client.post(path, json=body) if body is not None else client.post(path)
    assert r.status_code == 409


def test_fairness_report(client):
    _seed(client)
    client.post("/api/v1/scores/alice")
    r = client.get(
        "/api/v1/fairness/report",
        params={"start": "2000-01-01T00:00:00Z", "end": "2100-01-01T00:00:00Z"},
    )
    assert r.status_code == 200
    assert r.json()["record_count"] == 1
    assert r.json()["verdict"] == "pass"
