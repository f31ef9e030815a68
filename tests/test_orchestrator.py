"""
Tests for the score orchestrator: end-to-end scoring, rejection without
persistence, batch isolation, history, explanations and model rollback.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

import pytest

from conftest import GOOD_FEATURES, NOW, POOR_FEATURES
from trustscore.errors import (
    ModelRegistryError,
    SchemaMismatchError,
    SubjectNotFoundError,
    UnknownRecordError,
)
from trustscore.orchestrator import ScoreOrchestrator
from trustscore.schemas import (
    BatchItemResult,
    IngestionBatch,
    Phase,
    RecordFlag,
    RejectedResult,
    TrustScoreRecord,
    UploadedDocument,
)
from trustscore.scorer import EnsembleScorer


def _tampered_batch(vector) -> IngestionBatch:
    doc = UploadedDocument(name="payslip.pdf", declared_format="pdf", content=b"GIF89a", declared_checksum="0" * 64)
    return IngestionBatch(batch_id="b-bad", subject_id=vector.subject_id, feature_vector=vector, documents=[doc])


def test_request_score_persists_record(orchestrator, feature_store, store, make_vector):
    feature_store.put(make_vector("alice"))
    record = asyncio.run(orchestrator.request_score("alice"))

    assert isinstance(record, TrustScoreRecord)
    assert record.model_version == "v1"
    assert record.phase == Phase.MATURE
    assert store.get_record(record.record_id) == record
    assert orchestrator.get_collection_state("alice").phase == Phase.MATURE


def test_unknown_subject(orchestrator):
    with pytest.raises(SubjectNotFoundError):
        asyncio.run(orchestrator.request_score("nobody"))


def test_schema_mismatch(orchestrator, feature_store, store, make_vector, caplog):
    feature_store.put(make_vector("alice", schema_version="0.9"))
    with caplog.at_level(logging.WARNING, logger="trustscore.orchestrator"):
        with pytest.raises(SchemaMismatchError):
            asyncio.run(orchestrator.request_score("alice"))
    assert store.history("alice") == []
    assert "Schema mismatch for alice" in caplog.text


def test_integrity_rejection_is_not_persisted(orchestrator, feature_store, store, make_vector):
    feature_store.put_batch(_tampered_batch(make_vector("mallory")))
    result = asyncio.run(orchestrator.request_score("mallory"))

    assert isinstance(result, RejectedResult)
    assert result.batch_id == "b-bad"
    assert store.history("mallory") == []
    assert orchestrator.get_collection_state("mallory") is None


def test_integrity_flag_reduces_confidence(orchestrator, feature_store, make_vector):
    feature_store.put(make_vector("alice"))
    clean = asyncio.run(orchestrator.request_score("alice"))

    vector = make_vector("bob")
    feature_store.put_batch(IngestionBatch(
        batch_id="b-bob", subject_id="bob", feature_vector=vector,
        documents=[UploadedDocument(name="bill.pdf", declared_format="pdf", content=b"%PDF-1.4",
                                    created_at=NOW, uploaded_at=NOW - timedelta(hours=1))],
    ))
    flagged = asyncio.run(orchestrator.request_score("bob"))

    assert RecordFlag.INTEGRITY_FLAG in flagged.flags
    assert flagged.integrity_batch_id == "b-bob"
    assert flagged.score == clean.score
    assert flagged.confidence < clean.confidence


def test_collection_phase_gating(orchestrator, feature_store, make_vector):
    feature_store.put(make_vector("new", history_days=10))
    feature_store.put(make_vector("old", history_days=60))
    new = asyncio.run(orchestrator.request_score("new"))
    old = asyncio.run(orchestrator.request_score("old"))

    assert new.preliminary and RecordFlag.INSUFFICIENT_HISTORY in new.flags
    assert not old.preliminary
    assert new.confidence < old.confidence
    assert new.score_interval[1] - new.score_interval[0] > old.score_interval[1] - old.score_interval[0]


def test_rescoring_is_idempotent_and_appends(orchestrator, feature_store, store, make_vector):
    feature_store.put(make_vector("alice"))
    first = asyncio.run(orchestrator.request_score("alice"))
    second = asyncio.run(orchestrator.request_score("alice"))

    assert first.record_id != second.record_id
    assert (first.score, first.confidence, first.factors) == (second.score, second.confidence, second.factors)
    assert [r.record_id for r in orchestrator.get_history("alice")] == [first.record_id, second.record_id]


# --- batch ---


def test_batch_isolates_failures(orchestrator, feature_store, make_vector):
    feature_store.put(make_vector("alice"))
    feature_store.put_batch(_tampered_batch(make_vector("mallory")))
    feature_store.put(make_vector("old-schema", schema_version="0.9"))

    results = asyncio.run(orchestrator.request_batch_score(["alice", "ghost", "mallory", "old-schema"]))
    by_subject = {r.subject_id: r for r in results}

    assert [r.subject_id for r in results] == ["alice", "ghost", "mallory", "old-schema"]
    assert by_subject["alice"].status == "scored"
    assert by_subject["ghost"].status == "error"
    assert by_subject["ghost"].error_type == "SubjectNotFoundError"
    assert by_subject["mallory"].status == "rejected"
    assert by_subject["old-schema"].error_type == "SchemaMismatchError"
    assert all(isinstance(r, BatchItemResult) for r in results)


@pytest.mark.parametrize("subject_ids", [[], [f"s-{i}" for i in range(1001)]])
def test_batch_size_bounds(orchestrator, subject_ids):
    with pytest.raises(ValueError):
        asyncio.run(orchestrator.request_batch_score(subject_ids))


# --- explanations & history ---


def test_get_explanation(orchestrator, feature_store, make_vector):
    feature_store.put(make_vector("alice"))
    record = asyncio.run(orchestrator.request_score("alice"))

    explanation = orchestrator.get_explanation(record.record_id, "es")
    assert explanation.language == "es"
    assert explanation.record_id == record.record_id
    assert len(explanation.factors) <= 5

    with pytest.raises(UnknownRecordError):
        orchestrator.get_explanation("missing")


def test_explain_change_between_latest_records(orchestrator, feature_store, make_vector):
    feature_store.put(make_vector("alice", features=POOR_FEATURES))
    asyncio.run(orchestrator.request_score("alice"))
    with pytest.raises(ValueError):
        orchestrator.explain_change("alice")

    feature_store.put(make_vector("alice", features=GOOD_FEATURES, as_of=NOW + timedelta(days=30)))
    asyncio.run(orchestrator.request_score("alice"))
    change = orchestrator.explain_change("alice")
    assert change.score_delta > 0
    assert change.changes


def test_history_range(orchestrator, feature_store, make_vector):
    feature_store.put(make_vector("alice"))
    record = asyncio.run(orchestrator.request_score("alice"))
    after = record.created_at + timedelta(seconds=1)

    assert orchestrator.get_history("alice", start=after) == []
    assert orchestrator.get_history("alice", end=after) == [record]
    with pytest.raises(ValueError):
        orchestrator.get_history("alice", start=after, end=record.created_at)


# --- governance ---


def test_rollback_correctness(orchestrator, feature_store, make_vector):
    feature_store.put(make_vector("alice"))
    orchestrator.register_model("v2", weights={"numeric": 0.1, "narrative": 0.9})

    before = asyncio.run(orchestrator.request_score("alice"))
    orchestrator.promote_model("v2")
    during = asyncio.run(orchestrator.request_score("alice"))
    orchestrator.rollback_model()
    after = asyncio.run(orchestrator.request_score("alice"))

    assert (before.model_version, during.model_version, after.model_version) == ("v1", "v2", "v1")
    assert after.score == before.score
    assert during.score != before.score
    assert [r.model_version for r in orchestrator.get_history("alice")] == ["v1", "v2", "v1"]


def test_in_flight_request_keeps_its_version(orchestrator, feature_store, make_vector):
    feature_store.put(make_vector("alice"))
    orchestrator.register_model("v2", weights={"numeric": 0.1, "narrative": 0.9})

    async def run():
        task = asyncio.create_task(orchestrator.request_score("alice"))
        await asyncio.sleep(0)
        orchestrator.promote_model("v2")
        return await task

    assert asyncio.run(run()).model_version == "v1"


def test_experiment_records_reference_candidate(orchestrator, feature_store, make_vector):
    orchestrator.register_model("v2", weights={"numeric": 0.5, "narrative": 0.5})
    orchestrator.route_experiment("v2", 1.0)
    feature_store.put(make_vector("alice"))
    record = asyncio.run(orchestrator.request_score("alice"))

    assert record.model_version == "v2"
    assert RecordFlag.EXPERIMENT in record.flags
    assert record.experiment_id is not None


def test_rollback_without_target(orchestrator):
    with pytest.raises(ModelRegistryError):
        orchestrator.rollback_model()


def test_fairness_report_over_stored_records(orchestrator, feature_store, make_vector):
    feature_store.put(make_vector("alice"))
    record = asyncio.run(orchestrator.request_score("alice"))
    start = record.created_at - timedelta(days=1)
    end = record.created_at + timedelta(days=1)

    report = orchestrator.get_fairness_report(start, end)
    assert report.record_count == 1
    assert orchestrator.get_fairness_report(start, end).report_id == report.report_id
    with pytest.raises(ValueError):
        orchestrator.get_fairness_report(end, start)


# --- persisted records ---


def test_stored_records_cannot_be_altered_by_readers(orchestrator, feature_store, store, make_vector):
    feature_store.put(make_vector("alice"))
    record = asyncio.run(orchestrator.request_score("alice"))

    read = store.get_record(record.record_id)
    with pytest.raises(AttributeError):
        read.flags.append(RecordFlag.EXPERIMENT)
    read.features.clear()
    read.sub_scores["numeric"] = 0.0
    record.features.clear()
    orchestrator.get_history("alice")[0].sub_scores.clear()

    stored = store.get_record(record.record_id)
    assert stored.features
    assert stored.sub_scores["numeric"] != 0.0
    assert stored.flags == ()
    assert len(stored.factors) > 0


# --- signal outages ---


class _UnreachableNarrative:
    async def analyze(self, vector, version):
        raise ConnectionError("narrative service unreachable")


def test_narrative_outage_still_produces_partial_record(feature_store, store, registry, make_vector):
    orchestrator = ScoreOrchestrator(
        feature_store=feature_store,
        store=store,
        registry=registry,
        scorer=EnsembleScorer(narrative_service=_UnreachableNarrative()),
    )
    feature_store.put(make_vector("alice"))
    record = asyncio.run(orchestrator.request_score("alice"))

    assert isinstance(record, TrustScoreRecord)
    assert RecordFlag.PARTIAL_ENSEMBLE in record.flags
    assert record.sub_scores["narrative"] is None
    assert store.get_record(record.record_id) == record
