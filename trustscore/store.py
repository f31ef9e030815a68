"""
TrustScore Engine - Append-Only Persistence
===========================================

Records, collection-state transitions, model-version snapshots and fairness
reports are only ever appended. "Current" values are the latest entries.
Stored records are private copies; readers get their own copy back.
"""

import threading
from datetime import datetime
from typing import Dict, List, Optional, Protocol

from .schemas import CollectionState, FairnessReport, ModelVersion, TrustScoreRecord


class RecordStore(Protocol):
    def append_record(self, record: TrustScoreRecord) -> None: ...
    def get_record(self, record_id: str) -> Optional[TrustScoreRecord]: ...
    def history(self, subject_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[TrustScoreRecord]: ...
    def snapshot_records(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[TrustScoreRecord]: ...
    def append_collection_state(self, state: CollectionState) -> None: ...
    def latest_collection_state(self, subject_id: str) -> Optional[CollectionState]: ...
    def append_model_version(self, version: ModelVersion) -> None: ...
    def append_report(self, report: FairnessReport) -> None: ...
    def find_report(self, start: datetime, end: datetime) -> Optional[FairnessReport]: ...


class InMemoryRecordStore:

    def __init__(self):
        self._lock = threading.RLock()
        self._records: List[TrustScoreRecord] = []
        self._by_id: Dict[str, TrustScoreRecord] = {}
        self._by_subject: Dict[str, List[TrustScoreRecord]] = {}
        self._states: Dict[str, List[CollectionState]] = {}
        self._versions: List[ModelVersion] = []
        self._reports: List[FairnessReport] = []

    # -- score records -------------------------------------------------------

    def append_record(self, record: TrustScoreRecord) -> None:
        with self._lock:
            if record.record_id in self._by_id:
                raise ValueError(f"Record {record.record_id} already persisted")
            subject_log = self._by_subject.setdefault(record.subject_id, [])
            if subject_log and record.created_at < subject_log[-1].created_at:
                raise ValueError("Score history is append-only and time-ordered")
            record = record.model_copy(deep=True)
            subject_log.append(record)
            self._records.append(record)
            self._by_id[record.record_id] = record

    def get_record(self, record_id: str) -> Optional[TrustScoreRecord]:
        with self._lock:
            return _copy(self._by_id.get(record_id))

    def history(
        self,
        subject_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[TrustScoreRecord]:
        with self._lock:
            records = list(self._by_subject.get(subject_id, []))
        return [_copy(r) for r in _in_range(records, start, end)]

    def latest_record(self, subject_id: str) -> Optional[TrustScoreRecord]:
        with self._lock:
            records = self._by_subject.get(subject_id)
            return _copy(records[-1]) if records else None

    def snapshot_records(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[TrustScoreRecord]:
        with self._lock:
            records = list(self._records)
        return [_copy(r) for r in _in_range(records, start, end)]

    # -- collection state ----------------------------------------------------

    def append_collection_state(self, state: CollectionState) -> None:
        with self._lock:
            self._states.setdefault(state.subject_id, []).append(state)

    def latest_collection_state(self, subject_id: str) -> Optional[CollectionState]:
        with self._lock:
            states = self._states.get(subject_id)
            return states[-1] if states else None

    def collection_log(self, subject_id: str) -> List[CollectionState]:
        with self._lock:
            return list(self._states.get(subject_id, []))

    # -- governance ----------------------------------------------------------

    def append_model_version(self, version: ModelVersion) -> None:
        with self._lock:
            self._versions.append(version)

    def model_version_log(self) -> List[ModelVersion]:
        with self._lock:
            return list(self._versions)

    def append_report(self, report: FairnessReport) -> None:
        with self._lock:
            self._reports.append(report)

    def find_report(self, start: datetime, end: datetime) -> Optional[FairnessReport]:
        with self._lock:
            for report in reversed(self._reports):
                if report.period_start == start and report.period_end == end:
                    return report
        return None

    def reports(self) -> List[FairnessReport]:
        with self._lock:
            return list(self._reports)


def _copy(record: Optional[TrustScoreRecord]) -> Optional[TrustScoreRecord]:
    return record.model_copy(deep=True) if record is not None else None


def _in_range(records, start, end):
    if start is not None:
        records = [r for r in records if r.created_at >= start]
    if end is not None:
        records = [r for r in records if r.created_at <= end]
    return records
