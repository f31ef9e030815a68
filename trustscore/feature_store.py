"""
TrustScore Engine - Feature Store Adapter
=========================================

Read-only, point-in-time access to feature vectors. The in-memory store is
used by tests and local runs; production wires a warehouse-backed adapter
that satisfies the same protocol.
"""

import threading
from datetime import datetime
from typing import Dict, List, Optional, Protocol

from .schemas import FeatureVector, IngestionBatch


class FeatureStore(Protocol):
    def get_feature_vector(self, subject_id: str, as_of: Optional[datetime] = None) -> Optional[FeatureVector]:
        ...

    def get_ingestion_batch(self, subject_id: str, as_of: Optional[datetime] = None) -> Optional[IngestionBatch]:
        ...


class InMemoryFeatureStore:
    """Keeps every ingested vector; lookups return the latest one at ``as_of``."""

    def __init__(self):
        self._vectors: Dict[str, List[FeatureVector]] = {}
        self._batches: Dict[str, List[IngestionBatch]] = {}
        self._lock = threading.Lock()

    def put(self, vector: FeatureVector) -> None:
        with self._lock:
            vectors = self._vectors.setdefault(vector.subject_id, [])
            vectors.append(vector)
            vectors.sort(key=lambda v: v.as_of)

    def put_batch(self, batch: IngestionBatch) -> None:
        self.put(batch.feature_vector)
        with self._lock:
            batches = self._batches.setdefault(batch.subject_id, [])
            batches.append(batch)
            batches.sort(key=lambda b: b.feature_vector.as_of)

    def get_feature_vector(self, subject_id: str, as_of: Optional[datetime] = None) -> Optional[FeatureVector]:
        with self._lock:
            vectors = list(self._vectors.get(subject_id, []))
        return _latest(vectors, as_of, key=lambda v: v.as_of)

    def get_ingestion_batch(self, subject_id: str, as_of: Optional[datetime] = None) -> Optional[IngestionBatch]:
        with self._lock:
            batches = list(self._batches.get(subject_id, []))
        return _latest(batches, as_of, key=lambda b: b.feature_vector.as_of)

    def subjects(self) -> List[str]:
        with self._lock:
            return sorted(self._vectors)


def _latest(items, as_of, key):
    if as_of is not None:
        items = [i for i in items if key(i) <= as_of]
    return items[-1] if items else None
