"""
TrustScore Engine - Exception Taxonomy
======================================

Only schema mismatches, unknown subjects/records and a fully unavailable
ensemble surface to callers. Recoverable conditions (integrity flags,
partial ensembles, insufficient history) become ``RecordFlag``s instead.
"""


class TrustScoreError(Exception):
    """Base class for caller-visible engine failures."""


class SchemaMismatchError(TrustScoreError, ValueError):
    def __init__(self, subject_id: str, got: str, expected: str):
        self.subject_id = subject_id
        self.got = got
        self.expected = expected
        super().__init__(
            f"Feature vector for {subject_id} has schema {got}, model expects {expected}"
        )


class SubjectNotFoundError(TrustScoreError, LookupError):
    def __init__(self, subject_id: str):
        self.subject_id = subject_id
        super().__init__(f"No feature vector available for subject {subject_id}")


class UnknownRecordError(TrustScoreError, LookupError):
    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Unknown score record {record_id}")


class ScoringUnavailableError(TrustScoreError):
    """Raised when no constituent signal produced a sub-score."""


class ModelRegistryError(TrustScoreError, ValueError):
    pass
