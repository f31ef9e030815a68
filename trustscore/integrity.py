"""
TrustScore Engine - Data Integrity Gate
=======================================

Clears an ingested batch before it reaches scoring. Local detectors look for
synthetic/duplicate identities, shared devices, velocity spikes, impossible
travel and tampered documents; an optional external fraud signal source adds
its own indicators. The gate is fail-safe: when the external check cannot be
reached the batch is flagged, never silently passed.
"""

import hashlib
import logging
import math
import threading
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import List, Optional, Protocol, Tuple

from .config import (
    DOCUMENT_MAGIC_BYTES,
    EARTH_RADIUS_KM,
    FLAG_THRESHOLD,
    INDICATOR_SEVERITY,
    MAX_REALISTIC_SPEED_KMH,
    OWNER_MEMORY_SIZE,
    REJECT_THRESHOLD,
    SIGNAL_TIMEOUTS,
    VELOCITY_SPIKE_RISK,
)
from .schemas import (
    ActivityEvent,
    AnomalyAssessment,
    AnomalyIndicator,
    IngestionBatch,
    IntegrityOutcome,
    IntegrityVerdict,
    UploadedDocument,
    utcnow,
)
from .signals import call_signal

logger = logging.getLogger(__name__)

CLOCK_SKEW = timedelta(minutes=5)
MIN_VELOCITY_EVENTS = 5


class FraudSignalSource(Protocol):
    async def assess(self, batch: IngestionBatch) -> AnomalyAssessment:
        ...


class IntegrityGate:
    """Evaluates one batch at a time and returns an ``IntegrityVerdict``."""

    def __init__(
        self,
        signal_source: Optional[FraudSignalSource] = None,
        reject_threshold: float = REJECT_THRESHOLD,
        flag_threshold: float = FLAG_THRESHOLD,
        timeout: float = SIGNAL_TIMEOUTS["integrity"],
        owner_memory_size: int = OWNER_MEMORY_SIZE,
    ):
        if not 0 <= flag_threshold <= reject_threshold <= 1:
            raise ValueError("thresholds must satisfy 0 <= flag <= reject <= 1")
        self.signal_source = signal_source
        self.reject_threshold = reject_threshold
        self.flag_threshold = flag_threshold
        self.timeout = timeout
        self.owner_memory_size = owner_memory_size
        self._device_owners: "OrderedDict[str, str]" = OrderedDict()
        self._identity_owners: "OrderedDict[str, str]" = OrderedDict()
        self._lock = threading.Lock()

    async def evaluate(self, batch: IngestionBatch) -> IntegrityVerdict:
        indicators: List[AnomalyIndicator] = []
        indicators.extend(self._identity_indicators(batch))
        indicators.extend(detect_velocity_spike(batch.events))
        indicators.extend(detect_location_spoof(batch.events))
        for document in batch.documents:
            indicators.extend(detect_document_tampering(document))

        external_confidence = 0.0
        check_available = True
        if self.signal_source is not None:
            source = self.signal_source
            result = await call_signal("integrity", lambda: source.assess(batch), self.timeout)
            if result.ok:
                indicators.extend(result.value.indicators)
                external_confidence = result.value.confidence
            else:
                check_available = False
                indicators.append(AnomalyIndicator(
                    name="integrity_check_unavailable",
                    severity=INDICATOR_SEVERITY["integrity_check_unavailable"],
                    detail=result.error,
                ))

        confidence = combine_confidence(indicators, external_confidence)
        outcome = self._decide(confidence, indicators, check_available)

        if outcome != IntegrityOutcome.REJECT:
            self._remember_owners(batch)

        if outcome != IntegrityOutcome.PASS:
            logger.info(
                "Batch %s for %s %s (confidence=%.3f, indicators=%s)",
                batch.batch_id, batch.subject_id, outcome.value, confidence,
                [i.name for i in indicators],
            )

        return IntegrityVerdict(
            subject_id=batch.subject_id,
            batch_id=batch.batch_id,
            outcome=outcome,
            indicators=indicators,
            confidence=round(confidence, 4),
            check_available=check_available,
        )

    def _decide(
        self,
        confidence: float,
        indicators: List[AnomalyIndicator],
        check_available: bool,
    ) -> IntegrityOutcome:
        if confidence > self.reject_threshold:
            return IntegrityOutcome.REJECT
        if confidence > self.flag_threshold or indicators or not check_available:
            return IntegrityOutcome.FLAG
        return IntegrityOutcome.PASS

    def _identity_indicators(self, batch: IngestionBatch) -> List[AnomalyIndicator]:
        indicators = []
        devices = _batch_devices(batch)
        with self._lock:
            shared = sorted(
                d for d in devices
                if self._device_owners.get(d, batch.subject_id) != batch.subject_id
            )
            identity_owner = None
            if batch.identity_fingerprint:
                identity_owner = self._identity_owners.get(batch.identity_fingerprint)

        if shared:
            indicators.append(AnomalyIndicator(
                name="duplicate_device",
                severity=INDICATOR_SEVERITY["duplicate_device"],
                detail=f"{len(shared)} device(s) already bound to another subject",
            ))
        if identity_owner is not None and identity_owner != batch.subject_id:
            indicators.append(AnomalyIndicator(
                name="synthetic_identity",
                severity=INDICATOR_SEVERITY["synthetic_identity"],
                detail="identity fingerprint shared with another subject",
            ))
        return indicators

    def _remember_owners(self, batch: IngestionBatch) -> None:
        with self._lock:
            for device in _batch_devices(batch):
                _bind(self._device_owners, device, batch.subject_id, self.owner_memory_size)
            if batch.identity_fingerprint:
                _bind(self._identity_owners, batch.identity_fingerprint, batch.subject_id, self.owner_memory_size)


def combine_confidence(indicators: List[AnomalyIndicator], external_confidence: float = 0.0) -> float:
    """Noisy-OR of indicator severities and the external source's confidence."""
    clean = 1.0 - max(0.0, min(1.0, external_confidence))
    for indicator in indicators:
        clean *= 1.0 - indicator.severity
    return max(0.0, min(1.0, 1.0 - clean))


# ---------------------------------------------------------------------------
# Detectors
# ---------------------------------------------------------------------------

def detect_velocity_spike(events: List[ActivityEvent]) -> List[AnomalyIndicator]:
    if len(events) < MIN_VELOCITY_EVENTS:
        return []
    ordered = sorted(events, key=lambda e: e.timestamp)
    reference = ordered[-1].timestamp
    history = ordered[:-1]

    counts = _velocity_counts(reference, history)
    baselines = _velocity_baseline(history)
    risk = _compute_velocity_risk(counts, baselines)
    if risk < VELOCITY_SPIKE_RISK:
        return []
    return [AnomalyIndicator(
        name="velocity_spike",
        severity=INDICATOR_SEVERITY["velocity_spike"],
        detail=f"velocity risk {risk:.2f} (1h/24h/7d counts {counts})",
    )]


def detect_location_spoof(events: List[ActivityEvent]) -> List[AnomalyIndicator]:
    geotagged = sorted(
        (e for e in events if e.latitude is not None and e.longitude is not None),
        key=lambda e: e.timestamp,
    )
    for previous, current in zip(geotagged, geotagged[1:]):
        dist_km = _haversine(previous.latitude, previous.longitude, current.latitude, current.longitude)
        hours = (current.timestamp - previous.timestamp).total_seconds() / 3600.0
        if hours <= 0:
            impossible = dist_km > 1.0
        else:
            impossible = dist_km / hours > MAX_REALISTIC_SPEED_KMH
        if impossible:
            return [AnomalyIndicator(
                name="location_spoof",
                severity=INDICATOR_SEVERITY["location_spoof"],
                detail=f"{dist_km:.0f} km in {max(hours, 0.0):.2f} h",
            )]
    return []


def detect_document_tampering(
    document: UploadedDocument,
    now: Optional[datetime] = None,
) -> List[AnomalyIndicator]:
    now = now or utcnow()
    indicators = []

    if document.declared_checksum:
        actual = hashlib.sha256(document.content).hexdigest()
        if actual.lower() != document.declared_checksum.strip().lower():
            indicators.append(AnomalyIndicator(
                name="document_checksum_mismatch",
                severity=INDICATOR_SEVERITY["document_checksum_mismatch"],
                detail=document.name,
            ))

    magic = DOCUMENT_MAGIC_BYTES.get(document.declared_format.lower())
    if magic is not None and not document.content.startswith(magic):
        indicators.append(AnomalyIndicator(
            name="document_format_mismatch",
            severity=INDICATOR_SEVERITY["document_format_mismatch"],
            detail=f"{document.name} is not a valid {document.declared_format}",
        ))

    created, uploaded = document.created_at, document.uploaded_at
    inconsistent = (
        (created is not None and created > now + CLOCK_SKEW)
        or (uploaded is not None and uploaded > now + CLOCK_SKEW)
        or (created is not None and uploaded is not None and created > uploaded)
    )
    if inconsistent:
        indicators.append(AnomalyIndicator(
            name="document_timestamp_inconsistent",
            severity=INDICATOR_SEVERITY["document_timestamp_inconsistent"],
            detail=document.name,
        ))

    return indicators


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _bind(owners: "OrderedDict[str, str]", key: str, subject_id: str, capacity: int) -> None:
    """Keep the first owner of ``key``; evict the least recently bound keys past ``capacity``."""
    owners.setdefault(key, subject_id)
    owners.move_to_end(key)
    while len(owners) > capacity:
        owners.popitem(last=False)


def _batch_devices(batch: IngestionBatch) -> List[str]:
    devices = set(batch.device_ids)
    devices.update(e.device_id for e in batch.events if e.device_id)
    return sorted(devices)


def _sigmoid(x: float) -> float:
    return 1.0 / (1.0 + math.exp(-float(x)))


def _velocity_counts(ts: datetime, history: List[ActivityEvent]) -> Tuple[int, int, int]:
    count_1h = count_24h = count_7d = 0
    for event in history:
        diff_hours = (ts - event.timestamp).total_seconds() / 3600.0
        if 0 <= diff_hours <= 1:
            count_1h += 1
        if 0 <= diff_hours <= 24:
            count_24h += 1
        if 0 <= diff_hours <= 168:
            count_7d += 1
    return count_1h, count_24h, count_7d


def _velocity_baseline(history: List[ActivityEvent]) -> Tuple[float, float, float]:
    """Average hourly/daily/weekly event counts over the full history span."""
    if len(history) < 2:
        return 1.0, 8.0, 30.0

    timestamps = [e.timestamp for e in history]
    total_hours = (max(timestamps) - min(timestamps)).total_seconds() / 3600.0
    if total_hours < 1:
        total_hours = 1.0

    baseline_1h = len(timestamps) / total_hours
    return baseline_1h, baseline_1h * 24, baseline_1h * 168


def _compute_velocity_risk(counts: Tuple[int, int, int], baselines: Tuple[float, float, float]) -> float:
    # Baselines are floored at one event per window.
    ratios = [count / max(baseline, 1.0) for count, baseline in zip(counts, baselines)]
    return _sigmoid((max(ratios) - 1.0) * 1.5)


def _haversine(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in km between two (lat, lon) points."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))
