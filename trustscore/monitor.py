"""
TrustScore Engine - Fairness & Drift Monitor
============================================

Out-of-band governance job over stored score records:

- per demographic group score distributions and approval rates,
- disparity against a reference group (adverse-impact ratio, mean gap),
- population stability index of scores and features against the
  training-time baseline.

The monitor detects and escalates. It never edits a record and never feeds
anything back into live scoring; a drift breach files a retraining request
with the model registry.

Usage:
    monitor = FairnessDriftMonitor(store, directory, registry, baseline)
    report = monitor.evaluate(records, period_start, period_end)
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Sequence

import numpy as np

from .config import (
    ADVERSE_IMPACT_THRESHOLD,
    APPROVAL_CUTOFF,
    DEMOGRAPHIC_ATTRIBUTES,
    DRIFT_PSI_THRESHOLD,
    DRIFT_PSI_WARNING,
    MIN_GROUP_SIZE,
    MONITOR_INTERVAL_SECONDS,
    MONITOR_WINDOW_DAYS,
    PSI_BUCKETS,
    REFERENCE_GROUPS,
)
from .schemas import (
    AlertKind,
    Demographics,
    DisparityMetric,
    DriftBaseline,
    DriftMetric,
    FairnessReport,
    GroupSummary,
    MonitorAlert,
    ReportVerdict,
    TrustScoreRecord,
    utcnow,
)

logger = logging.getLogger(__name__)

UNKNOWN_GROUP = "unknown"
PSI_EPSILON = 1e-4


class DemographicDirectory(Protocol):
    def lookup(self, subject_id: str) -> Optional[Demographics]:
        ...


class InMemoryDemographicDirectory:
    """Demographics live apart from scoring inputs and are read only here."""

    def __init__(self, entries: Optional[Dict[str, Demographics]] = None):
        self._entries: Dict[str, Demographics] = dict(entries or {})

    def set(self, subject_id: str, demographics: Demographics) -> None:
        self._entries[subject_id] = demographics

    def lookup(self, subject_id: str) -> Optional[Demographics]:
        return self._entries.get(subject_id)


# ---------------------------------------------------------------------------
# Population stability index
# ---------------------------------------------------------------------------

def quantile_cuts(values: Sequence[float], buckets: int = PSI_BUCKETS) -> List[float]:
    """Interior cut points splitting ``values`` into roughly equal buckets."""
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        raise ValueError("Cannot build buckets from an empty sample")
    cuts = np.quantile(arr, np.linspace(0, 1, buckets + 1)[1:-1])
    return [float(c) for c in np.unique(cuts)]


def bucket_proportions(values: Sequence[float], cuts: Sequence[float]) -> List[float]:
    arr = np.asarray(values, dtype=float)
    idx = np.searchsorted(np.asarray(cuts, dtype=float), arr, side="right")
    counts = np.bincount(idx, minlength=len(cuts) + 1)
    total = counts.sum()
    if total == 0:
        return [0.0] * (len(cuts) + 1)
    return [float(c) for c in counts / total]


def population_stability_index(expected: Sequence[float], actual: Sequence[float]) -> float:
    e = np.clip(np.asarray(expected, dtype=float), PSI_EPSILON, None)
    a = np.clip(np.asarray(actual, dtype=float), PSI_EPSILON, None)
    return float(np.sum((a - e) * np.log(a / e)))


def build_drift_baseline(
    scores: Sequence[float],
    features: Optional[Dict[str, Sequence[float]]] = None,
    version_id: Optional[str] = None,
    buckets: int = PSI_BUCKETS,
) -> DriftBaseline:
    """Capture reference distributions from a training-time sample."""
    score_cuts = quantile_cuts(scores, buckets)
    feature_edges: Dict[str, List[float]] = {}
    feature_props: Dict[str, List[float]] = {}
    for name, values in (features or {}).items():
        if len(values) == 0:
            continue
        cuts = quantile_cuts(values, buckets)
        feature_edges[name] = cuts
        feature_props[name] = bucket_proportions(values, cuts)

    return DriftBaseline(
        version_id=version_id,
        score_edges=score_cuts,
        score_proportions=bucket_proportions(scores, score_cuts),
        feature_edges=feature_edges,
        feature_proportions=feature_props,
    )


def save_baseline(baseline: DriftBaseline, path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(baseline.model_dump_json(indent=2))
    logger.info("Drift baseline saved to %s", path)
    return path


def load_baseline(path) -> Optional[DriftBaseline]:
    path = Path(path)
    if not path.exists():
        logger.warning("Drift baseline not found at %s, drift metrics disabled.", path)
        return None
    return DriftBaseline.model_validate_json(path.read_text())


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------

class FairnessDriftMonitor:

    def __init__(
        self,
        store,
        directory: DemographicDirectory,
        registry=None,
        baseline: Optional[DriftBaseline] = None,
        reference_groups: Optional[Dict[str, str]] = None,
        min_group_size: int = MIN_GROUP_SIZE,
        approval_cutoff: int = APPROVAL_CUTOFF,
        adverse_impact_threshold: float = ADVERSE_IMPACT_THRESHOLD,
        drift_threshold: float = DRIFT_PSI_THRESHOLD,
        escalate: Optional[Callable[[MonitorAlert], None]] = None,
    ):
        self.store = store
        self.directory = directory
        self.registry = registry
        self.baseline = baseline
        self.reference_groups = dict(reference_groups or REFERENCE_GROUPS)
        self.min_group_size = min_group_size
        self.approval_cutoff = approval_cutoff
        self.adverse_impact_threshold = adverse_impact_threshold
        self.drift_threshold = drift_threshold
        self.escalate = escalate

    def set_baseline(self, baseline: DriftBaseline) -> None:
        self.baseline = baseline

    # -- public --------------------------------------------------------------

    def evaluate(
        self,
        records: Sequence[TrustScoreRecord],
        period_start: datetime,
        period_end: datetime,
    ) -> FairnessReport:
        """Build, persist and escalate the report for one period."""
        records = [r for r in records if period_start <= r.created_at <= period_end]

        groups = self._group_scores(records)
        summaries = [
            self._summarize(attribute, group, scores)
            for attribute in DEMOGRAPHIC_ATTRIBUTES
            for group, scores in sorted(groups[attribute].items())
        ]
        disparities = self._disparities(groups)
        drift = self._drift(records)

        alerts: List[MonitorAlert] = []
        for d in disparities:
            if d.breached:
                alerts.append(MonitorAlert(
                    kind=AlertKind.FAIRNESS,
                    message=(
                        f"{d.attribute}={d.group} approval ratio {d.adverse_impact_ratio:.2f} "
                        f"vs reference {d.reference_group}"
                    ),
                    metric=d.adverse_impact_ratio,
                    threshold=self.adverse_impact_threshold,
                ))
        for m in drift:
            if m.breached:
                alerts.append(MonitorAlert(
                    kind=AlertKind.DRIFT,
                    message=f"{m.name} PSI {m.psi:.3f} above {self.drift_threshold:.2f}",
                    metric=m.psi,
                    threshold=self.drift_threshold,
                ))
            elif m.psi > DRIFT_PSI_WARNING:
                logger.info("Moderate drift on %s (PSI=%.3f)", m.name, m.psi)

        retraining_ids = self._request_retraining(drift)

        report = FairnessReport(
            report_id=f"fr-{uuid.uuid4().hex[:12]}",
            period_start=period_start,
            period_end=period_end,
            record_count=len(records),
            model_versions=sorted({r.model_version for r in records}),
            group_summaries=summaries,
            disparities=disparities,
            drift=drift,
            alerts=alerts,
            verdict=ReportVerdict.ALERT if alerts else ReportVerdict.PASS,
            retraining_requests=retraining_ids,
        )
        self.store.append_report(report)

        for alert in alerts:
            logger.warning("%s alert: %s", alert.kind.value, alert.message)
            if self.escalate is not None:
                self.escalate(alert)

        return report

    def run_once(self, now: Optional[datetime] = None, window_days: int = MONITOR_WINDOW_DAYS) -> FairnessReport:
        period_end = now or utcnow()
        period_start = period_end - timedelta(days=window_days)
        snapshot = self.store.snapshot_records(period_start, period_end)
        return self.evaluate(snapshot, period_start, period_end)

    def report_for(self, period_start: datetime, period_end: datetime) -> FairnessReport:
        """Stored report for the period, or a freshly computed one."""
        existing = self.store.find_report(period_start, period_end)
        if existing is not None:
            return existing
        snapshot = self.store.snapshot_records(period_start, period_end)
        return self.evaluate(snapshot, period_start, period_end)

    async def run_periodic(self, interval_seconds: float = MONITOR_INTERVAL_SECONDS) -> None:
        """Evaluate the trailing window every ``interval_seconds`` until cancelled."""
        logger.info("Fairness & drift monitor running every %.0fs", interval_seconds)
        while True:
            try:
                report = await asyncio.to_thread(self.run_once)
                logger.info(
                    "Monitor report %s: %d records, verdict=%s",
                    report.report_id, report.record_count, report.verdict.value,
                )
            except Exception:
                logger.exception("Monitor run failed")
            await asyncio.sleep(interval_seconds)

    # -- internals -----------------------------------------------------------

    def _group_scores(self, records: Sequence[TrustScoreRecord]) -> Dict[str, Dict[str, List[int]]]:
        groups: Dict[str, Dict[str, List[int]]] = {a: defaultdict(list) for a in DEMOGRAPHIC_ATTRIBUTES}
        for record in records:
            demographics = self.directory.lookup(record.subject_id)
            for attribute in DEMOGRAPHIC_ATTRIBUTES:
                value = getattr(demographics, attribute, None) if demographics else None
                groups[attribute][value or UNKNOWN_GROUP].append(record.score)
        return groups

    def _approval_rate(self, scores: Sequence[int]) -> float:
        if not scores:
            return 0.0
        return sum(1 for s in scores if s >= self.approval_cutoff) / len(scores)

    def _summarize(self, attribute: str, group: str, scores: List[int]) -> GroupSummary:
        arr = np.asarray(scores, dtype=float)
        return GroupSummary(
            attribute=attribute,
            group=group,
            count=int(arr.size),
            mean=round(float(arr.mean()), 2),
            median=round(float(np.median(arr)), 2),
            std=round(float(arr.std()), 2),
            p10=round(float(np.percentile(arr, 10)), 2),
            p90=round(float(np.percentile(arr, 90)), 2),
            approval_rate=round(self._approval_rate(scores), 4),
        )

    def _disparities(self, groups: Dict[str, Dict[str, List[int]]]) -> List[DisparityMetric]:
        metrics = []
        for attribute in DEMOGRAPHIC_ATTRIBUTES:
            reference = self.reference_groups.get(attribute)
            reference_scores = groups[attribute].get(reference) if reference else None
            if not reference_scores:
                continue
            reference_rate = self._approval_rate(reference_scores)
            reference_mean = float(np.mean(reference_scores))

            for group, scores in sorted(groups[attribute].items()):
                if group in (reference, UNKNOWN_GROUP):
                    continue
                ratio = self._approval_rate(scores) / reference_rate if reference_rate > 0 else None
                sufficient = len(scores) >= self.min_group_size and len(reference_scores) >= self.min_group_size
                metrics.append(DisparityMetric(
                    attribute=attribute,
                    group=group,
                    reference_group=reference,
                    mean_gap=round(float(np.mean(scores)) - reference_mean, 2),
                    adverse_impact_ratio=round(ratio, 4) if ratio is not None else None,
                    sufficient_sample=sufficient,
                    breached=bool(sufficient and ratio is not None and ratio < self.adverse_impact_threshold),
                ))
        return metrics

    def _drift(self, records: Sequence[TrustScoreRecord]) -> List[DriftMetric]:
        baseline = self.baseline
        if baseline is None:
            logger.debug("No drift baseline configured; skipping drift metrics")
            return []
        if baseline.version_id is not None:
            records = [r for r in records if r.model_version == baseline.version_id]
        if not records:
            return []

        metrics = []
        scores = [r.score for r in records]
        metrics.append(self._psi_metric("score", baseline.score_proportions, scores, baseline.score_edges))

        for name, cuts in sorted(baseline.feature_edges.items()):
            values = [r.features[name] for r in records if name in r.features]
            if values:
                metrics.append(self._psi_metric(
                    f"feature:{name}", baseline.feature_proportions[name], values, cuts,
                ))
        return metrics

    def _psi_metric(self, name: str, expected: List[float], values: Sequence[float], cuts: List[float]) -> DriftMetric:
        psi = population_stability_index(expected, bucket_proportions(values, cuts))
        return DriftMetric(name=name, psi=round(psi, 4), breached=psi > self.drift_threshold)

    def _request_retraining(self, drift: List[DriftMetric]) -> List[str]:
        breached = [m for m in drift if m.breached]
        if not breached or self.registry is None or not self.registry.has_active():
            return []
        worst = max(breached, key=lambda m: m.psi)
        # The drifted version is the one the baseline describes, else the active one.
        version_id = self.baseline.version_id if self.baseline else None
        request = self.registry.file_retraining_request(
            reason=f"drift on {', '.join(m.name for m in breached)}",
            drift_metric=worst.psi,
            version_id=version_id,
        )
        return [request.request_id]
