"""
TrustScore Engine - Ensemble Scorer
===================================

Combines the numeric and narrative signals into one calibrated score with
ranked factors. Signals are called concurrently and each is bounded by its
own timeout; a missing signal degrades the ensemble to a partial one instead
of failing the request.

The scorer only ever sees behavioural features. Demographic attributes are
not an input to any step here.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from .config import SIGNAL_TIMEOUTS
from .confidence import calculate_confidence_adjustment, score_interval
from .ensemble import (
    aggregate_factors,
    calibrate,
    combine_sub_scores,
    is_partial,
    renormalize_weights,
    resolve_features,
    to_score_range,
)
from .errors import ScoringUnavailableError
from .narrative_model import NarrativeModelService
from .numeric_model import NumericModelService
from .schemas import (
    CollectionState,
    FeatureVector,
    IntegrityOutcome,
    IntegrityVerdict,
    ModelVersion,
    Phase,
    RecordFlag,
    ScoreOutcome,
    SignalOutput,
)
from .signals import SignalResult, SignalStatus, call_signal, describe

logger = logging.getLogger(__name__)

SignalCall = Callable[[FeatureVector, ModelVersion], Awaitable[SignalOutput]]


class EnsembleScorer:

    def __init__(
        self,
        numeric_service=None,
        narrative_service=None,
        timeouts: Optional[Dict[str, float]] = None,
    ):
        numeric_service = numeric_service or NumericModelService()
        narrative_service = narrative_service or NarrativeModelService()
        self.signals: Dict[str, SignalCall] = {
            "numeric": numeric_service.predict,
            "narrative": narrative_service.analyze,
        }
        self.timeouts = {**SIGNAL_TIMEOUTS, **(timeouts or {})}

    async def score(
        self,
        vector: FeatureVector,
        verdict: Optional[IntegrityVerdict],
        state: CollectionState,
        version: ModelVersion,
    ) -> ScoreOutcome:
        """Score one feature vector against one, already captured, model version."""
        resolved = resolve_features(vector)
        results = await self._call_signals(resolved, version)

        sub_scores: Dict[str, Optional[float]] = {
            name: (r.value.sub_score if r.ok else None) for name, r in results.items()
        }
        available = [name for name, r in results.items() if r.ok and version.weights.get(name, 0) > 0]
        if not available:
            raise ScoringUnavailableError(
                "No constituent signal available: " + "; ".join(describe(r) for r in results.values())
            )

        weights = renormalize_weights(version.weights, available)
        partial = is_partial(version.weights, available)
        failed = [name for name, r in results.items() if not r.ok]

        raw = combine_sub_scores(sub_scores, weights)
        score = to_score_range(calibrate(raw, version.calibration))

        factors = aggregate_factors(
            {name: r.value.contributions for name, r in results.items() if r.ok},
            weights,
        )

        adjustment = calculate_confidence_adjustment(
            sub_scores, partial, failed, state.phase, verdict,
        )
        confidence = adjustment.final_confidence

        flags = self._flags(results, partial, state, verdict)
        if partial:
            logger.info(
                "Partial ensemble for %s: %s",
                vector.subject_id, ", ".join(describe(r) for r in results.values()),
            )

        return ScoreOutcome(
            score=score,
            confidence=confidence,
            score_interval=score_interval(score, confidence, state.phase),
            factors=factors,
            flags=flags,
            sub_scores={k: (round(v, 6) if v is not None else None) for k, v in sub_scores.items()},
            features=resolved.numeric_features(),
        )

    async def _call_signals(
        self,
        vector: FeatureVector,
        version: ModelVersion,
    ) -> Dict[str, SignalResult[SignalOutput]]:
        names = [name for name in version.weights if version.weights[name] > 0]
        calls = []
        for name in names:
            call = self.signals.get(name)
            if call is None:
                calls.append(_missing_signal(name))
                continue
            calls.append(call_signal(
                name,
                lambda call=call: call(vector, version),
                self.timeouts.get(name, 2.0),
            ))
        results = await asyncio.gather(*calls)
        return dict(zip(names, results))

    @staticmethod
    def _flags(
        results: Dict[str, SignalResult],
        partial: bool,
        state: CollectionState,
        verdict: Optional[IntegrityVerdict],
    ) -> List[RecordFlag]:
        flags = []
        if verdict is not None and verdict.outcome == IntegrityOutcome.FLAG:
            flags.append(RecordFlag.INTEGRITY_FLAG)
        if verdict is not None and not verdict.check_available:
            flags.append(RecordFlag.INTEGRITY_UNAVAILABLE)
        if state.phase == Phase.COLLECTING:
            flags.append(RecordFlag.INSUFFICIENT_HISTORY)
        if partial:
            flags.append(RecordFlag.PARTIAL_ENSEMBLE)
        if any(r.status == SignalStatus.TIMED_OUT for r in results.values()):
            flags.append(RecordFlag.SIGNAL_TIMEOUT)
        return flags


async def _missing_signal(name: str) -> SignalResult:
    return SignalResult(name=name, status=SignalStatus.UNAVAILABLE, error="no service registered")
