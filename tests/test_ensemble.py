"""
Tests for ensemble arithmetic and confidence: weight renormalisation,
recency weighting, calibration, factor aggregation and intervals.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import NOW
from trustscore.confidence import (
    calculate_base_confidence,
    calculate_confidence_adjustment,
    score_interval,
)
from trustscore.config import HIGH_CONFIDENCE_CEILING
from trustscore.ensemble import (
    aggregate_factors,
    calibrate,
    combine_sub_scores,
    is_partial,
    recency_weighted_value,
    renormalize_weights,
    resolve_features,
    to_score_range,
)
from trustscore.schemas import (
    AnomalyIndicator,
    CalibrationSpec,
    IntegrityOutcome,
    IntegrityVerdict,
    Phase,
    WindowedObservation,
)


# --- weights ---


def test_renormalize_all_available():
    weights = renormalize_weights({"numeric": 0.6, "narrative": 0.4}, ["numeric", "narrative"])
    assert weights == pytest.approx({"numeric": 0.6, "narrative": 0.4})


def test_renormalize_missing_signal():
    weights = renormalize_weights({"numeric": 0.6, "narrative": 0.4}, ["narrative"])
    assert weights == {"numeric": 0.0, "narrative": 1.0}
    assert is_partial({"numeric": 0.6, "narrative": 0.4}, ["narrative"])


def test_renormalize_nothing_available():
    with pytest.raises(ValueError):
        renormalize_weights({"numeric": 0.6, "narrative": 0.4}, [])


def test_combine_sub_scores_skips_missing():
    assert combine_sub_scores({"numeric": None, "narrative": 0.7}, {"numeric": 0.0, "narrative": 1.0}) == 0.7


# --- recency ---


def test_recency_weighting_favours_recent_observations():
    observations = [
        WindowedObservation(value=0.2, observed_at=NOW - timedelta(days=90)),
        WindowedObservation(value=0.9, observed_at=NOW),
    ]
    value = recency_weighted_value(observations, NOW)
    assert value > 0.55 + 0.2


def test_equal_age_observations_average():
    observations = [
        WindowedObservation(value=0.2, observed_at=NOW - timedelta(days=30)),
        WindowedObservation(value=0.6, observed_at=NOW - timedelta(days=30)),
    ]
    assert recency_weighted_value(observations, NOW) == pytest.approx(0.4)


def test_resolve_features_replaces_windowed_values(make_vector):
    windows = {"payment_regularity": [WindowedObservation(value=0.5, observed_at=NOW)]}
    vector = make_vector(windows=windows)
    resolved = resolve_features(vector)
    assert resolved.features["payment_regularity"] == 0.5
    assert vector.features["payment_regularity"] == 0.95


# --- calibration ---


@pytest.mark.parametrize("calibration", [
    CalibrationSpec(),
    CalibrationSpec(kind="piecewise", knots=[(0.0, 0.0), (0.4, 0.2), (0.7, 0.8), (1.0, 1.0)]),
])
def test_calibration_is_monotone_and_bounded(calibration):
    values = [calibrate(x / 100, calibration) for x in range(101)]
    assert values == sorted(values)
    assert values[0] == pytest.approx(0.0)
    assert values[-1] == pytest.approx(1.0)


def test_non_monotone_knots_rejected():
    with pytest.raises(ValueError):
        CalibrationSpec(kind="piecewise", knots=[(0.0, 0.5), (1.0, 0.2)])


def test_score_range_endpoints():
    assert to_score_range(0.0) == 300
    assert to_score_range(1.0) == 850
    assert to_score_range(0.5) == 575


# --- factors ---


def test_aggregate_factors_ranked_with_tie_break():
    contributions = {
        "numeric": {"b_feature": 0.1, "a_feature": -0.1, "c_feature": 0.05},
        "narrative": {"c_feature": 0.05},
    }
    factors = aggregate_factors(contributions, {"numeric": 0.5, "narrative": 0.5})
    assert [f.category for f in factors] == ["a_feature", "b_feature", "c_feature"]
    assert factors[0].description_key == "a_feature.negative"
    assert sum(f.weight for f in factors) == pytest.approx(1.0, abs=1e-3)


# --- confidence ---


def test_disagreeing_signals_lower_confidence():
    base, penalty = calculate_base_confidence({"numeric": 0.9, "narrative": 0.5})
    assert penalty == pytest.approx(0.15)
    assert base == pytest.approx(0.80)


def test_mature_full_ensemble_confidence():
    adj = calculate_confidence_adjustment({"numeric": 0.8, "narrative": 0.75}, False, [], Phase.MATURE, None)
    assert adj.final_confidence == pytest.approx(0.95)


def test_collecting_and_partial_penalties_stack():
    adj = calculate_confidence_adjustment({"numeric": None, "narrative": 0.75}, True, ["numeric"], Phase.COLLECTING, None)
    assert adj.final_confidence == pytest.approx(0.95 * (1 - 0.15 - 0.05 - 0.25))


def test_unavailable_integrity_check_caps_confidence():
    verdict = IntegrityVerdict(
        subject_id="s",
        batch_id="b",
        outcome=IntegrityOutcome.FLAG,
        indicators=[AnomalyIndicator(name="integrity_check_unavailable", severity=0.0)],
        confidence=0.0,
        check_available=False,
    )
    adj = calculate_confidence_adjustment({"numeric": 0.8, "narrative": 0.8}, False, [], Phase.MATURE, verdict)
    assert adj.capped
    assert adj.final_confidence < HIGH_CONFIDENCE_CEILING


def test_preliminary_interval_is_wider():
    mature = score_interval(700, 0.9, Phase.MATURE)
    collecting = score_interval(700, 0.9, Phase.COLLECTING)
    assert mature == (678, 722)
    assert collecting[1] - collecting[0] > mature[1] - mature[0]


def test_interval_clipped_to_score_range():
    low, high = score_interval(845, 0.2, Phase.MATURE)
    assert high == 850
    assert low >= 300
