"""
TrustScore Engine - Explainability
==================================

Turns a record's ranked factors into a bounded, localized explanation.
Impacts are quantised before ranking and templating so near-identical inputs
produce identical wording. Every factor that moved the score is eligible,
however small. The factor list is selected once and every language renders
that same list.
"""

from typing import Dict, List, Literal, NamedTuple, Optional

from .config import (
    CHANGE_NOISE_THRESHOLD,
    DEFAULT_LANGUAGE,
    IMPACT_QUANTUM,
    SUPPORTED_LANGUAGES,
    TOP_FACTORS_COUNT,
)
from .localization import ACTION_CATALOG, GENERIC_ACTION, catalog, label_for, score_band
from .schemas import (
    ChangeExplanation,
    Explanation,
    ExplanationFactor,
    FactorDelta,
    Recommendation,
    ScoringFactor,
    TrustScoreRecord,
)

STRONG_IMPACT = 0.08
MODERATE_IMPACT = 0.03


class SelectedFactor(NamedTuple):
    category: str
    impact: float  # quantised
    direction: Literal["positive", "negative"]


def quantize(impact: float, quantum: float = IMPACT_QUANTUM) -> float:
    return round(round(impact / quantum) * quantum, 6)


def impact_level(impact: float) -> Literal["strong", "moderate", "minor"]:
    magnitude = abs(impact)
    if magnitude >= STRONG_IMPACT:
        return "strong"
    elif magnitude >= MODERATE_IMPACT:
        return "moderate"
    return "minor"


def select_top_factors(
    factors: List[ScoringFactor],
    num_factors: int = TOP_FACTORS_COUNT,
) -> List[SelectedFactor]:
    """
    Keep the top ``num_factors`` nonzero factors.

    Ranking uses the quantised |impact| with category as the tie-break, so
    noise below the quantum never reorders the list. Direction comes from
    the unrounded impact.
    """
    selected = [
        SelectedFactor(f.category, quantize(f.impact), "positive" if f.impact > 0 else "negative")
        for f in factors
        if f.impact != 0.0
    ]
    selected.sort(key=lambda s: (-abs(s.impact), s.category))
    return selected[:num_factors]


def render_factor(language: str, rank: int, factor: SelectedFactor) -> ExplanationFactor:
    messages = catalog(language)
    level = impact_level(factor.impact)
    magnitude = messages["magnitude"][level]

    templates = messages["factors"].get(factor.category)
    if templates is not None:
        sentence = templates[factor.direction].format(magnitude=magnitude)
    else:
        sentence = messages["generic_factor"][factor.direction].format(
            label=label_for(language, factor.category), magnitude=magnitude,
        )

    return ExplanationFactor(
        rank=rank,
        category=factor.category,
        impact=factor.impact,
        direction=factor.direction,
        magnitude=level,
        sentence=sentence,
    )


def build_recommendations(language: str, top: List[SelectedFactor]) -> List[Recommendation]:
    """One action for every negative factor in the selection."""
    messages = catalog(language)
    recommendations: List[Recommendation] = []

    for factor in top:
        if factor.direction != "negative":
            continue
        action_key, expected, difficulty = ACTION_CATALOG.get(factor.category, GENERIC_ACTION)
        recommendations.append(Recommendation(
            category=factor.category,
            action_key=action_key,
            text=messages["actions"][action_key].format(label=label_for(language, factor.category)),
            expected_impact=expected,
            difficulty=difficulty,
            difficulty_label=messages["difficulty"][difficulty.value],
        ))

    return recommendations


def generate_summary(language: str, score: int, rendered: List[ExplanationFactor]) -> str:
    messages = catalog(language)
    band = messages["bands"][score_band(score)]
    summary = messages["summary"].format(score=score, band=band)
    if rendered:
        return f"{summary} {messages['summary_main_factor'].format(factor=rendered[0].sentence)}"
    return f"{summary} {messages['no_factors']}"


def render_explanation(
    record: TrustScoreRecord,
    top: List[SelectedFactor],
    language: str,
) -> Explanation:
    messages = catalog(language)
    rendered = [render_factor(language, rank, factor) for rank, factor in enumerate(top, start=1)]
    notes = [messages["notes"][flag.value] for flag in record.flags if flag.value in messages["notes"]]

    return Explanation(
        record_id=record.record_id,
        subject_id=record.subject_id,
        language=language,
        score=record.score,
        model_version=record.model_version,
        summary=generate_summary(language, record.score, rendered),
        factors=rendered,
        recommendations=build_recommendations(language, top),
        notes=notes,
    )


def explain(record: TrustScoreRecord, language: str = DEFAULT_LANGUAGE) -> Explanation:
    """Explanation of one record in one language (at most five factors)."""
    catalog(language)
    return render_explanation(record, select_top_factors(record.factors), language)


def explain_all(record: TrustScoreRecord) -> Dict[str, Explanation]:
    """Every supported language, rendered from one factor selection."""
    top = select_top_factors(record.factors)
    return {language: render_explanation(record, top, language) for language in SUPPORTED_LANGUAGES}


def explain_change(
    previous: TrustScoreRecord,
    current: TrustScoreRecord,
    language: str = DEFAULT_LANGUAGE,
    noise_threshold: float = CHANGE_NOISE_THRESHOLD,
) -> ChangeExplanation:
    """Factor-level delta between two consecutive records of one subject."""
    if previous.subject_id != current.subject_id:
        raise ValueError("Change explanations compare records of the same subject")
    messages = catalog(language)

    before = {f.category: quantize(f.impact) for f in previous.factors}
    after = {f.category: quantize(f.impact) for f in current.factors}

    changes: List[FactorDelta] = []
    for category in sorted(set(before) | set(after)):
        old, new = before.get(category, 0.0), after.get(category, 0.0)
        delta = round(new - old, 6)
        if abs(delta) <= noise_threshold:
            continue
        template = messages["change"]["improved" if delta > 0 else "worsened"]
        changes.append(FactorDelta(
            category=category,
            previous_impact=old,
            current_impact=new,
            delta=delta,
            sentence=template.format(label=label_for(language, category)),
        ))
    changes.sort(key=lambda d: (-abs(d.delta), d.category))

    score_delta = current.score - previous.score
    if score_delta > 0:
        summary = messages["change"]["up"].format(delta=score_delta)
    elif score_delta < 0:
        summary = messages["change"]["down"].format(delta=-score_delta)
    else:
        summary = messages["change"]["same"]

    return ChangeExplanation(
        subject_id=current.subject_id,
        language=language,
        previous_record_id=previous.record_id,
        current_record_id=current.record_id,
        score_delta=score_delta,
        summary=summary,
        changes=changes,
    )


def supported_language(language: Optional[str]) -> str:
    language = (language or DEFAULT_LANGUAGE).lower()
    if language not in SUPPORTED_LANGUAGES:
        raise ValueError(f"Unsupported language: {language!r}")
    return language
