from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any, Literal, Mapping

from app.core.config.scoring import get_scoring_int, get_scoring_value

if TYPE_CHECKING:
    from app.schemas.planner import CareerPlannerAnalysis

ScoreBand = Literal["strong", "moderate", "weak"]

SCORE_TOTAL = 100

_DEFAULT_WEIGHTS: dict[str, int] = {
    "skill_overlap": 40,
    "experience_similarity": 25,
    "education_alignment": 10,
    "certification_gap": 15,
    "timeline_feasibility": 10,
}

FORBIDDEN_FILLER_PHRASES: tuple[str, ...] = (
    "reframed to highlight",
    "optimized for ats",
    "industry-standard salary is",
)


class ScoreWeightsError(RuntimeError):
    """Configured score weights do not add up to the fixed total."""


def validate_score_weights(weights: Mapping[str, Any]) -> list[str]:
    errors: list[str] = []
    values: list[float] = []
    for key, value in weights.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value) or value < 0:
            errors.append(f'Score weight "{key}" must be a non-negative finite number.')
            continue
        values.append(float(value))
    total = sum(values)
    if len(values) == len(weights) and total != SCORE_TOTAL:
        errors.append(f"Score weights must sum to {SCORE_TOTAL}, received {total:g}.")
    missing = [key for key in _DEFAULT_WEIGHTS if key not in weights]
    if missing:
        errors.append(f"Score weights are missing: {', '.join(missing)}.")
    return errors


def load_score_weights() -> dict[str, int]:
    configured = get_scoring_value("planner.weights", None)
    if configured is None:
        return dict(_DEFAULT_WEIGHTS)
    if not isinstance(configured, dict):
        raise ScoreWeightsError("planner.weights must be a mapping.")
    errors = validate_score_weights(configured)
    if errors:
        raise ScoreWeightsError(" ".join(errors))
    return {key: int(configured[key]) for key in _DEFAULT_WEIGHTS}


SCORE_WEIGHTS: dict[str, int] = load_score_weights()


def score_band(score: float) -> ScoreBand:
    if score >= get_scoring_int("planner.score_bands.strong", 75):
        return "strong"
    if score >= get_scoring_int("planner.score_bands.moderate", 50):
        return "moderate"
    return "weak"


def contains_forbidden_filler(value: str) -> bool:
    lowered = (value or "").lower()
    return any(phrase in lowered for phrase in FORBIDDEN_FILLER_PHRASES)


def validate_planner_report(analysis: "CareerPlannerAnalysis") -> list[str]:
    """Contract checks over a generated analysis. An empty list means it is valid."""
    report = analysis.report
    errors = validate_score_weights(SCORE_WEIGHTS)

    snapshot = report.compatibility_snapshot
    if not isinstance(snapshot.score, int):
        errors.append("Compatibility snapshot score must be an integer.")
    if snapshot.score < 0 or snapshot.score > SCORE_TOTAL:
        errors.append(f"Compatibility snapshot score must be between 0 and {SCORE_TOTAL}.")
    if snapshot.band != score_band(snapshot.score):
        errors.append("Compatibility snapshot band does not match its score.")

    breakdown_total = sum(snapshot.breakdown.as_dict().values())
    if round(breakdown_total) != snapshot.score:
        errors.append("Compatibility snapshot score must equal the rounded breakdown total.")
    for key, value in snapshot.breakdown.as_dict().items():
        if value < 0 or value > SCORE_WEIGHTS[key]:
            errors.append(f'Breakdown component "{key}" is outside 0..{SCORE_WEIGHTS[key]}.')

    for index, item in enumerate(report.resume_reframe):
        if contains_forbidden_filler(item.after):
            errors.append(f"Resume reframe item {index + 1} includes forbidden filler phrasing.")

    for index, career in enumerate(report.suggested_careers):
        if not career.occupation_id.strip():
            errors.append(f"Suggested career {index + 1} is missing occupationId.")

    for index, item in enumerate(report.roadmap):
        if item.time_estimate_hours <= 0:
            errors.append(f"Roadmap item {index + 1} must include time_estimate_hours > 0.")

    return errors
