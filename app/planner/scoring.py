from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from app.core.config.scoring import get_scoring_float
from app.normalize.text import contains_normalized_term, normalize_text, similarity, tokenize
from app.planner.contract import SCORE_WEIGHTS
from app.schemas.career_data import (
    CountryCode,
    OccupationRequirementRow,
    OccupationRow,
    OccupationSkillRow,
    OccupationWageRow,
    OfficialLink,
    SkillRow,
    TradeRequirementRow,
)
from app.schemas.planner import MatchBreakdown, MissingSkill, PlannerInput, TimelineBucket
from app.schemas.requirements import AggregatedRequirement
from app.taxonomy.matcher import pick_best_wage

CANADA_PATTERN = re.compile(
    r"\b(canada|canadian|ontario|quebec|alberta|british columbia|manitoba|saskatchewan|nova scotia|"
    r"new brunswick|newfoundland|prince edward island|yukon|nunavut|northwest territories|toronto|"
    r"vancouver|montreal|calgary|ottawa|edmonton|winnipeg)\b"
)
CREDENTIAL_EVIDENCE_PATTERN = re.compile(
    r"\b(certif\w*|licen[cs]\w*|journey\w*|red seal|coq|comptia|csts|whmis|osha|first aid|cpr|ccna|cissp|pmp|"
    r"itil|aws certified|azure|gcp)\b"
)
CREDENTIAL_REQUIRED_PATTERN = re.compile(r"licen[cs]|certif|registration")
METRIC_PATTERN = re.compile(r"\b\d+%|\$\d[\d,]*|\b\d{2,}\b")

GENERIC_OCCUPATION_TOKENS = frozenset(
    {
        "and",
        "related",
        "service",
        "worker",
        "occupation",
        "manager",
        "supervisor",
        "other",
        "general",
        "except",
    }
)

BASELINE_SOFT_SKILLS = frozenset(
    {
        "active listening",
        "speaking",
        "reading comprehension",
        "critical thinking",
        "social perceptiveness",
        "judgment and decision making",
        "complex problem solving",
        "time management",
        "monitoring",
        "coordination",
        "writing",
    }
)

_TIMELINE_MONTHS: dict[str, int] = {
    "immediate": 1,
    "1_3_months": 3,
    "3_6_months": 6,
    "6_12_months": 12,
    "1_plus_year": 18,
}

_TIMELINE_RULES: tuple[tuple[re.Pattern[str], TimelineBucket], ...] = (
    (re.compile(r"\b(immediate\w*|asap|now|0 30)\b"), "immediate"),
    (re.compile(r"\b6 12\b"), "6_12_months"),
    (re.compile(r"\b(3 6|90)\b"), "3_6_months"),
    (re.compile(r"\b(1 plus|12 plus|18|24|year|years)\b"), "1_plus_year"),
    (re.compile(r"\b1 3\b"), "1_3_months"),
)

_LABEL_VERB_RE = re.compile(
    r"^(obtain|use|demonstrate|perform|complete|hold|pass|build|deliver|manage|maintain|apply|show)\s+",
    re.IGNORECASE,
)
_LABEL_SUFFIX_RE = re.compile(
    r"\s+(before applying|in role-relevant workflows|(tasks )?in production scenarios|with measurable outcomes|"
    r"certification or licensing proof|tasks in day-to-day work|experience in prior work|"
    r"during cross-functional execution|through documented collaboration outcomes)$",
    re.IGNORECASE,
)


def _rounded(value: float, decimals: int = 1) -> float:
    return round(value, decimals)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def infer_country(location: str | None) -> CountryCode:
    return "CA" if CANADA_PATTERN.search(normalize_text(location)) else "US"


def parse_timeline(value: str | None) -> TimelineBucket:
    text = normalize_text(value)
    for pattern, bucket in _TIMELINE_RULES:
        if pattern.search(text):
            return bucket
    return "1_3_months"


def timeline_months(bucket: TimelineBucket) -> int:
    return _TIMELINE_MONTHS.get(bucket, 18)


def education_rank(value: str | None) -> int:
    text = normalize_text(value)
    if not text:
        return 2
    if "doctor" in text or "phd" in text:
        return 6
    if "master" in text:
        return 5
    if "bachelor" in text:
        return 4
    if "associate" in text or "diploma" in text or "college" in text:
        return 3
    if "certificate" in text or "apprentice" in text:
        return 2
    if "high school" in text or "secondary" in text:
        return 1
    return 2


def has_credential_evidence(text: str | None) -> bool:
    return bool(CREDENTIAL_EVIDENCE_PATTERN.search(normalize_text(text)))


def extract_metric(text: str | None) -> str | None:
    match = METRIC_PATTERN.search(text or "")
    return match.group(0) if match else None


def matches_explicit_skill(explicit_skills: Sequence[str], term: str) -> bool:
    normalized_term = normalize_text(term)
    if not normalized_term:
        return False
    threshold = get_scoring_float("matching.explicit_skill_similarity", 0.6)
    for skill in explicit_skills:
        normalized_skill = normalize_text(skill)
        if not normalized_skill:
            continue
        if contains_normalized_term(normalized_skill, normalized_term):
            return True
        if contains_normalized_term(normalized_term, normalized_skill):
            return True
        if similarity(normalized_skill, normalized_term) >= threshold:
            return True
    return False


def detect_user_skills(skills: Iterable[SkillRow], match_text: str, explicit_skills: Sequence[str]) -> list[SkillRow]:
    """Reference skills named in the user's text or in their explicit skill list."""
    detected: list[SkillRow] = []
    for skill in skills:
        terms = [term for term in (normalize_text(item) for item in [skill.name, *skill.aliases]) if term]
        if any(
            contains_normalized_term(match_text, term) or matches_explicit_skill(explicit_skills, term)
            for term in terms
        ):
            detected.append(skill)
    return detected


def is_baseline_soft_skill(name: str) -> bool:
    return normalize_text(name) in BASELINE_SOFT_SKILLS


def prioritize_missing_skills(items: Sequence[MissingSkill]) -> list[MissingSkill]:
    """Occupation-specific skills ahead of generic soft skills, heavier weights first."""
    return sorted(
        items,
        key=lambda item: (1 if is_baseline_soft_skill(item.skill_name) else 0, -item.weight, item.skill_name.lower()),
    )


def requirement_core_phrase(label: str) -> str:
    core = _LABEL_SUFFIX_RE.sub("", _LABEL_VERB_RE.sub("", (label or "").strip()))
    return core.strip()


def is_requirement_met(requirement: AggregatedRequirement, user_text: str) -> bool:
    core = requirement_core_phrase(requirement.label)
    if not core:
        return False
    return contains_normalized_term(user_text, core)


@dataclass(slots=True)
class UserProfile:
    """Per-request view of the user, computed once and shared by every candidate."""

    current_role: str
    target_role: str
    not_sure_mode: bool
    skill_ids: frozenset[str]
    skill_names: tuple[str, ...]
    education_rank: int
    has_credential: bool
    timeline: TimelineBucket
    experience_tokens: frozenset[str]
    context_tokens: frozenset[str]


def build_user_profile(payload: PlannerInput, skills: Sequence[SkillRow]) -> UserProfile:
    explicit = list(payload.skills)
    match_text = " ".join(
        [payload.current_role, payload.target_role or "", payload.experience_text, payload.education or "", *explicit]
    )
    detected = detect_user_skills(skills, match_text, explicit)
    context_tokens = frozenset(
        token
        for token in tokenize(f"{payload.current_role} {payload.experience_text}")
        if len(token) >= 4 and token not in GENERIC_OCCUPATION_TOKENS
    )
    return UserProfile(
        current_role=payload.resolved_current_role or payload.current_role,
        target_role="" if payload.not_sure_mode else (payload.resolved_target_role or payload.target_role or ""),
        not_sure_mode=payload.not_sure_mode,
        skill_ids=frozenset(skill.id for skill in detected),
        skill_names=tuple(skill.name for skill in detected),
        education_rank=education_rank(payload.education),
        has_credential=has_credential_evidence(f"{payload.experience_text} {' '.join(explicit)}"),
        timeline=parse_timeline(payload.timeline),
        experience_tokens=frozenset(tokenize(payload.experience_text)),
        context_tokens=context_tokens,
    )


def role_seed_score(profile: UserProfile, title: str) -> float:
    current = similarity(profile.current_role, title)
    if profile.not_sure_mode:
        return current
    target = similarity(profile.target_role, title)
    blend_target = get_scoring_float("planner.role_blend.target", 0.65)
    blend_current = get_scoring_float("planner.role_blend.current", 0.35)
    return _clamp(target * blend_target + current * blend_current, 0.0, 1.0)


@dataclass(slots=True)
class RankedMatch:
    occupation_id: str
    title: str
    region: CountryCode
    score: int
    role_proximity: float
    skill_overlap_ratio: float
    breakdown: MatchBreakdown
    top_reasons: list[str]
    missing_skills: list[MissingSkill]
    matched_skills: list[str]
    wage: OccupationWageRow | None
    regulated: bool
    transition_months: int
    official_links: list[OfficialLink] = field(default_factory=list)
    context_keyword_hits: int = 0
    passes_strict: bool = False


def _significant_tokens(title: str) -> list[str]:
    return [token for token in tokenize(title) if len(token) >= 4 and token not in GENERIC_OCCUPATION_TOKENS]


def score_occupation(
    occupation: OccupationRow,
    edges: Sequence[OccupationSkillRow],
    profile: UserProfile,
    *,
    requirement: OccupationRequirementRow | None,
    trade: TradeRequirementRow | None,
    wages: Sequence[OccupationWageRow],
    skill_names: dict[str, str],
) -> RankedMatch:
    """Five-factor weighted score of one occupation against the user profile.

    Components are rounded to one decimal before summing, and ``score`` is the
    rounded sum, so the same inputs always give the same integer.
    """
    required_rank = education_rank(
        f"{requirement.education or ''} {requirement.notes or ''}" if requirement is not None else ""
    )
    if profile.education_rank >= required_rank:
        education_alignment = 1.0
    else:
        education_alignment = _clamp(1 - (required_rank - profile.education_rank) * 0.25, 0.2, 1.0)

    dot = 0.0
    occupation_norm = 0.0
    for edge in edges:
        weight = float(edge.weight)
        occupation_norm += weight**2
        if edge.skill_id in profile.skill_ids:
            dot += weight
    skill_overlap = 0.0
    if occupation_norm > 0:
        skill_overlap = _clamp(dot / (occupation_norm * max(1, len(profile.skill_ids))) ** 0.5, 0.0, 1.0)

    current_similarity = similarity(profile.current_role, occupation.title)
    target_similarity = similarity(profile.target_role, occupation.title)
    experience_similarity = role_seed_score(profile, occupation.title)
    role_proximity = max(current_similarity, target_similarity)

    title_tokens = _significant_tokens(occupation.title)
    has_experience_keyword = any(token in profile.experience_tokens for token in title_tokens)
    context_keyword_hits = sum(1 for token in title_tokens if token in profile.context_tokens)

    cert_required = (
        trade is not None
        or bool(requirement is not None and requirement.certs_licenses)
        or bool(requirement is not None and CREDENTIAL_REQUIRED_PATTERN.search(normalize_text(requirement.notes)))
    )
    if not cert_required:
        cert_alignment = 1.0
    elif profile.has_credential:
        cert_alignment = get_scoring_float("planner.certification.required_with_evidence", 0.9)
    else:
        cert_alignment = get_scoring_float("planner.certification.required_without_evidence", 0.2)

    raw_missing = sorted(
        (
            MissingSkill(
                skill_id=edge.skill_id,
                skill_name=skill_names.get(edge.skill_id, "Unknown skill"),
                weight=float(edge.weight),
            )
            for edge in edges
            if edge.skill_id not in profile.skill_ids
        ),
        key=lambda item: (-item.weight, item.skill_name.lower()),
    )
    missing_skills = prioritize_missing_skills(raw_missing)[:7]

    missing_cert_months = get_scoring_float("planner.certification.missing_cert_months", 6)
    estimated_months = max(
        1,
        round(
            sum(item.weight * 4 for item in raw_missing[:4])
            + (missing_cert_months if cert_required and not profile.has_credential else 0)
        ),
    )
    available_months = timeline_months(profile.timeline)
    if estimated_months <= available_months:
        timeline_score = 1.0
    else:
        timeline_score = _clamp(1 - (estimated_months - available_months) / (available_months + 6), 0.05, 1.0)

    breakdown = MatchBreakdown(
        skill_overlap=_rounded(skill_overlap * SCORE_WEIGHTS["skill_overlap"]),
        experience_similarity=_rounded(experience_similarity * SCORE_WEIGHTS["experience_similarity"]),
        education_alignment=_rounded(education_alignment * SCORE_WEIGHTS["education_alignment"]),
        certification_gap=_rounded(cert_alignment * SCORE_WEIGHTS["certification_gap"]),
        timeline_feasibility=_rounded(timeline_score * SCORE_WEIGHTS["timeline_feasibility"]),
    )
    score = int(round(breakdown.total))

    top_reasons = [
        "Strong weighted skill overlap with this occupation."
        if skill_overlap >= 0.6
        else f"Largest gap is {missing_skills[0].skill_name if missing_skills else 'specialized skill depth'}.",
        "Experience adjacency indicates a realistic transition path."
        if experience_similarity >= 0.55
        else "Title similarity is moderate; transition is possible with focused positioning.",
        "Certification/licensing evidence is currently missing."
        if cert_required and not profile.has_credential
        else "Certification requirement is currently acceptable.",
    ]

    links: list[OfficialLink] = list(trade.official_links) if trade is not None else []
    if trade is not None and trade.source_url:
        links.append(OfficialLink(label=f"{trade.source} source", url=trade.source_url))

    lexical_floor = get_scoring_float("planner.strict_lexical_relevance", 0.08)
    skill_floor = get_scoring_float("planner.strict_skill_signal", 0.04)
    discovery_floor = get_scoring_float("planner.strict_discovery_role_proximity", 0.05)
    has_lexical_relevance = max(current_similarity, target_similarity, experience_similarity) >= lexical_floor
    has_skill_signal = skill_overlap >= skill_floor
    if profile.not_sure_mode:
        passes_strict = (
            has_lexical_relevance
            or has_experience_keyword
            or (has_skill_signal and role_proximity >= discovery_floor)
        )
    else:
        passes_strict = has_lexical_relevance or has_skill_signal

    return RankedMatch(
        occupation_id=occupation.id,
        title=occupation.title,
        region=occupation.region,
        score=score,
        role_proximity=role_proximity,
        skill_overlap_ratio=skill_overlap,
        breakdown=breakdown,
        top_reasons=top_reasons,
        missing_skills=missing_skills,
        matched_skills=[
            skill_names.get(edge.skill_id, "Unknown skill") for edge in edges if edge.skill_id in profile.skill_ids
        ][:8],
        wage=pick_best_wage(wages, occupation.region),
        regulated=cert_required,
        transition_months=estimated_months,
        official_links=links[:6],
        context_keyword_hits=context_keyword_hits,
        passes_strict=passes_strict,
    )


def is_relevant_recommendation(match: RankedMatch, not_sure_mode: bool) -> bool:
    if match.score < get_scoring_float("planner.min_recommendation_score", 32):
        return False
    if not_sure_mode:
        return (
            match.context_keyword_hits > 0
            or match.role_proximity >= get_scoring_float("planner.min_discovery_role_proximity", 0.11)
            or match.skill_overlap_ratio >= get_scoring_float("planner.min_discovery_skill_overlap", 0.06)
        )
    return match.role_proximity >= get_scoring_float(
        "planner.min_targeted_role_proximity", 0.16
    ) or match.skill_overlap_ratio >= get_scoring_float("planner.min_targeted_skill_overlap", 0.08)


def rank_candidates(matches: Sequence[RankedMatch], not_sure_mode: bool) -> list[RankedMatch]:
    """Strict matches first; the loose pass only backfills, or stands in when strict is empty."""
    loose = sorted(matches, key=lambda item: (-item.score, item.title.lower()))
    strict = [item for item in loose if item.passes_strict]
    if not strict:
        return loose

    strict_ids = {item.occupation_id for item in strict}
    rest = [item for item in loose if item.occupation_id not in strict_ids]
    if not not_sure_mode:
        return strict + rest

    keyword_hits = sorted(
        (item for item in rest if item.context_keyword_hits > 0),
        key=lambda item: (-item.context_keyword_hits, -item.score, item.title.lower()),
    )
    hit_ids = {item.occupation_id for item in keyword_hits}
    return strict + keyword_hits + [item for item in rest if item.occupation_id not in hit_ids]
