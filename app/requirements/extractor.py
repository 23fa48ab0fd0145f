from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, Sequence, Union

from app.core.config.scoring import get_scoring_int
from app.normalize.text import normalize_requirement_key, normalize_whitespace
from app.requirements.classify import (
    classify_requirement,
    extract_contextual_tools,
    extract_tool_mentions,
    has_experience_signal,
    has_gate_signal,
)
from app.requirements.labels import to_task_level_label
from app.schemas.requirements import (
    EVIDENCE_SOURCE_PRIORITY,
    AggregatedRequirement,
    ExtractedRequirement,
    PostingRequirementInput,
    RequirementEvidence,
    RequirementEvidenceSource,
    RequirementSourceText,
    RequirementType,
    clip_quote,
    requirement_type_rank,
)

MIN_SEGMENT_CHARS = 10
MAX_SEGMENT_CHARS = 280
MAX_GATES_PER_SEGMENT = 3

TOOL_CONFIDENCE = 0.86
GATE_CONFIDENCE = 0.9
EXPERIENCE_CONFIDENCE = 0.84
HARD_SKILL_CONFIDENCE = 0.8
SOFT_SIGNAL_CONFIDENCE = 0.7

_SEGMENT_SPLIT_RE = re.compile(r"\r?\n|[.;]\s+")
_BULLET_RE = re.compile(r"^[\s\-*•·▪●◦]+")
_WHITESPACE_RE = re.compile(r"\s+")

_HARD_SKILL_VERB_RE = re.compile(
    r"\b(build|create|deliver|design|develop|diagnose|document|execute|inspect|install|maintain|manage|"
    r"operate|optimize|perform|plan|prepare|support|test|troubleshoot|verify|analyze|coordinate|lead)\b",
    re.IGNORECASE,
)
_YEARS_RE = re.compile(r"\b(\d+\+?\s*(?:years|yrs?|year))\b", re.IGNORECASE)
_YEARS_OF_CONTEXT_RE = re.compile(
    r"\b\d+\+?\s*(?:years|yrs?|year)\s+of\s+([a-z][a-z0-9\s\-/]{2,60}?)\s+experience\b",
    re.IGNORECASE,
)
_ROLE_CONTEXT_RE = re.compile(r"\b(?:in|with|for)\s+([a-z0-9\s\-/,]{4,80})", re.IGNORECASE)

GateLabelBuilder = Callable[[re.Match[str]], str]


@dataclass(frozen=True)
class NamedGateRule:
    pattern: re.Pattern[str]
    build: GateLabelBuilder


def _fixed(label: str) -> GateLabelBuilder:
    return lambda _match: label


def _license_class_label(match: re.Match[str]) -> str:
    return f"Obtain Class {match.group(1).upper()} driver's licence before applying"


def _ontario_class_label(match: re.Match[str]) -> str:
    return f"Obtain {match.group(1).upper()} driver's licence before applying"


def _trade_code_label(match: re.Match[str]) -> str:
    return f"Obtain {match.group(1).upper()} trade certification before applying"


def _comptia_label(match: re.Match[str]) -> str:
    return f"Obtain CompTIA {match.group(1).capitalize()}+ certification before applying"


NAMED_GATE_RULES: tuple[NamedGateRule, ...] = (
    NamedGateRule(re.compile(r"\bred seal\b", re.IGNORECASE), _fixed("Obtain Red Seal certification before applying")),
    NamedGateRule(
        re.compile(r"\bcertificate of qualification\b|\bcoq\b", re.IGNORECASE),
        _fixed("Obtain Certificate of Qualification before applying"),
    ),
    NamedGateRule(
        re.compile(r"\b(\d{3}[a-jl-z])\b", re.IGNORECASE),
        _trade_code_label,
    ),
    NamedGateRule(re.compile(r"\bwhmis\b", re.IGNORECASE), _fixed("Obtain WHMIS certification before applying")),
    NamedGateRule(
        re.compile(r"\bcpr\b|\bbls\b|\bbasic life support\b", re.IGNORECASE),
        _fixed("Obtain CPR/BLS certification before applying"),
    ),
    NamedGateRule(re.compile(r"\bacls\b", re.IGNORECASE), _fixed("Obtain ACLS certification before applying")),
    NamedGateRule(re.compile(r"\bfirst aid\b", re.IGNORECASE), _fixed("Obtain First Aid certification before applying")),
    NamedGateRule(
        re.compile(r"\bnclex(?:-rn)?\b|\bregistered nurse\b", re.IGNORECASE),
        _fixed("Obtain NCLEX-RN registration before applying"),
    ),
    NamedGateRule(
        re.compile(r"\bclass\s+([1-5][a-z]?|[a-gm-z])\s+(?:driver'?s?\s+)?licen[cs]e\b", re.IGNORECASE),
        _license_class_label,
    ),
    NamedGateRule(
        re.compile(r"\b(az|dz|cdl)\s+(?:driver'?s?\s+)?licen[cs]e\b", re.IGNORECASE),
        _ontario_class_label,
    ),
    NamedGateRule(
        re.compile(r"\bcomptia\s+(a|network|security)\s*\+", re.IGNORECASE),
        _comptia_label,
    ),
    NamedGateRule(re.compile(r"\bpmp\b", re.IGNORECASE), _fixed("Obtain PMP certification before applying")),
    NamedGateRule(re.compile(r"\bccna\b", re.IGNORECASE), _fixed("Obtain CCNA certification before applying")),
    NamedGateRule(re.compile(r"\bcissp\b", re.IGNORECASE), _fixed("Obtain CISSP certification before applying")),
    NamedGateRule(
        re.compile(r"\baws certified\b", re.IGNORECASE),
        _fixed("Obtain AWS certification before applying"),
    ),
)

# Generic gate phrasing, used only when no named credential matches.
_GENERIC_GATE_LABELS: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"security clearance|\bclearance\b", re.IGNORECASE),
        "Obtain required security clearance for role eligibility",
    ),
    (re.compile(r"registration", re.IGNORECASE), "Complete required registration before role entry"),
    (
        re.compile(r"apprenticeship", re.IGNORECASE),
        "Complete apprenticeship registration and hour tracking requirements",
    ),
    (re.compile(r"licen[cs]e", re.IGNORECASE), "Obtain required license before independent work"),
    (re.compile(r"certif", re.IGNORECASE), "Obtain required certification with active status"),
)

_EXPERIENCE_TEMPLATES: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"portfolio|case stud(?:y|ies)|work samples?", re.IGNORECASE),
        "Build portfolio evidence with measurable, role-specific outcomes",
    ),
    (re.compile(r"shipped|production", re.IGNORECASE), "Demonstrate shipped production work and measurable impact"),
    (
        re.compile(r"managed\s+\$|managed budgets?", re.IGNORECASE),
        "Demonstrate ownership of budget targets with performance outcomes",
    ),
    (
        re.compile(r"clinical|rotations?", re.IGNORECASE),
        "Complete required clinical rotations and document supervised competencies",
    ),
)

_SOFT_TEMPLATES: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"communication|stakeholder", re.IGNORECASE),
        "Communicate technical updates to stakeholders with clear action ownership",
    ),
    (re.compile(r"leadership|\blead", re.IGNORECASE), "Lead cross-functional execution with documented delivery outcomes"),
    (
        re.compile(r"teamwork|collaboration", re.IGNORECASE),
        "Collaborate across teams to deliver role-critical milestones on time",
    ),
)


def _max_segments() -> int:
    return get_scoring_int("requirements.max_segments_per_text", 120)


def _max_evidence_quotes() -> int:
    return get_scoring_int("requirements.max_evidence_quotes", 5)


def _max_merged_evidence() -> int:
    return get_scoring_int("requirements.max_merged_evidence", 8)


def split_segments(text: str) -> list[str]:
    segments: list[str] = []
    for raw in _SEGMENT_SPLIT_RE.split(text or ""):
        segment = _WHITESPACE_RE.sub(" ", _BULLET_RE.sub("", raw)).strip()
        if MIN_SEGMENT_CHARS <= len(segment) <= MAX_SEGMENT_CHARS:
            segments.append(segment)
    return segments[: _max_segments()]


def named_gate_labels(segment: str) -> list[str]:
    labels: list[str] = []
    for rule in NAMED_GATE_RULES:
        match = rule.pattern.search(segment)
        if not match:
            continue
        label = rule.build(match)
        if label not in labels:
            labels.append(label)
        if len(labels) >= MAX_GATES_PER_SEGMENT:
            break
    return labels


def _generic_gate_label(segment: str) -> str | None:
    for pattern, label in _GENERIC_GATE_LABELS:
        if pattern.search(segment):
            return label
    return to_task_level_label(segment, "gate")


def _years_label(segment: str) -> str | None:
    match = _YEARS_RE.search(segment)
    if not match:
        return None
    years = match.group(1)
    of_context = _YEARS_OF_CONTEXT_RE.search(segment)
    if of_context:
        return f"Demonstrate {years} of {of_context.group(1).strip()} experience"
    role_context = _ROLE_CONTEXT_RE.search(segment)
    context = role_context.group(1).strip(" ,-/") if role_context else ""
    if context:
        return f"Demonstrate {years} of experience in {context}"
    return f"Demonstrate {years} of role-relevant experience"


def _experience_label(segment: str) -> str | None:
    years = _years_label(segment)
    if years:
        return years
    for pattern, label in _EXPERIENCE_TEMPLATES:
        if pattern.search(segment):
            return label
    return to_task_level_label(segment, "experience_signal")


def _hard_skill_label(segment: str) -> str | None:
    if not _HARD_SKILL_VERB_RE.search(segment):
        return None
    return to_task_level_label(segment, "hard_skill")


def _soft_label(segment: str) -> str | None:
    for pattern, label in _SOFT_TEMPLATES:
        if pattern.search(segment):
            return label
    return to_task_level_label(segment, "soft_signal")


def _build_requirement(
    requirement_type: RequirementType,
    raw_label: str | None,
    *,
    source: RequirementEvidenceSource,
    segment: str,
    posting_id: str | None,
    confidence: float,
) -> ExtractedRequirement | None:
    if not raw_label:
        return None
    label = raw_label.strip()
    normalized_key = normalize_requirement_key(label)
    if not label or not normalized_key:
        return None
    evidence = RequirementEvidence(
        source=source,
        quote=clip_quote(normalize_whitespace(segment)),
        posting_id=posting_id,
        confidence=confidence,
    )
    return ExtractedRequirement(
        type=requirement_type,
        label=label,
        normalized_key=normalized_key,
        confidence=confidence,
        evidence=evidence,
    )


def _segment_candidates(segment: str) -> list[tuple[RequirementType, str | None, float]]:
    candidates: list[tuple[RequirementType, str | None, float]] = []

    for tool in extract_tool_mentions(segment) + extract_contextual_tools(segment):
        candidates.append(("tool", to_task_level_label(tool, "tool"), TOOL_CONFIDENCE))

    classified = classify_requirement(segment)

    if classified == "gate" or has_gate_signal(segment):
        named = named_gate_labels(segment)
        if named:
            candidates.extend(("gate", label, GATE_CONFIDENCE) for label in named)
        else:
            candidates.append(("gate", _generic_gate_label(segment), GATE_CONFIDENCE))

    if classified == "experience_signal" or has_experience_signal(segment):
        candidates.append(("experience_signal", _experience_label(segment), EXPERIENCE_CONFIDENCE))

    candidates.append(("hard_skill", _hard_skill_label(segment), HARD_SKILL_CONFIDENCE))

    if classified == "soft_signal":
        candidates.append(("soft_signal", _soft_label(segment), SOFT_SIGNAL_CONFIDENCE))

    return candidates


def extract_requirements_from_text(source_text: RequirementSourceText) -> list[ExtractedRequirement]:
    output: list[ExtractedRequirement] = []
    seen: set[tuple[str, str]] = set()

    for segment in split_segments(source_text.text):
        for requirement_type, raw_label, confidence in _segment_candidates(segment):
            requirement = _build_requirement(
                requirement_type,
                raw_label,
                source=source_text.source,
                segment=segment,
                posting_id=source_text.posting_id,
                confidence=confidence,
            )
            if requirement is None:
                continue
            key = (requirement.type, requirement.normalized_key)
            if key in seen:
                continue
            seen.add(key)
            output.append(requirement)

    return output


@dataclass(slots=True)
class _Bucket:
    type: RequirementType
    label: str
    normalized_key: str
    frequency: int
    confidence: float
    rank: int
    posting_ids: set[str] = field(default_factory=set)
    evidence: list[RequirementEvidence] = field(default_factory=list)

    def add_evidence(self, items: Iterable[RequirementEvidence], cap: int) -> None:
        present = {entry.dedup_key() for entry in self.evidence}
        for item in items:
            if len(self.evidence) >= cap:
                return
            key = item.dedup_key()
            if key in present:
                continue
            present.add(key)
            self.evidence.append(item)

    def to_aggregated(self) -> AggregatedRequirement:
        return AggregatedRequirement(
            type=self.type,
            label=self.label,
            normalized_key=self.normalized_key,
            frequency=max(1, self.frequency),
            evidence=self.evidence,
        )


RequirementLike = Union[ExtractedRequirement, AggregatedRequirement]


def _aggregate_sort_key(row: AggregatedRequirement) -> tuple[int, int, str]:
    return (-row.frequency, requirement_type_rank(row.type), row.label.lower())


def aggregate_requirements(items: Sequence[RequirementLike]) -> list[AggregatedRequirement]:
    """Merge requirements by (type, normalized_key).

    Accepts extracted items or rows that were already aggregated, so feeding
    the output back in returns the same rows.
    """
    cap = _max_evidence_quotes()
    buckets: dict[tuple[str, str], _Bucket] = {}

    for item in items:
        if isinstance(item, AggregatedRequirement):
            evidence = list(item.evidence)
            confidence = item.best_confidence
            weight = max(1, item.frequency)
            posting_ids: set[str] = set()
        else:
            evidence = [item.evidence]
            confidence = item.confidence
            weight = 1
            posting_ids = {item.evidence.posting_id} if item.evidence.posting_id else set()

        key = (item.type, item.normalized_key)
        bucket = buckets.get(key)
        if bucket is None:
            bucket = _Bucket(
                type=item.type,
                label=item.label,
                normalized_key=item.normalized_key,
                frequency=weight,
                confidence=confidence,
                rank=0,
                posting_ids=set(posting_ids),
            )
            bucket.add_evidence(evidence, cap)
            buckets[key] = bucket
            continue

        if confidence > bucket.confidence:
            bucket.confidence = confidence
            bucket.label = item.label

        if posting_ids:
            fresh = posting_ids - bucket.posting_ids
            bucket.posting_ids |= fresh
            bucket.frequency += len(fresh)
        else:
            bucket.frequency += weight

        bucket.add_evidence(evidence, cap)

    rows = [bucket.to_aggregated() for bucket in buckets.values()]
    return sorted(rows, key=_aggregate_sort_key)


def extract_requirements_from_postings(
    postings: Sequence[PostingRequirementInput],
    source: RequirementEvidenceSource = "adzuna",
) -> list[AggregatedRequirement]:
    extracted: list[ExtractedRequirement] = []
    for posting in postings:
        extracted.extend(
            extract_requirements_from_text(
                RequirementSourceText(text=posting.description, source=source, posting_id=posting.posting_id)
            )
        )
    return aggregate_requirements(extracted)


def merge_aggregated_requirements(rows: Sequence[AggregatedRequirement]) -> list[AggregatedRequirement]:
    """Combine aggregated batches: frequencies add up and the more confident label wins."""
    cap = _max_merged_evidence()
    buckets: dict[tuple[str, str], _Bucket] = {}

    for row in rows:
        key = (row.type, row.normalized_key)
        bucket = buckets.get(key)
        if bucket is None:
            bucket = _Bucket(
                type=row.type,
                label=row.label,
                normalized_key=row.normalized_key,
                frequency=max(1, row.frequency),
                confidence=row.best_confidence,
                rank=0,
            )
            bucket.add_evidence(row.evidence, cap)
            buckets[key] = bucket
            continue

        bucket.frequency += max(1, row.frequency)
        if row.best_confidence > bucket.confidence:
            bucket.confidence = row.best_confidence
            bucket.label = row.label
        bucket.add_evidence(row.evidence, cap)

    return sorted((bucket.to_aggregated() for bucket in buckets.values()), key=_aggregate_sort_key)


def _source_rank(row: AggregatedRequirement) -> int:
    ranks = [EVIDENCE_SOURCE_PRIORITY.get(item.source, len(EVIDENCE_SOURCE_PRIORITY)) for item in row.evidence]
    return min(ranks, default=len(EVIDENCE_SOURCE_PRIORITY))


def merge_requirement_sources(
    user_rows: Sequence[AggregatedRequirement],
    market_rows: Sequence[AggregatedRequirement],
    baseline_rows: Sequence[AggregatedRequirement] = (),
) -> list[AggregatedRequirement]:
    """Merge user posting > market > baseline.

    Overlapping rows keep the label of the highest-priority source and list its
    evidence first. Baseline rows only fill requirement types that neither the
    user posting nor the market produced.
    """
    cap = _max_merged_evidence()
    buckets: dict[tuple[str, str], _Bucket] = {}

    ordered = sorted(list(user_rows) + list(market_rows), key=_source_rank)
    for row in ordered:
        key = (row.type, row.normalized_key)
        rank = _source_rank(row)
        bucket = buckets.get(key)
        if bucket is None:
            bucket = _Bucket(
                type=row.type,
                label=row.label,
                normalized_key=row.normalized_key,
                frequency=max(1, row.frequency),
                confidence=row.best_confidence,
                rank=rank,
            )
            bucket.add_evidence(row.evidence, cap)
            buckets[key] = bucket
            continue

        bucket.frequency += max(1, row.frequency)
        if rank == bucket.rank and row.best_confidence > bucket.confidence:
            bucket.confidence = row.best_confidence
            bucket.label = row.label
        bucket.add_evidence(row.evidence, cap)

    covered_types = {bucket.type for bucket in buckets.values()}
    for row in baseline_rows:
        if row.type in covered_types:
            continue
        key = (row.type, row.normalized_key)
        bucket = buckets.get(key)
        if bucket is None:
            bucket = _Bucket(
                type=row.type,
                label=row.label,
                normalized_key=row.normalized_key,
                frequency=max(1, row.frequency),
                confidence=row.best_confidence,
                rank=_source_rank(row),
            )
            buckets[key] = bucket
        else:
            bucket.frequency += max(1, row.frequency)
        bucket.add_evidence(row.evidence, cap)

    return sorted((bucket.to_aggregated() for bucket in buckets.values()), key=_aggregate_sort_key)


def sort_missing_requirements(rows: Iterable[AggregatedRequirement]) -> list[AggregatedRequirement]:
    """Frequency first; within a frequency tier gates lead, then type order, then label."""
    return sorted(
        rows,
        key=lambda row: (
            -row.frequency,
            0 if row.type == "gate" else 1,
            requirement_type_rank(row.type),
            row.label.lower(),
        ),
    )
