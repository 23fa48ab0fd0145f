from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Sequence

from app.core.config.scoring import get_scoring_float, get_scoring_int
from app.normalize.text import normalize_requirement_key, normalize_whitespace
from app.requirements.labels import to_task_level_label
from app.schemas.requirements import (
    ALLOWED_REQUIREMENT_TYPES,
    REQUIREMENT_TYPE_ORDER,
    ExtractedRequirement,
    PostingRequirementInput,
    RequirementEvidence,
    clip_quote,
)
from app.services import llm

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.62
MIN_CONFIDENCE = 0.4
MAX_CONFIDENCE = 0.95

REQUIREMENT_CUE_PATTERN = re.compile(
    r"\b(requirements?|required|must|preferred|qualifications?|experience with|experience in|proficien\w*|"
    r"familiarity|license|licence|certif\w*|clearance|registration|knowledge of|ability to)\b",
    re.IGNORECASE,
)
_SEGMENT_SPLIT_RE = re.compile(r"\r?\n|[.;]\s+")
_BULLET_RE = re.compile(r"^[\s\-*•]+")
_WHITESPACE_RE = re.compile(r"\s+")

SYSTEM_PROMPT = (
    "You normalize employer requirements from job listing segments. "
    "Return only grounded requirements from provided text. "
    "Never invent credentials, tools, or requirements not explicitly present."
)


@dataclass(frozen=True)
class RequirementSegment:
    segment_id: str
    posting_id: str
    text: str


@dataclass(slots=True)
class EnrichmentResult:
    status: str
    requirements: list[ExtractedRequirement] = field(default_factory=list)
    segments_sent: int = 0
    error: str | None = None


def _max_segments() -> int:
    return get_scoring_int("llm_enrichment.max_segments", 24)


def _max_requirements() -> int:
    return get_scoring_int("llm_enrichment.max_requirements", 80)


def _min_heuristic_confidence() -> float:
    return get_scoring_float("llm_enrichment.min_heuristic_confidence", 0.81)


def _comparable(value: str) -> str:
    return normalize_requirement_key(value)


def quote_matches_segment(segment_text: str, quote: str) -> bool:
    """Normalized substring match in either direction."""
    segment_key = _comparable(segment_text)
    quote_key = _comparable(quote)
    if not segment_key or not quote_key:
        return False
    return quote_key in segment_key or segment_key in quote_key


def _split(text: str) -> list[str]:
    min_length = get_scoring_int("llm_enrichment.min_segment_length", 24)
    max_length = get_scoring_int("llm_enrichment.max_segment_length", 260)
    parts: list[str] = []
    for raw in _SEGMENT_SPLIT_RE.split(text or ""):
        segment = _WHITESPACE_RE.sub(" ", _BULLET_RE.sub("", raw)).strip()
        if min_length <= len(segment) <= max_length:
            parts.append(segment)
    return parts


def build_segments(postings: Sequence[PostingRequirementInput]) -> list[RequirementSegment]:
    segments: list[RequirementSegment] = []
    for posting in postings:
        for index, text in enumerate(_split(posting.description), start=1):
            segments.append(
                RequirementSegment(segment_id=f"{posting.posting_id}:{index}", posting_id=posting.posting_id, text=text)
            )
    return segments


def pick_low_signal_segments(
    postings: Sequence[PostingRequirementInput],
    heuristic_extracted: Sequence[ExtractedRequirement],
) -> list[RequirementSegment]:
    coverage: dict[str, list[tuple[str, float]]] = {}
    for item in heuristic_extracted:
        posting_id = item.evidence.posting_id
        if not posting_id:
            continue
        coverage.setdefault(posting_id, []).append((item.evidence.quote, item.confidence))

    threshold = _min_heuristic_confidence()
    picked: list[RequirementSegment] = []
    for segment in build_segments(postings):
        if not REQUIREMENT_CUE_PATTERN.search(segment.text):
            continue
        covered = False
        best = 0.0
        for quote, confidence in coverage.get(segment.posting_id, []):
            if not quote_matches_segment(segment.text, quote):
                continue
            covered = True
            best = max(best, confidence)
        if covered and best >= threshold:
            continue
        picked.append(segment)
        if len(picked) >= _max_segments():
            break
    return picked


def _response_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "requirements": {
                "type": "array",
                "items": {
                    "type": "object",
                    "additionalProperties": False,
                    "properties": {
                        "segmentId": {"type": "string"},
                        "type": {"type": "string", "enum": list(REQUIREMENT_TYPE_ORDER)},
                        "label": {"type": "string"},
                        "quote": {"type": "string"},
                        "confidence": {"type": "number"},
                    },
                    "required": ["segmentId", "type", "label", "quote", "confidence"],
                },
            }
        },
        "required": ["requirements"],
    }


def _user_prompt(segments: Sequence[RequirementSegment]) -> str:
    return json.dumps(
        {
            "task": "Extract specific, task-level requirements from each segment.",
            "hard_rules": [
                "Use only provided segment text.",
                "Each output item must reference one segmentId.",
                "quote must be copied from that segment verbatim.",
                "label must be concrete and actionable (verb + object when possible).",
                "Prefer exact cert/license names when present (example: WHMIS, Red Seal, Class G driver license).",
                "Do not return vague labels like communication, leadership, mechanical.",
                f"Return at most {_max_requirements()} total requirements.",
            ],
            "segments": [
                {"segmentId": segment.segment_id, "postingId": segment.posting_id, "text": segment.text}
                for segment in segments
            ],
        }
    )


def _clamp_confidence(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if not math.isfinite(number):
        return DEFAULT_CONFIDENCE
    return max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, number))


def candidate_to_requirement(candidate: Any, segment: RequirementSegment) -> ExtractedRequirement | None:
    if not isinstance(candidate, dict):
        return None
    requirement_type = candidate.get("type")
    label = candidate.get("label")
    quote = candidate.get("quote")
    if requirement_type not in ALLOWED_REQUIREMENT_TYPES:
        return None
    if not isinstance(label, str) or not isinstance(quote, str):
        return None

    safe_label = to_task_level_label(label, requirement_type)
    if not safe_label:
        return None
    if not quote_matches_segment(segment.text, quote):
        return None
    normalized_key = normalize_requirement_key(safe_label)
    if not normalized_key:
        return None

    confidence = _clamp_confidence(candidate.get("confidence"))
    return ExtractedRequirement(
        type=requirement_type,
        label=safe_label,
        normalized_key=normalized_key,
        confidence=confidence,
        evidence=RequirementEvidence(
            source="adzuna",
            quote=clip_quote(normalize_whitespace(quote)),
            posting_id=segment.posting_id,
            confidence=confidence,
        ),
    )


def _fail_closed(status: str, error: Exception | str | None = None, *, segments_sent: int = 0) -> EnrichmentResult:
    """Enrichment never raises; every failure collapses to an empty result."""
    message = str(error) if error is not None else None
    if message:
        logger.warning("requirements_llm_enrichment_failed status=%s: %s", status, message)
    return EnrichmentResult(status=status, requirements=[], segments_sent=segments_sent, error=message)


def run_llm_enrichment(
    postings: Sequence[PostingRequirementInput],
    heuristic_extracted: Sequence[ExtractedRequirement],
) -> EnrichmentResult:
    if not llm.requirements_llm_enabled():
        return _fail_closed("disabled")

    try:
        segments = pick_low_signal_segments(postings, heuristic_extracted)
    except Exception as exc:  # noqa: BLE001
        return _fail_closed("error", exc)
    if not segments:
        return EnrichmentResult(status="skipped")

    try:
        payload = llm.json_completion(
            system_prompt=SYSTEM_PROMPT,
            user_prompt=_user_prompt(segments),
            json_schema=_response_schema(),
            schema_name="normalized_requirements",
            temperature=0.1,
        )
    except Exception as exc:  # noqa: BLE001 - any transport or parse failure
        return _fail_closed("error", exc, segments_sent=len(segments))

    candidates = payload.get("requirements")
    if not isinstance(candidates, list):
        return _fail_closed("error", "response is missing a requirements array", segments_sent=len(segments))

    by_id = {segment.segment_id: segment for segment in segments}
    output: list[ExtractedRequirement] = []
    seen: set[tuple[str, str, str]] = set()
    for candidate in candidates[: _max_requirements()]:
        segment_id = candidate.get("segmentId") if isinstance(candidate, dict) else None
        segment = by_id.get(segment_id) if isinstance(segment_id, str) else None
        if segment is None:
            continue
        extracted = candidate_to_requirement(candidate, segment)
        if extracted is None:
            continue
        key = (extracted.type, extracted.normalized_key, extracted.evidence.posting_id or "")
        if key in seen:
            continue
        seen.add(key)
        output.append(extracted)

    logger.info(
        "requirements_llm_enrichment_done segments=%s candidates=%s accepted=%s",
        len(segments),
        len(candidates),
        len(output),
    )
    return EnrichmentResult(status="success", requirements=output, segments_sent=len(segments))


def enrich_low_confidence_requirements(
    postings: Sequence[PostingRequirementInput],
    heuristic_extracted: Sequence[ExtractedRequirement],
) -> list[ExtractedRequirement]:
    return run_llm_enrichment(postings, heuristic_extracted).requirements
