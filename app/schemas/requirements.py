from __future__ import annotations

from typing import Any, Literal

from pydantic import ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .base import CamelModel

RequirementType = Literal["gate", "tool", "experience_signal", "soft_signal", "hard_skill"]
RequirementEvidenceSource = Literal["user_posting", "adzuna", "onet"]

# Tie-break order; gate sorts first.
REQUIREMENT_TYPE_ORDER: tuple[RequirementType, ...] = (
    "gate",
    "tool",
    "experience_signal",
    "soft_signal",
    "hard_skill",
)
ALLOWED_REQUIREMENT_TYPES = frozenset(REQUIREMENT_TYPE_ORDER)

# Merge precedence when sources overlap.
EVIDENCE_SOURCE_PRIORITY: dict[str, int] = {"user_posting": 0, "adzuna": 1, "onet": 2}

MAX_QUOTE_CHARS = 220


def requirement_type_rank(value: str) -> int:
    try:
        return REQUIREMENT_TYPE_ORDER.index(value)  # type: ignore[arg-type]
    except ValueError:
        return len(REQUIREMENT_TYPE_ORDER)


def clip_quote(value: str) -> str:
    """Leading slice of the source text, so a clipped quote is still a verbatim substring."""
    return value[:MAX_QUOTE_CHARS]


class RequirementEvidence(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    source: RequirementEvidenceSource
    quote: str = Field(min_length=1, max_length=MAX_QUOTE_CHARS)
    posting_id: str | None = None
    confidence: float = Field(ge=0.0, le=1.0)

    @field_validator("confidence")
    @classmethod
    def _round_confidence(cls, value: float) -> float:
        return round(float(value), 3)

    def dedup_key(self) -> tuple[str, str, str]:
        return (self.source, self.quote, self.posting_id or "")


class ExtractedRequirement(CamelModel):
    type: RequirementType
    label: str = Field(min_length=1)
    normalized_key: str = Field(min_length=1)
    confidence: float = Field(ge=0.0, le=1.0)
    evidence: RequirementEvidence


class AggregatedRequirement(CamelModel):
    type: RequirementType
    label: str = Field(min_length=1)
    normalized_key: str = Field(min_length=1)
    frequency: int = Field(ge=1)
    evidence: list[RequirementEvidence] = Field(default_factory=list, max_length=8)

    @property
    def best_confidence(self) -> float:
        return max((item.confidence for item in self.evidence), default=0.0)

    def to_row(self) -> dict[str, Any]:
        """Persisted row shape."""
        return {
            "type": self.type,
            "label": self.label,
            "normalized_key": self.normalized_key,
            "evidence": [item.model_dump(by_alias=True, exclude_none=True) for item in self.evidence],
            "frequency": max(1, self.frequency),
        }


class RequirementSourceText(CamelModel):
    text: str
    source: RequirementEvidenceSource
    posting_id: str | None = None


class PostingRequirementInput(CamelModel):
    posting_id: str
    description: str


class RequirementExtractRequest(CamelModel):
    text: str = Field(min_length=1, max_length=20000)
    source: RequirementEvidenceSource = "user_posting"
    posting_id: str | None = None


class RequirementExtractResponse(CamelModel):
    count: int
    requirements: list[AggregatedRequirement] = Field(default_factory=list)
