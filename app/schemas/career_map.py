from __future__ import annotations

from typing import Any

from pydantic import Field

from .base import CamelModel
from .career_data import CountryCode, Currency


class OccupationMatch(CamelModel):
    occupation_id: str
    title: str
    region: CountryCode
    confidence: float = Field(ge=0.0, le=1.0)
    matched_by: str


class SkillMatch(CamelModel):
    skill_id: str
    name: str
    confidence: float = Field(ge=0.0, le=1.0)
    matched_by: str


class OccupationResolution(CamelModel):
    input: str
    best_match: OccupationMatch | None = None
    suggestions: list[OccupationMatch] = Field(default_factory=list)


class WageSnapshot(CamelModel):
    region: str
    low: float | None = None
    median: float | None = None
    high: float | None = None
    currency: Currency
    source: str
    source_url: str | None = None
    last_updated: str


class OccupationWithWage(CamelModel):
    occupation_id: str
    title: str
    region: CountryCode
    codes: dict[str, Any] = Field(default_factory=dict)
    source: str | None = None
    last_updated: str | None = None
    confidence: float | None = None
    wage: WageSnapshot | None = None


class OccupationSearchQuery(CamelModel):
    q: str
    region: CountryCode | None = None
    wage_region: str | None = None
    limit: int


class OccupationSearchResponse(CamelModel):
    query: OccupationSearchQuery
    count: int
    items: list[OccupationWithWage]


class SkillSearchResponse(CamelModel):
    q: str
    count: int
    items: list[SkillMatch]
