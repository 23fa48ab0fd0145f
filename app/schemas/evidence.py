from __future__ import annotations

from datetime import datetime

from pydantic import Field

from .base import CamelModel
from .requirements import AggregatedRequirement


class EvidenceQuery(CamelModel):
    role: str
    location: str
    country: str


class EvidenceResult(CamelModel):
    query_id: int | None = None
    query: EvidenceQuery
    market_requirements: list[AggregatedRequirement] = Field(default_factory=list)
    user_posting_requirements: list[AggregatedRequirement] = Field(default_factory=list)
    used_adzuna: bool = False
    used_cache: bool = False
    postings_count: int = 0
    baseline_only: bool = True
    fetched_at: datetime | None = None
    partial: bool = False
