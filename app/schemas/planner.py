from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .base import CamelModel
from .career_data import OfficialLink
from .career_map import OccupationResolution
from .requirements import AggregatedRequirement

TimelineBucket = Literal["immediate", "1_3_months", "3_6_months", "6_12_months", "1_plus_year"]
RoadmapPhase = Literal["immediate", "short_term", "medium_term"]
Difficulty = Literal["easy", "medium", "hard"]
CareerDifficulty = Literal["easy", "moderate", "hard"]
ScoreBand = Literal["strong", "moderate", "weak"]


class PlannerInput(CamelModel):
    current_role: str = ""
    target_role: str | None = None
    not_sure_mode: bool = False
    skills: list[str] = Field(default_factory=list)
    experience_text: str = ""
    location: str | None = None
    timeline: str | None = None
    education: str | None = None
    user_posting_text: str | None = None
    use_market_evidence: bool = True
    # Reference titles the free-text roles resolved to. They drive role similarity;
    # skill detection reads only the text the user wrote.
    resolved_current_role: str | None = None
    resolved_target_role: str | None = None

    @field_validator("skills", mode="before")
    @classmethod
    def _skills(cls, value: object) -> list[str]:
        if not isinstance(value, list):
            return []
        return [item.strip() for item in value if isinstance(item, str) and item.strip()]


class MatchBreakdown(BaseModel):
    """Five scaled components; each is capped by its configured weight."""

    skill_overlap: float = 0.0
    experience_similarity: float = 0.0
    education_alignment: float = 0.0
    certification_gap: float = 0.0
    timeline_feasibility: float = 0.0

    def as_dict(self) -> dict[str, float]:
        return {
            "skill_overlap": self.skill_overlap,
            "experience_similarity": self.experience_similarity,
            "education_alignment": self.education_alignment,
            "certification_gap": self.certification_gap,
            "timeline_feasibility": self.timeline_feasibility,
        }

    @property
    def total(self) -> float:
        return sum(self.as_dict().values())


class MissingSkill(CamelModel):
    skill_id: str
    skill_name: str
    weight: float


class CompatibilitySnapshot(CamelModel):
    score: int = Field(ge=0, le=100)
    band: ScoreBand
    breakdown: MatchBreakdown
    top_reasons: list[str] = Field(default_factory=list)


class SalaryRange(CamelModel):
    low: float | None = None
    median: float | None = None
    high: float | None = None


class NativeSalary(SalaryRange):
    currency: Literal["USD", "CAD"]
    source_name: str
    source_url: str | None = None
    as_of_date: str
    region: str


class FxConversion(CamelModel):
    rate: float
    source: str
    as_of_date: str


class Salary(CamelModel):
    usd: SalaryRange | None = None
    native: NativeSalary | None = None
    conversion: FxConversion | None = None


class SuggestedCareer(CamelModel):
    occupation_id: str
    title: str
    score: int
    breakdown: MatchBreakdown
    salary: Salary
    difficulty: CareerDifficulty
    transition_time: str
    regulated: bool
    official_links: list[OfficialLink] = Field(default_factory=list)
    top_reasons: list[str] = Field(default_factory=list)


class SkillGap(CamelModel):
    skill_id: str
    skill_name: str
    weight: float
    difficulty: Difficulty
    how_to_close: list[str] = Field(default_factory=list)


class RoadmapItem(CamelModel):
    id: str
    phase: RoadmapPhase
    title: str
    time_estimate_hours: int = Field(gt=0)
    difficulty: Difficulty
    why_it_matters: str
    action: str


class ResumeReframe(CamelModel):
    before: str
    after: str


class ResourceLink(CamelModel):
    label: str
    url: str
    type: Literal["official", "curated"] = "official"


class TargetRequirements(CamelModel):
    occupation_id: str
    education: str | None = None
    certifications: list[str] = Field(default_factory=list)
    gates: list[AggregatedRequirement] = Field(default_factory=list)
    hard_skills: list[AggregatedRequirement] = Field(default_factory=list)
    tools: list[AggregatedRequirement] = Field(default_factory=list)
    experience_signals: list[AggregatedRequirement] = Field(default_factory=list)
    apprenticeship_hours: int | None = None
    exam_required: bool | None = None
    regulated: bool = False
    sources: list[OfficialLink] = Field(default_factory=list)


class MarketEvidenceSummary(CamelModel):
    enabled: bool
    used_adzuna: bool = False
    used_cache: bool = False
    baseline_only: bool = True
    partial: bool = False
    postings_count: int = 0
    fetched_at: datetime | None = None
    query_id: int | None = None
    user_posting_requirements: int = 0
    market_requirements: int = 0
    baseline_requirements: int = 0


class Bottleneck(CamelModel):
    title: str
    why: str
    next_action: str
    estimated_effort: str
    requirement_type: str | None = None


class DataTransparency(CamelModel):
    inputs_used: list[str] = Field(default_factory=list)
    datasets_used: list[str] = Field(default_factory=list)
    fx_rate_used: str | None = None
    requirement_sources: list[str] = Field(default_factory=list)


class PlannerReport(CamelModel):
    compatibility_snapshot: CompatibilitySnapshot
    suggested_careers: list[SuggestedCareer] = Field(default_factory=list)
    skill_gaps: list[SkillGap] = Field(default_factory=list)
    roadmap: list[RoadmapItem] = Field(default_factory=list)
    resume_reframe: list[ResumeReframe] = Field(default_factory=list)
    links_resources: list[ResourceLink] = Field(default_factory=list)
    target_requirements: TargetRequirements | None = None
    market_evidence: MarketEvidenceSummary
    bottleneck: Bottleneck | None = None
    data_transparency: DataTransparency


class LegacySkillGap(CamelModel):
    title: str
    detail: str
    difficulty: Difficulty


class LegacyRoadmap(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    days_30: list[str] = Field(default_factory=list, alias="30")
    days_60: list[str] = Field(default_factory=list, alias="60")
    days_90: list[str] = Field(default_factory=list, alias="90")


class RecommendedRole(CamelModel):
    title: str
    match: int
    reason: str


class LegacySummary(CamelModel):
    score: int
    explanation: str
    transferable_skills: list[str] = Field(default_factory=list)
    skill_gaps: list[LegacySkillGap] = Field(default_factory=list)
    roadmap: LegacyRoadmap = Field(default_factory=LegacyRoadmap)
    resume_reframes: list[ResumeReframe] = Field(default_factory=list)
    recommended_roles: list[RecommendedRole] = Field(default_factory=list)


class ScoringSnapshot(BaseModel):
    total_score: int
    breakdown: MatchBreakdown
    top_occupation_id: str | None = None


class CareerPlannerAnalysis(CamelModel):
    report: PlannerReport
    legacy: LegacySummary
    scoring_snapshot: ScoringSnapshot


class CareerPlannerRequest(CamelModel):
    """Wire payload; accepts both the current field names and the older form names."""

    current_role: str | None = None
    current_role_text: str | None = None
    target_role: str | None = None
    target_role_text: str | None = None
    not_sure_mode: bool | None = None
    recommend_mode: bool | None = None
    skills: list[str] = Field(default_factory=list)
    experience_text: str | None = None
    education: str | None = None
    education_level: str | None = None
    location: str | None = None
    work_region: str | None = None
    timeline: str | None = None
    timeline_bucket: str | None = None
    user_posting_text: str | None = None
    use_market_evidence: bool = True

    @field_validator("skills", mode="before")
    @classmethod
    def _skills(cls, value: object) -> list[str]:
        if not isinstance(value, list):
            return []
        return [item.strip() for item in value if isinstance(item, str) and item.strip()]


class RoleResolution(CamelModel):
    current: OccupationResolution
    target: OccupationResolution | None = None


class CareerPlannerResponse(LegacySummary):
    report: PlannerReport
    role_resolution: RoleResolution
    scoring: ScoringSnapshot
