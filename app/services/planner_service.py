from __future__ import annotations

import logging
import threading
from functools import lru_cache
from typing import Sequence

from app.core.config.scoring import get_scoring_int
from app.evidence.baseline import build_baseline_requirements
from app.evidence.orchestrator import (
    EvidenceOrchestrator,
    extract_user_posting_requirements,
    get_default_orchestrator,
    normalize_lookup,
)
from app.normalize.text import normalize_whitespace
from app.planner.contract import contains_forbidden_filler, score_band
from app.planner.scoring import (
    RankedMatch,
    UserProfile,
    build_user_profile,
    extract_metric,
    infer_country,
    is_relevant_recommendation,
    is_requirement_met,
    rank_candidates,
    role_seed_score,
    score_occupation,
)
from app.requirements.extractor import merge_requirement_sources, sort_missing_requirements
from app.requirements.labels import is_actionable_requirement_label
from app.schemas.career_data import (
    CountryCode,
    FxRateRow,
    OccupationRequirementRow,
    OccupationRow,
    OccupationSkillRow,
    OccupationWageRow,
    TradeRequirementRow,
)
from app.schemas.evidence import EvidenceQuery, EvidenceResult
from app.schemas.planner import (
    Bottleneck,
    CareerDifficulty,
    CareerPlannerAnalysis,
    CompatibilitySnapshot,
    DataTransparency,
    Difficulty,
    FxConversion,
    LegacyRoadmap,
    LegacySkillGap,
    LegacySummary,
    MarketEvidenceSummary,
    MatchBreakdown,
    NativeSalary,
    PlannerInput,
    PlannerReport,
    RecommendedRole,
    ResourceLink,
    ResumeReframe,
    RoadmapItem,
    Salary,
    SalaryRange,
    ScoringSnapshot,
    SkillGap,
    SuggestedCareer,
    TargetRequirements,
    TimelineBucket,
)
from app.schemas.requirements import EVIDENCE_SOURCE_PRIORITY, AggregatedRequirement
from app.taxonomy import ReferenceDataProvider, get_default_reference_provider

logger = logging.getLogger(__name__)

TRADE_PROVINCE = "ON"
MAX_SKILL_GAPS = 7
MAX_RESUME_REFRAMES = 4
MAX_LINKS = 8
MAX_REQUIREMENTS_PER_TYPE = 8
MIN_REFRAME_CHARS = 20

NO_OCCUPATIONS_REASON = "No occupations available for the selected region."

DATASETS_USED = [
    "occupations",
    "occupation_skills",
    "occupation_requirements",
    "occupation_wages",
    "trade_requirements",
]

_DEFAULT_LOCATION: dict[str, str] = {"CA": "Canada", "US": "United States"}

# Hours per phase (immediate, short_term, medium_term) for each timeline bucket.
_PHASE_HOURS: dict[str, tuple[int, int, int]] = {
    "immediate": (8, 10, 12),
    "1_3_months": (8, 18, 12),
    "3_6_months": (10, 30, 20),
    "6_12_months": (12, 60, 40),
    "1_plus_year": (12, 80, 60),
}


class PlannerInputError(ValueError):
    """The planner input is missing the fields needed to score anything."""


def validate_planner_input(payload: PlannerInput) -> None:
    if not payload.current_role.strip() and not payload.experience_text.strip() and len(payload.skills) < 3:
        raise PlannerInputError("Add a current role, experience summary, or at least 3 skills.")
    if not payload.not_sure_mode and not (payload.target_role or "").strip():
        raise PlannerInputError("Target role is required unless Not sure mode is enabled.")


def transition_time(months: int) -> str:
    if months <= 1:
        return "0-30 days"
    if months <= 3:
        return "1-3 months"
    if months <= 6:
        return "3-6 months"
    if months <= 12:
        return "6-12 months"
    return "12+ months"


def career_difficulty(score: int) -> CareerDifficulty:
    if score >= 80:
        return "easy"
    if score >= 60:
        return "moderate"
    return "hard"


def _gap_difficulty(index: int) -> Difficulty:
    if index <= 1:
        return "easy"
    if index <= 3:
        return "medium"
    return "hard"


def build_salary(wage: OccupationWageRow | None, fx_rate: FxRateRow | None) -> Salary:
    """Native wage plus a USD view; CAD wages convert at the latest USD/CAD rate."""
    if wage is None:
        return Salary()

    native = NativeSalary(
        currency=wage.currency,
        low=wage.wage_low,
        median=wage.wage_median,
        high=wage.wage_high,
        source_name=wage.source,
        source_url=wage.source_url,
        as_of_date=wage.last_updated,
        region=wage.region,
    )
    if wage.currency == "USD":
        return Salary(usd=SalaryRange(low=wage.wage_low, median=wage.wage_median, high=wage.wage_high), native=native)
    if fx_rate is None:
        return Salary(native=native)

    def convert(value: float | None) -> float | None:
        return round(value / fx_rate.rate, 2) if value is not None else None

    return Salary(
        usd=SalaryRange(low=convert(wage.wage_low), median=convert(wage.wage_median), high=convert(wage.wage_high)),
        native=native,
        conversion=FxConversion(rate=fx_rate.rate, source=fx_rate.source, as_of_date=fx_rate.as_of_date),
    )


def build_roadmap(
    bucket: TimelineBucket,
    role_title: str,
    primary_gap: str,
    secondary_gap: str,
    gate_label: str | None = None,
) -> list[RoadmapItem]:
    immediate_hours, short_hours, medium_hours = _PHASE_HOURS.get(bucket, _PHASE_HOURS["1_3_months"])
    longer = bucket in {"3_6_months", "6_12_months", "1_plus_year"}

    items: list[RoadmapItem] = []
    if gate_label:
        items.append(
            RoadmapItem(
                id="immediate-gate",
                phase="immediate",
                title="Start the credential path",
                time_estimate_hours=6,
                difficulty="medium",
                why_it_matters=f"{role_title} has an entry gate that blocks applications until it is met.",
                action=f"{gate_label.rstrip('.')}: confirm eligibility with the issuing body and book the first step.",
            )
        )
    items.append(
        RoadmapItem(
            id="immediate-1",
            phase="immediate",
            title="Close one blocker skill",
            time_estimate_hours=immediate_hours,
            difficulty="easy" if bucket == "immediate" else "medium",
            why_it_matters=f"{primary_gap} appears in top-matched role requirements.",
            action=f"Complete one practical task proving {primary_gap}, then publish a shareable proof-of-work artifact.",
        )
    )
    items.append(
        RoadmapItem(
            id="short-term-1",
            phase="short_term",
            title="Build role evidence",
            time_estimate_hours=short_hours,
            difficulty="hard" if longer else "medium",
            why_it_matters="Hiring confidence increases when artifacts prove skill transfer.",
            action=f"Create two portfolio artifacts demonstrating {primary_gap} and {secondary_gap} in real-world scenarios.",
        )
    )
    items.append(
        RoadmapItem(
            id="medium-term-1",
            phase="medium_term",
            title="Apply with a focused shortlist",
            time_estimate_hours=medium_hours,
            difficulty="medium",
            why_it_matters=f"Early applications validate market response for {role_title}.",
            action=(
                f"Submit 10 applications for {role_title} roles, track callbacks, "
                f"and run five mock interviews that cover {secondary_gap}."
            ),
        )
    )
    return items


def legacy_roadmap(roadmap: Sequence[RoadmapItem]) -> LegacyRoadmap:
    return LegacyRoadmap(
        days_30=[item.action for item in roadmap if item.phase == "immediate"],
        days_60=[item.action for item in roadmap if item.phase == "short_term"],
        days_90=[item.action for item in roadmap if item.phase == "medium_term"],
    )


def build_resume_reframes(experience_text: str, role_title: str) -> list[ResumeReframe]:
    """Rewrite up to four experience lines around a measurable outcome."""
    lines = [line.strip() for line in (experience_text or "").splitlines()]
    bullets = [line for line in lines if len(line) >= MIN_REFRAME_CHARS and not line.lower().startswith("skills:")]
    metric = extract_metric(experience_text)

    reframes: list[ResumeReframe] = []
    for index, before in enumerate(bullets[:MAX_RESUME_REFRAMES]):
        impact = f"quantified impact ({metric})" if index == 0 and metric else "clearer measurable outcomes"
        after = f"{before.rstrip('.')}, with {impact} aligned to {role_title}."
        if contains_forbidden_filler(after):
            continue
        reframes.append(ResumeReframe(before=before, after=after))
    return reframes


def evidence_role(payload: PlannerInput, best_title: str) -> str:
    """Role used for the market query; not-sure mode always queries the best match."""
    if payload.not_sure_mode:
        return best_title
    return payload.resolved_target_role or payload.target_role or best_title


def _empty_breakdown() -> MatchBreakdown:
    return MatchBreakdown()


def _inputs_used(payload: PlannerInput) -> list[str]:
    fields = [
        ("currentRole", payload.current_role),
        ("targetRole", payload.target_role),
        ("experienceText", payload.experience_text),
        ("skills", payload.skills),
        ("location", payload.location),
        ("timeline", payload.timeline),
        ("education", payload.education),
        ("userPostingText", payload.user_posting_text),
    ]
    return [name for name, value in fields if value]


def _requirement_sources(rows: Sequence[AggregatedRequirement]) -> list[str]:
    sources = {item.source for row in rows for item in row.evidence}
    return sorted(sources, key=lambda source: EVIDENCE_SOURCE_PRIORITY.get(source, len(EVIDENCE_SOURCE_PRIORITY)))


def _group_by_occupation(rows: Sequence[OccupationSkillRow] | Sequence[OccupationWageRow]) -> dict[str, list]:
    grouped: dict[str, list] = {}
    for row in rows:
        grouped.setdefault(row.occupation_id, []).append(row)
    return grouped


class CareerPlannerService:
    """Scores occupations against a user profile and assembles the planner report.

    Reference-data failures propagate to the caller. Evidence failures never do:
    the report falls back to the user posting and the baseline dataset.
    """

    def __init__(
        self,
        provider: ReferenceDataProvider,
        *,
        orchestrator: EvidenceOrchestrator | None = None,
        trade_province: str = TRADE_PROVINCE,
    ) -> None:
        self.provider = provider
        self.orchestrator = orchestrator
        self.trade_province = trade_province

    def _seed(self, occupations: Sequence[OccupationRow], profile: UserProfile) -> list[OccupationRow]:
        limit = get_scoring_int("planner.seeded_occupation_limit", 300)
        seeded = sorted(
            occupations,
            key=lambda row: (-role_seed_score(profile, row.title), row.title.lower()),
        )
        return seeded[:limit]

    def _zero_analysis(self, payload: PlannerInput) -> CareerPlannerAnalysis:
        report = PlannerReport(
            compatibility_snapshot=CompatibilitySnapshot(
                score=0,
                band="weak",
                breakdown=_empty_breakdown(),
                top_reasons=[NO_OCCUPATIONS_REASON],
            ),
            market_evidence=MarketEvidenceSummary(enabled=payload.use_market_evidence),
            data_transparency=DataTransparency(inputs_used=_inputs_used(payload)),
        )
        return CareerPlannerAnalysis(
            report=report,
            legacy=LegacySummary(score=0, explanation="No occupations available."),
            scoring_snapshot=ScoringSnapshot(total_score=0, breakdown=_empty_breakdown()),
        )

    def _collect_evidence(
        self,
        payload: PlannerInput,
        role: str,
        country: CountryCode,
        cancel_event: threading.Event | None,
    ) -> EvidenceResult:
        location = normalize_whitespace(payload.location) or _DEFAULT_LOCATION[country]
        if self.orchestrator is not None:
            try:
                return self.orchestrator.ensure_evidence_requirements(
                    role,
                    location,
                    country.lower(),
                    use_market_evidence=payload.use_market_evidence,
                    user_posting_text=payload.user_posting_text,
                    cancel_event=cancel_event,
                )
            except Exception as exc:  # noqa: BLE001
                logger.warning("planner_evidence_failed role=%s location=%s: %s", role, location, exc)

        user_rows = extract_user_posting_requirements(payload.user_posting_text)
        return EvidenceResult(
            query=EvidenceQuery(role=normalize_lookup(role), location=normalize_lookup(location), country=country.lower()),
            user_posting_requirements=user_rows,
            baseline_only=not user_rows,
        )

    def generate(
        self,
        payload: PlannerInput,
        *,
        cancel_event: threading.Event | None = None,
    ) -> CareerPlannerAnalysis:
        validate_planner_input(payload)
        country = infer_country(payload.location)

        skills = self.provider.list_skills()
        fx_rate = self.provider.latest_fx_rate()
        profile = build_user_profile(payload, skills)

        occupations = self.provider.list_occupations(
            country,
            limit=get_scoring_int("planner.active_occupation_limit", 2500),
        )
        seeded = self._seed(occupations, profile)
        if not seeded:
            logger.info("planner_no_occupations region=%s", country)
            return self._zero_analysis(payload)

        candidate_ids = [row.id for row in seeded]
        edges_by_id = _group_by_occupation(self.provider.occupation_skills(candidate_ids))
        wages_by_id = _group_by_occupation(self.provider.occupation_wages(candidate_ids))
        requirements_by_id: dict[str, OccupationRequirementRow] = {
            row.occupation_id: row for row in self.provider.occupation_requirements(candidate_ids)
        }
        trade_by_id: dict[str, TradeRequirementRow] = {}
        for trade in self.provider.trade_requirements(self.trade_province):
            if trade.occupation_id and trade.occupation_id not in trade_by_id:
                trade_by_id[trade.occupation_id] = trade
        skill_names = {skill.id: skill.name for skill in skills}

        matches: list[RankedMatch] = []
        for occupation in seeded:
            edges = edges_by_id.get(occupation.id, [])
            if not edges:
                continue
            matches.append(
                score_occupation(
                    occupation,
                    edges,
                    profile,
                    requirement=requirements_by_id.get(occupation.id),
                    trade=trade_by_id.get(occupation.id),
                    wages=wages_by_id.get(occupation.id, []),
                    skill_names=skill_names,
                )
            )

        ranked = rank_candidates(matches, profile.not_sure_mode)
        relevant = [item for item in ranked if is_relevant_recommendation(item, profile.not_sure_mode)]
        top = (relevant or ranked)[: get_scoring_int("planner.top_recommendations", 6)]
        best = top[0] if top else None

        occupation_by_id = {row.id: row for row in seeded}
        evidence: EvidenceResult | None = None
        merged: list[AggregatedRequirement] = []
        baseline_rows: list[AggregatedRequirement] = []
        if best is not None:
            evidence = self._collect_evidence(payload, evidence_role(payload, best.title), country, cancel_event)
            best_trade = trade_by_id.get(best.occupation_id)
            baseline_rows = build_baseline_requirements(
                occupation_by_id[best.occupation_id],
                requirements_by_id.get(best.occupation_id),
                [(skill_names.get(edge.skill_id, edge.skill_id), edge.weight) for edge in edges_by_id[best.occupation_id]],
                [best_trade] if best_trade is not None else [],
            )
            merged = [
                row
                for row in merge_requirement_sources(
                    evidence.user_posting_requirements,
                    evidence.market_requirements,
                    baseline_rows,
                )
                if is_actionable_requirement_label(row.label)
            ]

        analysis = self._assemble(
            payload,
            profile,
            top,
            best,
            fx_rate=fx_rate,
            evidence=evidence,
            merged=merged,
            baseline_count=len(baseline_rows),
            requirement=requirements_by_id.get(best.occupation_id) if best else None,
            trade=trade_by_id.get(best.occupation_id) if best else None,
        )
        logger.info(
            "planner_generated region=%s candidates=%s top=%s score=%s",
            country,
            len(matches),
            best.occupation_id if best else None,
            analysis.report.compatibility_snapshot.score,
        )
        return analysis

    def _assemble(
        self,
        payload: PlannerInput,
        profile: UserProfile,
        top: Sequence[RankedMatch],
        best: RankedMatch | None,
        *,
        fx_rate: FxRateRow | None,
        evidence: EvidenceResult | None,
        merged: Sequence[AggregatedRequirement],
        baseline_count: int,
        requirement: OccupationRequirementRow | None,
        trade: TradeRequirementRow | None,
    ) -> CareerPlannerAnalysis:
        role_title = best.title if best else "target role"
        missing_skills = best.missing_skills if best else []
        user_text = " ".join(
            [payload.current_role, payload.experience_text, payload.education or "", *payload.skills]
        )
        missing_requirements = sort_missing_requirements(
            row for row in merged if not is_requirement_met(row, user_text)
        )
        missing_gate = next((row for row in missing_requirements if row.type == "gate"), None)

        skill_gaps = [
            SkillGap(
                skill_id=gap.skill_id,
                skill_name=gap.skill_name,
                weight=round(gap.weight, 4),
                difficulty=_gap_difficulty(index),
                how_to_close=[
                    f"Complete one practical exercise using {gap.skill_name}.",
                    f"Publish one artifact proving {gap.skill_name} in a real scenario.",
                ],
            )
            for index, gap in enumerate(missing_skills[:MAX_SKILL_GAPS])
        ]

        roadmap = build_roadmap(
            profile.timeline,
            role_title,
            missing_skills[0].skill_name if missing_skills else "role-specific execution",
            missing_skills[1].skill_name if len(missing_skills) > 1 else "interview storytelling",
            gate_label=missing_gate.label if missing_gate is not None else None,
        )

        links = [ResourceLink(label=link.label, url=link.url) for link in (best.official_links if best else [])]
        if best is not None and best.wage is not None and best.wage.source_url:
            links.append(ResourceLink(label=f"{best.wage.source} wage source", url=best.wage.source_url))

        snapshot = CompatibilitySnapshot(
            score=best.score if best else 0,
            band=score_band(best.score if best else 0),
            breakdown=best.breakdown if best else _empty_breakdown(),
            top_reasons=best.top_reasons if best else ["No compatibility reasons available."],
        )

        report = PlannerReport(
            compatibility_snapshot=snapshot,
            suggested_careers=[
                SuggestedCareer(
                    occupation_id=match.occupation_id,
                    title=match.title,
                    score=match.score,
                    breakdown=match.breakdown,
                    salary=build_salary(match.wage, fx_rate),
                    difficulty=career_difficulty(match.score),
                    transition_time=transition_time(match.transition_months),
                    regulated=match.regulated,
                    official_links=match.official_links,
                    top_reasons=match.top_reasons,
                )
                for match in top
            ],
            skill_gaps=skill_gaps,
            roadmap=roadmap,
            resume_reframe=build_resume_reframes(payload.experience_text, role_title),
            links_resources=links[:MAX_LINKS],
            target_requirements=self._target_requirements(best, merged, requirement, trade),
            market_evidence=self._market_summary(payload, evidence, baseline_count),
            bottleneck=self._bottleneck(best, missing_gate, missing_requirements, trade),
            data_transparency=DataTransparency(
                inputs_used=_inputs_used(payload),
                datasets_used=list(DATASETS_USED),
                fx_rate_used=f"USD/CAD {fx_rate.rate} ({fx_rate.as_of_date})" if fx_rate else None,
                requirement_sources=_requirement_sources(merged),
            ),
        )

        legacy = LegacySummary(
            score=snapshot.score,
            explanation=" ".join(snapshot.top_reasons),
            transferable_skills=list(profile.skill_names[:10]),
            skill_gaps=[
                LegacySkillGap(title=gap.skill_name, detail=gap.how_to_close[0], difficulty=gap.difficulty)
                for gap in skill_gaps
            ],
            roadmap=legacy_roadmap(roadmap),
            resume_reframes=report.resume_reframe,
            recommended_roles=[
                RecommendedRole(
                    title=career.title,
                    match=career.score,
                    reason=career.top_reasons[0] if career.top_reasons else "Strong compatibility.",
                )
                for career in report.suggested_careers
            ],
        )
        return CareerPlannerAnalysis(
            report=report,
            legacy=legacy,
            scoring_snapshot=ScoringSnapshot(
                total_score=snapshot.score,
                breakdown=snapshot.breakdown,
                top_occupation_id=best.occupation_id if best else None,
            ),
        )

    def _target_requirements(
        self,
        best: RankedMatch | None,
        merged: Sequence[AggregatedRequirement],
        requirement: OccupationRequirementRow | None,
        trade: TradeRequirementRow | None,
    ) -> TargetRequirements | None:
        if best is None:
            return None

        def of_type(kind: str) -> list[AggregatedRequirement]:
            return [row for row in merged if row.type == kind][:MAX_REQUIREMENTS_PER_TYPE]

        certifications = list(requirement.certs_licenses) if requirement is not None else []
        if trade is not None:
            label = f"{trade.trade_code} Certificate of Qualification ({trade.province})"
            if label not in certifications:
                certifications.append(label)

        return TargetRequirements(
            occupation_id=best.occupation_id,
            education=requirement.education if requirement is not None else None,
            certifications=certifications,
            gates=of_type("gate"),
            hard_skills=of_type("hard_skill"),
            tools=of_type("tool"),
            experience_signals=of_type("experience_signal"),
            apprenticeship_hours=trade.hours if trade is not None else None,
            exam_required=trade.exam_required if trade is not None else None,
            regulated=best.regulated,
            sources=list(best.official_links),
        )

    def _market_summary(
        self,
        payload: PlannerInput,
        evidence: EvidenceResult | None,
        baseline_count: int,
    ) -> MarketEvidenceSummary:
        if evidence is None:
            return MarketEvidenceSummary(enabled=payload.use_market_evidence, baseline_requirements=baseline_count)
        return MarketEvidenceSummary(
            enabled=payload.use_market_evidence,
            used_adzuna=evidence.used_adzuna,
            used_cache=evidence.used_cache,
            baseline_only=evidence.baseline_only,
            partial=evidence.partial,
            postings_count=evidence.postings_count,
            fetched_at=evidence.fetched_at,
            query_id=evidence.query_id,
            user_posting_requirements=len(evidence.user_posting_requirements),
            market_requirements=len(evidence.market_requirements),
            baseline_requirements=baseline_count,
        )

    def _bottleneck(
        self,
        best: RankedMatch | None,
        missing_gate: AggregatedRequirement | None,
        missing_requirements: Sequence[AggregatedRequirement],
        trade: TradeRequirementRow | None,
    ) -> Bottleneck | None:
        if best is None:
            return None
        effort = transition_time(best.transition_months)

        if missing_gate is not None:
            return Bottleneck(
                title=missing_gate.label,
                why=f"{best.title} cannot be entered until this licensing or certification gate is met.",
                next_action="Confirm eligibility with the issuing body and schedule the first credential step.",
                estimated_effort=f"{trade.hours} apprenticeship hours" if trade is not None and trade.hours else effort,
                requirement_type="gate",
            )

        if missing_requirements:
            top = missing_requirements[0]
            return Bottleneck(
                title=top.label,
                why=f"Appears {top.frequency} time(s) across requirement evidence for {best.title}.",
                next_action=f"{top.label.rstrip('.')}, then add the proof to your resume.",
                estimated_effort=effort,
                requirement_type=top.type,
            )

        if best.missing_skills:
            skill = best.missing_skills[0]
            return Bottleneck(
                title=skill.skill_name,
                why=f"{skill.skill_name} carries the most weight among the skills you have not shown for {best.title}.",
                next_action=f"Complete one practical exercise using {skill.skill_name}.",
                estimated_effort=effort,
            )
        return None


@lru_cache(maxsize=1)
def get_default_planner_service() -> CareerPlannerService:
    return CareerPlannerService(get_default_reference_provider(), orchestrator=get_default_orchestrator())
