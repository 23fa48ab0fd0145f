import sys
import tempfile
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.evidence.adzuna import AdzunaClient  # noqa: E402
from app.evidence.orchestrator import EvidenceOrchestrator  # noqa: E402
from app.evidence.store import RequirementsStore  # noqa: E402
from app.planner.contract import validate_planner_report  # noqa: E402
from app.schemas.career_data import FxRateRow, OccupationWageRow  # noqa: E402
from app.schemas.planner import PlannerInput  # noqa: E402
from app.services.planner_service import (  # noqa: E402
    NO_OCCUPATIONS_REASON,
    CareerPlannerService,
    PlannerInputError,
    build_resume_reframes,
    build_roadmap,
    build_salary,
    career_difficulty,
    evidence_role,
    legacy_roadmap,
    transition_time,
    validate_planner_input,
)
from app.taxonomy import LocalReferenceData  # noqa: E402

RED_SEAL_POSTING = "Must have Red Seal certification. 3+ years of electrical experience. Experience with AutoCAD."


class EmptyRegionReferenceData(LocalReferenceData):
    def list_occupations(self, region=None, limit=None):
        return []


class BrokenOrchestrator:
    def ensure_evidence_requirements(self, *args, **kwargs):
        raise RuntimeError("store offline")


def _product_manager_input(**overrides) -> PlannerInput:
    values = {
        "current_role": "Customer Success Specialist",
        "target_role": "Product Manager",
        "experience_text": "Handled onboarding calls for new accounts and resolved escalations within 24 hours.",
        "location": "Toronto, Ontario",
    }
    values.update(overrides)
    return PlannerInput(**values)


class PlannerHelperTests(unittest.TestCase):
    def test_validate_planner_input(self):
        with self.assertRaises(PlannerInputError) as ctx:
            validate_planner_input(PlannerInput(target_role="Nurse", skills=["a", "b"]))
        self.assertEqual(str(ctx.exception), "Add a current role, experience summary, or at least 3 skills.")

        with self.assertRaises(PlannerInputError) as ctx:
            validate_planner_input(PlannerInput(current_role="Nurse"))
        self.assertEqual(str(ctx.exception), "Target role is required unless Not sure mode is enabled.")

        validate_planner_input(PlannerInput(skills=["a", "b", "c"], not_sure_mode=True))

    def test_transition_time_and_difficulty(self):
        self.assertEqual(transition_time(1), "0-30 days")
        self.assertEqual(transition_time(3), "1-3 months")
        self.assertEqual(transition_time(6), "3-6 months")
        self.assertEqual(transition_time(12), "6-12 months")
        self.assertEqual(transition_time(13), "12+ months")
        self.assertEqual(career_difficulty(80), "easy")
        self.assertEqual(career_difficulty(60), "moderate")
        self.assertEqual(career_difficulty(59), "hard")

    def test_salary_conversion(self):
        fx = FxRateRow(rate=1.25, source="Bank of Canada", as_of_date="2025-01-15")
        cad = OccupationWageRow(
            occupation_id="x",
            region="CA-NAT",
            wage_low=50000,
            wage_median=None,
            wage_high=100000,
            currency="CAD",
            source="Job Bank",
            last_updated="2024-11-20",
        )
        salary = build_salary(cad, fx)
        self.assertEqual(salary.usd.low, 40000.0)
        self.assertIsNone(salary.usd.median)
        self.assertEqual(salary.usd.high, 80000.0)
        self.assertEqual(salary.conversion.rate, 1.25)
        self.assertEqual(salary.native.currency, "CAD")

        self.assertIsNone(build_salary(cad, None).usd)
        usd = cad.model_copy(update={"currency": "USD"})
        self.assertEqual(build_salary(usd, fx).usd.low, 50000)
        self.assertIsNone(build_salary(usd, fx).conversion)
        self.assertIsNone(build_salary(None, fx).native)

    def test_roadmap_phases_scale_with_timeline(self):
        short = build_roadmap("immediate", "Electricians", "Electrical wiring", "Blueprint reading")
        long = build_roadmap("1_plus_year", "Electricians", "Electrical wiring", "Blueprint reading", gate_label="Obtain Red Seal")
        self.assertEqual([item.id for item in short], ["immediate-1", "short-term-1", "medium-term-1"])
        self.assertEqual(long[0].id, "immediate-gate")
        self.assertGreater(long[-1].time_estimate_hours, short[-1].time_estimate_hours)

        legacy = legacy_roadmap(long)
        self.assertEqual(len(legacy.days_30), 2)
        self.assertEqual(len(legacy.days_60), 1)
        self.assertEqual(len(legacy.days_90), 1)
        self.assertEqual(set(legacy.model_dump(by_alias=True)), {"30", "60", "90"})

    def test_evidence_role_uses_best_match_in_not_sure_mode(self):
        payload = PlannerInput(current_role="Electrician", target_role="Nurse", not_sure_mode=True)
        self.assertEqual(evidence_role(payload, "Electricians"), "Electricians")

        payload = PlannerInput(current_role="Electrician", target_role="Nurse")
        self.assertEqual(evidence_role(payload, "Electricians"), "Nurse")
        resolved = payload.model_copy(update={"resolved_target_role": "Registered nurses"})
        self.assertEqual(evidence_role(resolved, "Electricians"), "Registered nurses")

    def test_resume_reframes(self):
        reframes = build_resume_reframes(
            "Handled onboarding calls for 40 accounts.\nSkills: SQL, Excel, Jira\nshort line\nResolved escalations for enterprise clients",
            "Product managers",
        )
        self.assertEqual(len(reframes), 2)
        self.assertEqual(
            reframes[0].after,
            "Handled onboarding calls for 40 accounts, with quantified impact (40) aligned to Product managers.",
        )
        self.assertIn("clearer measurable outcomes", reframes[1].after)


class CareerPlannerServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.provider = LocalReferenceData()

    def test_product_manager_transition_is_weak_with_gaps(self):
        service = CareerPlannerService(self.provider)
        analysis = service.generate(_product_manager_input())
        report = analysis.report

        self.assertEqual(analysis.scoring_snapshot.top_occupation_id, "ca-10020")
        self.assertEqual(report.compatibility_snapshot.score, 37)
        self.assertLess(report.compatibility_snapshot.score, 60)
        self.assertEqual(report.compatibility_snapshot.band, "weak")
        self.assertTrue(report.skill_gaps)
        self.assertEqual(report.skill_gaps[0].skill_name, "Product strategy")
        self.assertTrue(all(career.occupation_id.startswith("ca-") for career in report.suggested_careers))
        self.assertLessEqual(len(report.suggested_careers), 6)
        self.assertEqual(validate_planner_report(analysis), [])

        top = report.suggested_careers[0]
        self.assertEqual(top.salary.native.currency, "CAD")
        self.assertEqual(top.salary.usd.median, round(98000 / 1.3642, 2))
        self.assertEqual(report.data_transparency.fx_rate_used, "USD/CAD 1.3642 (2025-01-15)")
        self.assertTrue(report.market_evidence.baseline_only)
        self.assertEqual(analysis.legacy.score, report.compatibility_snapshot.score)

    def test_resolved_role_titles_do_not_inflate_the_score(self):
        service = CareerPlannerService(self.provider)
        analysis = service.generate(
            _product_manager_input(
                resolved_current_role="Customer service and information representatives",
                resolved_target_role="Product managers",
            )
        )
        snapshot = analysis.report.compatibility_snapshot
        self.assertLess(snapshot.score, 60)
        self.assertEqual(snapshot.breakdown.skill_overlap, 0.0)
        self.assertNotIn("Customer service", analysis.legacy.transferable_skills)

    def test_generation_is_deterministic(self):
        service = CareerPlannerService(self.provider)
        first = service.generate(_product_manager_input())
        second = service.generate(_product_manager_input())
        self.assertEqual(first.model_dump(), second.model_dump())

    def test_gated_trade_surfaces_gate_bottleneck(self):
        service = CareerPlannerService(self.provider)
        analysis = service.generate(
            PlannerInput(
                current_role="Construction labourer",
                target_role="Electrician",
                experience_text="Carried materials and kept job sites clean for three years.",
                location="Toronto",
                user_posting_text=RED_SEAL_POSTING,
            )
        )
        report = analysis.report

        self.assertEqual(analysis.scoring_snapshot.top_occupation_id, "ca-72200")
        self.assertTrue(report.target_requirements.regulated)
        self.assertIn("309A Certificate of Qualification (ON)", report.target_requirements.certifications)
        self.assertEqual(report.target_requirements.apprenticeship_hours, 9000)
        self.assertEqual(report.bottleneck.requirement_type, "gate")
        self.assertEqual(report.bottleneck.title, "Obtain Red Seal certification before applying")
        self.assertEqual(report.bottleneck.estimated_effort, "9000 apprenticeship hours")
        self.assertEqual(report.roadmap[0].id, "immediate-gate")
        self.assertEqual(report.data_transparency.requirement_sources[0], "user_posting")
        self.assertFalse(report.market_evidence.baseline_only)
        self.assertEqual(report.market_evidence.user_posting_requirements, 3)
        self.assertEqual(validate_planner_report(analysis), [])

    def test_not_sure_mode_recommends_without_target(self):
        service = CareerPlannerService(self.provider)
        analysis = service.generate(
            PlannerInput(
                current_role="Software developer",
                not_sure_mode=True,
                skills=["Python", "SQL", "JavaScript"],
                location="Austin, TX",
            )
        )
        self.assertTrue(analysis.report.suggested_careers)
        self.assertTrue(all(career.occupation_id.startswith("us-") for career in analysis.report.suggested_careers))
        self.assertEqual(analysis.report.suggested_careers[0].salary.native.currency, "USD")
        self.assertEqual(validate_planner_report(analysis), [])

    def test_empty_region_returns_zero_analysis(self):
        service = CareerPlannerService(EmptyRegionReferenceData())
        analysis = service.generate(_product_manager_input())
        self.assertEqual(analysis.report.compatibility_snapshot.score, 0)
        self.assertEqual(analysis.report.compatibility_snapshot.top_reasons, [NO_OCCUPATIONS_REASON])
        self.assertEqual(analysis.report.suggested_careers, [])
        self.assertIsNone(analysis.scoring_snapshot.top_occupation_id)

    def test_invalid_input_raises(self):
        service = CareerPlannerService(self.provider)
        with self.assertRaises(PlannerInputError):
            service.generate(PlannerInput(target_role="Product Manager"))

    def test_evidence_failure_falls_back_to_posting_and_baseline(self):
        service = CareerPlannerService(self.provider, orchestrator=BrokenOrchestrator())
        analysis = service.generate(_product_manager_input(user_posting_text=RED_SEAL_POSTING))
        summary = analysis.report.market_evidence
        self.assertFalse(summary.used_adzuna)
        self.assertEqual(summary.user_posting_requirements, 3)

    def test_market_disabled_is_baseline_only(self):
        with tempfile.TemporaryDirectory() as tmp:
            store = RequirementsStore(str(Path(tmp) / "evidence.sqlite3"))
            orchestrator = EvidenceOrchestrator(store, AdzunaClient(app_id="", app_key=""))
            service = CareerPlannerService(self.provider, orchestrator=orchestrator)
            try:
                analysis = service.generate(_product_manager_input(use_market_evidence=False))
            finally:
                store.close()

        summary = analysis.report.market_evidence
        self.assertFalse(summary.enabled)
        self.assertTrue(summary.baseline_only)
        self.assertIsNotNone(summary.query_id)
        self.assertFalse(summary.used_adzuna)
        self.assertGreater(summary.baseline_requirements, 0)
        self.assertEqual(analysis.report.data_transparency.requirement_sources, ["onet"])


if __name__ == "__main__":
    unittest.main()
