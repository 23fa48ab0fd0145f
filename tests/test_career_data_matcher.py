import json
import sys
import tempfile
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.schemas.career_data import OccupationRow, OccupationWageRow  # noqa: E402
from app.taxonomy import CareerDataMatcher, LocalReferenceData, ReferenceDataError  # noqa: E402
from app.taxonomy.matcher import (  # noqa: E402
    _index_entry,
    clamp_limit,
    pick_best_wage,
    score_candidate,
    score_role_candidate,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class CountingReferenceData(LocalReferenceData):
    def __init__(self):
        super().__init__()
        self.occupation_loads = 0
        self.skill_loads = 0

    def list_occupations(self, region=None, limit=None):
        self.occupation_loads += 1
        return super().list_occupations(region, limit)

    def list_skills(self):
        self.skill_loads += 1
        return super().list_skills()


def _wage(region: str, median: float, updated: str) -> OccupationWageRow:
    return OccupationWageRow(
        occupation_id="ca-72200",
        region=region,
        wage_median=median,
        currency="CAD",
        source="Job Bank",
        last_updated=updated,
    )


class ScoreCandidateTests(unittest.TestCase):
    def test_plural_title_is_exact(self):
        entry = _index_entry("ca-10020", "Product managers", ["product owner"])
        self.assertEqual(score_candidate("Product Manager", entry), (1.0, "exact_title"))

    def test_alias_and_containment_tiers(self):
        entry = _index_entry("ca-72200", "Electricians (except industrial and power system)", ["electrician"])
        self.assertEqual(score_candidate("Electrician", entry), (0.99, "alias"))

        entry = _index_entry("ca-21232", "Software developers and programmers", [])
        confidence, matched_by = score_candidate("software developers", entry)
        self.assertEqual((confidence, matched_by), (0.9, "title_contains"))

    def test_fuzzy_floor_for_typos(self):
        entry = _index_entry("ca-72310", "Carpenters", ["carpenter"])
        confidence, matched_by = score_candidate("carpentr", entry)
        self.assertEqual(matched_by, "fuzzy")
        self.assertGreater(confidence, 0.3)
        self.assertLess(confidence, 0.72)

    def test_blank_query_has_no_score(self):
        entry = _index_entry("ca-72310", "Carpenters", [])
        self.assertIsNone(score_candidate("  ", entry))

    def test_score_role_candidate_builds_match(self):
        occupation = OccupationRow(id="us-47-2111", title="Electricians", region="US", aliases=["electrician"])
        match = score_role_candidate("electricians", occupation)
        self.assertEqual(match.occupation_id, "us-47-2111")
        self.assertEqual(match.confidence, 1.0)

    def test_clamp_limit(self):
        self.assertEqual(clamp_limit(None), 6)
        self.assertEqual(clamp_limit(0), 1)
        self.assertEqual(clamp_limit(500), 20)
        self.assertEqual(clamp_limit("many"), 6)


class PickBestWageTests(unittest.TestCase):
    def test_preferred_region_then_national_then_latest(self):
        wages = [
            _wage("CA-NAT", 72000, "2024-11-20"),
            _wage("CA-ON", 76000, "2024-11-20"),
            _wage("CA-BC", 80000, "2025-01-01"),
        ]
        self.assertEqual(pick_best_wage(wages, "CA", "CA-ON").region, "CA-ON")
        self.assertEqual(pick_best_wage(wages, "CA", "CA-QC").region, "CA-NAT")
        self.assertEqual(pick_best_wage(wages, "CA").region, "CA-NAT")
        self.assertEqual(pick_best_wage(wages[1:], "CA").region, "CA-BC")
        self.assertIsNone(pick_best_wage([], "CA"))


class CareerDataMatcherTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.provider = CountingReferenceData()
        self.matcher = CareerDataMatcher(self.provider, ttl_seconds=300, clock=self.clock)

    def test_resolve_known_role(self):
        resolution = self.matcher.resolve_occupation_input(" Customer Success Specialist ", region="CA")
        self.assertEqual(resolution.input, "Customer Success Specialist")
        self.assertEqual(resolution.best_match.occupation_id, "ca-64409")
        self.assertEqual(resolution.best_match.matched_by, "alias")

    def test_unknown_role_has_suggestions_but_no_best_match(self):
        resolution = self.matcher.resolve_occupation_input("Zookeeper of quasars", region="US")
        self.assertIsNone(resolution.best_match)

    def test_region_filter(self):
        matches = self.matcher.search_occupations("product manager", region="US")
        self.assertEqual(matches[0].occupation_id, "us-15-1299-09")
        self.assertTrue(all(match.region == "US" for match in matches))

        both = {match.occupation_id for match in self.matcher.search_occupations("product manager")}
        self.assertIn("ca-10020", both)
        self.assertIn("us-15-1299-09", both)

    def test_search_skills(self):
        matches = self.matcher.search_skills("sql", limit=3)
        self.assertEqual(matches[0].skill_id, "sk-sql")
        self.assertEqual(matches[0].confidence, 1.0)
        self.assertLessEqual(len(matches), 3)
        self.assertEqual(self.matcher.search_skills(""), [])

    def test_index_is_cached_until_ttl_or_invalidate(self):
        self.matcher.search_occupations("nurse", region="CA")
        self.matcher.search_occupations("electrician", region="CA")
        self.assertEqual(self.provider.occupation_loads, 1)

        self.matcher.search_occupations("nurse", region="US")
        self.assertEqual(self.provider.occupation_loads, 2)

        self.clock.now += 301
        self.matcher.search_occupations("nurse", region="CA")
        self.assertEqual(self.provider.occupation_loads, 3)

        self.matcher.search_skills("python")
        self.matcher.invalidate()
        self.matcher.search_skills("python")
        self.assertEqual(self.provider.skill_loads, 2)

    def test_occupations_with_wages_prefers_requested_wage_region(self):
        response = self.matcher.search_occupations_with_wages("electrician", region="CA", wage_region="CA-ON", limit=3)
        first = response.items[0]
        self.assertEqual(first.occupation_id, "ca-72200")
        self.assertEqual(first.confidence, 0.99)
        self.assertEqual(first.wage.region, "CA-ON")
        self.assertEqual(first.wage.median, 76000)
        self.assertEqual(response.query.limit, 3)
        self.assertEqual(response.count, len(response.items))

    def test_occupations_without_query_list_by_title(self):
        response = self.matcher.search_occupations_with_wages(None, region="CA", limit=2)
        self.assertEqual(
            [item.title for item in response.items],
            ["Administrative officers", "Advertising, marketing and public relations managers"],
        )
        self.assertIsNone(response.items[0].confidence)
        self.assertEqual(response.items[0].wage.region, "CA-NAT")


class LocalReferenceDataTests(unittest.TestCase):
    def test_bundled_dataset(self):
        data = LocalReferenceData()
        self.assertEqual(data.latest_fx_rate().rate, 1.3642)
        self.assertEqual(len(data.trade_requirements("on")), 4)
        self.assertEqual(data.trade_requirements("BC"), [])
        wages = data.occupation_wages(["ca-72200"])
        self.assertEqual({row.region for row in wages}, {"CA-NAT", "CA-ON"})
        titles = [row.title for row in data.list_occupations("US", limit=2)]
        self.assertEqual(titles, sorted(titles, key=str.lower))

    def test_missing_file_raises_reference_error(self):
        with tempfile.TemporaryDirectory() as tmp:
            data = LocalReferenceData(tmp)
            with self.assertRaises(ReferenceDataError):
                data.list_skills()

    def test_invalid_row_raises_reference_error(self):
        with tempfile.TemporaryDirectory() as tmp:
            Path(tmp, "skills.json").write_text(json.dumps([{"id": "sk-1"}]), encoding="utf-8")
            with self.assertRaises(ReferenceDataError):
                LocalReferenceData(tmp).list_skills()

    def test_json_encoded_aliases_are_coerced(self):
        with tempfile.TemporaryDirectory() as tmp:
            Path(tmp, "skills.json").write_text(
                json.dumps([{"id": "sk-1", "name": "Welding", "aliases": '["mig welding", "tig welding"]'}]),
                encoding="utf-8",
            )
            skills = LocalReferenceData(tmp).list_skills()
            self.assertEqual(skills[0].aliases, ["mig welding", "tig welding"])


if __name__ == "__main__":
    unittest.main()
