import sys
import tempfile
import threading
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.evidence.adzuna import AdzunaClient  # noqa: E402
from app.evidence.orchestrator import (  # noqa: E402
    HEURISTIC_MODEL,
    EvidenceOrchestrator,
    extract_user_posting_requirements,
    normalize_lookup,
)
from app.evidence.store import RequirementsStore  # noqa: E402
from app.requirements.llm_enrichment import EnrichmentResult  # noqa: E402
from app.schemas.requirements import ExtractedRequirement, RequirementEvidence  # noqa: E402

POSTING_TEXT = "Must have Red Seal certification. 3+ years of electrical experience. Experience with AutoCAD."
RED_SEAL = "Obtain Red Seal certification before applying"


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMarket:
    """Serves one page of postings, then an empty page."""

    def __init__(self):
        self.calls = 0
        self.status_code = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="upstream unavailable")
        page = request.url.path.rsplit("/", 1)[-1]
        if page != "1":
            return httpx.Response(200, json={"results": []})
        return httpx.Response(
            200,
            json={
                "results": [
                    {"id": "1", "title": "Electrician", "description": POSTING_TEXT},
                    {"id": "2", "title": "Electrician", "description": "Experience with AutoCAD. Install conduit runs."},
                ]
            },
        )


class RecordingEnricher:
    def __init__(self, result: EnrichmentResult | None = None):
        self.calls = []
        self.result = result or EnrichmentResult(status="disabled")

    def __call__(self, postings, extracted) -> EnrichmentResult:
        self.calls.append([posting.posting_id for posting in postings])
        return self.result


class EvidenceOrchestratorTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.store = RequirementsStore(str(Path(self.tmp.name) / "evidence.sqlite3"))
        self.market = FakeMarket()
        self.clock = FakeClock()
        self.enricher = RecordingEnricher()
        self.orchestrator = self._orchestrator()

    def tearDown(self):
        self.store.close()
        self.tmp.cleanup()

    def _orchestrator(self, *, configured: bool = True) -> EvidenceOrchestrator:
        client = AdzunaClient(
            app_id="id" if configured else "",
            app_key="key" if configured else "",
            transport=httpx.MockTransport(self.market),
        )
        return EvidenceOrchestrator(
            self.store,
            client,
            ttl_hours=72,
            max_pages=2,
            clock=self.clock,
            enricher=self.enricher,
        )

    def _ensure(self, **kwargs):
        return self.orchestrator.ensure_evidence_requirements("  Electrician ", "Toronto,  ON", "CA", **kwargs)

    def test_first_call_fetches_and_persists(self):
        result = self._ensure()

        self.assertTrue(result.used_adzuna)
        self.assertFalse(result.used_cache)
        self.assertFalse(result.baseline_only)
        self.assertEqual(result.postings_count, 2)
        self.assertEqual(result.query.role, "electrician")
        self.assertEqual(result.query.location, "toronto, on")
        self.assertEqual(result.query.country, "ca")
        self.assertEqual(result.fetched_at, self.clock.now)

        labels = [row.label for row in result.market_requirements]
        self.assertIn(RED_SEAL, labels)
        autocad = next(row for row in result.market_requirements if row.label.startswith("Use AutoCAD"))
        self.assertEqual(autocad.frequency, 2)
        self.assertEqual(result.market_requirements[0].label, autocad.label)

        stored = self.store.get_requirements(result.query_id)
        self.assertEqual([row.normalized_key for row in stored], [row.normalized_key for row in result.market_requirements])
        query = self.store.get_query(result.query_id)
        self.assertEqual(query.fetch_status, "success")

        runs = self.store.list_runs(result.query_id)
        self.assertEqual([(run.status, run.model) for run in runs], [("success", HEURISTIC_MODEL)])
        self.assertEqual(self.enricher.calls, [["adzuna:1", "adzuna:2"]])

    def test_fresh_cache_is_reused(self):
        self._ensure()
        calls = self.market.calls

        self.clock.advance(hours=71)
        result = self._ensure()

        self.assertTrue(result.used_cache)
        self.assertFalse(result.used_adzuna)
        self.assertEqual(self.market.calls, calls)
        self.assertIn(RED_SEAL, [row.label for row in result.market_requirements])

    def test_stale_cache_and_force_refresh_refetch(self):
        self._ensure()
        calls = self.market.calls

        self.clock.advance(hours=73)
        stale = self._ensure()
        self.assertTrue(stale.used_adzuna)
        self.assertGreater(self.market.calls, calls)

        calls = self.market.calls
        forced = self._ensure(force_refresh=True)
        self.assertTrue(forced.used_adzuna)
        self.assertGreater(self.market.calls, calls)
        self.assertEqual(len(self.store.list_runs(forced.query_id)), 3)

    def test_market_failure_fails_open_to_cache(self):
        first = self._ensure()
        self.clock.advance(hours=100)
        self.market.status_code = 503

        result = self._ensure()

        self.assertTrue(result.used_cache)
        self.assertFalse(result.used_adzuna)
        self.assertEqual(
            [row.normalized_key for row in result.market_requirements],
            [row.normalized_key for row in first.market_requirements],
        )
        query = self.store.get_query(result.query_id)
        self.assertEqual(query.fetch_status, "error")
        self.assertIn("503", query.error)
        self.assertEqual(self.store.list_runs(result.query_id)[-1].status, "error")

    def test_market_failure_without_cache_returns_baseline_only(self):
        self.market.status_code = 500
        result = self._ensure()
        self.assertEqual(result.market_requirements, [])
        self.assertTrue(result.baseline_only)
        self.assertFalse(result.used_cache)

    def test_market_disabled_reuses_stored_rows_without_network(self):
        fresh = self._ensure(use_market_evidence=False)
        self.assertTrue(fresh.baseline_only)
        self.assertEqual(fresh.market_requirements, [])
        self.assertEqual(self.market.calls, 0)

        with_posting = self._ensure(use_market_evidence=False, user_posting_text=POSTING_TEXT)
        self.assertFalse(with_posting.baseline_only)
        self.assertIn(RED_SEAL, [row.label for row in with_posting.user_posting_requirements])
        self.assertEqual(with_posting.market_requirements, [])

        first = self._ensure()
        calls = self.market.calls
        self.clock.advance(hours=200)

        result = self._ensure(use_market_evidence=False)

        self.assertEqual(self.market.calls, calls)
        self.assertFalse(result.used_adzuna)
        self.assertFalse(result.baseline_only)
        self.assertEqual(result.query_id, first.query_id)
        self.assertIn(RED_SEAL, [row.label for row in result.market_requirements])

    def test_unconfigured_client_serves_stored_rows_only(self):
        self._ensure()
        self.clock.advance(hours=200)
        self.orchestrator = self._orchestrator(configured=False)
        calls = self.market.calls

        result = self._ensure()

        self.assertEqual(self.market.calls, calls)
        self.assertFalse(result.used_adzuna)
        self.assertIn(RED_SEAL, [row.label for row in result.market_requirements])

    def test_cancelled_refresh_is_partial_and_keeps_stored_rows(self):
        first = self._ensure()
        fetched_at = self.store.get_query(first.query_id).last_fetched_at
        stored_before = [row.model_dump() for row in self.store.get_requirements(first.query_id)]
        self.clock.advance(hours=1)
        event = threading.Event()
        event.set()

        result = self._ensure(force_refresh=True, cancel_event=event)

        self.assertTrue(result.partial)
        self.assertFalse(result.used_adzuna)
        self.assertEqual([row.model_dump() for row in self.store.get_requirements(first.query_id)], stored_before)
        query = self.store.get_query(first.query_id)
        self.assertEqual(query.fetch_status, "idle")
        self.assertEqual(query.last_fetched_at, fetched_at)
        last_run = self.store.list_runs(first.query_id)[-1]
        self.assertEqual((last_run.status, last_run.error), ("partial", "cancelled"))
        self.assertEqual(len(self.enricher.calls), 1)

    def test_llm_rows_are_merged_and_recorded_on_run(self):
        llm_row = ExtractedRequirement(
            type="tool",
            label="Use Fluke meters in role-relevant workflows",
            normalized_key="use fluke meters in role relevant workflows",
            confidence=0.7,
            evidence=RequirementEvidence(source="adzuna", quote="Install conduit runs", posting_id="adzuna:2", confidence=0.7),
        )
        self.enricher.result = EnrichmentResult(status="success", requirements=[llm_row], segments_sent=1)

        result = self._ensure()

        self.assertIn(llm_row.label, [row.label for row in result.market_requirements])
        model = self.store.list_runs(result.query_id)[-1].model
        self.assertTrue(model.startswith(f"{HEURISTIC_MODEL}+llm:"))
        self.assertTrue(model.endswith(":success"))


class UserPostingTests(unittest.TestCase):
    def test_short_posting_text_is_ignored(self):
        self.assertEqual(extract_user_posting_requirements("Red Seal required"), [])
        self.assertEqual(extract_user_posting_requirements(None), [])

    def test_user_posting_rows_carry_user_source(self):
        rows = extract_user_posting_requirements(POSTING_TEXT)
        self.assertTrue(rows)
        for row in rows:
            self.assertEqual({item.source for item in row.evidence}, {"user_posting"})

    def test_normalize_lookup(self):
        self.assertEqual(normalize_lookup("  Product   Manager "), "product manager")
        self.assertEqual(normalize_lookup(None), "")


if __name__ == "__main__":
    unittest.main()
