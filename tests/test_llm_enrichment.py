import sys
import unittest
from pathlib import Path
from unittest.mock import patch

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.requirements.llm_enrichment import (  # noqa: E402
    pick_low_signal_segments,
    quote_matches_segment,
    run_llm_enrichment,
)
from app.schemas.requirements import (  # noqa: E402
    ExtractedRequirement,
    PostingRequirementInput,
    RequirementEvidence,
)
from app.services.llm import LLMError  # noqa: E402

POSTINGS = [
    PostingRequirementInput(
        posting_id="p1",
        description=(
            "Required: valid Class G driver licence for site travel.\n"
            "Must have familiarity with SAP Ariba purchasing workflows."
        ),
    )
]


class QuoteMatchTests(unittest.TestCase):
    def test_quote_match_is_normalized_and_bidirectional(self):
        segment = "Must have familiarity with SAP Ariba purchasing workflows"
        self.assertTrue(quote_matches_segment(segment, "familiarity with  SAP-Ariba"))
        self.assertTrue(quote_matches_segment("SAP Ariba", segment))
        self.assertFalse(quote_matches_segment(segment, "Red Seal required"))
        self.assertFalse(quote_matches_segment(segment, "   "))


class SegmentSelectionTests(unittest.TestCase):
    def test_picks_requirement_segments_without_confident_coverage(self):
        segments = pick_low_signal_segments(POSTINGS, [])
        self.assertEqual([segment.segment_id for segment in segments], ["p1:1", "p1:2"])

    def test_confidently_covered_segment_is_skipped(self):
        covered = ExtractedRequirement(
            type="gate",
            label="Obtain Class G driver's licence before applying",
            normalized_key="obtain class g drivers licence before applying",
            confidence=0.9,
            evidence=RequirementEvidence(
                source="adzuna",
                quote="Required: valid Class G driver licence for site travel",
                posting_id="p1",
                confidence=0.9,
            ),
        )
        segments = pick_low_signal_segments(POSTINGS, [covered])
        self.assertEqual([segment.segment_id for segment in segments], ["p1:2"])

    def test_segments_without_requirement_cues_are_ignored(self):
        postings = [PostingRequirementInput(posting_id="p2", description="We are a friendly team in downtown Toronto.")]
        self.assertEqual(pick_low_signal_segments(postings, []), [])


class RunEnrichmentTests(unittest.TestCase):
    def test_disabled_returns_empty_without_calling_model(self):
        with patch("app.services.llm.requirements_llm_enabled", return_value=False), patch(
            "app.services.llm.json_completion"
        ) as completion:
            result = run_llm_enrichment(POSTINGS, [])

        self.assertEqual(result.status, "disabled")
        self.assertEqual(result.requirements, [])
        completion.assert_not_called()

    def test_skipped_when_no_segment_needs_help(self):
        postings = [PostingRequirementInput(posting_id="p2", description="We are a friendly team in downtown Toronto.")]
        with patch("app.services.llm.requirements_llm_enabled", return_value=True), patch(
            "app.services.llm.json_completion"
        ) as completion:
            result = run_llm_enrichment(postings, [])

        self.assertEqual(result.status, "skipped")
        completion.assert_not_called()

    def test_model_failure_fails_closed(self):
        with patch("app.services.llm.requirements_llm_enabled", return_value=True), patch(
            "app.services.llm.json_completion", side_effect=LLMError("timeout", code="llm_exception")
        ):
            result = run_llm_enrichment(POSTINGS, [])

        self.assertEqual(result.status, "error")
        self.assertEqual(result.requirements, [])
        self.assertEqual(result.segments_sent, 2)
        self.assertIn("timeout", result.error)

    def test_malformed_payload_fails_closed(self):
        with patch("app.services.llm.requirements_llm_enabled", return_value=True), patch(
            "app.services.llm.json_completion", return_value={"items": []}
        ):
            result = run_llm_enrichment(POSTINGS, [])

        self.assertEqual(result.status, "error")
        self.assertEqual(result.requirements, [])

    def test_only_grounded_candidates_are_kept(self):
        payload = {
            "requirements": [
                {
                    "segmentId": "p1:2",
                    "type": "tool",
                    "label": "SAP Ariba",
                    "quote": "familiarity with SAP Ariba",
                    "confidence": 0.9,
                },
                {
                    "segmentId": "p1:1",
                    "type": "gate",
                    "label": "Obtain Red Seal",
                    "quote": "Red Seal required",
                    "confidence": 0.9,
                },
                {"segmentId": "p9:1", "type": "tool", "label": "Excel", "quote": "Excel", "confidence": 0.9},
                {"segmentId": "p1:1", "type": "skill", "label": "Drive", "quote": "site travel", "confidence": 0.9},
                {
                    "segmentId": "p1:1",
                    "type": "soft_signal",
                    "label": "communication",
                    "quote": "site travel",
                    "confidence": 0.9,
                },
                {
                    "segmentId": "p1:1",
                    "type": "gate",
                    "label": "Class G driver licence",
                    "quote": "valid Class G driver licence",
                    "confidence": 5,
                },
            ]
        }
        with patch("app.services.llm.requirements_llm_enabled", return_value=True), patch(
            "app.services.llm.json_completion", return_value=payload
        ):
            result = run_llm_enrichment(POSTINGS, [])

        self.assertEqual(result.status, "success")
        self.assertEqual(result.segments_sent, 2)
        labels = [(item.type, item.label) for item in result.requirements]
        self.assertEqual(
            labels,
            [
                ("tool", "Use SAP Ariba in role-relevant workflows"),
                ("gate", "Obtain Class G driver licence"),
            ],
        )
        self.assertEqual(result.requirements[1].confidence, 0.95)
        for item in result.requirements:
            self.assertEqual(item.evidence.posting_id, "p1")


if __name__ == "__main__":
    unittest.main()
