import sys
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.requirements.classify import (  # noqa: E402
    CLASSIFIER_RULES,
    canonical_tool_name,
    classify_requirement,
    extract_contextual_tools,
    extract_tool_mentions,
    is_plausible_tool_phrase,
)
from app.requirements.labels import (  # noqa: E402
    is_actionable_requirement_label,
    to_task_level_label,
)
from app.schemas.requirements import ALLOWED_REQUIREMENT_TYPES  # noqa: E402


class RequirementClassifierTests(unittest.TestCase):
    def test_rules_run_in_priority_order(self):
        self.assertEqual([rule.type for rule in CLASSIFIER_RULES], ["gate", "tool", "experience_signal", "soft_signal"])

    def test_gate_wins_over_other_signals(self):
        self.assertEqual(classify_requirement("Valid Red Seal certification and 5 years in the trade"), "gate")
        self.assertEqual(classify_requirement("Current CPR and First Aid"), "gate")

    def test_tool_experience_soft_and_fallback(self):
        self.assertEqual(classify_requirement("Daily reporting in Excel and Tableau"), "tool")
        self.assertEqual(classify_requirement("3+ years of field experience"), "experience_signal")
        self.assertEqual(classify_requirement("Excellent communication with stakeholders"), "soft_signal")
        self.assertEqual(classify_requirement("Install and maintain residential panels"), "hard_skill")

    def test_classification_is_total_and_deterministic(self):
        samples = [
            "",
            "   ",
            "Must have Red Seal certification",
            "Proficiency with QuickBooks Online",
            "Shipped production features weekly",
            "Great teamwork",
            "Lift 50 lbs",
        ]
        for sample in samples:
            first = classify_requirement(sample)
            self.assertIn(first, ALLOWED_REQUIREMENT_TYPES)
            self.assertEqual(first, classify_requirement(sample))

    def test_tool_mentions_use_canonical_names(self):
        self.assertEqual(extract_tool_mentions("Experience with PostgreSQL and k8s"), ["SQL", "Kubernetes"])
        self.assertEqual(canonical_tool_name("google sheets"), "Excel")
        self.assertIsNone(canonical_tool_name("hammer"))

    def test_contextual_tools_skip_generic_phrases(self):
        self.assertEqual(extract_contextual_tools("Proficiency in QuickBooks Online for month-end close"), ["QuickBooks Online"])
        self.assertEqual(extract_contextual_tools("Experience with office software and computers"), [])
        self.assertEqual(extract_contextual_tools("Experience with AutoCAD drafting"), [])

    def test_plausible_tool_phrase(self):
        self.assertTrue(is_plausible_tool_phrase("SAP S/4HANA"))
        self.assertTrue(is_plausible_tool_phrase("ERP"))
        self.assertFalse(is_plausible_tool_phrase("hand tools"))
        self.assertFalse(is_plausible_tool_phrase("a very long description of many different things"))


class TaskLevelLabelTests(unittest.TestCase):
    def test_single_vague_token_is_rejected_unless_tool(self):
        self.assertIsNone(to_task_level_label("mechanical", "hard_skill"))
        self.assertIsNone(to_task_level_label("communication", "soft_signal"))
        self.assertEqual(to_task_level_label("AutoCAD", "tool"), "Use AutoCAD in role-relevant workflows")

    def test_filler_prefix_is_stripped(self):
        self.assertEqual(
            to_task_level_label("Must have troubleshoot PLC faults", "hard_skill"),
            "Troubleshoot PLC faults",
        )
        self.assertEqual(
            to_task_level_label("Experience with payroll reconciliation", "hard_skill"),
            "Perform payroll reconciliation in production scenarios",
        )

    def test_actionable_labels(self):
        self.assertFalse(is_actionable_requirement_label("mechanical"))
        self.assertFalse(is_actionable_requirement_label("strong communication"))
        self.assertFalse(is_actionable_requirement_label("experience"))
        self.assertTrue(is_actionable_requirement_label("Use AutoCAD in role-relevant workflows"))
        self.assertTrue(is_actionable_requirement_label("Lead communication"))


if __name__ == "__main__":
    unittest.main()
