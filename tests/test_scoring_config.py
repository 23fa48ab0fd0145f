import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.core.config.scoring import (  # noqa: E402
    get_scoring_config,
    get_scoring_float,
    get_scoring_int,
    get_scoring_value,
    reset_scoring_config_cache,
)
from app.core.config.settings import load_settings  # noqa: E402


class ScoringConfigTests(unittest.TestCase):
    def test_loader_and_value_lookup(self):
        config = get_scoring_config()
        self.assertIsInstance(config, dict)
        self.assertEqual(get_scoring_value("planner.weights.skill_overlap"), 40)
        self.assertEqual(get_scoring_float("matching.best_match_threshold", 0.0), 0.72)
        self.assertEqual(get_scoring_int("requirements.ttl_hours", 0), 72)

    def test_missing_paths_fall_back_to_default(self):
        self.assertIsNone(get_scoring_value("planner.weights.unknown"))
        self.assertEqual(get_scoring_int("planner.weights.skill_overlap.deeper", 7), 7)
        self.assertEqual(get_scoring_value("", "fallback"), "fallback")

    def test_planner_weights_sum_to_one_hundred(self):
        weights = get_scoring_value("planner.weights")
        self.assertEqual(sum(weights.values()), 100)


class CacheLifetimeSettingsTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        path = Path(self.tmp.name) / "scoring.yaml"
        path.write_text(
            "matching:\n  search_index_ttl_seconds: 45\nrequirements:\n  ttl_hours: 24\n",
            encoding="utf-8",
        )
        self.env = patch.dict(os.environ, {"SCORING_CONFIG_PATH": str(path)})
        self.env.start()
        os.environ.pop("REQUIREMENTS_TTL_HOURS", None)
        os.environ.pop("SEARCH_INDEX_TTL_SECONDS", None)
        reset_scoring_config_cache()

    def tearDown(self):
        self.env.stop()
        reset_scoring_config_cache()
        self.tmp.cleanup()

    def test_cache_lifetimes_come_from_scoring_config(self):
        loaded = load_settings()
        self.assertEqual(loaded.requirements_ttl_hours, 24)
        self.assertEqual(loaded.search_index_ttl_seconds, 45)

    def test_environment_overrides_scoring_config(self):
        os.environ["REQUIREMENTS_TTL_HOURS"] = "6"
        os.environ["SEARCH_INDEX_TTL_SECONDS"] = "30"
        loaded = load_settings()
        self.assertEqual(loaded.requirements_ttl_hours, 6)
        self.assertEqual(loaded.search_index_ttl_seconds, 30)


if __name__ == "__main__":
    unittest.main()
