import sys
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.core.ttl_cache import TTLCache  # noqa: E402


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TTLCacheTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.cache = TTLCache(60, clock=self.clock)

    def test_entry_expires_after_ttl(self):
        self.cache.set("roles", ["a"])
        self.clock.now += 59
        self.assertEqual(self.cache.get("roles"), ["a"])
        self.clock.now += 1
        self.assertIsNone(self.cache.get("roles"))

    def test_get_or_load_reads_through_once_per_ttl(self):
        calls = []

        def loader():
            calls.append(self.clock.now)
            return ("row",)

        self.assertEqual(self.cache.get_or_load("k", loader), ("row",))
        self.assertEqual(self.cache.get_or_load("k", loader), ("row",))
        self.assertEqual(len(calls), 1)

        self.clock.now += 61
        self.cache.get_or_load("k", loader)
        self.assertEqual(len(calls), 2)

    def test_invalidate_single_key_and_all(self):
        self.cache.set("a", 1)
        self.cache.set("b", 2)
        self.cache.invalidate("a")
        self.assertIsNone(self.cache.get("a"))
        self.assertEqual(self.cache.get("b"), 2)
        self.cache.invalidate()
        self.assertIsNone(self.cache.get("b"))

    def test_ttl_must_be_positive(self):
        with self.assertRaises(ValueError):
            TTLCache(0)


if __name__ == "__main__":
    unittest.main()
