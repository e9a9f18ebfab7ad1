import threading
import unittest
from concurrent.futures import ThreadPoolExecutor

from receptionist.models.call import CallState
from receptionist.models.call_registry import CallRegistry


class TestCallRegistry(unittest.TestCase):

    def setUp(self):
        self.registry = CallRegistry()

    def test_get_or_create_creates_ringing_call(self):
        call, created = self.registry.get_or_create(
            "call-1", tenant_id="biz-1", from_number="+15550100", to_number="+15550199"
        )

        self.assertTrue(created)
        self.assertEqual(call.state, CallState.RINGING)
        self.assertEqual(call.tenant_id, "biz-1")
        self.assertEqual(call.from_number, "+15550100")
        self.assertIn("call-1", self.registry)

    def test_get_or_create_returns_existing_instance(self):
        first, _ = self.registry.get_or_create("call-1", tenant_id="biz-1")
        second, created = self.registry.get_or_create("call-1", tenant_id="other")

        self.assertFalse(created)
        self.assertIs(first, second)
        self.assertEqual(second.tenant_id, "biz-1")

    def test_concurrent_get_or_create_yields_single_call(self):
        barrier = threading.Barrier(16)

        def create(_):
            barrier.wait()
            return self.registry.get_or_create("call-1", tenant_id="biz-1")

        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(create, range(16)))

        calls = {id(call) for call, _ in results}
        self.assertEqual(len(calls), 1)
        self.assertEqual(sum(1 for _, created in results if created), 1)
        self.assertEqual(len(self.registry), 1)

    def test_evict_is_safe_for_unknown_ids(self):
        self.registry.get_or_create("call-1")

        self.assertIsNotNone(self.registry.evict("call-1"))
        self.assertIsNone(self.registry.evict("call-1"))
        self.assertIsNone(self.registry.get("call-1"))

    def test_active_calls_excludes_ended(self):
        live, _ = self.registry.get_or_create("call-1")
        ended, _ = self.registry.get_or_create("call-2")
        ended.state = CallState.ENDED
        self.registry.save(ended)

        self.assertEqual([c.call_id for c in self.registry.active_calls()], [live.call_id])


if __name__ == "__main__":
    unittest.main()
