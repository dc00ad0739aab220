import time
import unittest

from buildObjects import BuildCancelled, RunContext, StateBag, StateBagKeyError


class TestStateBag(unittest.TestCase):
    def setUp(self):
        self.state = StateBag()

    def test_putAndGet(self):
        self.state.put("region", "us-east-1")
        self.assertEqual(self.state.get("region"), "us-east-1")
        self.assertIn("region", self.state)
        self.assertIsNone(self.state.get("missing"))
        self.assertEqual(self.state.get("missing", "x"), "x")

    def test_getOk(self):
        self.state.put("amis", {})
        self.assertEqual(self.state.getOk("amis"), ({}, True))
        self.assertEqual(self.state.getOk("snapshots"), (None, False))

    def test_getExnMissingKey(self):
        with self.assertRaises(StateBagKeyError):
            self.state.getExn("instance_id")

    def test_getExnWrongType(self):
        self.state.put("instance_id", 42)
        with self.assertRaises(TypeError):
            self.state.getExn("instance_id", str)
        self.assertEqual(self.state.getExn("instance_id", int), 42)

    def test_remove(self):
        self.state.put("instance", {})
        self.state.remove("instance")
        self.state.remove("instance")
        self.assertNotIn("instance", self.state)

    def test_putErrorKeepsFirst(self):
        first = RuntimeError("first")
        self.state.putError(first)
        self.state.putError(RuntimeError("second"))
        self.assertIs(self.state.get("error"), first)


class TestRunContext(unittest.TestCase):
    def test_cancel(self):
        ctx = RunContext()
        self.assertFalse(ctx.cancelled)
        ctx.check()
        ctx.cancel()
        self.assertTrue(ctx.cancelled)
        with self.assertRaises(BuildCancelled):
            ctx.check()

    def test_sleepReturnsFalseWhenCancelled(self):
        ctx = RunContext()
        ctx.cancel()
        start = time.monotonic()
        self.assertFalse(ctx.sleep(10))
        self.assertLess(time.monotonic() - start, 1)

    def test_deadline(self):
        ctx = RunContext(timeout=0.1)
        self.assertFalse(ctx.sleep(5))
        self.assertTrue(ctx.cancelled)

    def test_sleepWithoutCancel(self):
        self.assertTrue(RunContext().sleep(0.01))


if __name__ == "__main__":
    unittest.main()
