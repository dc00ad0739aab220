import time
import unittest

from buildObjects import BuildCancelled, RunContext
from awscommon.errors import RetryError
from awscommon.retry import Backoff, RetryConfig

NO_DELAY = Backoff(initialBackoff=0, maxBackoff=0, multiplier=2)


class Flaky(object):
    """Fails the first `failures` calls, then returns "ok" """

    def __init__(self, failures):
        self.failures = failures
        self.calls = 0
        self.errors = []

    def __call__(self, ctx):
        self.calls += 1
        if self.calls <= self.failures:
            err = RuntimeError("failure %d" % self.calls)
            self.errors.append(err)
            raise err
        return "ok"


class TestRetry(unittest.TestCase):
    def test_succeedsAfterFailures(self):
        fn = Flaky(3)
        result = RetryConfig(tries=5, retryDelay=NO_DELAY).run(RunContext(), fn)
        self.assertEqual(result, "ok")
        self.assertEqual(fn.calls, 4)

    def test_unlimitedTries(self):
        fn = Flaky(6)
        self.assertEqual(RetryConfig(tries=0, retryDelay=NO_DELAY).run(RunContext(), fn), "ok")
        self.assertEqual(fn.calls, 7)

    def test_giveUpAfterTries(self):
        fn = Flaky(3)
        with self.assertRaises(RetryError) as cm:
            RetryConfig(tries=3, retryDelay=NO_DELAY).run(RunContext(), fn, "describe")
        self.assertEqual(fn.calls, 3)
        self.assertEqual(cm.exception.attempts, 3)
        self.assertIs(cm.exception.lastError, fn.errors[-1])
        self.assertIs(cm.exception.__cause__, fn.errors[-1])
        self.assertIn("describe", str(cm.exception))

    def test_shouldRetryDeclines(self):
        fn = Flaky(3)
        retry = RetryConfig(tries=5, retryDelay=NO_DELAY, shouldRetry=lambda e: False)
        with self.assertRaises(RetryError):
            retry.run(RunContext(), fn)
        self.assertEqual(fn.calls, 1)

    def test_cancelledBeforeFirstAttempt(self):
        ctx = RunContext()
        ctx.cancel()
        fn = Flaky(0)
        with self.assertRaises(BuildCancelled):
            RetryConfig(tries=3).run(ctx, fn)
        self.assertEqual(fn.calls, 0)

    def test_cancelDuringDelay(self):
        ctx = RunContext()

        def failAndCancel(c):
            c.cancel()
            raise RuntimeError("failed")

        start = time.monotonic()
        with self.assertRaises(BuildCancelled):
            RetryConfig(tries=5, retryDelay=Backoff(10, 10, 2)).run(ctx, failAndCancel)
        self.assertLess(time.monotonic() - start, 5)

    def test_delaySchedule(self):
        delays = Backoff(0.2, 30, 2).delays()
        values = [next(delays) for _ in range(10)]
        expected = [0.2, 0.4, 0.8, 1.6, 3.2, 6.4, 12.8, 25.6, 30, 30]
        for value, want in zip(values, expected):
            self.assertAlmostEqual(value, want)


if __name__ == "__main__":
    unittest.main()
