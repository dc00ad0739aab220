import threading
import time
import unittest
from mock import MagicMock

from botocore.exceptions import ClientError

from config import Config
from buildObjects import BuildCancelled, RunContext
from awscommon import polling
from awscommon.errors import WaiterFailureError, WaiterTimeoutError
from awscommon.polling import PollingConfig, WaiterParams, waitForState


def sequence(*states):
    """A refresh function returning the given states one after another"""
    calls = []

    def refresh():
        state = states[min(len(calls), len(states) - 1)]
        calls.append(state)
        return {"state": state}, state, "message for %s" % state

    return refresh, calls


class TestPollingConfig(unittest.TestCase):
    def test_explicitBeatsEnvironment(self):
        params = PollingConfig(maxAttempts=5).resolve({"AWS_MAX_ATTEMPTS": "10"})
        self.assertEqual(params.maxAttempts, 5)

    def test_environmentAttempts(self):
        params = PollingConfig().resolve({"AWS_MAX_ATTEMPTS": "10", "AWS_POLL_DELAY_SECONDS": "3"})
        self.assertEqual(params, WaiterParams(maxAttempts=10, delaySeconds=3))

    def test_timeoutAlone(self):
        params = PollingConfig().resolve({"AWS_TIMEOUT_SECONDS": "60"})
        self.assertEqual(params, WaiterParams(maxAttempts=30, delaySeconds=2))

    def test_timeoutWithPollDelay(self):
        params = PollingConfig().resolve(
            {"AWS_TIMEOUT_SECONDS": "60", "AWS_POLL_DELAY_SECONDS": "5"}
        )
        self.assertEqual(params, WaiterParams(maxAttempts=12, delaySeconds=5))

    def test_attemptsBeatTimeout(self):
        params = PollingConfig().resolve(
            {"AWS_TIMEOUT_SECONDS": "60", "AWS_MAX_ATTEMPTS": "7"}
        )
        self.assertEqual(params.maxAttempts, 7)

    def test_nothingSetUsesWaiterDefaults(self):
        config = PollingConfig()
        self.assertEqual(config.resolve({}), WaiterParams())
        self.assertEqual(
            config.params(),
            WaiterParams(Config.WAITER_MAX_ATTEMPTS, Config.WAITER_DELAY_SECONDS),
        )

    def test_invalidEnvironmentIgnored(self):
        params = PollingConfig().resolve({"AWS_MAX_ATTEMPTS": "lots", "AWS_POLL_DELAY_SECONDS": "-1"})
        self.assertEqual(params, WaiterParams())

    def test_resolvedOnce(self):
        config = PollingConfig()
        first = config.resolve({"AWS_MAX_ATTEMPTS": "4"})
        self.assertEqual(config.resolve({"AWS_MAX_ATTEMPTS": "9"}), first)

    def test_warningWhenAttemptsAndTimeoutBothSet(self):
        message = PollingConfig().logEnvOverrideWarnings(
            {"AWS_MAX_ATTEMPTS": "5", "AWS_TIMEOUT_SECONDS": "60"}
        )
        self.assertIn("AWS_MAX_ATTEMPTS and AWS_TIMEOUT_SECONDS", message)
        self.assertIn("defaulting to 2 seconds", message)

    def test_noOverridesMessage(self):
        message = PollingConfig().logEnvOverrideWarnings({})
        self.assertIn("No AWS timeout and polling overrides", message)


class TestWaitForState(unittest.TestCase):
    def test_reachesTarget(self):
        refresh, calls = sequence("pending", "", "available")
        result = waitForState(
            RunContext(), refresh, "available", ["pending"], WaiterParams(5, 0), "thing"
        )
        self.assertEqual(result, {"state": "available"})
        self.assertEqual(len(calls), 3)

    def test_timeout(self):
        refresh, calls = sequence("pending")
        with self.assertRaises(WaiterTimeoutError) as cm:
            waitForState(
                RunContext(), refresh, "available", ["pending"], WaiterParams(3, 0), "thing"
            )
        self.assertEqual(len(calls), 3)
        self.assertEqual(cm.exception.lastState, "pending")

    def test_terminalFailureCarriesMessage(self):
        refresh, _ = sequence("pending", "failed")
        with self.assertRaises(WaiterFailureError) as cm:
            waitForState(
                RunContext(), refresh, "available", ["pending"], WaiterParams(5, 0), "thing"
            )
        self.assertEqual(cm.exception.state, "failed")
        self.assertEqual(cm.exception.statusMessage, "message for failed")

    def test_cancelStopsWithinOneDelay(self):
        ctx = RunContext()
        refresh, calls = sequence("pending")
        timer = threading.Timer(0.2, ctx.cancel)
        timer.start()
        start = time.monotonic()
        try:
            with self.assertRaises(BuildCancelled):
                waitForState(ctx, refresh, "available", ["pending"], WaiterParams(10, 30), "thing")
        finally:
            timer.cancel()
        self.assertLess(time.monotonic() - start, 5)
        self.assertEqual(len(calls), 1)


class TestWaiters(unittest.TestCase):
    def setUp(self):
        self.config = PollingConfig(maxAttempts=3, delaySeconds=1)

    def test_importFailureIsReported(self):
        ec2 = MagicMock()
        ec2.describe_import_image_tasks.return_value = {
            "ImportImageTasks": [{"Status": "deleted", "StatusMessage": "ClientError: bad disk"}]
        }
        with self.assertRaises(WaiterFailureError) as cm:
            polling.waitUntilImageImported(RunContext(), ec2, "import-ami-1", self.config)
        self.assertEqual(cm.exception.statusMessage, "ClientError: bad disk")

    def test_amiNotFoundCountsAsPending(self):
        ec2 = MagicMock()
        notFound = ClientError(
            {"Error": {"Code": "InvalidAMIID.NotFound", "Message": "nope"}}, "DescribeImages"
        )
        image = {"ImageId": "ami-1", "State": "available"}
        ec2.describe_images.side_effect = [notFound, {"Images": [image]}]
        self.assertEqual(
            polling.waitUntilAmiAvailable(RunContext(), ec2, "ami-1", self.config), image
        )

    def test_spotRequestNeedsInstance(self):
        ec2 = MagicMock()
        ec2.describe_spot_instance_requests.side_effect = [
            {"SpotInstanceRequests": [{"State": "active"}]},
            {"SpotInstanceRequests": [{"State": "active", "InstanceId": "i-1"}]},
        ]
        request = polling.waitUntilSpotRequestFulfilled(RunContext(), ec2, "sir-1", self.config)
        self.assertEqual(request["InstanceId"], "i-1")
        self.assertEqual(ec2.describe_spot_instance_requests.call_count, 2)

    def test_instanceProfileNeedsRole(self):
        iam = MagicMock()
        iam.get_instance_profile.side_effect = [
            {"InstanceProfile": {"InstanceProfileName": "p", "Roles": []}},
            {"InstanceProfile": {"InstanceProfileName": "p", "Roles": [{"RoleName": "p"}]}},
        ]
        profile = polling.waitUntilInstanceProfileExists(RunContext(), iam, "p", self.config)
        self.assertEqual(profile["Roles"], [{"RoleName": "p"}])


if __name__ == "__main__":
    unittest.main()
