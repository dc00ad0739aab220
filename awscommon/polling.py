#
# polling.py - Waiter settings and cancellable waiters for long operations.
#
# Waiter settings are resolved in this order, highest first:
#
#   1. max_attempts / delay_seconds set on the build config (non-zero)
#   2. AWS_MAX_ATTEMPTS / AWS_POLL_DELAY_SECONDS
#   3. AWS_TIMEOUT_SECONDS (deprecated), turned into a number of attempts
#      using the poll delay, which defaults to 2 seconds in that case
#   4. nothing: each waiter uses its own default
#
import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Sequence, Tuple

from botocore.exceptions import ClientError
from mypy_boto3_ec2 import EC2Client
from mypy_boto3_iam import IAMClient

from config import Config
from buildObjects import BuildCancelled, RunContext
from awscommon.errors import WaiterFailureError, WaiterTimeoutError

log = logging.getLogger(__name__)

LEGACY_POLL_DELAY = 2


@dataclass(frozen=True)
class WaiterParams(object):
    maxAttempts: Optional[int] = None
    delaySeconds: Optional[int] = None

    def withDefaults(self, maxAttempts: int, delaySeconds: int) -> "WaiterParams":
        return WaiterParams(
            maxAttempts=self.maxAttempts if self.maxAttempts is not None else maxAttempts,
            delaySeconds=self.delaySeconds if self.delaySeconds is not None else delaySeconds,
        )


def _envInt(environ, name) -> Optional[int]:
    raw = environ.get(name, "")
    if raw == "":
        return None
    try:
        value = int(raw)
    except ValueError:
        log.warning("Ignoring %s=%r, it is not an integer" % (name, raw))
        return None
    if value <= 0:
        log.warning("Ignoring %s=%r, it must be positive" % (name, raw))
        return None
    return value


@dataclass
class PollingConfig(object):
    # Maximum number of state checks; also read from AWS_MAX_ATTEMPTS
    maxAttempts: int = 0
    # Seconds between state checks; also read from AWS_POLL_DELAY_SECONDS
    delaySeconds: int = 0

    _resolved: Optional[WaiterParams] = field(
        default=None, init=False, repr=False, compare=False
    )

    def resolve(self, environ: Optional[Mapping[str, str]] = None) -> WaiterParams:
        """resolve - Compute the waiter overrides. The first result is kept for
        the lifetime of this config so every waiter of a run agrees.
        """
        if self._resolved is not None:
            return self._resolved
        if environ is None:
            environ = os.environ

        pollDelay = _envInt(environ, "AWS_POLL_DELAY_SECONDS")
        maxAttempts = _envInt(environ, "AWS_MAX_ATTEMPTS")
        timeoutSeconds = _envInt(environ, "AWS_TIMEOUT_SECONDS")

        if self.maxAttempts:
            maxAttempts = self.maxAttempts
        if self.delaySeconds:
            pollDelay = self.delaySeconds

        if maxAttempts is None and timeoutSeconds is not None:
            if pollDelay is None:
                pollDelay = LEGACY_POLL_DELAY
            maxAttempts = max(1, timeoutSeconds // pollDelay)

        self._resolved = WaiterParams(maxAttempts=maxAttempts, delaySeconds=pollDelay)
        return self._resolved

    def logEnvOverrideWarnings(self, environ: Optional[Mapping[str, str]] = None) -> str:
        """logEnvOverrideWarnings - Log which source the waiter settings come
        from. Returns the message for callers that show it to the user.
        """
        if environ is None:
            environ = os.environ
        maxAttemptsSet = bool(environ.get("AWS_MAX_ATTEMPTS")) or self.maxAttempts != 0
        timeoutSet = bool(environ.get("AWS_TIMEOUT_SECONDS"))
        pollDelaySet = bool(environ.get("AWS_POLL_DELAY_SECONDS")) or self.delaySeconds != 0

        if maxAttemptsSet and timeoutSet:
            message = (
                "[WARNING] (aws): AWS_MAX_ATTEMPTS and AWS_TIMEOUT_SECONDS are "
                "both set. AWS_MAX_ATTEMPTS is used and AWS_TIMEOUT_SECONDS is "
                "discarded."
            )
            if not pollDelaySet:
                message += " The poll delay is not set, defaulting to 2 seconds."
            log.warning(message)
        elif timeoutSet:
            message = (
                "[WARNING] (aws): AWS_TIMEOUT_SECONDS is deprecated in favor of "
                "AWS_MAX_ATTEMPTS or the max_attempts option. Without an "
                "explicit poll delay the delay defaults to 2 seconds."
            )
            log.warning(message)
        elif not maxAttemptsSet and not pollDelaySet:
            message = (
                "[INFO] (aws): No AWS timeout and polling overrides have been "
                "set, using waiter-specific delays and timeouts."
            )
            log.info(message)
        else:
            message = "[INFO] (aws): Using waiter overrides %s" % (self.resolve(environ),)
            log.info(message)
        return message

    def params(self, maxAttempts=None, delaySeconds=None) -> WaiterParams:
        return self.resolve().withDefaults(
            maxAttempts if maxAttempts is not None else Config.WAITER_MAX_ATTEMPTS,
            delaySeconds if delaySeconds is not None else Config.WAITER_DELAY_SECONDS,
        )


# A refresh returns (result, state, status message). An empty state means the
# resource is not visible yet and counts as pending.
RefreshFunc = Callable[[], Tuple[object, str, str]]


def waitForState(
    ctx: RunContext,
    refresh: RefreshFunc,
    target: str,
    pending: Sequence[str],
    params: WaiterParams,
    description: str,
):
    """waitForState - Poll refresh until it reports target.

    A state outside pending and target is a terminal failure of the remote
    operation. Cancellation is checked before every attempt and interrupts
    the delay between attempts.
    """
    lastState = None
    attempt = 0
    while params.maxAttempts is None or attempt < params.maxAttempts:
        if ctx.cancelled:
            raise BuildCancelled("cancelled while waiting for %s" % description)
        attempt += 1
        result, state, message = refresh()
        lastState = state
        if state == target:
            return result
        if state and state not in pending:
            raise WaiterFailureError(description, state, message)
        log.debug(
            "Waiting for %s: state %s (%d/%s)"
            % (description, state or "unknown", attempt, params.maxAttempts)
        )
        if params.maxAttempts is not None and attempt >= params.maxAttempts:
            break
        if not ctx.sleep(params.delaySeconds or 0):
            raise BuildCancelled("cancelled while waiting for %s" % description)
    raise WaiterTimeoutError(description, attempt, lastState)


def _notFound(e: ClientError, *codes) -> bool:
    return e.response.get("Error", {}).get("Code") in codes


def waitUntilInstanceState(ctx, ec2: EC2Client, instanceId, target, pending, pollingConfig):
    def refresh():
        try:
            resp = ec2.describe_instances(InstanceIds=[instanceId])
        except ClientError as e:
            if _notFound(e, "InvalidInstanceID.NotFound"):
                return None, "", ""
            raise
        for reservation in resp.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                reason = instance.get("StateReason", {}).get("Message", "")
                return instance, instance["State"]["Name"], reason
        return None, "", ""

    return waitForState(
        ctx, refresh, target, pending, pollingConfig.params(),
        "instance %s to become %s" % (instanceId, target),
    )


def waitUntilInstanceRunning(ctx, ec2, instanceId, pollingConfig):
    return waitUntilInstanceState(ctx, ec2, instanceId, "running", ["pending"], pollingConfig)


def waitUntilInstanceStopped(ctx, ec2, instanceId, pollingConfig):
    return waitUntilInstanceState(
        ctx, ec2, instanceId, "stopped", ["pending", "running", "stopping"], pollingConfig
    )


def waitUntilInstanceTerminated(ctx, ec2, instanceId, pollingConfig):
    return waitUntilInstanceState(
        ctx, ec2, instanceId, "terminated",
        ["pending", "running", "stopping", "stopped", "shutting-down"],
        pollingConfig,
    )


def waitUntilAmiAvailable(ctx, ec2: EC2Client, imageId, pollingConfig):
    def refresh():
        try:
            resp = ec2.describe_images(ImageIds=[imageId])
        except ClientError as e:
            if _notFound(e, "InvalidAMIID.NotFound"):
                return None, "", ""
            raise
        if not resp.get("Images"):
            return None, "", ""
        image = resp["Images"][0]
        return image, image["State"], image.get("StateReason", {}).get("Message", "")

    return waitForState(
        ctx, refresh, "available", ["pending"], pollingConfig.params(),
        "AMI %s to become available" % imageId,
    )


def waitUntilSnapshotDone(ctx, ec2: EC2Client, snapshotId, pollingConfig):
    def refresh():
        try:
            resp = ec2.describe_snapshots(SnapshotIds=[snapshotId])
        except ClientError as e:
            if _notFound(e, "InvalidSnapshot.NotFound"):
                return None, "", ""
            raise
        snapshot = resp["Snapshots"][0]
        return snapshot, snapshot["State"], snapshot.get("StateMessage", "")

    return waitForState(
        ctx, refresh, "completed", ["pending"], pollingConfig.params(),
        "snapshot %s to complete" % snapshotId,
    )


def waitUntilImageImported(ctx, ec2: EC2Client, importTaskId, pollingConfig):
    def refresh():
        resp = ec2.describe_import_image_tasks(ImportTaskIds=[importTaskId])
        if not resp.get("ImportImageTasks"):
            return None, "", ""
        task = resp["ImportImageTasks"][0]
        return task, task.get("Status", ""), task.get("StatusMessage", "")

    params = pollingConfig.resolve().withDefaults(
        Config.IMPORT_WAITER_MAX_ATTEMPTS, Config.IMPORT_WAITER_DELAY_SECONDS
    )
    return waitForState(
        ctx, refresh, "completed", ["active"], params,
        "import task %s to complete" % importTaskId,
    )


def waitUntilSpotRequestFulfilled(ctx, ec2: EC2Client, spotRequestId, pollingConfig):
    def refresh():
        try:
            resp = ec2.describe_spot_instance_requests(
                SpotInstanceRequestIds=[spotRequestId]
            )
        except ClientError as e:
            if _notFound(e, "InvalidSpotInstanceRequestID.NotFound"):
                return None, "", ""
            raise
        request = resp["SpotInstanceRequests"][0]
        state = request["State"]
        # active only means fulfilled once an instance is attached
        if state == "active" and not request.get("InstanceId"):
            state = "open"
        return request, state, request.get("Status", {}).get("Message", "")

    return waitForState(
        ctx, refresh, "active", ["open"], pollingConfig.params(),
        "spot request %s to be fulfilled" % spotRequestId,
    )


def waitUntilInstanceProfileExists(ctx, iam: IAMClient, profileName, pollingConfig):
    def refresh():
        try:
            resp = iam.get_instance_profile(InstanceProfileName=profileName)
        except ClientError as e:
            if _notFound(e, "NoSuchEntity"):
                return None, "", ""
            raise
        profile = resp["InstanceProfile"]
        if not profile.get("Roles"):
            return profile, "", ""
        return profile, "exists", ""

    return waitForState(
        ctx, refresh, "exists", [], pollingConfig.params(delaySeconds=1),
        "instance profile %s to exist" % profileName,
    )
