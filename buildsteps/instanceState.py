#
# instanceState.py - Steps that prepare the provisioned instance for capture:
# remove the temporary key, stop the instance, and switch on enhanced
# networking.
#
from dataclasses import dataclass
from typing import Optional

from buildObjects import BuildCancelled, RunContext, StateBag
from awscommon import polling
from awscommon.communicator import SSHCommunicator
from awscommon.polling import PollingConfig
from buildsteps.interface import Action, halt

CLEAR_AUTHORIZED_KEYS = "sed -i.bak '/%s/d' %s/.ssh/authorized_keys; rm -f %s/.ssh/authorized_keys.bak"


@dataclass
class StepCleanupTempKeys(object):
    clearAuthorizedKeys: bool = False
    temporaryKeyPairName: str = ""

    def run(self, ctx: RunContext, state: StateBag) -> Action:
        # Only a key pair this build created should be removed from the image
        if not self.clearAuthorizedKeys or state.get("key_pair_name") != self.temporaryKeyPairName:
            return Action.CONTINUE
        if not self.temporaryKeyPairName:
            return Action.CONTINUE

        ui = state.getExn("ui")
        comm = state.getExn("communicator", SSHCommunicator)
        ui.say("Trying to remove ephemeral keys from authorized_keys files")

        for command in (
            CLEAR_AUTHORIZED_KEYS % (self.temporaryKeyPairName, "~", "~"),
            "sudo sh -c \"%s\"" % CLEAR_AUTHORIZED_KEYS % (self.temporaryKeyPairName, "/root", "/root"),
        ):
            ret = comm.run(ctx, command, time_out=60)
            if ctx.cancelled:
                raise BuildCancelled()
            if ret != 0:
                ui.message("Error cleaning up authorized_keys (status %d), continuing" % ret)
        return Action.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass


@dataclass
class StepStopInstance(object):
    pollingConfig: PollingConfig
    spot: bool = False
    disableStopInstance: bool = False

    def run(self, ctx: RunContext, state: StateBag) -> Action:
        # Spot instances cannot be stopped, the image is taken while running
        if self.spot:
            return Action.CONTINUE

        ec2 = state.getExn("ec2")
        ui = state.getExn("ui")
        instanceId = state.getExn("instance_id", str)

        if not self.disableStopInstance:
            ui.say("Stopping the source instance...")
            try:
                resp = ec2.stop_instances(InstanceIds=[instanceId])
            except Exception as e:
                return halt(state, RuntimeError("Error stopping instance: %s" % e))
            for change in resp.get("StoppingInstances", []):
                ui.message("Instance %s is %s" % (instanceId, change["CurrentState"]["Name"]))
        else:
            ui.say("Automatic instance stop disabled. Please stop instance manually.")

        ui.say("Waiting for the instance to stop...")
        try:
            polling.waitUntilInstanceStopped(ctx, ec2, instanceId, self.pollingConfig)
        except BuildCancelled:
            raise
        except Exception as e:
            return halt(state, RuntimeError("Error waiting for instance to stop: %s" % e))
        return Action.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass


@dataclass
class StepModifyInstance(object):
    enableAmiSriovNetSupport: bool = False
    enableAmiEnaSupport: Optional[bool] = None

    def run(self, ctx: RunContext, state: StateBag) -> Action:
        ec2 = state.getExn("ec2")
        ui = state.getExn("ui")
        instanceId = state.getExn("instance_id", str)

        if self.enableAmiSriovNetSupport:
            ui.say("Enabling Enhanced Networking (SR-IOV)...")
            try:
                ec2.modify_instance_attribute(
                    InstanceId=instanceId, SriovNetSupport={"Value": "simple"}
                )
            except Exception as e:
                return halt(state, RuntimeError(
                    "Error enabling Enhanced Networking (SR-IOV) on %s: %s" % (instanceId, e)
                ))

        if self.enableAmiEnaSupport is not None:
            verb = "Enabling" if self.enableAmiEnaSupport else "Disabling"
            ui.say("%s Enhanced Networking (ENA)..." % verb)
            try:
                ec2.modify_instance_attribute(
                    InstanceId=instanceId, EnaSupport={"Value": self.enableAmiEnaSupport}
                )
            except Exception as e:
                return halt(state, RuntimeError(
                    "Error %s Enhanced Networking (ENA) on %s: %s"
                    % (verb.lower(), instanceId, e)
                ))
        return Action.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass
