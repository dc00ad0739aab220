#
# connect.py - Wait until the build instance accepts ssh connections.
#
from dataclasses import dataclass

from config import Config
from buildObjects import BuildCancelled, RunContext, StateBag
from awscommon.communicator import SSHCommunicator
from buildsteps import launch
from buildsteps.interface import Action, halt


@dataclass
class StepConnect(object):
    username: str
    port: int = 22
    host: str = ""
    sshTimeout: int = Config.SSH_TIMEOUT
    sshInterface: str = ""

    def run(self, ctx: RunContext, state: StateBag) -> Action:
        ui = state.getExn("ui")
        host = self.host or state.getExn("instance_ip", str)
        if not host:
            # A public address can be assigned after the instance is running
            try:
                instance = launch.describeInstance(state.getExn("ec2"), state.getExn("instance_id"))
            except Exception as e:
                return halt(state, RuntimeError("Error describing instance: %s" % e))
            host = launch.instanceAddress(instance, self.sshInterface)
            state.put("instance_ip", host)
        if not host:
            return halt(state, RuntimeError(
                "Instance %s has no address to connect to" % state.get("instance_id")
            ))

        comm = SSHCommunicator(
            host=host,
            username=self.username,
            privateKeyFile=state.getExn("private_key_file", str),
            port=self.port,
        )
        ui.say("Waiting for SSH to become available...")
        try:
            comm.waitForConnection(ctx, self.sshTimeout)
        except BuildCancelled:
            raise
        except Exception as e:
            return halt(state, RuntimeError("Error waiting for SSH: %s" % e))

        ui.say("Connected to SSH!")
        state.put("communicator", comm)
        return Action.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass
