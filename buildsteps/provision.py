#
# provision.py - Hand the connected instance to the provisioning hook.
#
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import List, Protocol, Tuple

from buildObjects import BuildCancelled, RunContext, StateBag
from awscommon.communicator import SSHCommunicator
from buildsteps.interface import Action, halt


class Hook(Protocol):
    """Hook - Whatever customizes the instance before its disks are captured.

    run() raises to fail the build.
    """

    @abstractmethod
    def run(self, ctx: RunContext, ui, comm: SSHCommunicator, data: dict) -> None:
        ...


@dataclass
class ShellHook(object):
    """ShellHook - Upload files, then run shell commands one after another.

    A command exiting non-zero stops the hook.
    """

    commands: List[str] = field(default_factory=list)
    uploads: List[Tuple[str, str]] = field(default_factory=list)

    def run(self, ctx: RunContext, ui, comm: SSHCommunicator, data: dict) -> None:
        for localFile, remotePath in self.uploads:
            ui.message("Uploading %s => %s" % (localFile, remotePath))
            ret = comm.upload(ctx, localFile, remotePath)
            if ret != 0:
                raise RuntimeError("Upload of %s failed with status %d" % (localFile, ret))
        for command in self.commands:
            ctx.check()
            ui.message("Running: %s" % command)
            ret = comm.run(ctx, command)
            if ctx.cancelled:
                raise BuildCancelled()
            if ret != 0:
                raise RuntimeError("Command %r exited with status %d" % (command, ret))


class StepProvision(object):
    def run(self, ctx: RunContext, state: StateBag) -> Action:
        hook = state.get("hook")
        if hook is None:
            return Action.CONTINUE
        ui = state.getExn("ui")
        comm = state.getExn("communicator", SSHCommunicator)

        ui.say("Provisioning with the configured hook...")
        try:
            hook.run(ctx, ui, comm, state.get("generated_data") or {})
        except BuildCancelled:
            raise
        except Exception as e:
            return halt(state, RuntimeError("Error provisioning: %s" % e))
        return Action.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass
