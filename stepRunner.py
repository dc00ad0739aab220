#
# stepRunner.py - Runs a fixed list of build steps in order.
#
# Steps run strictly one after the other. The forward pass stops at the first
# step that halts (or raises) or as soon as the run context is cancelled. The
# cleanup of every step that was entered then runs in reverse order, whether
# the build succeeded or not. A failing cleanup is logged and the remaining
# cleanups still run.
#
# The build error is never raised from here; it stays in the state bag under
# "error" for the builder to report after the cleanups are done.
#
import logging
import traceback
from enum import Enum
from typing import List, Sequence

from buildObjects import BuildCancelled, RunContext, StateBag
from buildsteps.interface import Action, Step


class RunnerStatus(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    HALTED = "halted"
    CANCELLED = "cancelled"


class StepRunner(object):
    def __init__(self, steps: Sequence[Step]):
        self.steps = list(steps)
        self.status = RunnerStatus.NOT_STARTED
        self.ran: List[Step] = []
        self.log = logging.getLogger("StepRunner")

    def stepName(self, step):
        return type(step).__name__

    def run(self, ctx: RunContext, state: StateBag) -> RunnerStatus:
        if self.status != RunnerStatus.NOT_STARTED:
            raise RuntimeError("a StepRunner can only run once")
        self.status = RunnerStatus.RUNNING

        try:
            self.__forward(ctx, state)
        finally:
            self.__cleanup(state)

        return self.status

    def __forward(self, ctx, state):
        for step in self.steps:
            if ctx.cancelled:
                self.__markCancelled(state)
                return

            self.ran.append(step)
            self.log.debug("Running step %s" % self.stepName(step))
            try:
                action = step.run(ctx, state)
            except BuildCancelled:
                self.__markCancelled(state)
                return
            except Exception as e:
                self.log.error(
                    "Step %s raised: %s\n%s"
                    % (self.stepName(step), e, traceback.format_exc())
                )
                state.putError(e)
                action = Action.HALT

            if action == Action.HALT:
                self.log.info("Step %s halted the build" % self.stepName(step))
                state.put("halted", True)
                self.status = RunnerStatus.HALTED
                return

            if ctx.cancelled:
                self.__markCancelled(state)
                return

        self.status = RunnerStatus.SUCCEEDED

    def __markCancelled(self, state):
        self.log.info("Build cancelled, stopping before the next step")
        state.put("cancelled", True)
        self.status = RunnerStatus.CANCELLED

    def __cleanup(self, state):
        for step in reversed(self.ran):
            self.log.debug("Cleaning up step %s" % self.stepName(step))
            try:
                step.cleanup(state)
            except Exception as e:
                self.log.error(
                    "Cleanup of %s failed: %s\n%s"
                    % (self.stepName(step), e, traceback.format_exc())
                )
