from enum import Enum
from typing import Protocol
from abc import abstractmethod

from buildObjects import RunContext, StateBag


class Action(str, Enum):
    CONTINUE = "continue"
    HALT = "halt"


class Step(Protocol):
    @abstractmethod
    def run(self, ctx: RunContext, state: StateBag) -> Action:
        ...

    @abstractmethod
    def cleanup(self, state: StateBag) -> None:
        ...


def halt(state: StateBag, err: Exception) -> Action:
    """halt - Record err as the build error, report it and stop the build"""
    state.putError(err)
    ui = state.get("ui")
    if ui is not None:
        ui.error(str(err))
    return Action.HALT
