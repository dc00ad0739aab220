#
# errors.py - Exceptions raised by the builders and the import post-processor.
#
from typing import Iterable, List, Optional


class MultiError(Exception):
    """MultiError - Every configuration problem found in one pass"""

    def __init__(self, errors: Iterable[Exception] = ()):
        self.errors: List[Exception] = list(errors)
        super().__init__(self.__str__())

    def __str__(self):
        lines = ["%d error(s) occurred:" % len(self.errors)]
        lines += ["* %s" % e for e in self.errors]
        return "\n".join(lines)

    def append(self, *errors):
        for err in errors:
            if isinstance(err, MultiError):
                self.errors.extend(err.errors)
            elif err is not None:
                self.errors.append(err)
        self.args = (self.__str__(),)

    def __bool__(self):
        return len(self.errors) > 0


class ConfigError(ValueError):
    pass


class RetryError(Exception):
    """Raised when a retried call failed on every attempt"""

    def __init__(self, operation: str, attempts: int, lastError: Exception):
        self.operation = operation
        self.attempts = attempts
        self.lastError = lastError
        super().__init__(
            "%s failed after %d attempt(s): %s" % (operation, attempts, lastError)
        )


class WaiterTimeoutError(Exception):
    """A waiter used up its attempts before the resource reached its target"""

    def __init__(self, description: str, attempts: int, lastState: Optional[str]):
        self.description = description
        self.attempts = attempts
        self.lastState = lastState
        super().__init__(
            "timeout waiting for %s after %d attempt(s), last state: %s"
            % (description, attempts, lastState)
        )


class WaiterFailureError(Exception):
    """The remote operation itself reported a terminal failure"""

    def __init__(self, description: str, state: str, statusMessage: str = ""):
        self.description = description
        self.state = state
        self.statusMessage = statusMessage
        super().__init__(
            "%s entered state %s: %s" % (description, state, statusMessage)
        )
