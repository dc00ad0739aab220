from __future__ import annotations
#
# buildObjects.py - Objects used to pass state between build steps.
#
import threading
import time
from typing import Any, Dict, Optional, Tuple, Type, TypeVar

T = TypeVar("T")


class BuildCancelled(Exception):
    """Raised when the run context was cancelled or its deadline passed"""

    def __init__(self, message="Build was cancelled."):
        super().__init__(message)


class StateBagKeyError(KeyError):
    pass


class RunContext(object):

    """
    RunContext - Cancellation context handed to every step and waiter.

    Sleeping through the context instead of time.sleep lets a cancel() from
    another thread interrupt a poll loop within one delay interval.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._event = threading.Event()
        self._deadline: Optional[float] = None
        if timeout is not None:
            self._deadline = time.monotonic() + timeout

    def __repr__(self):
        return "RunContext(cancelled: %s)" % self.cancelled

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._event.set()
            return True
        return False

    def check(self) -> None:
        if self.cancelled:
            raise BuildCancelled()

    def sleep(self, seconds: float) -> bool:
        """sleep - Wait for seconds or until cancelled. Returns False if the
        context was cancelled before the time was up.
        """
        if self._deadline is not None:
            seconds = min(seconds, max(0.0, self._deadline - time.monotonic()))
        self._event.wait(seconds)
        return not self.cancelled


class StateBag(object):

    """
    StateBag - The only channel by which build steps talk to each other.

    Values are put by the step that produced them; a later step must not assume
    a key is present, and uses getExn when the absence of a key is a bug.
    """

    def __init__(self):
        self._values: Dict[str, Any] = {}

    def __repr__(self):
        return "StateBag(%s)" % sorted(self._values.keys())

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def put(self, key: str, value: Any) -> None:
        self._values[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def getOk(self, key: str) -> Tuple[Any, bool]:
        if key in self._values:
            return self._values[key], True
        return None, False

    def getExn(self, key: str, expected: Optional[Type[T]] = None) -> Any:
        if key not in self._values:
            raise StateBagKeyError("state bag has no value for %r" % key)
        value = self._values[key]
        if expected is not None and not isinstance(value, expected):
            raise TypeError(
                "state bag value for %r is %s, expected %s"
                % (key, type(value).__name__, expected.__name__)
            )
        return value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)

    def keys(self):
        return list(self._values.keys())

    def putError(self, err: Exception) -> None:
        """putError - Record the first fatal error of the run. Later errors
        are usually consequences of the first one and are only logged.
        """
        if "error" not in self._values:
            self._values["error"] = err
