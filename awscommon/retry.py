#
# retry.py - Bounded retries around remote calls.
#
# Only wrap calls that are safe to repeat: describes, tag creation, or
# creation calls that are idempotent on their own (a client token, or a
# job that fails instead of duplicating). Audit every new call site.
#
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import backoff

from buildObjects import BuildCancelled, RunContext
from awscommon.errors import RetryError

log = logging.getLogger(__name__)


@dataclass
class Backoff(object):
    """Delay grows by multiplier after every attempt and is capped at
    maxBackoff. No jitter is applied.
    """

    initialBackoff: float = 0.2
    maxBackoff: float = 30.0
    multiplier: float = 2.0

    def delays(self):
        wait = backoff.expo(
            base=self.multiplier, factor=self.initialBackoff, max_value=self.maxBackoff
        )
        # backoff wait generators are primed with one send(None)
        wait.send(None)
        return wait


@dataclass
class RetryConfig(object):
    # Number of attempts, 0 retries until cancelled
    tries: int = 0
    retryDelay: Optional[Backoff] = None
    # Return False to stop retrying on a given error
    shouldRetry: Optional[Callable[[Exception], bool]] = None

    def run(self, ctx: RunContext, fn: Callable[[RunContext], object], name="operation"):
        """run - Call fn(ctx) until it returns without raising.

        Returns what fn returned. Raises BuildCancelled as soon as ctx is
        cancelled, and RetryError (chained from the last error) once the
        attempts are used up or shouldRetry declines an error.
        """
        delays = (self.retryDelay or Backoff()).delays()
        attempt = 0
        while True:
            if ctx.cancelled:
                raise BuildCancelled("%s cancelled after %d attempt(s)" % (name, attempt))
            attempt += 1
            try:
                return fn(ctx)
            except BuildCancelled:
                raise
            except Exception as e:
                lastError = e

            if self.shouldRetry is not None and not self.shouldRetry(lastError):
                raise RetryError(name, attempt, lastError) from lastError
            if self.tries > 0 and attempt >= self.tries:
                raise RetryError(name, attempt, lastError) from lastError

            delay = next(delays)
            log.debug(
                "%s attempt %d failed: %s, retrying in %.1fs"
                % (name, attempt, lastError, delay)
            )
            if not ctx.sleep(delay):
                raise BuildCancelled(
                    "%s cancelled after %d attempt(s)" % (name, attempt)
                ) from lastError
