#
# buildUi.py - Progress messages for one build run.
#
# Every build gets its own logger and its own secret filter. The filter is
# attached for the lifetime of the run and detached by close(), so secrets of
# one run never leak into (or linger in) the filtering of another.
#
import logging
import os
from typing import Iterable, List


class SecretFilter(logging.Filter):
    """Replaces every registered secret in a log record with <sensitive>"""

    def __init__(self, secrets: Iterable[str] = ()):
        super().__init__()
        self.secrets: List[str] = []
        self.set(*secrets)

    def set(self, *secrets):
        for secret in secrets:
            if secret and secret not in self.secrets:
                self.secrets.append(secret)

    def redact(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, "<sensitive>")
        return text

    def filter(self, record):
        if self.secrets:
            record.msg = self.redact(record.getMessage())
            record.args = ()
        return True


class BuildUi(object):
    def __init__(self, name, secrets: Iterable[str] = ()):
        self.name = name
        self.log = logging.getLogger("BuildUi-%s-%s" % (name, os.getpid()))
        self.secretFilter = SecretFilter(secrets)
        self.log.addFilter(self.secretFilter)
        self.messages: List[str] = []

    def say(self, message):
        """say - A top-level progress line, e.g. the start of a step"""
        self._emit(logging.INFO, "==> %s: %s" % (self.name, message))

    def message(self, message):
        """message - Detail inside the current step"""
        self._emit(logging.INFO, "    %s: %s" % (self.name, message))

    def error(self, message):
        self._emit(logging.ERROR, "==> %s: %s" % (self.name, message))

    def _emit(self, level, line):
        line = self.secretFilter.redact(line)
        self.messages.append(line)
        self.log.log(level, line)

    def close(self):
        self.log.removeFilter(self.secretFilter)
        self.secretFilter.secrets = []
