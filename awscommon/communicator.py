#
# communicator.py - Reach the build instance with the ssh and scp binaries.
#
import logging
import os
import subprocess
import time
from dataclasses import dataclass, field
from typing import List, Optional

from config import Config
from buildObjects import BuildCancelled, RunContext

log = logging.getLogger(__name__)


def timeout(command, time_out=1, ctx: Optional[RunContext] = None):
    """timeout - Run a unix command with a timeout. Return -1 on
    timeout or cancellation, otherwise return the return value from the
    command, which is typically 0 for success, 1-255 for failure.
    """
    p = subprocess.Popen(command, stdout=subprocess.DEVNULL, stderr=subprocess.STDOUT)

    # Wait for the command to complete
    t = 0.0
    while t < time_out and p.poll() is None:
        if ctx is not None and ctx.cancelled:
            break
        time.sleep(Config.TIMER_POLL_INTERVAL)
        t += Config.TIMER_POLL_INTERVAL

    # Determine why the while loop terminated
    if p.poll() is None:
        try:
            p.kill()
        except OSError:
            pass
        return -1
    return p.poll()


@dataclass
class SSHCommunicator(object):
    host: str
    username: str
    privateKeyFile: str
    port: int = 22
    flags: List[str] = field(default_factory=lambda: list(Config.SSH_FLAGS))

    def target(self):
        return "%s@%s" % (self.username, self.host)

    def sshArgs(self) -> List[str]:
        return ["ssh", "-i", self.privateKeyFile, "-p", str(self.port)] + self.flags

    def run(self, ctx: RunContext, command: str, time_out=Config.PROVISION_TIMEOUT) -> int:
        log.debug("Running on %s: %s" % (self.host, command))
        return timeout(self.sshArgs() + [self.target(), command], time_out, ctx)

    def upload(self, ctx: RunContext, localFile: str, remotePath: str, time_out=600) -> int:
        args = ["scp", "-i", self.privateKeyFile, "-P", str(self.port)] + self.flags
        return timeout(args + [localFile, "%s:%s" % (self.target(), remotePath)], time_out, ctx)

    def waitForConnection(self, ctx: RunContext, max_secs: int) -> None:
        """waitForConnection - Retry a no-op command until ssh gets through.

        ssh returns 255 when it could not connect and -1 is our own timeout;
        anything else means the remote shell ran.
        """
        start_time = time.time()
        while True:
            elapsed_secs = time.time() - start_time
            if elapsed_secs > max_secs:
                raise TimeoutError(
                    "Timeout waiting for SSH on %s after %d secs" % (self.host, elapsed_secs)
                )

            ret = self.run(ctx, "(:)", time_out=max(1, max_secs - elapsed_secs))
            if ctx.cancelled:
                raise BuildCancelled("cancelled while waiting for SSH on %s" % self.host)
            log.debug("ssh to %s returned %d" % (self.host, ret))
            if ret not in (-1, 255):
                return

            if not ctx.sleep(Config.SSH_RETRY_INTERVAL):
                raise BuildCancelled("cancelled while waiting for SSH on %s" % self.host)


def writePrivateKey(path: str, material: str) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(material)
