"""Run external commands with path resolution, a deadline and classified failures."""
import logging
import os
import shutil
import signal
import subprocess
import time
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from .errors import CommandExitError, CommandNotFoundError, CommandStartError, CommandTimeoutError
from .events import EventSink, LoggingEventSink

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30

# How long to wait for output to drain after the process group was killed
KILL_GRACE_SECONDS = 1


@dataclass(frozen=True)
class CommandSpec:
    """A command to run: executable (relative or absolute), arguments and timeout."""
    executable: str
    args: Tuple[str, ...] = ()
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    @classmethod
    def of(cls, executable: str, args: Optional[Sequence[str]] = None,
           timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> "CommandSpec":
        return cls(executable, tuple(args or ()), timeout_seconds)


class CommandRunner:
    """Runs one child process per call and returns its standard output."""

    def __init__(self, events: Optional[EventSink] = None):
        self.events = events or LoggingEventSink(logger)

    def resolve(self, executable: str) -> str:
        """
        Resolve an executable name or path to an absolute path.

        Raises:
            CommandNotFoundError: If nothing executable is found
        """
        path = shutil.which(executable)
        if path is None:
            self.events.emit("command.not_found", command=executable)
            raise CommandNotFoundError(executable)
        return path

    def run(self, spec: CommandSpec) -> bytes:
        """
        Run a command under its timeout.

        A timeout of zero expires immediately. Standard error is inherited, not captured.

        Returns:
            Captured standard output bytes

        Raises:
            CommandNotFoundError: Executable could not be resolved (nothing is spawned)
            CommandStartError: Executable was found but the OS refused to run it
            CommandTimeoutError: Deadline passed; the process group has been killed
            CommandExitError: Process exited non-zero before the deadline
        """
        path = self.resolve(spec.executable)

        deadline = time.monotonic() + spec.timeout_seconds
        timed_out = False
        # stdin is a pipe (closed right away by communicate) because with stdout as the
        # only pipe communicate() reads to EOF and ignores its timeout. The child leads
        # its own session so a timeout kills everything it started.
        try:
            process = subprocess.Popen(
                [path, *spec.args],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            self.events.emit("command.start_failed", command=spec.executable, errno=e.errno, error=e.strerror)
            raise CommandStartError(spec.executable, e) from e

        with process:
            try:
                output, _ = process.communicate(timeout=spec.timeout_seconds)
            except subprocess.TimeoutExpired:
                timed_out = True
                _kill_group(process)
                try:
                    output, _ = process.communicate(timeout=KILL_GRACE_SECONDS)
                except subprocess.TimeoutExpired:
                    # A descendant left the group and still holds stdout open
                    process.stdout.close()
                    process.wait()
                    output = b""
            exit_code = process.returncode

        # Check the deadline rather than the exit status: a killed process reports
        # a platform specific status that would otherwise look like a plain failure.
        if timed_out or time.monotonic() >= deadline:
            self.events.emit("command.timeout", command=spec.executable, timeout_seconds=spec.timeout_seconds)
            raise CommandTimeoutError(spec.executable, spec.timeout_seconds)

        if exit_code != 0:
            self.events.emit("command.failed", command=spec.executable, exit_code=exit_code, output_bytes=len(output))
            raise CommandExitError(spec.executable, exit_code, output)

        self.events.emit("command.completed", command=spec.executable, bytes=len(output))
        return output


def _kill_group(process: subprocess.Popen) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        process.kill()
