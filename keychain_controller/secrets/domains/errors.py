"""Error taxonomy for command execution, the object store and configuration."""
from typing import Optional


class KeychainError(Exception):
    """Base class for every error raised by keychain-controller."""

    retryable = True


class ConfigError(KeychainError):
    """Configuration error exception."""

    retryable = False


class CommandError(KeychainError):
    """An external command could not produce its output."""

    def __init__(self, message: str, command: str):
        super().__init__(message)
        self.command = command


class CommandNotFoundError(CommandError):
    """Executable could not be resolved on the search path."""

    retryable = False

    def __init__(self, command: str):
        super().__init__(f"Executable not found: {command}", command)


class CommandTimeoutError(CommandError):
    """Command exceeded its allotted duration and was killed."""

    def __init__(self, command: str, timeout_seconds: float):
        super().__init__(f"Command {command} timed out after {timeout_seconds}s", command)
        self.timeout_seconds = timeout_seconds


class CommandStartError(CommandError):
    """Executable was found but the operating system refused to start it."""

    retryable = False

    def __init__(self, command: str, cause: OSError):
        super().__init__(f"Command {command} could not be started: {cause.strerror or cause}", command)
        self.errno = cause.errno


class CommandExitError(CommandError):
    """Command ran and exited with a non-zero status."""

    def __init__(self, command: str, exit_code: int, output: bytes = b""):
        super().__init__(f"Command {command} exited with status {exit_code}", command)
        self.exit_code = exit_code
        self.output = output


class StoreError(KeychainError):
    """Object store request failed."""

    def __init__(self, message: str, key: Optional[object] = None):
        super().__init__(message)
        self.key = key


class ObjectNotFoundError(StoreError):
    """Requested object does not exist."""


class AlreadyExistsError(StoreError):
    """Object with the same key was created first by someone else."""


class ConflictError(StoreError):
    """Patch baseline is stale; re-read and retry."""
