"""Structured event sinks used by the command layer and the workflows."""
import logging
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)

# Events not listed here are logged at INFO
EVENT_LEVELS: Dict[str, int] = {
    "command.completed": logging.DEBUG,
    "command.not_found": logging.ERROR,
    "command.start_failed": logging.ERROR,
    "command.timeout": logging.WARNING,
    "command.failed": logging.WARNING,
    "identity.found": logging.DEBUG,
    "secret.unchanged": logging.DEBUG,
    "reconcile.failed": logging.ERROR,
}


class EventSink(Protocol):
    """Anything that accepts a named event with structured fields."""

    def emit(self, event: str, **fields: Any) -> None:
        ...


class LoggingEventSink:
    """Write events to the standard logging module as `event key=value ...`."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self._logger = log or logger

    def emit(self, event: str, **fields: Any) -> None:
        level = EVENT_LEVELS.get(event, logging.INFO)
        if not self._logger.isEnabledFor(level):
            return
        rendered = " ".join(f"{key}={value!r}" for key, value in sorted(fields.items()))
        self._logger.log(level, f"{event} {rendered}".rstrip())
