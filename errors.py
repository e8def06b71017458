"""Error types raised by the timer and invoicing engine."""

from typing import Dict, List, Optional


class TimerToolError(Exception):
    """Base class for engine errors surfaced to the command layer."""


class ValidationError(TimerToolError, ValueError):
    """Input rejected: no candidates, mixed clients, missing rates, etc."""

    def __init__(self, message: str, details: Optional[List[Dict]] = None):
        super().__init__(message)
        self.details = details or []


class NotFoundError(TimerToolError, LookupError):
    """Referenced invoice or time entry does not exist."""


class CancelledOperation(TimerToolError):
    """Operator dismissed the save destination prompt."""


class StorageFault(TimerToolError):
    """Database unreachable or a write could not be committed."""
