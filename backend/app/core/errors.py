"""Structured error types raised by the reminder engine.

Every error carries a machine-readable ``kind`` and a ``context`` mapping so
that callers (the sweep report, the HTTP layer) can surface them without
parsing messages.
"""

from __future__ import annotations

from typing import Any, Dict


class ReminderError(Exception):
    """Base class for all reminder engine errors."""

    kind: str = "reminder_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "context": dict(self.context)}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{key}={value!r}" for key, value in self.context.items())
        return f"{self.message} ({details})"


class ValidationError(ReminderError):
    """Rejected input on a write path or before contacting the gateway."""

    kind = "validation_error"


class NotFoundError(ValidationError):
    """A referenced customer does not exist."""

    kind = "not_found"


class ConflictError(ValidationError):
    """A write would break a uniqueness invariant (e.g. duplicate contact)."""

    kind = "conflict"


class InsufficientHistoryError(ReminderError):
    """Fewer than two orders exist, so no interval can be predicted."""

    kind = "insufficient_history"


class DispatchFailure(ReminderError):
    """The messaging gateway reported that a send did not go through."""

    kind = "dispatch_failure"


class PersistenceError(ReminderError):
    """The store is unavailable or a read/write failed."""

    kind = "persistence_error"
