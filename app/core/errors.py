"""
Scheduling error taxonomy.

Each error carries a category (validation, not_found, conflict, internal)
and a machine-readable code that is handed back to the agent inside a
tool result. Messages are safe to show to a patient.
"""

from typing import Optional


class SchedulingError(Exception):
    """Base class for recoverable scheduling errors."""

    category: str = "internal"
    default_code: str = "internal"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code or self.default_code
        super().__init__(message)


class InvalidInputError(SchedulingError):
    """Malformed date, phone or identifier. Raised before touching storage."""

    category = "validation"
    default_code = "validation"


class NotFoundError(SchedulingError):
    """Referenced record is absent or belongs to another clinic."""

    category = "not_found"
    default_code = "not_found"


class ConflictError(SchedulingError):
    """Interval overlap or an invalid state transition."""

    category = "conflict"
    default_code = "slot_conflict"


class DecisionMakerError(Exception):
    """The decision-maker could not be reached or failed."""
    pass


def slot_conflict_error() -> ConflictError:
    """Interval already taken by another active appointment."""
    return ConflictError(
        "Ese horario ya está ocupado. Por favor ofrece otro horario al paciente.",
        code="slot_conflict",
    )
