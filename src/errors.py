"""
Error taxonomy for the intake pipeline.

Every failure carries a machine-readable ``kind`` and a short
human-readable ``message``. The API layer maps each kind onto an HTTP
status; services raise these and never return ad hoc error dicts.
"""

from __future__ import annotations

from typing import Any


class IntakeError(Exception):
    """Base class for all pipeline failures."""

    kind = "intake_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "details": self.details}


class InvalidInput(IntakeError):
    """Caller error. Not retried."""

    kind = "invalid_input"
    status_code = 400


class SessionNotFound(InvalidInput):
    kind = "session_not_found"
    status_code = 404


class ExtractionUnavailable(IntakeError):
    """Transient provider or timeout failure. Safe to retry with backoff."""

    kind = "extraction_unavailable"
    status_code = 503
    retryable = True


class EmptyExtraction(IntakeError):
    """The model produced no usable structured data."""

    kind = "empty_extraction"
    status_code = 422


class UnknownEntity(IntakeError):
    """A patient, dentist or session reference no longer resolves."""

    kind = "unknown_entity"
    status_code = 409


class UnknownField(IntakeError):
    """A filter field was removed from the live research schema."""

    kind = "unknown_field"
    status_code = 409


class ConfirmationRequired(IntakeError):
    kind = "confirmation_required"
    status_code = 409


class ConflictDetected(IntakeError):
    kind = "conflict_detected"
    status_code = 409


class StorageFailure(IntakeError):
    """Opaque failure in the underlying store; the cause is logged, not surfaced."""

    kind = "storage_failure"
    status_code = 500


class SessionAlreadyActive(IntakeError):
    kind = "session_already_active"
    status_code = 409


class InvalidSessionState(IntakeError):
    kind = "invalid_session_state"
    status_code = 409
