"""
Data models for commit outcomes.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.schemas.appointment import AppointmentIntent


class CommitOutcome(str, Enum):
    CREATED = "created"
    CONFLICT = "conflict"
    REJECTED = "rejected"
    ERROR = "error"


class CommitReason(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class CommitResult(BaseModel):
    """Terminal result of a contextual commit."""

    model_config = ConfigDict(frozen=True)

    outcome: CommitOutcome
    entity_id: Optional[str] = None
    reason: Optional[CommitReason] = None
    conflicting_ids: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def created(cls, entity_id: str, warnings: list[str] | None = None) -> CommitResult:
        return cls(outcome=CommitOutcome.CREATED, entity_id=entity_id, warnings=warnings or [])

    @classmethod
    def rejected(cls, kind: str, message: str, **details: Any) -> CommitResult:
        return cls(
            outcome=CommitOutcome.REJECTED,
            reason=CommitReason(kind=kind, message=message, details=details),
        )

    @classmethod
    def conflict(cls, conflicting_ids: list[str], message: str) -> CommitResult:
        return cls(
            outcome=CommitOutcome.CONFLICT,
            reason=CommitReason(kind="conflict_detected", message=message),
            conflicting_ids=conflicting_ids,
        )

    @classmethod
    def error(cls, message: str, cause: str = "") -> CommitResult:
        return cls(
            outcome=CommitOutcome.ERROR,
            reason=CommitReason(kind="storage_failure", message=message, details={"cause": cause}),
        )


class AppointmentContext(BaseModel):
    """Keys an appointment is committed against."""

    patient_id: str
    dentist_id: str
    consultation_id: Optional[str] = None


class FilterSetContext(BaseModel):
    dentist_id: str
    name: str = "Untitled cohort"
    description: Optional[str] = None


class IntakeOutcome(BaseModel):
    """An extracted appointment and what happened when it was committed."""

    appointment: AppointmentIntent
    commit: CommitResult
    session_id: Optional[str] = None
