"""
Contextual Commit Resolver.

Resolves a validated appointment or filter set against the entities it
refers to and performs one atomic create. Domain outcomes (conflict,
rejection, storage error) come back as a ``CommitResult``; nothing is
half-written and nothing is silently overwritten.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from src.config import get_settings
from src.db import EntityStore
from src.errors import (
    ConfirmationRequired,
    ConflictDetected,
    InvalidInput,
    StorageFailure,
    UnknownEntity,
    UnknownField,
)
from src.logging_config import get_logger
from src.schemas.appointment import AppointmentIntent, AppointmentType
from src.schemas.commit import AppointmentContext, CommitResult, FilterSetContext
from src.schemas.filters import FilterFieldRegistry, FilterSet
from src.services.filter_extractor import shape_value
from src.services.keyed_locks import KeyedLocks
from src.services.schema_validator import CoercionError

logger = get_logger(__name__)

# These continue an existing consultation and must reference it.
CONSULTATION_BOUND_TYPES = {AppointmentType.TREATMENT, AppointmentType.FOLLOW_UP}


def _as_datetime(value: Any, tz) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open intervals: back-to-back bookings do not collide."""
    return start_a < end_b and start_b < end_a


class ContextualCommitResolver:
    def __init__(
        self,
        store: EntityStore,
        registry: FilterFieldRegistry | None = None,
        min_confidence: float | None = None,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.registry = registry or FilterFieldRegistry(deprecated=settings.deprecated_filter_fields)
        self.min_confidence = (
            min_confidence if min_confidence is not None else settings.auto_commit_min_confidence
        )
        # Check-then-create for one dentist runs one at a time in this process;
        # the database exclusion constraint covers other processes.
        self._dentist_locks = KeyedLocks()

    # -- Appointments --

    async def commit_appointment(
        self,
        intent: AppointmentIntent,
        context: AppointmentContext,
        confirmed: bool = False,
    ) -> CommitResult:
        """
        Book ``intent`` for the patient and dentist in ``context``.

        ``confirmed`` records that a person approved the details, which
        lifts the confirmation and confidence gates but never the need
        for a concrete start time.
        """
        if intent.start is None:
            return CommitResult.rejected(
                ConfirmationRequired.kind,
                "No concrete date and time to book",
                window_start=intent.window_start.isoformat() if intent.window_start else None,
                window_end=intent.window_end.isoformat() if intent.window_end else None,
            )
        if intent.needs_confirmation and not confirmed:
            return CommitResult.rejected(
                ConfirmationRequired.kind,
                "The requested time needs confirmation before booking",
                start=intent.start.isoformat(),
            )
        if intent.confidence < self.min_confidence and not confirmed:
            return CommitResult.rejected(
                ConfirmationRequired.kind,
                "Extraction confidence is too low to book automatically",
                confidence=intent.confidence,
                threshold=self.min_confidence,
            )
        if intent.appointment_type in CONSULTATION_BOUND_TYPES and not context.consultation_id:
            return CommitResult.rejected(
                InvalidInput.kind,
                f"A {intent.appointment_type.value} appointment must reference a consultation",
            )

        start = intent.start
        end = intent.end

        try:
            if await self.store.find_patient(context.patient_id) is None:
                return CommitResult.rejected(
                    UnknownEntity.kind, "Patient not found", entity="patient", id=context.patient_id
                )
            if await self.store.find_provider(context.dentist_id) is None:
                return CommitResult.rejected(
                    UnknownEntity.kind, "Dentist not found", entity="dentist", id=context.dentist_id
                )

            async with self._dentist_locks.hold(context.dentist_id):
                bookings = await self.store.list_bookings_in_window(context.dentist_id, start, end)
                colliding = [
                    str(b["id"])
                    for b in bookings
                    if overlaps(
                        start,
                        end,
                        _as_datetime(b["scheduled_start"], start.tzinfo),
                        _as_datetime(b["scheduled_end"], start.tzinfo),
                    )
                ]
                if colliding:
                    logger.info(
                        "commit_conflict",
                        dentist_id=context.dentist_id,
                        start=start.isoformat(),
                        conflicting_ids=colliding,
                    )
                    return CommitResult.conflict(colliding, "The dentist is already booked at that time")

                created = await self.store.create_appointment(
                    self._appointment_record(intent, context, confirmed)
                )
        except ConflictDetected as e:
            logger.info("commit_conflict", dentist_id=context.dentist_id, start=start.isoformat(), source="store")
            return CommitResult.conflict([], e.message)
        except StorageFailure as e:
            logger.error("commit_storage_failure", entity="appointment", cause=e.details.get("cause", e.message))
            return CommitResult.error("Could not save the appointment", cause=e.details.get("cause", e.message))

        entity_id = str(created["id"])
        warnings = [f"Not understood: {f}" for f in intent.dropped_fields]
        logger.info(
            "appointment_committed",
            appointment_id=entity_id,
            dentist_id=context.dentist_id,
            start=start.isoformat(),
        )
        return CommitResult.created(entity_id, warnings)

    @staticmethod
    def _appointment_record(
        intent: AppointmentIntent, context: AppointmentContext, confirmed: bool
    ) -> dict[str, Any]:
        return {
            "patient_id": context.patient_id,
            "dentist_id": context.dentist_id,
            "consultation_id": context.consultation_id,
            "appointment_type": intent.appointment_type.value,
            "scheduled_start": intent.start.isoformat(),
            "scheduled_end": intent.end.isoformat(),
            "duration_minutes": intent.duration_minutes,
            "reason": intent.reason,
            "tooth_number": intent.tooth_number,
            "urgency": intent.urgency.value,
            "status": "scheduled",
            "source": "confirmed_extraction" if confirmed else "auto_extraction",
            "extraction_confidence": intent.confidence,
        }

    # -- Filter sets --

    async def commit_filter_set(self, filter_set: FilterSet, context: FilterSetContext) -> CommitResult:
        """Persist ``filter_set`` if every criterion is still expressible in the live registry."""
        stale = sorted({c.field for c in filter_set.criteria if c.field not in self.registry})
        if stale:
            logger.info("filter_commit_stale_fields", fields=stale)
            return CommitResult.rejected(
                UnknownField.kind, "Some filter fields are no longer available", fields=stale
            )

        invalid = [
            f"{c.field}:{c.operator.value}"
            for c in filter_set.criteria
            if not self.registry.get(c.field).allows(c.operator)
        ]
        if invalid:
            return CommitResult.rejected(
                InvalidInput.kind, "Some operators are not valid for their fields", criteria=invalid
            )

        criteria = []
        malformed = []
        for c in filter_set.criteria:
            try:
                value = shape_value(self.registry.get(c.field), c.operator, c.value)
            except CoercionError:
                malformed.append(f"{c.field}:{c.operator.value}")
                continue
            criteria.append(c.model_copy(update={"value": value}))
        if malformed:
            return CommitResult.rejected(
                InvalidInput.kind, "Some values do not fit their operators", criteria=malformed
            )

        try:
            if await self.store.find_provider(context.dentist_id) is None:
                return CommitResult.rejected(
                    UnknownEntity.kind, "Dentist not found", entity="dentist", id=context.dentist_id
                )
            created = await self.store.create_filter_set(
                {
                    "dentist_id": context.dentist_id,
                    "name": context.name,
                    "description": context.description,
                    "filters": [c.model_dump(mode="json") for c in criteria],
                    "original_text": filter_set.original_text,
                    "confidence": filter_set.confidence,
                }
            )
        except StorageFailure as e:
            logger.error("commit_storage_failure", entity="filter_set", cause=e.details.get("cause", e.message))
            return CommitResult.error("Could not save the filter set", cause=e.details.get("cause", e.message))

        entity_id = str(created["id"])
        logger.info("filter_set_committed", filter_set_id=entity_id, criteria=len(filter_set.criteria))
        return CommitResult.created(entity_id, [f"Not understood: {f}" for f in filter_set.dropped_fields])
