"""
Intake pipeline wiring.

transcript -> Appointment Extractor -> Commit Resolver, and for voice:
stopped session -> the same chain -> session marked processed. Each
session's transcript is consumed by exactly one extraction attempt,
except when the model was unreachable, in which case the session stays
``stopped`` so the background processor can try again.
"""

from __future__ import annotations

from datetime import datetime

from src.db import EntityStore, get_db
from src.errors import (
    ExtractionUnavailable,
    IntakeError,
    InvalidInput,
    UnknownEntity,
)
from src.logging_config import get_logger, session_log_context
from src.schemas.commit import AppointmentContext, IntakeOutcome
from src.schemas.session import RecordingSession
from src.services.appointment_extractor import AppointmentExtractor
from src.services.commit_resolver import ContextualCommitResolver
from src.services.data_extraction import ConfidenceScoredExtractor
from src.services.llm_client import Understand, get_understand
from src.services.session_manager import VoiceSessionManager, get_session_store

logger = get_logger(__name__)


class IntakePipeline:
    def __init__(
        self,
        appointment_extractor: AppointmentExtractor,
        resolver: ContextualCommitResolver,
        sessions: VoiceSessionManager,
    ) -> None:
        self.appointment_extractor = appointment_extractor
        self.resolver = resolver
        self.sessions = sessions

    async def process_transcript(
        self,
        transcript: str,
        context: AppointmentContext,
        reference: datetime | None = None,
        confirmed: bool = False,
    ) -> IntakeOutcome:
        appointment = await self.appointment_extractor.extract(transcript, reference)
        commit = await self.resolver.commit_appointment(appointment, context, confirmed=confirmed)
        logger.info(
            "transcript_processed",
            outcome=commit.outcome.value,
            reason=commit.reason.kind if commit.reason else None,
        )
        return IntakeOutcome(appointment=appointment, commit=commit)

    async def process_session(
        self,
        session_id: str,
        patient_id: str | None = None,
        dentist_id: str | None = None,
        reference: datetime | None = None,
    ) -> IntakeOutcome:
        """
        Run the appointment chain over a stopped session's transcript.

        Patient and dentist default to those of the session's consultation.

        Raises:
            SessionNotFound: unknown ``session_id``.
            InvalidSessionState: the session is not ``stopped``, or another
                caller is already processing it.
            InvalidInput: the transcript is empty (the session is still
                marked processed).
            UnknownEntity: no patient/dentist given and the consultation
                cannot be found.
        """
        with session_log_context(session_id):
            session = await self.sessions.claim_for_processing(session_id)
        with session_log_context(session.id, session.consultation_id):
            return await self._process_claimed(session, patient_id, dentist_id, reference)

    async def _process_claimed(
        self,
        session: RecordingSession,
        patient_id: str | None,
        dentist_id: str | None,
        reference: datetime | None,
    ) -> IntakeOutcome:
        session_id = session.id
        if not (session.transcript or "").strip():
            await self.sessions.mark_processed(session_id, "empty_transcript")
            raise InvalidInput("Session transcript is empty", {"session_id": session_id})

        try:
            context = await self._context_for(session.consultation_id, patient_id, dentist_id)
            outcome = await self.process_transcript(session.transcript, context, reference)
        except ExtractionUnavailable:
            logger.warning("session_processing_deferred")
            await self.sessions.release_processing(session_id)
            raise
        except IntakeError as e:
            await self.sessions.mark_processed(session_id, e.kind)
            raise
        except Exception:
            await self.sessions.release_processing(session_id)
            raise

        await self.sessions.mark_processed(session_id, outcome.commit.outcome.value)
        return outcome.model_copy(update={"session_id": session_id})

    async def _context_for(
        self, consultation_id: str, patient_id: str | None, dentist_id: str | None
    ) -> AppointmentContext:
        if not (patient_id and dentist_id):
            consultation = await self.resolver.store.find_consultation(consultation_id)
            if consultation is None:
                raise UnknownEntity(
                    "Consultation not found", {"entity": "consultation", "id": consultation_id}
                )
            patient_id = patient_id or consultation["patient_id"]
            dentist_id = dentist_id or consultation["dentist_id"]
        return AppointmentContext(
            patient_id=patient_id,
            dentist_id=dentist_id,
            consultation_id=consultation_id,
        )


async def build_pipeline(
    understand: Understand | None = None, store: EntityStore | None = None
) -> IntakePipeline:
    """Pipeline wired to the configured model, entity store and session backend."""
    extractor = ConfidenceScoredExtractor(understand or get_understand())
    return IntakePipeline(
        AppointmentExtractor(extractor),
        ContextualCommitResolver(store or get_db()),
        VoiceSessionManager(await get_session_store()),
    )
