"""
CLI tool to send text through the intake pipeline.

Usage (after `pip install -e .`):
    python scripts/run_query.py "patients over 30 with irreversible pulpitis"
    python scripts/run_query.py "book me next Tuesday at 3pm for a filling" --reference 2025-10-13T09:00
    python scripts/run_query.py --transcript "..." --patient <uuid> --dentist <uuid>

Free-form queries only classify and extract; nothing is written. With
--transcript the extracted appointment is also committed.
"""

import argparse
import asyncio
import json
from datetime import datetime

from dotenv import load_dotenv
load_dotenv(".env.local")

from src.errors import IntakeError
from src.logging_config import setup_logging, get_logger
from src.schemas.commit import AppointmentContext
from src.services.appointment_extractor import AppointmentExtractor
from src.services.data_extraction import ConfidenceScoredExtractor
from src.services.filter_extractor import FilterExtractor
from src.services.intake_pipeline import build_pipeline
from src.services.intent_router import IntentOrchestrator
from src.services.llm_client import get_understand

setup_logging()
logger = get_logger(__name__)


async def run_query(query: str, reference: str | None) -> dict:
    extractor = ConfidenceScoredExtractor(get_understand())
    orchestrator = IntentOrchestrator(
        extractor,
        FilterExtractor(extractor),
        AppointmentExtractor(extractor),
    )
    context = {"reference_time": reference} if reference else {}
    response = await orchestrator.route(query, context)
    return response.model_dump(mode="json")


async def run_transcript(
    transcript: str,
    patient_id: str,
    dentist_id: str,
    consultation_id: str | None,
    reference: str | None,
    confirmed: bool,
) -> dict:
    pipeline = await build_pipeline()
    outcome = await pipeline.process_transcript(
        transcript,
        AppointmentContext(patient_id=patient_id, dentist_id=dentist_id, consultation_id=consultation_id),
        datetime.fromisoformat(reference) if reference else None,
        confirmed=confirmed,
    )
    return outcome.model_dump(mode="json")


def main() -> None:
    parser = argparse.ArgumentParser(description="Send text through the clinic intake pipeline")
    parser.add_argument("query", nargs="?", help="Free-form query to classify and extract")
    parser.add_argument("--transcript", help="Transcript to extract and commit as an appointment")
    parser.add_argument("--patient", help="Patient UUID (with --transcript)")
    parser.add_argument("--dentist", help="Dentist UUID (with --transcript)")
    parser.add_argument("--consultation", help="Consultation UUID (with --transcript)")
    parser.add_argument("--reference", help="ISO timestamp to resolve relative dates against")
    parser.add_argument("--confirmed", action="store_true", help="Treat the extracted details as confirmed")

    args = parser.parse_args()

    if not args.query and not args.transcript:
        parser.error("Provide a query or --transcript")
    if args.transcript and not (args.patient and args.dentist):
        parser.error("--transcript needs --patient and --dentist")

    try:
        if args.transcript:
            result = asyncio.run(run_transcript(
                args.transcript, args.patient, args.dentist,
                args.consultation, args.reference, args.confirmed,
            ))
        else:
            result = asyncio.run(run_query(args.query, args.reference))
    except IntakeError as e:
        result = {"error": e.to_dict()}

    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
