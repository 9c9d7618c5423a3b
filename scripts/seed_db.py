"""
Database Seeding Script.

Populates `dentists`, `patients` and one open `consultation` with
sample data so the intake pipeline has entities to resolve against.

Usage (after `pip install -e .`):
    python scripts/seed_db.py
"""

import asyncio

from dotenv import load_dotenv
load_dotenv(".env.local")

from src.db import get_db
from src.logging_config import setup_logging, get_logger

setup_logging()
logger = get_logger(__name__)

SAMPLE_DENTISTS = [
    {"full_name": "Dr. Priya Patel", "specialty": "Endodontics", "email": "priya.patel@example.com"},
    {"full_name": "Dr. Marcus Webb", "specialty": "General Dentistry", "email": "marcus.webb@example.com"},
]

SAMPLE_PATIENTS = [
    {"first_name": "Ana", "last_name": "Silva", "date_of_birth": "1988-04-12", "email": "ana.silva@example.com"},
    {"first_name": "Tom", "last_name": "Becker", "date_of_birth": "1975-09-30", "email": "tom.becker@example.com"},
    {"first_name": "Lena", "last_name": "Okafor", "date_of_birth": "2001-01-05", "email": "lena.okafor@example.com"},
]


def _upsert_by_email(table: str, row: dict) -> str | None:
    db = get_db()
    existing = db.client.table(table).select("id").eq("email", row["email"]).execute()
    if existing.data:
        logger.info("seed_row_exists", table=table, email=row["email"])
        return existing.data[0]["id"]

    result = db.client.table(table).insert(row).execute()
    if not result.data:
        logger.error("seed_row_failed", table=table, email=row["email"])
        return None
    logger.info("seed_row_created", table=table, id=result.data[0]["id"])
    return result.data[0]["id"]


async def seed() -> None:
    logger.info("seeding_started")

    dentist_ids = [_upsert_by_email("dentists", d) for d in SAMPLE_DENTISTS]
    patient_ids = [_upsert_by_email("patients", p) for p in SAMPLE_PATIENTS]

    if dentist_ids[0] and patient_ids[0]:
        consultation = (
            get_db().client.table("consultations")
            .insert({"patient_id": patient_ids[0], "dentist_id": dentist_ids[0], "status": "in_progress"})
            .execute()
        )
        if consultation.data:
            logger.info("seed_consultation_created", id=consultation.data[0]["id"])

    logger.info("seeding_complete", dentists=dentist_ids, patients=patient_ids)


if __name__ == "__main__":
    asyncio.run(seed())
