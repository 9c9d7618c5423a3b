"""
Supabase entity store.

The commit resolver depends only on the ``EntityStore`` operations
below; ``SupabaseEntityStore`` implements them against the clinic's
Postgres tables through the official Supabase client.

Failure contract:
- lookups return ``None`` when the row does not exist;
- an exclusion-constraint violation on insert raises ``ConflictDetected``;
- anything else raises ``StorageFailure`` with the cause logged.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

from postgrest.exceptions import APIError
from supabase import Client, ClientOptions, create_client

from src.config import get_settings
from src.errors import ConflictDetected, StorageFailure
from src.logging_config import get_logger

logger = get_logger(__name__)

# Postgres SQLSTATE for exclusion_violation (appointments_no_overlap).
EXCLUSION_VIOLATION = "23P01"

# Bookings in these states still occupy the chair.
INACTIVE_BOOKING_STATUSES = ("cancelled", "no_show")


class EntityStore(Protocol):
    async def find_patient(self, patient_id: str) -> dict[str, Any] | None: ...

    async def find_provider(self, dentist_id: str) -> dict[str, Any] | None: ...

    async def find_consultation(self, consultation_id: str) -> dict[str, Any] | None: ...

    async def list_bookings_in_window(
        self, dentist_id: str, start: datetime, end: datetime
    ) -> list[dict[str, Any]]:
        """Bookings for ``dentist_id`` that overlap [start, end)."""
        ...

    async def create_appointment(self, record: dict[str, Any]) -> dict[str, Any]: ...

    async def create_filter_set(self, record: dict[str, Any]) -> dict[str, Any]: ...

    async def get_filter_set(self, filter_set_id: str) -> dict[str, Any] | None: ...


class SupabaseEntityStore:
    """Wrapper around the official Supabase Python client."""

    _instance: Optional[SupabaseEntityStore] = None
    _client: Client

    def __new__(cls) -> SupabaseEntityStore:
        """Singleton pattern to ensure only one client instance."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            settings = get_settings()

            if not settings.supabase_url or not settings.supabase_service_key:
                logger.warning(
                    "supabase_credentials_missing",
                    url=bool(settings.supabase_url),
                    key=bool(settings.supabase_service_key),
                )

            try:
                cls._instance._client = create_client(
                    settings.supabase_url,
                    settings.supabase_service_key,
                    options=ClientOptions(schema=settings.supabase_schema),
                )
                logger.info("supabase_client_initialized", url=settings.supabase_url)
            except Exception as e:
                cls._instance = None
                logger.error("supabase_client_init_failed", error=str(e))
                raise StorageFailure("Entity store unavailable", {"cause": str(e)}) from e

        return cls._instance

    @property
    def client(self) -> Client:
        """Access the raw Supabase client."""
        return self._client

    async def _first(self, table: str, columns: str, row_id: str) -> dict[str, Any] | None:
        try:
            response = (
                self.client.table(table)
                .select(columns)
                .eq("id", row_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("entity_lookup_failed", table=table, id=row_id, error=str(e))
            raise StorageFailure("Entity lookup failed", {"cause": str(e)}) from e
        return response.data[0] if response.data else None

    async def find_patient(self, patient_id: str) -> dict[str, Any] | None:
        return await self._first("patients", "id, first_name, last_name", patient_id)

    async def find_provider(self, dentist_id: str) -> dict[str, Any] | None:
        return await self._first("dentists", "id, full_name, specialty", dentist_id)

    async def find_consultation(self, consultation_id: str) -> dict[str, Any] | None:
        return await self._first("consultations", "id, patient_id, dentist_id, status", consultation_id)

    async def list_bookings_in_window(
        self, dentist_id: str, start: datetime, end: datetime
    ) -> list[dict[str, Any]]:
        try:
            response = (
                self.client.table("appointments")
                .select("id, patient_id, scheduled_start, scheduled_end, status")
                .eq("dentist_id", dentist_id)
                .lt("scheduled_start", end.isoformat())
                .gt("scheduled_end", start.isoformat())
                .not_.in_("status", list(INACTIVE_BOOKING_STATUSES))
                .execute()
            )
        except Exception as e:
            logger.error("booking_lookup_failed", dentist_id=dentist_id, error=str(e))
            raise StorageFailure("Booking lookup failed", {"cause": str(e)}) from e
        return response.data or []

    async def _insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self.client.table(table).insert(record).execute()
        except APIError as e:
            if e.code == EXCLUSION_VIOLATION:
                logger.info("insert_exclusion_violation", table=table)
                raise ConflictDetected("Slot was taken concurrently") from e
            logger.error("insert_failed", table=table, code=e.code, error=e.message)
            raise StorageFailure("Insert failed", {"cause": e.message or str(e)}) from e
        except Exception as e:
            logger.error("insert_failed", table=table, error=str(e))
            raise StorageFailure("Insert failed", {"cause": str(e)}) from e

        if not response.data:
            raise StorageFailure("Insert returned no row", {"table": table})
        return response.data[0]

    async def create_appointment(self, record: dict[str, Any]) -> dict[str, Any]:
        return await self._insert("appointments", record)

    async def create_filter_set(self, record: dict[str, Any]) -> dict[str, Any]:
        return await self._insert("research_filter_sets", record)

    async def get_filter_set(self, filter_set_id: str) -> dict[str, Any] | None:
        return await self._first("research_filter_sets", "*", filter_set_id)


# Global accessor
def get_db() -> SupabaseEntityStore:
    return SupabaseEntityStore()
