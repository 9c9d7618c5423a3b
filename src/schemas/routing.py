"""
Data models for free-form query routing.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Intent(str, Enum):
    FILTER_EXTRACTION = "filter_extraction"
    APPOINTMENT_SCHEDULING = "appointment_scheduling"
    GENERAL_CONVERSATION = "general_conversation"
    UNKNOWN = "unknown"


# Earlier wins when several intents match the same query.
INTENT_PRIORITY: tuple[Intent, ...] = (
    Intent.APPOINTMENT_SCHEDULING,
    Intent.FILTER_EXTRACTION,
    Intent.GENERAL_CONVERSATION,
)


class NormalizedResponse(BaseModel):
    """One envelope for every routing branch."""

    intent: Intent
    original_text: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    dropped_fields: list[str] = Field(default_factory=list)
    rationale: str = ""
    warnings: list[str] = Field(default_factory=list)


class QueryRequest(BaseModel):
    query: str
    context: dict[str, Any] = Field(default_factory=dict)
