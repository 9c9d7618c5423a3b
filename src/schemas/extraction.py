"""
Data models for schema-driven extraction.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class FieldType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ENUM = "enum"
    LIST = "list"
    OBJECT = "object"
    DATE = "date"
    TIME = "time"
    ANY = "any"


class FieldSpec(BaseModel):
    """A single field the model is asked to populate."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: FieldType
    description: str = ""
    required: bool = False
    enum_values: Optional[list[str]] = None


class SchemaSpec(BaseModel):
    """A named set of fields, rendered into the model's schema hint."""

    model_config = ConfigDict(frozen=True)

    name: str
    fields: list[FieldSpec]

    def field(self, name: str) -> FieldSpec | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    @property
    def required_fields(self) -> list[FieldSpec]:
        return [f for f in self.fields if f.required]

    def to_hint(self) -> str:
        """Render as a compact JSON description for the prompt."""
        described = {}
        for f in self.fields:
            entry: dict[str, Any] = {"type": f.type.value}
            if f.description:
                entry["description"] = f.description
            if f.enum_values:
                entry["allowed_values"] = f.enum_values
            if f.required:
                entry["required"] = True
            described[f.name] = entry
        return json.dumps(described, indent=2)


class ExtractionCandidate(BaseModel):
    """Unvalidated structured guess produced from free text."""

    model_config = ConfigDict(frozen=True)

    raw: dict[str, Any]
    confidence: float = Field(ge=0.0, le=1.0)
    rationale: str = ""
    has_invalid_fields: bool = False
    confidence_source: str = "model"


class ValidationResult(BaseModel):
    """Repaired output of the validator."""

    clean: dict[str, Any]
    dropped_fields: list[str] = Field(default_factory=list)
