from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

SUPPORTED_MIME_TYPES = (
    "application/pdf",
    "application/msword",
    DOCX_MIME_TYPE,
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "text/plain",
    "image/jpeg",
    "image/png",
)

OFFICE_MIME_MARKERS = ("word", "excel", "powerpoint", "officedocument")


class DocumentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"


LEGACY_STATUS_ALIASES = {"uploaded": DocumentStatus.PENDING}


def coerce_status(value: Any) -> DocumentStatus:
    if isinstance(value, DocumentStatus):
        return value
    raw = str(value or "").strip().lower()
    if raw in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[raw]
    return DocumentStatus(raw)


def is_office_mime_type(mime_type: str | None) -> bool:
    lowered = (mime_type or "").lower()
    return any(marker in lowered for marker in OFFICE_MIME_MARKERS)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DocumentCreate(_CamelModel):
    """Metadata accepted by the registry when a document is created."""

    name: str = Field(min_length=1)
    original_name: str = Field(min_length=1)
    mime_type: str
    size: int = Field(ge=0)
    path: str = Field(min_length=1)
    status: DocumentStatus = DocumentStatus.PENDING
    processed_path: str | None = None

    @field_validator("name", "original_name", "path")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("mime_type")
    @classmethod
    def _supported_mime_type(cls, value: str) -> str:
        if value not in SUPPORTED_MIME_TYPES:
            raise ValueError(f"unsupported mime type '{value}'")
        return value

    @field_validator("status", mode="before")
    @classmethod
    def _legacy_status(cls, value: Any) -> Any:
        if value is None:
            return DocumentStatus.PENDING
        if isinstance(value, str) and value.strip().lower() in LEGACY_STATUS_ALIASES:
            return LEGACY_STATUS_ALIASES[value.strip().lower()]
        return value


class Document(_CamelModel):
    """A registry record, or a synthesized view of an unregistered result blob."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    name: str
    original_name: str
    mime_type: str
    size: int
    path: str
    status: DocumentStatus
    processed_path: str | None = None
    uploaded_at: datetime
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = self.model_dump(by_alias=True, mode="json")
        if payload.get("description") is None:
            payload.pop("description", None)
        return payload


class ProcessedPathRequest(_CamelModel):
    processed_path: str = Field(min_length=1)


def validation_errors(exc: Exception) -> list[dict[str, Any]]:
    """Flatten a pydantic ValidationError into field/message pairs."""

    errors = getattr(exc, "errors", None)
    if not callable(errors):
        return [{"field": None, "message": str(exc)}]
    return [
        {
            "field": ".".join(str(part) for part in item.get("loc", ())) or None,
            "message": item.get("msg", ""),
        }
        for item in errors()
    ]
