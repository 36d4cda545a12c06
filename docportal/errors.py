from __future__ import annotations

from typing import Any


class PortalError(Exception):
    """Base exception for document portal errors surfaced at the API boundary."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"status": "error", "message": self.message}


class DocumentValidationError(PortalError):
    """Raised when an id, an upload or a metadata payload fails validation."""

    status_code = 400

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.errors:
            payload["errors"] = self.errors
        return payload


class DocumentNotFoundError(PortalError):
    """Raised when no registry or synthetic document matches an id."""

    status_code = 404


class BlobNotFoundError(PortalError):
    """Raised when a document exists but its bytes are not in the blob store."""

    status_code = 404


class BlobConflictError(PortalError):
    """Raised when a save would overwrite an existing blob."""

    status_code = 409


class StateConflictError(PortalError):
    """Raised when a lifecycle transition is not allowed from the current status."""

    status_code = 400

    def __init__(self, message: str, current_status: str | None = None) -> None:
        super().__init__(message)
        self.current_status = current_status

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["current_status"] = self.current_status
        return payload


class ProcessorError(PortalError):
    """Raised when the external processor or a template script fails."""

    status_code = 500
