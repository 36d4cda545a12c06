from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import ValidationError

from docportal.blob_store import BlobStore
from docportal.errors import DocumentValidationError
from docportal.schema_models import Document, DocumentCreate, DocumentStatus, validation_errors

logger = logging.getLogger(__name__)

FIRST_DOCUMENT_ID = 1


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DocumentRegistry:
    """In-memory metadata table for uploaded and registered documents.

    Ids are assigned monotonically from FIRST_DOCUMENT_ID and only reset by
    clear(). Status writes here are raw overwrites; transition rules live in
    DocumentLifecycle.
    """

    def __init__(self, blob_store: BlobStore, clock: Callable[[], datetime] = _utc_now) -> None:
        self._blob_store = blob_store
        self._clock = clock
        self._documents: dict[int, Document] = {}
        self._next_id = FIRST_DOCUMENT_ID
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def create(self, metadata: DocumentCreate | dict[str, Any]) -> Document:
        """Validate metadata, assign the next id and store the record.

        Raises:
            DocumentValidationError: on schema violations, or when the
                referenced blob is missing or its size does not match.
        """
        try:
            payload = (
                metadata
                if isinstance(metadata, DocumentCreate)
                else DocumentCreate.model_validate(metadata)
            )
        except ValidationError as exc:
            raise DocumentValidationError("Invalid document data", validation_errors(exc)) from exc

        stored_path = self._blob_store.resolve(payload.path)
        if stored_path is None:
            raise DocumentValidationError(
                "Invalid document data",
                [{"field": "path", "message": f"no stored blob at '{payload.path}'"}],
            )
        stored = self._blob_store.get(stored_path)
        if stored is None or len(stored) != payload.size:
            raise DocumentValidationError(
                "Invalid document data",
                [{"field": "size", "message": "size does not match the stored blob"}],
            )

        processed_path = None
        if payload.processed_path:
            processed_path = self._blob_store.resolve(payload.processed_path)
            if processed_path is None:
                raise DocumentValidationError(
                    "Invalid document data",
                    [{"field": "processedPath", "message": f"no stored blob at '{payload.processed_path}'"}],
                )

        with self._lock:
            document = Document(
                id=self._next_id,
                name=payload.name,
                original_name=payload.original_name,
                mime_type=payload.mime_type,
                size=payload.size,
                path=stored_path,
                status=payload.status,
                processed_path=processed_path,
                uploaded_at=self._clock(),
            )
            self._documents[document.id] = document
            self._next_id += 1

        logger.info("Registered document %d (%s) at %s", document.id, document.original_name, document.path)
        return document

    def get(self, document_id: int) -> Document | None:
        with self._lock:
            return self._documents.get(document_id)

    def list_all(self) -> list[Document]:
        with self._lock:
            documents = list(self._documents.values())
        return sorted(documents, key=lambda item: (item.uploaded_at, item.id), reverse=True)

    def referenced_paths(self) -> set[str]:
        with self._lock:
            documents = list(self._documents.values())
        paths: set[str] = set()
        for document in documents:
            paths.add(document.path)
            if document.processed_path:
                paths.add(document.processed_path)
        return paths

    def update_status(self, document_id: int, status: DocumentStatus) -> bool:
        with self._lock:
            document = self._documents.get(document_id)
            if document is None:
                return False
            self._documents[document_id] = document.model_copy(update={"status": status})
        return True

    def update_processed(self, document_id: int, *, status: DocumentStatus, processed_path: str | None) -> bool:
        with self._lock:
            document = self._documents.get(document_id)
            if document is None:
                return False
            self._documents[document_id] = document.model_copy(
                update={"status": status, "processed_path": processed_path}
            )
        return True

    def delete(self, document_id: int) -> bool:
        """Remove the record and the blobs it references."""
        with self._lock:
            document = self._documents.pop(document_id, None)
        if document is None:
            return False

        self._blob_store.remove(document.path)
        if document.processed_path and document.processed_path != document.path:
            self._blob_store.remove(document.processed_path)
        logger.info("Deleted document %d", document_id)
        return True

    def clear(self) -> int:
        with self._lock:
            removed = len(self._documents)
            self._documents.clear()
            self._next_id = FIRST_DOCUMENT_ID
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)
