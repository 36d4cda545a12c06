from __future__ import annotations

import logging

from docportal.blob_store import BlobStore
from docportal.errors import BlobNotFoundError, DocumentNotFoundError, StateConflictError
from docportal.registry import DocumentRegistry
from docportal.schema_models import Document, DocumentStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.PENDING: frozenset({DocumentStatus.PROCESSING}),
    DocumentStatus.PROCESSING: frozenset({DocumentStatus.PROCESSED, DocumentStatus.ERROR}),
    DocumentStatus.PROCESSED: frozenset(),
    DocumentStatus.ERROR: frozenset(),
}


def can_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class DocumentLifecycle:
    """Single gate for every status change of a registry document."""

    def __init__(self, registry: DocumentRegistry, blob_store: BlobStore) -> None:
        self._registry = registry
        self._blob_store = blob_store

    def transition(
        self,
        document_id: int,
        target: DocumentStatus,
        *,
        processed_path: str | None = None,
    ) -> Document:
        """Move a document to `target`, checking and writing under the registry lock.

        Raises:
            DocumentNotFoundError: if the id is unknown.
            StateConflictError: if the transition table forbids the move.
        """
        with self._registry.lock:
            document = self._registry.get(document_id)
            if document is None:
                raise DocumentNotFoundError("Document not found")
            if not can_transition(document.status, target):
                raise StateConflictError(
                    f"Document cannot move to '{target.value}' because its status is '{document.status.value}'",
                    current_status=document.status.value,
                )

            if target is DocumentStatus.PROCESSED:
                self._registry.update_processed(document_id, status=target, processed_path=processed_path)
            else:
                self._registry.update_status(document_id, target)
            updated = self._registry.get(document_id)

        logger.info("Document %d: %s -> %s", document_id, document.status.value, target.value)
        return updated

    def begin_processing(self, document_id: int) -> Document:
        """Accept a processing request; only pending documents qualify."""
        with self._registry.lock:
            document = self._registry.get(document_id)
            if document is None:
                raise DocumentNotFoundError("Document not found")
            if document.status is not DocumentStatus.PENDING:
                raise StateConflictError(
                    "Document cannot be processed because its status is "
                    f"'{document.status.value}' instead of 'pending'",
                    current_status=document.status.value,
                )
            return self.transition(document_id, DocumentStatus.PROCESSING)

    def complete(self, document_id: int, processed_path: str) -> Document:
        """Mark a processing document as processed once its output blob exists.

        Raises:
            BlobNotFoundError: if the processed path does not resolve in the store.
        """
        stored_path = self._blob_store.resolve(processed_path)
        if stored_path is None:
            raise BlobNotFoundError(f"Processed file not found at '{processed_path}'")
        return self.transition(document_id, DocumentStatus.PROCESSED, processed_path=stored_path)

    def fail(self, document_id: int, reason: str) -> Document | None:
        """Best-effort move to error; a failed write is logged, never raised."""
        try:
            document = self.transition(document_id, DocumentStatus.ERROR)
        except (DocumentNotFoundError, StateConflictError) as exc:
            logger.error("Could not mark document %d as error (%s): %s", document_id, reason, exc.message)
            return None
        logger.warning("Document %d failed: %s", document_id, reason)
        return document
