from __future__ import annotations

import hashlib
import logging
import mimetypes
from pathlib import PurePosixPath

from docportal.blob_store import BlobEntry, BlobStore, Namespace, ResultKind, namespace_of, result_kind
from docportal.registry import DocumentRegistry
from docportal.schema_models import DOCX_MIME_TYPE, Document, DocumentStatus

logger = logging.getLogger(__name__)

BAND_WIDTH = 1_000_000_000
BAND_BASES: dict[ResultKind, int] = {
    ResultKind.PROCESSED_TEMPLATE: 1 * BAND_WIDTH,
    ResultKind.FORM: 2 * BAND_WIDTH,
    ResultKind.OTHER: 3 * BAND_WIDTH,
}
SYNTHETIC_ID_FLOOR = min(BAND_BASES.values())

DESCRIPTIONS = {
    ResultKind.PROCESSED_TEMPLATE: "Processed template document",
    ResultKind.FORM: "Processed form document",
    ResultKind.OTHER: "Processor output document",
}


def result_partition(path: str) -> ResultKind:
    return result_kind(path) or ResultKind.OTHER


def synthetic_id(path: str) -> int:
    """Derive a stable id from the canonical path inside its partition's band."""
    digest = hashlib.sha256(path.encode("utf-8")).hexdigest()
    return BAND_BASES[result_partition(path)] + int(digest[:15], 16) % BAND_WIDTH


def is_synthetic_id(document_id: int) -> bool:
    return document_id >= SYNTHETIC_ID_FLOOR


def band_for_id(document_id: int) -> ResultKind | None:
    for kind, base in BAND_BASES.items():
        if base <= document_id < base + BAND_WIDTH:
            return kind
    return None


def _mime_type_for(name: str) -> str:
    if name.lower().endswith(".docx"):
        return DOCX_MIME_TYPE
    guessed, _ = mimetypes.guess_type(name)
    return guessed or DOCX_MIME_TYPE


class SyntheticDocumentIndex:
    """Document-shaped views of result blobs that have no registry record."""

    def __init__(self, blob_store: BlobStore, registry: DocumentRegistry) -> None:
        self._blob_store = blob_store
        self._registry = registry

    def _unregistered_results(self, kind: ResultKind | None = None) -> list[BlobEntry]:
        referenced = self._registry.referenced_paths()
        entries = [
            entry
            for entry in self._blob_store.entries()
            if namespace_of(entry.path) is Namespace.RESULTS and entry.path not in referenced
        ]
        if kind is not None:
            entries = [entry for entry in entries if result_partition(entry.path) is kind]
        return sorted(entries, key=lambda entry: entry.path)

    def _to_document(self, entry: BlobEntry) -> Document:
        name = PurePosixPath(entry.path).name
        return Document(
            id=synthetic_id(entry.path),
            name=name,
            original_name=name,
            mime_type=_mime_type_for(name),
            size=entry.size,
            path=entry.path,
            status=DocumentStatus.PROCESSED,
            processed_path=entry.path,
            uploaded_at=entry.stored_at,
            description=DESCRIPTIONS[result_partition(entry.path)],
        )

    def list_documents(self, kind: ResultKind | None = None) -> list[Document]:
        documents: list[Document] = []
        seen: dict[int, str] = {}
        for entry in self._unregistered_results(kind):
            document = self._to_document(entry)
            if document.id in seen:
                logger.warning(
                    "Synthetic id %d of %s collides with %s; keeping the first",
                    document.id,
                    entry.path,
                    seen[document.id],
                )
                continue
            seen[document.id] = entry.path
            documents.append(document)
        return documents

    def get(self, document_id: int) -> Document | None:
        kind = band_for_id(document_id)
        if kind is None:
            return None
        for document in self.list_documents(kind):
            if document.id == document_id:
                return document
        return None
