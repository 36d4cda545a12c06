from __future__ import annotations

import logging
import random
import time
from pathlib import PurePosixPath
from typing import Any

from docportal.blob_store import BlobStore, Namespace, ResultKind, classify_name, namespace_of, result_kind
from docportal.config import PortalSettings
from docportal.errors import (
    BlobConflictError,
    BlobNotFoundError,
    DocumentNotFoundError,
    DocumentValidationError,
    PortalError,
    ProcessorError,
    StateConflictError,
)
from docportal.lifecycle import DocumentLifecycle
from docportal.processor_client import DocumentProcessor, HttpDocumentProcessor
from docportal.registry import DocumentRegistry
from docportal.retention import ConnectionTracker, RetentionSweeper, SweepReport
from docportal.schema_models import (
    DOCX_MIME_TYPE,
    SUPPORTED_MIME_TYPES,
    Document,
    DocumentStatus,
    coerce_status,
)
from docportal.synthetic_documents import SyntheticDocumentIndex, is_synthetic_id
from docportal.template_runner import TemplateRunResult, run_template_filler, run_template_in_memory

logger = logging.getLogger(__name__)


def unique_upload_name(filename: str) -> str:
    return f"{int(time.time() * 1000)}-{random.randint(0, 999_999_999)}-{filename}"


def _result_filename(filename: str) -> str:
    """Make sure a processor output name lands in the results namespace."""
    name = PurePosixPath(filename.replace("\\", "/")).name or "document.docx"
    if classify_name(name) is Namespace.RESULTS:
        return name
    path = PurePosixPath(name)
    return f"{path.stem}_processed{path.suffix}"


class DocumentPortal:
    """Composition root: one blob store and registry shared by every handler."""

    def __init__(
        self,
        settings: PortalSettings,
        *,
        blob_store: BlobStore | None = None,
        registry: DocumentRegistry | None = None,
        processor: DocumentProcessor | None = None,
    ) -> None:
        self.settings = settings
        self.blob_store = blob_store or BlobStore(results_mirror_dir=settings.results_mirror_dir)
        self.registry = registry or DocumentRegistry(self.blob_store)
        self.lifecycle = DocumentLifecycle(self.registry, self.blob_store)
        self.synthetic = SyntheticDocumentIndex(self.blob_store, self.registry)
        self.sweeper = RetentionSweeper(self.blob_store, self.registry)
        self.connections = ConnectionTracker(self.sweeper, enabled=settings.sweep_on_idle)
        self.processor = processor or HttpDocumentProcessor(
            settings.processor_url,
            timeout_seconds=settings.processor_timeout_seconds,
        )

    def startup(self) -> SweepReport | None:
        if not self.settings.sweep_on_startup:
            return None
        return self.sweeper.sweep(reason="startup")

    def clear_memory(self) -> SweepReport:
        return self.sweeper.sweep(reason="api")

    # -- uploads and lookups -------------------------------------------------

    def validate_upload(self, filename: str | None, content: bytes, content_type: str | None) -> None:
        if not filename or not filename.strip():
            raise DocumentValidationError("No file uploaded")
        if not content:
            raise DocumentValidationError("Empty uploads are not allowed.")
        if len(content) > self.settings.max_upload_bytes:
            raise DocumentValidationError(
                f"File exceeds the maximum size of {self.settings.max_upload_bytes} bytes."
            )
        if content_type not in SUPPORTED_MIME_TYPES:
            raise DocumentValidationError(
                "Unsupported file type. Please upload a supported document.",
                [{"field": "mimeType", "message": f"unsupported mime type '{content_type}'"}],
            )

    def upload(self, filename: str | None, content: bytes, content_type: str | None) -> Document:
        self.validate_upload(filename, content, content_type)
        original_name = PurePosixPath(filename.replace("\\", "/")).name

        stored_path = self.blob_store.save(unique_upload_name(original_name), content)
        try:
            document = self.registry.create(
                {
                    "name": original_name,
                    "original_name": original_name,
                    "mime_type": content_type,
                    "size": len(content),
                    "path": stored_path,
                    "status": DocumentStatus.PENDING,
                    "processed_path": None,
                }
            )
        except DocumentValidationError:
            self.blob_store.remove(stored_path)
            raise
        return document

    def list_documents(self) -> list[Document]:
        return self.registry.list_all()

    def get_document(self, document_id: int) -> Document:
        document = self.registry.get(document_id)
        if document is None and is_synthetic_id(document_id):
            document = self.synthetic.get(document_id)
        if document is None:
            raise DocumentNotFoundError("Document not found")
        return document

    def original_content(self, document_id: int) -> tuple[Document, bytes]:
        document = self.get_document(document_id)
        content = self.blob_store.get(document.path)
        if content is None:
            logger.error("Document %d points at missing blob %s", document_id, document.path)
            raise BlobNotFoundError("File not found")
        return document, content

    def processed_content(self, document_id: int) -> tuple[Document, bytes, str]:
        document = self.get_document(document_id)
        if document.status is not DocumentStatus.PROCESSED or not document.processed_path:
            raise BlobNotFoundError("Processed file not found")
        content = self.blob_store.get(document.processed_path)
        if content is None:
            raise BlobNotFoundError("Processed file not found")
        return document, content, PurePosixPath(document.processed_path).name

    def delete(self, document_id: int) -> None:
        if self.registry.delete(document_id):
            return
        if is_synthetic_id(document_id):
            document = self.synthetic.get(document_id)
            if document is not None and self.blob_store.remove(document.path):
                return
        raise DocumentNotFoundError("Document not found or could not be deleted")

    # -- processing ----------------------------------------------------------

    def _store_result(self, filename: str, content: bytes) -> str:
        name = _result_filename(filename)
        try:
            return self.blob_store.save(name, content)
        except BlobConflictError:
            return self.blob_store.save(f"{time.time_ns()}-{name}", content)

    def _complete_if_processing(self, document_id: int, processed_path: str) -> Document | None:
        with self.registry.lock:
            document = self.registry.get(document_id)
            if document is None or document.status is not DocumentStatus.PROCESSING:
                logger.warning(
                    "Document %d is no longer processing; keeping result %s unattached",
                    document_id,
                    processed_path,
                )
                return None
            return self.lifecycle.complete(document_id, processed_path)

    def process(self, document_id: int) -> dict[str, Any]:
        """Accept a processing request and dispatch it to the external processor.

        The status is `processing` before the processor is called, so a second
        request for the same document is rejected by the lifecycle guard.
        """
        document = self.lifecycle.begin_processing(document_id)
        logger.info("Processing document %d (%s)", document_id, document.original_name)

        try:
            result = self.processor.process_document(document_id)
        except Exception as exc:
            logger.exception("Processor call for document %d raised", document_id)
            self.lifecycle.fail(document_id, str(exc))
            raise ProcessorError("Failed to process document") from exc

        if not result.ok:
            self.lifecycle.fail(document_id, result.message)
            raise ProcessorError(result.message)

        payload: dict[str, Any] = {
            "success": True,
            "message": result.message,
            "warnings": list(result.warnings),
        }
        if result.content is not None:
            filename = result.processed_filename or f"{PurePosixPath(document.original_name).stem}-form.docx"
            try:
                stored_path = self._store_result(filename, result.content)
                completed = self._complete_if_processing(document_id, stored_path)
            except Exception as exc:
                logger.exception("Storing processor output for document %d failed", document_id)
                self.lifecycle.fail(document_id, str(exc))
                raise ProcessorError("Failed to store processed document") from exc
            payload["processedPath"] = stored_path
            if completed is not None:
                payload["message"] = "Document processed successfully"

        current = self.registry.get(document_id)
        if current is not None:
            payload["document"] = current.to_dict()
        return payload

    def record_processed(self, document_id: int, processed_path: str) -> Document:
        """Write-back from the processor for bytes already in the blob store."""
        if not processed_path or not processed_path.strip():
            raise DocumentValidationError("Processed path is required")
        return self.lifecycle.complete(document_id, processed_path)

    def record_processed_content(
        self,
        document_id: int,
        processed_path: str | None,
        content: bytes | None,
        status: str | None = None,
    ) -> Document:
        """Write-back from the processor carrying the produced bytes."""
        if not content:
            raise DocumentValidationError("No file content provided")
        if not processed_path or not processed_path.strip():
            raise DocumentValidationError("Processed path is required")
        try:
            target = coerce_status(status or DocumentStatus.PROCESSED)
        except ValueError as exc:
            raise DocumentValidationError(f"Unknown status '{status}'") from exc
        if target not in (DocumentStatus.PROCESSED, DocumentStatus.ERROR):
            raise DocumentValidationError(f"Write-back status must be 'processed' or 'error', not '{target.value}'")

        document = self.registry.get(document_id)
        if document is None:
            raise DocumentNotFoundError("Document not found")
        if target is DocumentStatus.ERROR:
            return self.lifecycle.transition(document_id, DocumentStatus.ERROR)
        if document.status is not DocumentStatus.PROCESSING:
            raise StateConflictError(
                f"Document cannot be completed because its status is '{document.status.value}'",
                current_status=document.status.value,
            )

        stored_path = self._store_result(processed_path, content)
        try:
            return self.lifecycle.complete(document_id, stored_path)
        except PortalError:
            self.blob_store.remove(stored_path)
            raise

    # -- synthesized listings ------------------------------------------------

    def form_documents(self) -> list[Document]:
        return self.synthetic.list_documents(ResultKind.FORM)

    def output_files(self) -> list[Document]:
        processed = [
            document
            for document in self.registry.list_all()
            if document.status is DocumentStatus.PROCESSED
            and document.processed_path
            and result_kind(document.processed_path) is ResultKind.FORM
        ]
        if processed:
            return processed
        return self.form_documents()

    def template_content(self, path: str | None) -> tuple[str, bytes]:
        if not path or not path.strip():
            raise DocumentValidationError("File path is required")
        try:
            namespace = namespace_of(path)
        except ValueError as exc:
            raise DocumentValidationError("Invalid file path") from exc
        if namespace is not Namespace.RESULTS:
            raise DocumentValidationError("Invalid file path")

        content = self.blob_store.get(path)
        if content is None:
            raise BlobNotFoundError("File not found in memory storage")
        return PurePosixPath(path.replace("\\", "/")).name, content

    # -- template processing -------------------------------------------------

    def _register_template_result(
        self,
        result: TemplateRunResult,
        *,
        name: str,
        original_name: str,
    ) -> dict[str, Any]:
        if not result.ok or result.content is None or result.output_filename is None:
            raise ProcessorError(result.message)

        stored_path = self._store_result(result.output_filename, result.content)
        try:
            document = self.registry.create(
                {
                    "name": name,
                    "original_name": original_name,
                    "mime_type": DOCX_MIME_TYPE,
                    "size": len(result.content),
                    "path": stored_path,
                    "status": DocumentStatus.PROCESSED,
                    "processed_path": stored_path,
                }
            )
        except DocumentValidationError:
            self.blob_store.remove(stored_path)
            raise

        return {
            "success": True,
            "message": result.message,
            "processedPath": stored_path,
            "documentId": document.id,
            "processingOutput": result.processing_output,
        }

    def process_template(self) -> dict[str, Any]:
        result = run_template_filler(
            script_path=self.settings.template_filler_script,
            template_path=self.settings.template_path,
            output_dir=self.settings.work_dir / "documents" / "output",
            python_executable=self.settings.python_executable,
            timeout_seconds=self.settings.template_timeout_seconds,
        )
        return self._register_template_result(
            result,
            name="Processed Form",
            original_name=result.output_filename or "form.docx",
        )

    def process_template_in_memory(self) -> dict[str, Any]:
        result = run_template_in_memory(
            script_path=self.settings.template_memory_script,
            template_path=self.settings.template_path,
            python_executable=self.settings.python_executable,
            timeout_seconds=self.settings.template_timeout_seconds,
        )
        template_name = self.settings.template_path.name if self.settings.template_path else "template.docx"
        return self._register_template_result(
            result,
            name="Processed Template",
            original_name=template_name,
        )
