from datetime import datetime, timedelta, timezone

import pytest

from docportal.blob_store import BlobStore
from docportal.errors import DocumentValidationError
from docportal.registry import DocumentRegistry
from docportal.schema_models import DocumentStatus


class StepClock:
    def __init__(self):
        self.current = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.current += timedelta(seconds=1)
        return self.current


def _metadata(path: str, size: int, /, **overrides):
    payload = {
        "name": "report.pdf",
        "originalName": "report.pdf",
        "mimeType": "application/pdf",
        "size": size,
        "path": path,
    }
    payload.update(overrides)
    return payload


def test_create_assigns_sequential_ids_and_canonical_paths():
    store = BlobStore()
    store.save("report.pdf", b"hello")
    store.save("notes.txt", b"abc")
    registry = DocumentRegistry(store)

    first = registry.create(_metadata("uploads/report.pdf", 5))
    second = registry.create(_metadata("notes.txt", 3, mimeType="text/plain", name="notes.txt"))

    assert first.id == 1
    assert second.id == 2
    assert first.path == "documents/input/report.pdf"
    assert first.status is DocumentStatus.PENDING
    assert len(registry) == 2


def test_create_normalizes_legacy_uploaded_status():
    store = BlobStore()
    store.save("report.pdf", b"hello")
    registry = DocumentRegistry(store)

    document = registry.create(_metadata("documents/input/report.pdf", 5, status="uploaded"))

    assert document.status is DocumentStatus.PENDING


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"mimeType": "application/x-msdownload"}, "mimeType"),
        ({"size": -1}, "size"),
        ({"name": "  "}, "name"),
        ({"status": "archived"}, "status"),
    ],
)
def test_create_rejects_invalid_metadata(overrides, field):
    store = BlobStore()
    store.save("report.pdf", b"hello")
    registry = DocumentRegistry(store)

    with pytest.raises(DocumentValidationError) as excinfo:
        registry.create(_metadata("documents/input/report.pdf", 5, **overrides))

    assert excinfo.value.status_code == 400
    assert any(field in (item["field"] or "") for item in excinfo.value.errors)
    assert len(registry) == 0


def test_create_requires_matching_blob():
    store = BlobStore()
    store.save("report.pdf", b"hello")
    registry = DocumentRegistry(store)

    with pytest.raises(DocumentValidationError):
        registry.create(_metadata("documents/input/missing.pdf", 5))
    with pytest.raises(DocumentValidationError) as excinfo:
        registry.create(_metadata("documents/input/report.pdf", 4))

    assert excinfo.value.errors[0]["field"] == "size"


def test_list_all_is_newest_first():
    store = BlobStore()
    store.save("a.pdf", b"a")
    store.save("b.pdf", b"b")
    registry = DocumentRegistry(store, clock=StepClock())

    registry.create(_metadata("a.pdf", 1))
    registry.create(_metadata("b.pdf", 1))

    assert [document.id for document in registry.list_all()] == [2, 1]


def test_delete_removes_record_and_blobs():
    store = BlobStore()
    store.save("report.pdf", b"hello")
    store.save("report-form.docx", b"form")
    registry = DocumentRegistry(store)
    document = registry.create(_metadata("report.pdf", 5))
    registry.update_processed(document.id, status=DocumentStatus.PROCESSED, processed_path="Results/report-form.docx")

    assert registry.delete(document.id) is True
    assert registry.get(document.id) is None
    assert store.get(document.path) is None
    assert store.get("Results/report-form.docx") is None
    assert registry.delete(document.id) is False


def test_clear_resets_id_counter():
    store = BlobStore()
    store.save("report.pdf", b"hello")
    registry = DocumentRegistry(store)
    registry.create(_metadata("report.pdf", 5))

    assert registry.clear() == 1
    assert registry.list_all() == []

    document = registry.create(_metadata("report.pdf", 5))
    assert document.id == 1


def test_referenced_paths_include_processed_outputs():
    store = BlobStore()
    store.save("report.pdf", b"hello")
    store.save("report-form.docx", b"form")
    registry = DocumentRegistry(store)
    document = registry.create(_metadata("report.pdf", 5))
    registry.update_processed(document.id, status=DocumentStatus.PROCESSED, processed_path="Results/report-form.docx")

    assert registry.referenced_paths() == {"documents/input/report.pdf", "Results/report-form.docx"}


def test_document_serializes_camel_case():
    store = BlobStore()
    store.save("report.pdf", b"hello")
    registry = DocumentRegistry(store)

    payload = registry.create(_metadata("report.pdf", 5)).to_dict()

    assert payload["originalName"] == "report.pdf"
    assert payload["mimeType"] == "application/pdf"
    assert payload["processedPath"] is None
    assert payload["status"] == "pending"
    assert "uploadedAt" in payload
    assert "description" not in payload
