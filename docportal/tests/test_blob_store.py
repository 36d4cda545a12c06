import pytest

from docportal.blob_store import (
    BlobStore,
    InputRef,
    LegacyRef,
    Namespace,
    ResultKind,
    ResultRef,
    canonical_path,
    canonicalize,
    classify_name,
    namespace_of,
    parse_blob_ref,
    result_kind,
)
from docportal.errors import BlobConflictError


def test_result_kind_follows_naming_conventions():
    assert result_kind("170000-form.docx") is ResultKind.FORM
    assert result_kind("170000-template_processed.docx") is ResultKind.PROCESSED_TEMPLATE
    assert result_kind("report_processed.pdf") is ResultKind.PROCESSED_TEMPLATE
    assert result_kind("report.pdf") is None
    assert classify_name("report.pdf") is Namespace.INPUT
    assert classify_name("Results/a-form.docx") is Namespace.RESULTS


@pytest.mark.parametrize(
    "text, expected",
    [
        ("documents/input/a.pdf", InputRef("a.pdf")),
        ("Results/a-form.docx", ResultRef("a-form.docx")),
        ("../Results/a-form.docx", LegacyRef("../Results/a-form.docx", "a-form.docx", Namespace.RESULTS)),
        ("documents/output/a-form.docx", LegacyRef("documents/output/a-form.docx", "a-form.docx", Namespace.RESULTS)),
        ("uploads/a.pdf", LegacyRef("uploads/a.pdf", "a.pdf", Namespace.INPUT)),
    ],
)
def test_parse_blob_ref_recognizes_prefixes(text, expected):
    assert parse_blob_ref(text) == expected


def test_parse_blob_ref_reduces_absolute_paths_to_namespace_segment():
    ref = parse_blob_ref("/srv/app/Results/a-form.docx")

    assert isinstance(ref, LegacyRef)
    assert ref.namespace is Namespace.RESULTS
    assert canonicalize(ref) == "Results/a-form.docx"
    assert canonical_path("C:\\work\\documents\\input\\a.pdf") == "documents/input/a.pdf"


def test_bare_filenames_are_classified_by_convention():
    assert canonical_path("a.pdf") == "documents/input/a.pdf"
    assert canonical_path("./a-form.docx") == "Results/a-form.docx"
    assert namespace_of("x_processed.docx") is Namespace.RESULTS


def test_parse_blob_ref_rejects_empty_paths():
    with pytest.raises(ValueError):
        parse_blob_ref("   ")
    with pytest.raises(ValueError):
        parse_blob_ref("Results/")


def test_save_places_blob_by_naming_convention():
    store = BlobStore()

    assert store.save("report.pdf", b"hello") == "documents/input/report.pdf"
    assert store.save("170000-form.docx", b"form") == "Results/170000-form.docx"
    assert sorted(store.list_paths()) == ["Results/170000-form.docx", "documents/input/report.pdf"]


@pytest.mark.parametrize(
    "spelling",
    [
        "Results/170000-form.docx",
        "../Results/170000-form.docx",
        "documents/output/170000-form.docx",
        "results/170000-form.docx",
        "/var/app/Results/170000-form.docx",
        "170000-form.docx",
    ],
)
def test_every_legacy_spelling_returns_identical_bytes(spelling):
    store = BlobStore()
    store.save("170000-form.docx", b"form-bytes")

    assert store.get(spelling) == b"form-bytes"
    assert store.resolve(spelling) == "Results/170000-form.docx"


def test_save_refuses_to_overwrite():
    store = BlobStore()
    store.save("a.pdf", b"one")

    with pytest.raises(BlobConflictError):
        store.save("a.pdf", b"two")
    assert store.get("a.pdf") == b"one"


def test_missing_and_ambiguous_lookups_return_none():
    store = BlobStore()
    store.save("a.pdf", b"input")

    assert store.get("documents/input/missing.pdf") is None
    assert store.get("") is None
    assert store.contains("uploads/a.pdf") is True


def test_remove_and_clear_by_namespace():
    store = BlobStore()
    store.save("a.pdf", b"input")
    store.save("a-form.docx", b"result")

    assert store.remove("documents/output/a-form.docx") is True
    assert store.remove("documents/output/a-form.docx") is False

    store.save("b-form.docx", b"result")
    assert store.clear([Namespace.RESULTS]) == 1
    assert store.list_paths() == ["documents/input/a.pdf"]
    assert store.clear() == 1
    assert store.list_paths() == []


def test_results_are_mirrored_to_disk_and_read_back(tmp_path):
    mirror = tmp_path / "Results"
    store = BlobStore(results_mirror_dir=mirror)
    store.save("a-form.docx", b"result")
    store.save("a.pdf", b"input")

    assert (mirror / "a-form.docx").read_bytes() == b"result"
    assert not (mirror / "a.pdf").exists()

    (mirror / "external-form.docx").write_bytes(b"written by processor")
    assert store.get("../Results/external-form.docx") == b"written by processor"
    assert "Results/external-form.docx" in store.list_paths()

    store.clear()
    assert list(mirror.iterdir()) == []


def test_entry_reports_size_and_canonical_path():
    store = BlobStore()
    store.save("a-form.docx", b"12345")

    entry = store.entry("documents/output/a-form.docx")

    assert entry.path == "Results/a-form.docx"
    assert entry.size == 5
    assert entry.name == "a-form.docx"


def test_failed_mirror_write_stores_nothing(tmp_path):
    not_a_directory = tmp_path / "mirror"
    not_a_directory.write_bytes(b"")
    store = BlobStore(results_mirror_dir=not_a_directory)
    store.save("a.pdf", b"input")

    with pytest.raises(OSError):
        store.save("a-form.docx", b"result")

    assert store.list_paths() == ["documents/input/a.pdf"]
    assert store.get("Results/a-form.docx") is None


def test_existing_mirror_file_is_never_overwritten(tmp_path):
    mirror = tmp_path / "Results"
    mirror.mkdir()
    (mirror / "a-form.docx").write_bytes(b"earlier run")
    store = BlobStore(results_mirror_dir=mirror)

    with pytest.raises(BlobConflictError):
        store.save("a-form.docx", b"new run")

    assert (mirror / "a-form.docx").read_bytes() == b"earlier run"
    assert store.list_paths() == []
