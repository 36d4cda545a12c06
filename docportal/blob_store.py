from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Iterable, Union

from docportal.errors import BlobConflictError

logger = logging.getLogger(__name__)


class Namespace(str, Enum):
    INPUT = "input"
    RESULTS = "results"


class ResultKind(str, Enum):
    PROCESSED_TEMPLATE = "processed_template"
    FORM = "form"
    OTHER = "other"


CANONICAL_PREFIXES = {
    Namespace.INPUT: "documents/input/",
    Namespace.RESULTS: "Results/",
}

# Historical spellings of the two namespaces, checked in order.
LEGACY_PREFIXES: tuple[tuple[str, Namespace], ...] = (
    ("../Results/", Namespace.RESULTS),
    ("documents/output/", Namespace.RESULTS),
    ("results/", Namespace.RESULTS),
    ("uploads/", Namespace.INPUT),
)

FORM_SUFFIX = "-form.docx"
PROCESSED_MARKERS = ("template_processed", "_processed")


@dataclass(frozen=True)
class InputRef:
    name: str


@dataclass(frozen=True)
class ResultRef:
    name: str


@dataclass(frozen=True)
class LegacyRef:
    original_spelling: str
    name: str
    namespace: Namespace | None = None


BlobRef = Union[InputRef, ResultRef, LegacyRef]


@dataclass(frozen=True)
class BlobEntry:
    path: str
    size: int
    stored_at: datetime

    @property
    def name(self) -> str:
        return PurePosixPath(self.path).name


def _clean(text: str | None) -> str:
    cleaned = (text or "").strip().replace("\\", "/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    return cleaned


def _is_absolute(cleaned: str) -> bool:
    return cleaned.startswith("/") or (len(cleaned) > 2 and cleaned[1] == ":" and cleaned[2] == "/")


def result_kind(name: str) -> ResultKind | None:
    """Classify a filename by the processor output naming conventions."""
    basename = PurePosixPath(_clean(name)).name
    if basename.endswith(FORM_SUFFIX):
        return ResultKind.FORM
    if any(marker in basename for marker in PROCESSED_MARKERS):
        return ResultKind.PROCESSED_TEMPLATE
    return None


def classify_name(name: str) -> Namespace:
    return Namespace.RESULTS if result_kind(name) is not None else Namespace.INPUT


def _match_prefix(cleaned: str) -> BlobRef | None:
    for namespace, prefix in CANONICAL_PREFIXES.items():
        if cleaned.startswith(prefix) and len(cleaned) > len(prefix):
            name = cleaned[len(prefix):]
            return InputRef(name) if namespace is Namespace.INPUT else ResultRef(name)
    for prefix, namespace in LEGACY_PREFIXES:
        if cleaned.startswith(prefix) and len(cleaned) > len(prefix):
            return LegacyRef(original_spelling=cleaned, name=cleaned[len(prefix):], namespace=namespace)
    return None


def parse_blob_ref(text: str) -> BlobRef:
    """Turn any accepted spelling of a logical path into a BlobRef.

    Raises:
        ValueError: if the path is empty.
    """
    cleaned = _clean(text)
    if not cleaned or cleaned.endswith("/") or not PurePosixPath(cleaned).name:
        raise ValueError("Blob path must not be empty.")

    matched = _match_prefix(cleaned)
    if matched is not None:
        return matched

    if _is_absolute(cleaned):
        markers = [prefix for prefix in CANONICAL_PREFIXES.values()]
        markers.extend(prefix for prefix, _ in LEGACY_PREFIXES if not prefix.startswith(".."))
        for marker in markers:
            index = cleaned.rfind("/" + marker)
            if index >= 0:
                inner = _match_prefix(cleaned[index + 1:])
                if isinstance(inner, InputRef):
                    return LegacyRef(original_spelling=text, name=inner.name, namespace=Namespace.INPUT)
                if isinstance(inner, ResultRef):
                    return LegacyRef(original_spelling=text, name=inner.name, namespace=Namespace.RESULTS)
                if isinstance(inner, LegacyRef):
                    return LegacyRef(original_spelling=text, name=inner.name, namespace=inner.namespace)

    return LegacyRef(original_spelling=text, name=PurePosixPath(cleaned).name)


def canonicalize(ref: BlobRef) -> str:
    if isinstance(ref, InputRef):
        return CANONICAL_PREFIXES[Namespace.INPUT] + ref.name
    if isinstance(ref, ResultRef):
        return CANONICAL_PREFIXES[Namespace.RESULTS] + ref.name
    if isinstance(ref, LegacyRef):
        namespace = ref.namespace or classify_name(ref.name)
        return CANONICAL_PREFIXES[namespace] + ref.name
    raise TypeError(f"Unsupported blob reference: {ref!r}")


def canonical_path(text: str) -> str:
    return canonicalize(parse_blob_ref(text))


def namespace_of(path: str) -> Namespace:
    canonical = canonical_path(path)
    if canonical.startswith(CANONICAL_PREFIXES[Namespace.RESULTS]):
        return Namespace.RESULTS
    return Namespace.INPUT


class BlobStore:
    """Process-lifetime map of canonical logical paths to byte buffers."""

    def __init__(self, results_mirror_dir: Path | None = None) -> None:
        self._blobs: dict[str, bytes] = {}
        self._stored_at: dict[str, datetime] = {}
        self._mirror_dir = Path(results_mirror_dir) if results_mirror_dir else None
        self._lock = threading.RLock()

    @property
    def results_mirror_dir(self) -> Path | None:
        return self._mirror_dir

    def save(self, name: str, content: bytes) -> str:
        """Store bytes under the namespace implied by the filename.

        Raises:
            ValueError: if the name is empty.
            BlobConflictError: if the resulting path is already stored, or a
                mirrored result file with that name already exists.
            OSError: if the results mirror cannot be written; nothing is stored.
        """
        filename = PurePosixPath(_clean(name)).name
        if not filename:
            raise ValueError("Blob name must not be empty.")

        namespace = classify_name(filename)
        path = CANONICAL_PREFIXES[namespace] + filename
        with self._lock:
            if path in self._blobs:
                raise BlobConflictError(f"Blob '{path}' already exists.")
            if namespace is Namespace.RESULTS:
                self._mirror_write(filename, content)
            self._blobs[path] = bytes(content)
            self._stored_at[path] = datetime.now(timezone.utc)

        logger.info("Stored %d bytes at %s", len(content), path)
        return path

    def resolve(self, path: str) -> str | None:
        """Return the stored canonical key for any accepted spelling, or None."""
        try:
            ref = parse_blob_ref(path)
        except ValueError:
            return None

        cleaned = _clean(path)
        canonical = canonicalize(ref)
        basename = PurePosixPath(cleaned).name
        with self._lock:
            if cleaned in self._blobs:
                return cleaned
            if canonical in self._blobs:
                return canonical
            matches = [stored for stored in self._blobs if PurePosixPath(stored).name == basename]

        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            logger.warning("Ambiguous blob path %s matches %d stored blobs", path, len(matches))
        return None

    def get(self, path: str) -> bytes | None:
        key = self.resolve(path)
        if key is not None:
            with self._lock:
                content = self._blobs.get(key)
            if content is not None:
                return content
        return self._mirror_read(path)

    def contains(self, path: str) -> bool:
        return self.get(path) is not None

    def entry(self, path: str) -> BlobEntry | None:
        key = self.resolve(path)
        if key is None:
            return None
        with self._lock:
            content = self._blobs.get(key)
            stored_at = self._stored_at.get(key)
        if content is None or stored_at is None:
            return None
        return BlobEntry(path=key, size=len(content), stored_at=stored_at)

    def remove(self, path: str) -> bool:
        """Delete a blob by any accepted spelling. Missing blobs are not an error."""
        key = self.resolve(path)
        removed = False
        if key is not None:
            with self._lock:
                removed = self._blobs.pop(key, None) is not None
                self._stored_at.pop(key, None)

        try:
            target = key or canonical_path(path)
        except ValueError:
            return removed
        if namespace_of(target) is Namespace.RESULTS:
            removed = self._mirror_delete(PurePosixPath(target).name) or removed
        if removed:
            logger.info("Removed blob %s", target)
        return removed

    def list_paths(self) -> list[str]:
        with self._lock:
            return list(self._blobs)

    def entries(self) -> list[BlobEntry]:
        with self._lock:
            return [
                BlobEntry(path=path, size=len(content), stored_at=self._stored_at[path])
                for path, content in self._blobs.items()
            ]

    def clear(self, namespaces: Iterable[Namespace] = (Namespace.INPUT, Namespace.RESULTS)) -> int:
        """Drop every blob in the given namespaces and return how many were removed."""
        selected = set(namespaces)
        prefixes = tuple(CANONICAL_PREFIXES[namespace] for namespace in selected)
        with self._lock:
            doomed = [path for path in self._blobs if path.startswith(prefixes)]
            for path in doomed:
                del self._blobs[path]
                self._stored_at.pop(path, None)

        removed = len(doomed)
        if Namespace.RESULTS in selected:
            removed += self._mirror_clear(skip={PurePosixPath(path).name for path in doomed})
        return removed

    def _mirror_write(self, filename: str, content: bytes) -> None:
        if self._mirror_dir is None:
            return
        self._mirror_dir.mkdir(parents=True, exist_ok=True)
        try:
            with open(self._mirror_dir / filename, "xb") as handle:
                handle.write(content)
        except FileExistsError as exc:
            raise BlobConflictError(f"Mirrored result '{filename}' already exists.") from exc
        logger.debug("Mirrored %s to %s", filename, self._mirror_dir)

    def _mirror_read(self, path: str) -> bytes | None:
        if self._mirror_dir is None:
            return None
        try:
            canonical = canonical_path(path)
        except ValueError:
            return None
        if namespace_of(canonical) is not Namespace.RESULTS:
            return None

        mirrored = self._mirror_dir / PurePosixPath(canonical).name
        if not mirrored.is_file():
            return None
        content = mirrored.read_bytes()
        with self._lock:
            if canonical not in self._blobs:
                self._blobs[canonical] = content
                self._stored_at[canonical] = datetime.now(timezone.utc)
        logger.info("Loaded %s from results mirror", canonical)
        return content

    def _mirror_delete(self, filename: str) -> bool:
        if self._mirror_dir is None:
            return False
        mirrored = self._mirror_dir / filename
        if mirrored.is_file():
            mirrored.unlink()
            return True
        return False

    def _mirror_clear(self, skip: set[str]) -> int:
        if self._mirror_dir is None or not self._mirror_dir.exists():
            return 0
        removed = 0
        for mirrored in self._mirror_dir.iterdir():
            if not mirrored.is_file():
                continue
            mirrored.unlink()
            if mirrored.name not in skip:
                removed += 1
        return removed
