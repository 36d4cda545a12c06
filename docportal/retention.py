from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass

from docportal.blob_store import BlobStore, Namespace
from docportal.registry import DocumentRegistry

logger = logging.getLogger(__name__)

EXEMPT_PAGE_PATHS = {"/health", "/docs", "/redoc"}


@dataclass(frozen=True)
class SweepReport:
    reason: str
    removed_blobs: int
    removed_documents: int

    def to_dict(self) -> dict:
        return asdict(self)


class RetentionSweeper:
    """Coarse, TTL-less cache clear of every input/result blob and the registry.

    In-flight processing is not drained; a later write-back for a swept
    document fails with not-found.
    """

    def __init__(self, blob_store: BlobStore, registry: DocumentRegistry) -> None:
        self._blob_store = blob_store
        self._registry = registry

    def sweep(self, reason: str = "manual") -> SweepReport:
        with self._registry.lock:
            removed_documents = self._registry.clear()
            removed_blobs = self._blob_store.clear((Namespace.INPUT, Namespace.RESULTS))
        report = SweepReport(reason=reason, removed_blobs=removed_blobs, removed_documents=removed_documents)
        logger.info(
            "Swept memory (%s): %d blobs, %d documents",
            reason,
            removed_blobs,
            removed_documents,
        )
        return report


def is_page_request(path: str) -> bool:
    """Page navigations count as client connections; API and asset requests do not."""
    if path.startswith("/api") or "." in path:
        return False
    return path.rstrip("/") not in EXEMPT_PAGE_PATHS


class ConnectionTracker:
    """Counts open page connections and sweeps when the last one closes."""

    def __init__(self, sweeper: RetentionSweeper, enabled: bool = True) -> None:
        self._sweeper = sweeper
        self._enabled = enabled
        self._active = 0
        self._lock = threading.Lock()

    @property
    def active(self) -> int:
        return self._active

    def opened(self) -> int:
        with self._lock:
            self._active += 1
            active = self._active
        logger.debug("New connection, active connections: %d", active)
        return active

    def closed(self) -> SweepReport | None:
        with self._lock:
            self._active = max(0, self._active - 1)
            active = self._active
        logger.debug("Connection closed, active connections: %d", active)
        if active > 0 or not self._enabled:
            return None
        logger.info("No active connections, clearing memory")
        return self._sweeper.sweep(reason="idle")
