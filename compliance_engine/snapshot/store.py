"""Snapshot store — copy-on-recompute publication of immutable snapshots.

Readers take the current reference without locking; a new snapshot is
swapped in whole under a writer lock, so in-flight queries keep the version
they started with. A bounded history keeps older versions servable; the
newest version held is always the current one, whatever the load order.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Optional

from compliance_engine.common.exceptions import NotFoundException, StaleSnapshotTimeout
from compliance_engine.config import settings
from compliance_engine.snapshot.snapshot import ComplianceSnapshot

logger = logging.getLogger(__name__)


class SnapshotStore:
    """Holds the published snapshot and its recent predecessors."""

    def __init__(self, history: int = 8) -> None:
        self._history = max(1, history)
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._current: Optional[ComplianceSnapshot] = None
        self._versions: dict[datetime, ComplianceSnapshot] = {}

    @property
    def current(self) -> Optional[ComplianceSnapshot]:
        return self._current

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    def publish(self, snapshot: ComplianceSnapshot) -> None:
        """Add *snapshot*; it becomes current unless a newer version is already held."""
        with self._lock:
            self._versions[snapshot.version] = snapshot
            while len(self._versions) > self._history:
                del self._versions[min(self._versions)]
            if self._current is None or snapshot.version >= self._current.version:
                self._current = snapshot
            self._ready.set()
        logger.info("Published snapshot %s (digest %s)", snapshot.version.isoformat(), snapshot.digest[:12])

    def versions(self) -> list[ComplianceSnapshot]:
        with self._lock:
            return [self._versions[v] for v in sorted(self._versions, reverse=True)]

    def acquire(
        self,
        timeout: Optional[float] = None,
        version: Optional[datetime] = None,
    ) -> ComplianceSnapshot:
        """Return a complete snapshot or fail closed.

        Waits up to *timeout* seconds for the first publication and raises
        ``StaleSnapshotTimeout`` rather than serving nothing as zeros.
        """
        wait = settings.QUERY_TIMEOUT_SECONDS if timeout is None else timeout
        if not self._ready.wait(wait):
            logger.warning("Rejected query: no snapshot published after %.1fs", wait)
            raise StaleSnapshotTimeout(retry_after=settings.RETRY_AFTER_SECONDS)

        if version is None:
            return self._current

        snapshot = self._versions.get(version)
        if snapshot is None:
            raise NotFoundException("Snapshot", version.isoformat())
        return snapshot


snapshot_store = SnapshotStore(history=settings.SNAPSHOT_HISTORY)


def get_snapshot_store() -> SnapshotStore:
    """FastAPI dependency: the process-wide snapshot store."""
    return snapshot_store
