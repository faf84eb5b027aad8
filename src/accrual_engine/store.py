"""In-memory store of accrual snapshots shared by ticks and the UI."""

import threading
from collections.abc import Callable
from typing import Any

import structlog

from accrual_engine.models import AccrualSnapshot

logger = structlog.get_logger(__name__)

SnapshotHook = Callable[[str, AccrualSnapshot], None]


class SnapshotStore:
    """Mapping of agreement id to its ``AccrualSnapshot``.

    Writers merge fields with ``upsert``; readers get copies, so a snapshot
    handed to the UI never changes underneath it. Each key has its own lock,
    which keeps merges atomic if a reader lives on another thread.
    """

    def __init__(self) -> None:
        self._snapshots: dict[str, AccrualSnapshot] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._hooks: list[SnapshotHook] = []
        self._logger = logger.bind(component="snapshot_store")

    def _lock_for(self, agreement_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(agreement_id)
            if lock is None:
                lock = self._locks[agreement_id] = threading.Lock()
            return lock

    def add_hook(self, hook: SnapshotHook) -> None:
        """Register a callable invoked with a copy after every upsert."""
        self._hooks.append(hook)

    def remove_hook(self, hook: SnapshotHook) -> None:
        """Remove a previously registered hook."""
        if hook in self._hooks:
            self._hooks.remove(hook)

    def upsert(self, agreement_id: str, **fields: Any) -> AccrualSnapshot:
        """Merge ``fields`` into the snapshot, creating it if absent.

        Fields not named are left untouched.

        Returns:
            A copy of the snapshot after the merge.

        Raises:
            ValueError: If a field name is not an ``AccrualSnapshot`` field.
        """
        unknown = set(fields) - AccrualSnapshot.field_names()
        if unknown:
            raise ValueError(f"Unknown snapshot fields: {sorted(unknown)}")
        if "agreement_id" in fields:
            raise ValueError("agreement_id is the store key and cannot be upserted")

        with self._lock_for(agreement_id):
            snapshot = self._snapshots.get(agreement_id)
            if snapshot is None:
                snapshot = AccrualSnapshot(agreement_id=agreement_id)
                self._snapshots[agreement_id] = snapshot
                self._logger.debug("snapshot_created", agreement_id=agreement_id)
            for name, value in fields.items():
                setattr(snapshot, name, value)
            result = snapshot.copy()

        for hook in list(self._hooks):
            try:
                hook(agreement_id, result.copy())
            except Exception as e:
                self._logger.error("hook_error", agreement_id=agreement_id, error=str(e))
        return result

    def get(self, agreement_id: str) -> AccrualSnapshot | None:
        """Return a copy of the snapshot, or None if unknown."""
        if agreement_id not in self._snapshots:
            return None
        with self._lock_for(agreement_id):
            snapshot = self._snapshots.get(agreement_id)
            return snapshot.copy() if snapshot else None

    def remove(self, agreement_id: str) -> bool:
        """Discard a snapshot.

        Returns:
            True if a snapshot was removed.
        """
        with self._lock_for(agreement_id):
            removed = self._snapshots.pop(agreement_id, None) is not None
        with self._registry_lock:
            self._locks.pop(agreement_id, None)
        if removed:
            self._logger.debug("snapshot_removed", agreement_id=agreement_id)
        return removed

    def ids(self) -> list[str]:
        """Ids of all known agreements."""
        return list(self._snapshots)

    def snapshot_all(self) -> dict[str, AccrualSnapshot]:
        """Copies of every snapshot keyed by agreement id."""
        result: dict[str, AccrualSnapshot] = {}
        for agreement_id in self.ids():
            snapshot = self.get(agreement_id)
            if snapshot is not None:
                result[agreement_id] = snapshot
        return result

    def __contains__(self, agreement_id: object) -> bool:
        return agreement_id in self._snapshots

    def __len__(self) -> int:
        return len(self._snapshots)
