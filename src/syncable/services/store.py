"""
Persistence contract for mapping, log and conflict records, plus an
in-process implementation.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import IdentityMappingError
from ..models.records import (
    ConflictStatus, IdentityMapping, SyncConflict, SyncLogEntry, SyncLogStatus, utcnow
)

logger = logging.getLogger(__name__)


def _key(*parts: Any) -> Tuple[str, ...]:
    # Ids arrive as ints or strings depending on the wire; compare as text
    return tuple("" if part is None else str(part) for part in parts)


class SyncStore(ABC):
    """CRUD-style access to the durable sync records."""

    # Identity mappings

    @abstractmethod
    def get_mapping_by_local(self, local_type: str, local_id: Any, system_id: str,
                             tenant_id: Optional[Any] = None) -> Optional[IdentityMapping]:
        pass

    @abstractmethod
    def get_mapping_by_remote(self, remote_type: str, remote_id: Any, system_id: str,
                              tenant_id: Optional[Any] = None) -> Optional[IdentityMapping]:
        pass

    @abstractmethod
    def upsert_mapping(self, mapping: IdentityMapping) -> IdentityMapping:
        """
        Create or update the row keyed by (local_type, local_id, system_id, tenant_id).

        Raises:
            IdentityMappingError: If the remote side is bound to another local record
        """
        pass

    @abstractmethod
    def delete_mapping(self, local_type: str, local_id: Any, system_id: str,
                       tenant_id: Optional[Any] = None) -> bool:
        pass

    @abstractmethod
    def list_mappings(self, local_type: Optional[str] = None, local_id: Optional[Any] = None,
                      limit: int = 100) -> List[IdentityMapping]:
        pass

    # Sync log

    @abstractmethod
    def append_log(self, entry: SyncLogEntry) -> SyncLogEntry:
        pass

    @abstractmethod
    def find_latest_log(self, model_type: str, model_id: Any, status: SyncLogStatus,
                        origin_system_id: str, since: Optional[datetime] = None) -> Optional[SyncLogEntry]:
        """Most recent entry matching, optionally no older than `since`."""
        pass

    @abstractmethod
    def list_logs(self, model_type: Optional[str] = None, model_id: Optional[Any] = None,
                  status: Optional[SyncLogStatus] = None, limit: int = 50) -> List[SyncLogEntry]:
        pass

    # Conflicts

    @abstractmethod
    def create_conflict(self, conflict: SyncConflict) -> SyncConflict:
        pass

    @abstractmethod
    def get_conflict(self, conflict_id: str) -> Optional[SyncConflict]:
        pass

    @abstractmethod
    def save_conflict(self, conflict: SyncConflict) -> SyncConflict:
        pass

    @abstractmethod
    def list_conflicts(self, status: Optional[ConflictStatus] = None, model_type: Optional[str] = None,
                       limit: int = 100) -> List[SyncConflict]:
        pass


class InMemoryStore(SyncStore):
    """Thread-safe store kept in process memory. Used in tests and local runs."""

    def __init__(self):
        self._lock = threading.Lock()
        self._mappings: Dict[Tuple[str, ...], IdentityMapping] = {}
        self._remote_index: Dict[Tuple[str, ...], Tuple[str, ...]] = {}
        self._logs: List[SyncLogEntry] = []
        self._conflicts: Dict[str, SyncConflict] = {}

    def get_mapping_by_local(self, local_type, local_id, system_id, tenant_id=None):
        with self._lock:
            mapping = self._mappings.get(_key(local_type, local_id, system_id, tenant_id))
            return mapping.model_copy() if mapping else None

    def get_mapping_by_remote(self, remote_type, remote_id, system_id, tenant_id=None):
        with self._lock:
            local_key = self._remote_index.get(_key(remote_type, remote_id, system_id, tenant_id))
            if local_key is None:
                return None
            return self._mappings[local_key].model_copy()

    def upsert_mapping(self, mapping):
        local_key = _key(mapping.local_type, mapping.local_id, mapping.system_id, mapping.tenant_id)
        remote_key = _key(mapping.remote_type, mapping.remote_id, mapping.system_id, mapping.tenant_id)

        with self._lock:
            bound_to = self._remote_index.get(remote_key)
            if bound_to is not None and bound_to != local_key:
                raise IdentityMappingError(
                    f"{mapping.remote_type}#{mapping.remote_id} on {mapping.system_id} "
                    f"is already mapped to {bound_to[0]}#{bound_to[1]}"
                )

            existing = self._mappings.get(local_key)
            if existing is not None:
                self._remote_index.pop(
                    _key(existing.remote_type, existing.remote_id, existing.system_id, existing.tenant_id),
                    None,
                )
                stored = existing.model_copy(update={
                    "remote_type": mapping.remote_type,
                    "remote_id": mapping.remote_id,
                    "updated_at": utcnow(),
                })
            else:
                stored = mapping.model_copy()

            self._mappings[local_key] = stored
            self._remote_index[remote_key] = local_key
            return stored.model_copy()

    def delete_mapping(self, local_type, local_id, system_id, tenant_id=None):
        with self._lock:
            existing = self._mappings.pop(_key(local_type, local_id, system_id, tenant_id), None)
            if existing is None:
                return False
            self._remote_index.pop(
                _key(existing.remote_type, existing.remote_id, existing.system_id, existing.tenant_id),
                None,
            )
            return True

    def list_mappings(self, local_type=None, local_id=None, limit=100):
        with self._lock:
            rows = [
                m for m in self._mappings.values()
                if (local_type is None or m.local_type == local_type)
                and (local_id is None or str(m.local_id) == str(local_id))
            ]
        return [m.model_copy() for m in rows[:limit]]

    def append_log(self, entry):
        with self._lock:
            self._logs.append(entry.model_copy(deep=True))
        return entry

    def find_latest_log(self, model_type, model_id, status, origin_system_id, since=None):
        with self._lock:
            for entry in reversed(self._logs):
                if entry.model_type != model_type or str(entry.model_id) != str(model_id):
                    continue
                if entry.status != status or entry.origin_system_id != origin_system_id:
                    continue
                if since is not None and entry.created_at < since:
                    continue
                return entry.model_copy(deep=True)
        return None

    def list_logs(self, model_type=None, model_id=None, status=None, limit=50):
        with self._lock:
            rows = [
                e for e in reversed(self._logs)
                if (model_type is None or e.model_type == model_type)
                and (model_id is None or str(e.model_id) == str(model_id))
                and (status is None or e.status == status)
            ]
        return [e.model_copy(deep=True) for e in rows[:limit]]

    def create_conflict(self, conflict):
        with self._lock:
            self._conflicts[conflict.id] = conflict.model_copy(deep=True)
        return conflict

    def get_conflict(self, conflict_id):
        with self._lock:
            conflict = self._conflicts.get(conflict_id)
            return conflict.model_copy(deep=True) if conflict else None

    def save_conflict(self, conflict):
        with self._lock:
            self._conflicts[conflict.id] = conflict.model_copy(deep=True)
        return conflict

    def list_conflicts(self, status=None, model_type=None, limit=100):
        with self._lock:
            rows = [
                c for c in self._conflicts.values()
                if (status is None or c.status == status)
                and (model_type is None or c.model_type == model_type)
            ]
        rows.sort(key=lambda c: c.created_at, reverse=True)
        return [c.model_copy(deep=True) for c in rows[:limit]]
