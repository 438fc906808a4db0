"""
Field-level conflict detection and resolution for inbound updates.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from ..core.config import SyncSettings
from ..exceptions import SyncException
from ..models.config import ConflictStrategy
from ..models.records import ConflictStatus, SyncConflict, utcnow
from ..services.store import SyncStore
from ..services.tenant import TenantContext

logger = logging.getLogger(__name__)


class ConflictResolver:
    """
    Reconciles remote changes with unsaved local changes to the same record.

    Owns the SyncConflict records created by the manual strategy.
    """

    def __init__(self, settings: SyncSettings, store: SyncStore, tenant: Optional[TenantContext] = None):
        self.settings = settings
        self.store = store
        self.tenant = tenant or TenantContext()

    def resolve(self, local: Any, remote_data: Dict[str, Any], remote_changed_fields: Iterable[str],
                origin_system_id: str) -> Dict[str, Any]:
        """
        Resolve conflicting fields in an incoming update.

        Args:
            local: The local domain object, as currently loaded
            remote_data: Values the remote system wants to apply
            remote_changed_fields: Fields the remote system reports as changed
            origin_system_id: System the update came from

        Returns:
            The data to apply. Identical to `remote_data` when nothing conflicts.
        """
        local_changes = self.get_local_changes(local, origin_system_id)
        conflicts = sorted(
            field for field in set(local_changes) & set(remote_changed_fields)
            if field in remote_data
        )

        if not conflicts:
            return remote_data

        strategy = self.get_strategy(local)
        if self.settings.logging.enabled:
            logger.info(
                f"Conflict detected during sync of {local.type_name()}#{local.get_key()} "
                f"from {origin_system_id}: fields={conflicts} strategy={strategy}"
            )

        resolved = dict(remote_data)
        for field in conflicts:
            resolved[field] = self.resolve_field(
                strategy,
                local_changes[field],
                remote_data[field],
                local.get_original(field),
            )

        if strategy == ConflictStrategy.MANUAL.value:
            self.flag_for_review(local, conflicts, local_changes, remote_data, origin_system_id)

        return resolved

    def get_strategy(self, local: Any) -> str:
        """
        Strategy for an object: its own override (or its handler's), then the
        per-type configuration, then the global default.
        """
        strategy = None
        handler = local.sync_handler() if hasattr(local, "sync_handler") else None
        if handler is not None:
            strategy = handler.get_conflict_strategy()
        if strategy is None and hasattr(local, "get_conflict_strategy"):
            strategy = local.get_conflict_strategy()
        if strategy:
            return strategy

        type_name = local.type_name()
        conflict_settings = self.settings.conflict_resolution
        if type_name in conflict_settings.models:
            return conflict_settings.models[type_name]
        model_config = self.settings.models.get(type_name)
        if model_config is not None and model_config.conflict_strategy:
            return model_config.conflict_strategy

        return conflict_settings.strategy

    def get_local_changes(self, local: Any, origin_system_id: str) -> Dict[str, Any]:
        """
        Unsaved local changes not yet confirmed with the origin system.

        A successful sync from the origin always leaves the record clean, so
        every field still dirty was changed after it.
        """
        return local.get_dirty() if local.is_dirty() else {}

    @staticmethod
    def resolve_field(strategy: str, local_value: Any, remote_value: Any, original_value: Any = None) -> Any:
        """
        Resolve one conflicting field.

        `merge` unions dicts (remote wins on shared keys) and appends every
        remote item to lists, duplicates included. Differing strings are not merged; the remote
        value is taken.
        """
        if strategy in (ConflictStrategy.LAST_WRITE_WINS.value, ConflictStrategy.REMOTE_WINS.value):
            return remote_value

        if strategy == ConflictStrategy.LOCAL_WINS.value:
            return local_value

        if strategy == ConflictStrategy.MERGE.value:
            if isinstance(local_value, dict) and isinstance(remote_value, dict):
                merged = dict(local_value)
                merged.update(remote_value)
                return merged
            if isinstance(local_value, list) and isinstance(remote_value, list):
                return local_value + remote_value
            return remote_value

        if strategy == ConflictStrategy.MANUAL.value:
            # Kept provisionally until someone resolves the stored conflict
            return local_value

        logger.warning(f"Unknown conflict strategy '{strategy}', applying remote value")
        return remote_value

    def flag_for_review(self, local: Any, conflicts: List[str], local_changes: Dict[str, Any],
                        remote_data: Dict[str, Any], origin_system_id: str) -> Optional[SyncConflict]:
        if not self.settings.conflict_resolution.store_conflicts:
            return None

        conflict = SyncConflict(
            model_type=local.type_name(),
            model_id=local.get_key(),
            conflicting_fields=list(conflicts),
            local_values={field: local_changes[field] for field in conflicts},
            remote_values={field: remote_data[field] for field in conflicts},
            origin_system_id=origin_system_id,
            tenant_id=self.tenant.current(),
        )
        self.store.create_conflict(conflict)
        logger.info(f"Stored conflict {conflict.id} for manual review")
        return conflict

    def mark_resolved(self, conflict_id: str, resolved_by: Optional[str] = None,
                      notes: Optional[str] = None) -> SyncConflict:
        """
        Close a pending conflict.

        Raises:
            SyncException: If the conflict does not exist or is already resolved
        """
        conflict = self.store.get_conflict(conflict_id)
        if conflict is None:
            raise SyncException(f"Conflict {conflict_id} not found")
        if not conflict.is_pending:
            raise SyncException(f"Conflict {conflict_id} is already resolved")

        conflict.status = ConflictStatus.RESOLVED
        conflict.resolved_at = utcnow()
        conflict.resolved_by = resolved_by
        conflict.resolution_notes = notes
        self.store.save_conflict(conflict)

        logger.info(f"Conflict {conflict_id} resolved by {resolved_by or 'unknown'}")
        return conflict

    def pending(self, model_type: Optional[str] = None, limit: int = 100) -> List[SyncConflict]:
        return self.store.list_conflicts(ConflictStatus.PENDING, model_type, limit)

    def resolved(self, model_type: Optional[str] = None, limit: int = 100) -> List[SyncConflict]:
        return self.store.list_conflicts(ConflictStatus.RESOLVED, model_type, limit)
