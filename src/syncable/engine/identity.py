"""
Identity mapping between local records and their counterparts in other systems.
"""

import logging
from typing import Any, Optional, Tuple

from ..models.records import IdentityMapping
from ..services.store import SyncStore
from ..services.tenant import TenantContext

logger = logging.getLogger(__name__)


class IdentityMapper:
    """
    Owns the IdentityMapping table.

    When tenancy is active every lookup and write is keyed by the tenant id
    (the explicit one, or the current tenant). When it is inactive the tenant
    id is dropped before reaching the store, so rows never carry one.
    """

    def __init__(self, store: SyncStore, tenant: Optional[TenantContext] = None):
        self.store = store
        self.tenant = tenant or TenantContext()

    def _scope(self, tenant_id: Optional[Any]) -> Optional[Any]:
        if not self.tenant.enabled:
            return None
        return tenant_id if tenant_id is not None else self.tenant.current()

    def resolve_local(self, remote_type: str, remote_id: Any, system_id: str,
                      tenant_id: Optional[Any] = None) -> Optional[Tuple[str, Any]]:
        """
        Find the local record mapped to a remote one.

        Returns:
            (local_type, local_id), or None if unmapped
        """
        mapping = self.store.get_mapping_by_remote(remote_type, remote_id, system_id, self._scope(tenant_id))
        if mapping is None:
            return None
        return mapping.local_type, mapping.local_id

    def resolve_remote(self, local_type: str, local_id: Any, system_id: str,
                       tenant_id: Optional[Any] = None) -> Optional[Tuple[str, Any]]:
        """
        Find the remote record mapped to a local one.

        Returns:
            (remote_type, remote_id), or None if unmapped
        """
        mapping = self.store.get_mapping_by_local(local_type, local_id, system_id, self._scope(tenant_id))
        if mapping is None:
            return None
        return mapping.remote_type, mapping.remote_id

    def upsert(self, local_type: str, local_id: Any, remote_type: str, remote_id: Any,
               system_id: str, tenant_id: Optional[Any] = None) -> IdentityMapping:
        """
        Create the mapping, or rewrite its remote side if it already exists.

        Raises:
            IdentityMappingError: If the remote pair belongs to another local record
        """
        mapping = IdentityMapping(
            local_type=local_type,
            local_id=local_id,
            remote_type=remote_type,
            remote_id=remote_id,
            system_id=system_id,
            tenant_id=self._scope(tenant_id),
        )
        stored = self.store.upsert_mapping(mapping)
        logger.debug(f"Mapped {local_type}#{local_id} <-> {remote_type}#{remote_id} on {system_id}")
        return stored

    def delete_mapping(self, local_type: str, local_id: Any, system_id: str,
                       tenant_id: Optional[Any] = None) -> bool:
        deleted = self.store.delete_mapping(local_type, local_id, system_id, self._scope(tenant_id))
        if deleted:
            logger.debug(f"Removed mapping for {local_type}#{local_id} on {system_id}")
        return deleted
