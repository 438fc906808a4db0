"""
Tenant context: which tenant the current unit of work belongs to.
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

_current_tenant: ContextVar[Optional[Any]] = ContextVar("syncable_current_tenant", default=None)


class TenantContext:
    """
    Lookup of the current tenant id, or None.

    When tenancy is disabled every lookup returns None, so callers can pass
    the result straight through without checking the flag themselves.
    """

    def __init__(
        self,
        enabled: bool = False,
        identifier_column: str = "tenant_id",
        resolver: Optional[Callable[[], Optional[Any]]] = None,
    ):
        """
        Args:
            enabled: Whether this system is multi-tenant
            identifier_column: Attribute holding the tenant id on domain objects
            resolver: Fallback lookup used when no tenant was set explicitly
        """
        self.enabled = enabled
        self.identifier_column = identifier_column
        self.resolver = resolver

    @classmethod
    def from_settings(cls, settings, resolver=None) -> "TenantContext":
        return cls(
            enabled=settings.tenancy.enabled,
            identifier_column=settings.tenancy.identifier_column,
            resolver=resolver,
        )

    def set_current(self, tenant_id: Optional[Any]) -> None:
        _current_tenant.set(tenant_id)

    def current(self) -> Optional[Any]:
        if not self.enabled:
            return None
        tenant_id = _current_tenant.get()
        if tenant_id is None and self.resolver is not None:
            tenant_id = self.resolver()
        return tenant_id

    @contextmanager
    def use(self, tenant_id: Optional[Any]):
        """Run a block under the given tenant."""
        token = _current_tenant.set(tenant_id)
        try:
            yield
        finally:
            _current_tenant.reset(token)

    def with_tenant_filter(self, query: Any, tenant_id: Optional[Any] = None) -> Any:
        """
        Restrict a host query to a tenant.

        Dictionaries of filters get the identifier column added; query objects
        with a Firestore-style `where(field, op, value)` are narrowed with it.
        Returned unchanged when tenancy is off or no tenant is known.
        """
        if not self.enabled:
            return query

        tenant_id = tenant_id if tenant_id is not None else self.current()
        if tenant_id is None:
            return query

        if isinstance(query, dict):
            filtered: Dict[str, Any] = dict(query)
            filtered[self.identifier_column] = tenant_id
            return filtered
        return query.where(self.identifier_column, "==", tenant_id)
