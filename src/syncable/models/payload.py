"""
Wire payloads exchanged between systems.
"""

from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .records import SyncAction


class SyncPayload(BaseModel):
    """
    One replicated mutation as it travels between systems.

    The same shape is built for outbound pushes and accepted on receipt.
    """
    model_config = ConfigDict(extra="allow")

    action: Optional[SyncAction] = None
    source_model: str = Field(..., description="Type name in the sending system")
    source_id: Any = Field(..., description="Primary key in the sending system")
    target_model: Optional[str] = Field(None, description="Type name in the receiving system")
    target_id: Optional[Any] = Field(None, description="Receiving system's key, when already mapped")
    data: Dict[str, Any] = Field(default_factory=dict)
    changed_fields: Optional[List[str]] = None
    relations: Dict[str, Any] = Field(default_factory=dict)
    additional: Dict[str, Any] = Field(default_factory=dict)
    origin_system_id: Optional[str] = None
    tenant_id: Optional[Any] = None
    target_tenant_id: Optional[Any] = None

    @field_validator("changed_fields", mode="before")
    @classmethod
    def normalize_changed_fields(cls, v):
        # Senders may ship a {field: value} map of dirty attributes
        if v is None:
            return None
        if isinstance(v, dict):
            return list(v.keys())
        if isinstance(v, (set, tuple)):
            return list(v)
        return v

    def changed_field_set(self) -> Optional[Set[str]]:
        return set(self.changed_fields) if self.changed_fields is not None else None

    def to_wire(self) -> Dict[str, Any]:
        """Serialize for transport, dropping empty optional sections."""
        data = self.model_dump(mode="json", exclude_none=True)
        for key in ("relations", "additional"):
            if not data.get(key):
                data.pop(key, None)
        return data


class BatchOperation(BaseModel):
    """One entry of a batch request."""
    action: SyncAction
    data: Dict[str, Any]


class SyncOperation(BaseModel):
    """
    Ephemeral description of one outbound push.

    `action` is fixed for the lifetime of the operation; `changed_fields` only
    carries meaning for updates.
    """
    model_config = ConfigDict(frozen=True)

    action: SyncAction
    source_type: str
    source_id: Any
    target_type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    changed_fields: frozenset = Field(default_factory=frozenset)
    relations: Dict[str, Any] = Field(default_factory=dict)
    tenant_id: Optional[Any] = None
    origin_system_id: Optional[str] = None
