"""
Durable records: identity mappings, the sync audit log and stored conflicts.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncAction(str, Enum):
    """Mutation being replicated."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncLogStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class ConflictStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


class IdentityMapping(BaseModel):
    """
    Correspondence between a local record and a remote record.

    Unique on (local_type, local_id, system_id) and on
    (remote_type, remote_id, system_id), scoped by tenant when tenancy is on.
    """
    local_type: str
    local_id: Any
    remote_type: str
    remote_id: Any
    system_id: str
    tenant_id: Optional[Any] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def to_firestore(self) -> Dict[str, Any]:
        data = self.model_dump()
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        return data

    @classmethod
    def from_firestore(cls, data: Dict[str, Any]) -> "IdentityMapping":
        return cls(**_parse_datetimes(data, ("created_at", "updated_at")))


class SyncLogEntry(BaseModel):
    """Append-only audit record of one sync attempt."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    model_type: str
    model_id: Any
    action: SyncAction
    status: SyncLogStatus
    message: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict, description="origin_system_id and changed_fields")
    tenant_id: Optional[Any] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def origin_system_id(self) -> Optional[str]:
        return self.data.get("origin_system_id")

    def to_firestore(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        # Native timestamp so range queries on created_at work
        data["created_at"] = self.created_at
        return data

    @classmethod
    def from_firestore(cls, data: Dict[str, Any]) -> "SyncLogEntry":
        return cls(**_parse_datetimes(data, ("created_at",)))


class SyncConflict(BaseModel):
    """A field-level conflict awaiting manual resolution."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    model_type: str
    model_id: Any
    conflicting_fields: List[str] = Field(default_factory=list)
    local_values: Dict[str, Any] = Field(default_factory=dict)
    remote_values: Dict[str, Any] = Field(default_factory=dict)
    origin_system_id: str
    status: ConflictStatus = ConflictStatus.PENDING
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None
    tenant_id: Optional[Any] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_pending(self) -> bool:
        return self.status == ConflictStatus.PENDING

    def to_firestore(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["created_at"] = self.created_at
        return data

    @classmethod
    def from_firestore(cls, data: Dict[str, Any]) -> "SyncConflict":
        return cls(**_parse_datetimes(data, ("created_at", "resolved_at")))


def _parse_datetimes(data: Dict[str, Any], names) -> Dict[str, Any]:
    """Convert ISO strings back to datetime."""
    data = dict(data)
    for name in names:
        value = data.get(name)
        if value and isinstance(value, str):
            data[name] = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return data
