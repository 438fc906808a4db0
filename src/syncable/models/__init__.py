"""
Models for the Syncable engine.
"""

from .config import ConflictStrategy, ModelSyncConfig, RelationSpec, RelationType
from .domain import ModelRepository, SyncConfigProvider, SyncHandler, SyncableModel
from .payload import BatchOperation, SyncOperation, SyncPayload
from .records import (
    ConflictStatus, IdentityMapping, SyncAction, SyncConflict, SyncLogEntry, SyncLogStatus
)

__all__ = [
    # Configuration
    "ConflictStrategy",
    "ModelSyncConfig",
    "RelationSpec",
    "RelationType",

    # Domain abstraction
    "ModelRepository",
    "SyncConfigProvider",
    "SyncHandler",
    "SyncableModel",

    # Wire payloads
    "BatchOperation",
    "SyncOperation",
    "SyncPayload",

    # Durable records
    "ConflictStatus",
    "IdentityMapping",
    "SyncAction",
    "SyncConflict",
    "SyncLogEntry",
    "SyncLogStatus",
]
