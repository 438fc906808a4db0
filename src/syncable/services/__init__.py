"""
Services for Syncable.
"""

from .encryption import EncryptionService
from .repository import InMemoryRepository
from .store import InMemoryStore, SyncStore
from .tenant import TenantContext

__all__ = [
    "EncryptionService",
    "InMemoryRepository",
    "InMemoryStore",
    "SyncStore",
    "TenantContext",
]
