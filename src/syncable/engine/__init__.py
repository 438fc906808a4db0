"""
Sync engine: transformation, identity mapping, conflicts and orchestration.
"""

from .conflicts import ConflictResolver
from .events import EventBus
from .identity import IdentityMapper
from .jobs import SyncDispatcher, SyncJob
from .sync import SyncOrchestrator
from .transforms import Accessor, Attribute, TransformEngine

__all__ = [
    "Accessor",
    "Attribute",
    "ConflictResolver",
    "EventBus",
    "IdentityMapper",
    "SyncDispatcher",
    "SyncJob",
    "SyncOrchestrator",
    "TransformEngine",
]
