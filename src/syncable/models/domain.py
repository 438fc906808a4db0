"""
Domain object abstraction the sync engine works against.

Host applications describe their records through `SyncableModel` (or any
object offering the same capabilities), customise per-type behaviour through
`SyncConfigProvider` / `SyncHandler`, and give the engine persistence through
a `ModelRepository`.
"""

import copy
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Dict, Iterable, List, Optional

from .config import ModelSyncConfig, RelationSpec

logger = logging.getLogger(__name__)


def read_attribute(source: Any, path: str) -> Any:
    """
    Read a named attribute, following dotted paths through nested values.

    Raises:
        AttributeError: If any segment of the path does not exist
    """
    value = source
    for part in path.split("."):
        if hasattr(value, "get_attribute"):
            value = value.get_attribute(part)
        elif isinstance(value, Mapping):
            if part not in value:
                raise AttributeError(part)
            value = value[part]
        else:
            value = getattr(value, part)
    return value


def call_accessor(source: Any, name: str) -> Any:
    """
    Invoke a zero-argument accessor method.

    Raises:
        AttributeError: If the object has no such callable
    """
    if hasattr(source, "invoke_accessor"):
        return source.invoke_accessor(name)
    method = getattr(source, name)
    if not callable(method):
        raise AttributeError(f"{name} is not callable")
    return method()


def conditions_met(source: Any, conditions: Dict[str, Any]) -> bool:
    """
    Evaluate selective-sync conditions against an object.

    Each condition is a field mapped to an expected value, a collection of
    accepted values, or a predicate receiving the object itself.
    """
    for field, expected in conditions.items():
        if callable(expected):
            if not expected(source):
                return False
            continue

        try:
            actual = read_attribute(source, field)
        except (AttributeError, KeyError):
            actual = None

        if isinstance(expected, (list, tuple, set, frozenset)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


class SyncConfigProvider(ABC):
    """Per-type sync customisation the engine depends on."""

    @abstractmethod
    def get_target_type(self) -> str:
        """Type name of the record in the target system."""
        pass

    @abstractmethod
    def get_field_map(self) -> Dict[str, Any]:
        """sourceField -> targetSpec. Empty means copy every attribute."""
        pass

    def get_relations(self) -> Dict[str, Any]:
        return {}

    def get_additional(self) -> Dict[str, Any]:
        return {}

    def get_conditions(self) -> Dict[str, Any]:
        return {}

    def get_syncable_fields(self) -> Iterable[str]:
        return ()

    def get_conflict_strategy(self) -> Optional[str]:
        return None

    def get_target_tenant_id(self) -> Optional[Any]:
        return None

    @abstractmethod
    def should_sync(self, extra_conditions: Optional[Dict[str, Any]] = None) -> bool:
        """Whether the record currently qualifies for syncing."""
        pass

    def get_sync_config(self) -> ModelSyncConfig:
        """Assemble the complete configuration for this type."""
        fields = dict(self.get_field_map())
        for field in self.get_syncable_fields():
            fields.setdefault(field, field)

        relations = {
            name: spec if isinstance(spec, RelationSpec) else RelationSpec(**spec)
            for name, spec in self.get_relations().items()
        }

        return ModelSyncConfig(
            target_model=self.get_target_type(),
            fields=fields,
            relations=relations,
            additional=dict(self.get_additional()),
            conditions=dict(self.get_conditions()),
            target_tenant_id=self.get_target_tenant_id(),
            conflict_strategy=self.get_conflict_strategy(),
        )


class SyncableModel(SyncConfigProvider):
    """
    Base class for records that take part in sync.

    Attributes live in a plain dictionary; the last persisted state is kept
    alongside so the dirty (changed, unsaved) set can be reported. Subclasses
    configure syncing through class attributes:

        class Customer(SyncableModel):
            sync_target = "Client"
            sync_map = {"name": "full_name", "email": "email"}
            sync_relations = {"addresses": {"type": "hasMany", "target_relation": "addresses",
                                            "fields": {"city": "city"}}}
            sync_conditions = {"status": "active"}
    """

    primary_key: str = "id"
    sync_type_name: Optional[str] = None
    sync_target: Optional[str] = None
    sync_map: Dict[str, Any] = {}
    sync_relations: Dict[str, Any] = {}
    sync_additional: Dict[str, Any] = {}
    sync_conditions: Dict[str, Any] = {}
    syncable_fields: List[str] = []
    conflict_strategy: Optional[str] = None
    # relation name -> attribute identifying an existing related record on receipt
    sync_relation_keys: Dict[str, str] = {}

    def __init__(self, **attributes):
        self._attributes: Dict[str, Any] = dict(attributes)
        self._original: Dict[str, Any] = {}
        self.sync_disabled = False
        self.changed_fields: Dict[str, Any] = {}
        self.target_tenant_id: Optional[Any] = None

    def __repr__(self) -> str:
        return f"<{self.type_name()} {self.get_key()!r}>"

    # Identity

    @classmethod
    def type_name(cls) -> str:
        return cls.sync_type_name or cls.__name__

    def get_key(self) -> Any:
        return self._attributes.get(self.primary_key)

    # Attribute capabilities

    def get_attributes(self) -> Dict[str, Any]:
        return copy.deepcopy(self._attributes)

    def get_attribute(self, name: str) -> Any:
        if "." in name:
            return read_attribute(self, name)
        if name in self._attributes:
            return self._attributes[name]
        if isinstance(getattr(type(self), name, None), property):
            return getattr(self, name)
        raise AttributeError(f"{self.type_name()} has no attribute '{name}'")

    def has_attribute(self, name: str) -> bool:
        return name in self._attributes

    def invoke_accessor(self, name: str) -> Any:
        method = getattr(self, name, None)
        if method is None or not callable(method):
            raise AttributeError(f"{self.type_name()} has no accessor '{name}'")
        return method()

    def set_attribute(self, name: str, value: Any) -> None:
        self._attributes[name] = value

    def fill(self, data: Dict[str, Any]) -> "SyncableModel":
        for name, value in data.items():
            self.set_attribute(name, value)
        return self

    # Dirty tracking

    def get_original(self, name: Optional[str] = None, default: Any = None) -> Any:
        if name is None:
            return copy.deepcopy(self._original)
        return self._original.get(name, default)

    def get_dirty(self) -> Dict[str, Any]:
        return {
            name: value
            for name, value in self._attributes.items()
            if name not in self._original or self._original[name] != value
        }

    def is_dirty(self, name: Optional[str] = None) -> bool:
        dirty = self.get_dirty()
        return name in dirty if name else bool(dirty)

    def mark_clean(self) -> None:
        """Record the current attributes as the persisted state."""
        self._original = copy.deepcopy(self._attributes)

    # Loop prevention at write level

    def without_sync(self) -> "SyncableModel":
        self.sync_disabled = True
        return self

    def with_sync(self) -> "SyncableModel":
        self.sync_disabled = False
        return self

    # Configuration

    def sync_handler(self) -> Optional["SyncHandler"]:
        """Delegated handler object, if this type uses one."""
        return None

    def get_target_type(self) -> str:
        return self.sync_target or self.type_name()

    def get_field_map(self) -> Dict[str, Any]:
        return dict(self.sync_map)

    def get_relations(self) -> Dict[str, Any]:
        return dict(self.sync_relations)

    def get_additional(self) -> Dict[str, Any]:
        return dict(self.sync_additional)

    def get_conditions(self) -> Dict[str, Any]:
        return dict(self.sync_conditions)

    def get_syncable_fields(self) -> Iterable[str]:
        return list(self.syncable_fields)

    def get_conflict_strategy(self) -> Optional[str]:
        return self.conflict_strategy

    def get_target_tenant_id(self) -> Optional[Any]:
        return self.target_tenant_id

    def should_sync(self, extra_conditions: Optional[Dict[str, Any]] = None) -> bool:
        conditions = dict(extra_conditions or {})
        conditions.update(self.get_conditions())
        return conditions_met(self, conditions)


class SyncHandler(SyncConfigProvider):
    """
    Delegated handler carrying the sync configuration of one model instance.

    Subclasses implement `get_target_type` and `get_field_map`; everything else
    is optional.
    """

    def __init__(self, model: SyncableModel):
        self.model = model

    def should_sync(self, extra_conditions: Optional[Dict[str, Any]] = None) -> bool:
        conditions = dict(extra_conditions or {})
        conditions.update(self.get_conditions())
        return conditions_met(self.model, conditions)

    def process_additional(self, key: str, data: Any) -> bool:
        """Handle one entry of received additional data. Return True if consumed."""
        return False


class ModelRepository(ABC):
    """Persistence for domain objects, supplied by the host application."""

    @abstractmethod
    def new(self, type_name: str) -> SyncableModel:
        """Instantiate an unsaved object of the named type."""
        pass

    @abstractmethod
    def find(self, type_name: str, key: Any) -> Optional[SyncableModel]:
        pass

    @abstractmethod
    def save(self, model: SyncableModel) -> None:
        """Persist the object, assigning a key if needed, and mark it clean."""
        pass

    @abstractmethod
    def delete(self, model: SyncableModel) -> None:
        pass

    def save_related(
        self,
        parent: SyncableModel,
        relation: str,
        attributes: Dict[str, Any],
        match_on: Optional[str] = None,
        many: bool = True,
    ) -> None:
        """Create or update one related record received with the parent."""
        raise NotImplementedError(f"{self.__class__.__name__} does not support related records")
