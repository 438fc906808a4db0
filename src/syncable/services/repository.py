"""
In-process ModelRepository for tests and local runs.
"""

import itertools
import logging
import threading
from typing import Any, Dict, Optional, Tuple, Type

from ..exceptions import ConfigurationError
from ..models.domain import ModelRepository, SyncableModel

logger = logging.getLogger(__name__)


class InMemoryRepository(ModelRepository):
    """
    Keeps domain objects in a dictionary keyed by (type name, key).

    Types must be registered before the repository can instantiate them.
    Related records received inline are stored as plain dictionaries under
    the parent's relation attribute.
    """

    def __init__(self, *model_classes: Type[SyncableModel]):
        self._lock = threading.Lock()
        self._classes: Dict[str, Type[SyncableModel]] = {}
        self._objects: Dict[Tuple[str, str], SyncableModel] = {}
        self._ids = itertools.count(1)
        for cls in model_classes:
            self.register(cls)

    def register(self, cls: Type[SyncableModel]) -> None:
        self._classes[cls.type_name()] = cls

    def new(self, type_name):
        cls = self._classes.get(type_name)
        if cls is None:
            raise ConfigurationError(f"Unknown model type: {type_name}")
        return cls()

    def find(self, type_name, key) -> Optional[SyncableModel]:
        with self._lock:
            return self._objects.get((type_name, str(key)))

    def save(self, model):
        with self._lock:
            if model.get_key() is None:
                model.set_attribute(model.primary_key, next(self._ids))
            self._objects[(model.type_name(), str(model.get_key()))] = model
        model.mark_clean()

    def delete(self, model):
        with self._lock:
            self._objects.pop((model.type_name(), str(model.get_key())), None)

    def all(self, type_name: str):
        with self._lock:
            return [obj for (name, _), obj in self._objects.items() if name == type_name]

    def save_related(self, parent, relation, attributes, match_on=None, many=True):
        if not many:
            parent.set_attribute(relation, dict(attributes))
            return

        related = list(parent.get_attributes().get(relation) or [])
        if match_on and attributes.get(match_on) is not None:
            for index, existing in enumerate(related):
                if existing.get(match_on) == attributes[match_on]:
                    merged: Dict[str, Any] = dict(existing)
                    merged.update(attributes)
                    related[index] = merged
                    break
            else:
                related.append(dict(attributes))
        else:
            related.append(dict(attributes))
        parent.set_attribute(relation, related)
