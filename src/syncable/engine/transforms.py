"""
Field transformation: domain object + mapping spec -> outbound wire payload.
"""

import logging
from collections.abc import Mapping
from typing import Any, Dict, List, Optional

from ..models.config import ModelSyncConfig, RelationSpec, RelationType
from ..models.domain import call_accessor, read_attribute
from ..models.records import SyncAction

logger = logging.getLogger(__name__)

ACCESSOR_PREFIX = "self."


def apply_transform(value: Any, transform: Optional[str]) -> Any:
    """
    Apply a named transformation to a value.

    Args:
        value: The value to transform
        transform: The transformation to apply

    Returns:
        Transformed value, or the value unchanged if the transform fails
    """
    if not transform or value is None:
        return value

    try:
        if transform == "round":
            return round(float(value))
        elif transform == "round_to_cents":
            return round(float(value), 2)
        elif transform == "uppercase":
            return str(value).upper()
        elif transform == "lowercase":
            return str(value).lower()
        elif transform == "string":
            return str(value)
        elif transform == "int":
            return int(float(value))
        elif transform == "float":
            return float(value)
        elif transform == "bool":
            return bool(value)
        else:
            logger.warning(f"Unknown transform: {transform}")
            return value

    except (ValueError, TypeError) as e:
        logger.error(f"Transform '{transform}' failed for value '{value}': {e}")
        return value


class Attribute:
    """Dynamic value read from a (possibly dotted) attribute path."""

    def __init__(self, path: str, transform: Optional[str] = None):
        self.path = path
        self.transform = transform

    def resolve(self, source: Any) -> Any:
        return apply_transform(read_attribute(source, self.path), self.transform)

    def __repr__(self) -> str:
        return f"Attribute({self.path!r})"


class Accessor:
    """Dynamic value returned by a zero-argument method."""

    def __init__(self, name: str, transform: Optional[str] = None):
        self.name = name
        self.transform = transform

    def resolve(self, source: Any) -> Any:
        return apply_transform(call_accessor(source, self.name), self.transform)

    def __repr__(self) -> str:
        return f"Accessor({self.name!r})"


def parse_accessor(spec: str):
    """
    Turn the string shorthand into an accessor.

    `"self.name"` reads an attribute, `"self.full_name()"` calls a method.
    Returns None for plain strings, which are literal target names.
    """
    if not spec.startswith(ACCESSOR_PREFIX):
        return None
    expression = spec[len(ACCESSOR_PREFIX):]
    if expression.endswith("()"):
        return Accessor(expression[:-2])
    return Attribute(expression)


class TransformEngine:
    """
    Builds outbound payloads from domain objects.

    A field map entry `source -> spec` is handled as follows:

    - literal target name: `data[target] = source attribute`
    - Attribute / Accessor / "self." shorthand / callable: `data[source] = value`
    - nested dict: `data[source]` becomes a dict built from the nested specs
    - list: `data[source]` becomes a list of the resolved specs

    Anything that cannot be read is left out so that schema drift between the
    systems does not fail the sync.
    """

    _MISSING = object()

    def build(self, obj: Any, config: ModelSyncConfig, action: SyncAction = SyncAction.UPDATE) -> Dict[str, Any]:
        """
        Build the wire payload for one domain object.

        Args:
            obj: Domain object
            config: Resolved sync configuration for the object's type
            action: Mutation being replicated

        Returns:
            Payload dict with source/target identity, data, and any relations
            and additional values
        """
        source_type = obj.type_name()
        payload: Dict[str, Any] = {
            "action": SyncAction(action).value,
            "source_model": source_type,
            "source_id": obj.get_key(),
            "target_model": config.target_model or source_type,
            "data": self.map_fields(obj, config.fields),
        }

        relations = self.build_relations(obj, config.relations)
        if relations:
            payload["relations"] = relations

        additional = self.map_values(obj, config.additional)
        if additional:
            payload["additional"] = additional

        return payload

    def map_fields(self, source: Any, field_map: Mapping) -> Dict[str, Any]:
        """Apply a field map to one object; an empty map copies every attribute."""
        if not field_map:
            return self._all_attributes(source)

        data: Dict[str, Any] = {}
        for source_field, spec in field_map.items():
            if isinstance(spec, str) and parse_accessor(spec) is None:
                value = self._read(source, source_field)
                if value is not self._MISSING:
                    data[spec] = value
                continue

            value = self._resolve(source, spec, source_field)
            if value is not self._MISSING:
                data[source_field] = value
        return data

    def map_values(self, source: Any, value_map: Mapping) -> Dict[str, Any]:
        """
        Resolve a map of named values where every entry keeps its key.

        Plain strings name the attribute to read, as for additional data.
        """
        values: Dict[str, Any] = {}
        for key, spec in value_map.items():
            if isinstance(spec, str) and parse_accessor(spec) is None:
                value = self._read(source, spec)
            else:
                value = self._resolve(source, spec, key)
            if value is not self._MISSING:
                values[key] = value
        return values

    def build_relations(self, obj: Any, relations: Mapping) -> Dict[str, Any]:
        """
        Build nested payloads for configured relationships.

        hasOne relations nest a single dict, hasMany a list. Relations that are
        missing or empty are omitted.
        """
        result: Dict[str, Any] = {}
        for name, spec in relations.items():
            if not isinstance(spec, RelationSpec):
                spec = RelationSpec(**spec)

            related = self._read(obj, name)
            if related is self._MISSING or related is None:
                continue

            target = spec.target_relation or name
            if spec.type == RelationType.HAS_ONE:
                if isinstance(related, (list, tuple)):
                    if not related:
                        continue
                    related = related[0]
                mapped = self.map_fields(related, spec.fields)
                if mapped:
                    result[target] = mapped
            else:
                if not isinstance(related, (list, tuple)):
                    related = [related]
                mapped_items = [self.map_fields(item, spec.fields) for item in related]
                mapped_items = [item for item in mapped_items if item]
                if mapped_items:
                    result[target] = mapped_items

        return result

    def _resolve(self, source: Any, spec: Any, key: str) -> Any:
        if isinstance(spec, (Attribute, Accessor)):
            return self._guarded(spec.resolve, source, key)

        if isinstance(spec, str):
            accessor = parse_accessor(spec)
            if accessor is not None:
                return self._guarded(accessor.resolve, source, key)
            # Nested literal: the value of the named attribute
            return self._read(source, spec)

        if callable(spec):
            return spec(source)

        if isinstance(spec, Mapping):
            nested: Dict[str, Any] = {}
            for nested_key, nested_spec in spec.items():
                value = self._resolve(source, nested_spec, nested_key)
                if value is not self._MISSING:
                    nested[nested_key] = value
            return nested

        if isinstance(spec, (list, tuple)):
            items: List[Any] = []
            for item_spec in spec:
                value = self._resolve(source, item_spec, key)
                if value is not self._MISSING:
                    items.append(value)
            return items

        # Constant
        return spec

    def _guarded(self, resolve, source: Any, key: str) -> Any:
        try:
            return resolve(source)
        except (AttributeError, KeyError) as e:
            logger.debug(f"Omitting field '{key}': {e}")
            return self._MISSING

    def _read(self, source: Any, path: str) -> Any:
        try:
            return read_attribute(source, path)
        except (AttributeError, KeyError) as e:
            logger.debug(f"Omitting field '{path}': {e}")
            return self._MISSING

    @staticmethod
    def _all_attributes(source: Any) -> Dict[str, Any]:
        if hasattr(source, "get_attributes"):
            return source.get_attributes()
        if isinstance(source, Mapping):
            return dict(source)
        return {k: v for k, v in vars(source).items() if not k.startswith("_")}
