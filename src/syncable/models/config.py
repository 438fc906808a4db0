"""
Configuration models describing how a domain type is synced.
"""

from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class RelationType(str, Enum):
    """Cardinality of a synced relationship."""
    HAS_ONE = "hasOne"
    HAS_MANY = "hasMany"


class ConflictStrategy(str, Enum):
    """Built-in conflict resolution strategies."""
    LAST_WRITE_WINS = "last_write_wins"
    REMOTE_WINS = "remote_wins"
    LOCAL_WINS = "local_wins"
    MERGE = "merge"
    MANUAL = "manual"


class RelationSpec(BaseModel):
    """Maps a relationship of the local object onto a relation of the remote one."""
    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)

    type: RelationType = Field(RelationType.HAS_MANY, description="hasOne or hasMany")
    target_relation: Optional[str] = Field(None, description="Relation name in the target system")
    fields: Dict[str, Any] = Field(default_factory=dict, description="Field map applied to each related object")


# A field map value: target field name, accessor, callable, or nested map/list.
FieldSpec = Union[str, Callable[[Any], Any], Dict[str, Any], List[Any], Any]


class ModelSyncConfig(BaseModel):
    """
    Sync configuration for one domain type.

    Instances come from the centralized `models` table in the settings, from a
    model's sync handler, or from the class attributes of the model itself.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    target_model: Optional[str] = Field(None, description="Type name in the target system")
    fields: Dict[str, Any] = Field(default_factory=dict, description="sourceField -> targetSpec")
    relations: Dict[str, RelationSpec] = Field(default_factory=dict, description="Relationship specs by local relation name")
    additional: Dict[str, Any] = Field(default_factory=dict, description="Extra values sent under 'additional'")
    conditions: Dict[str, Any] = Field(default_factory=dict, description="Selective sync conditions")
    target_tenant_id: Optional[Any] = Field(None, description="Tenant to address in the target system")
    conflict_strategy: Optional[str] = Field(None, description="Overrides the configured strategy for this type")
