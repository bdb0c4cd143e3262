# fanout/services/entities.py
"""Typed views over raw store records, validated per kind on read."""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from fanout.errors import ConfigurationError
from fanout.services.store import _MISSING, TreeStore, get_field, join_path


@dataclass(frozen=True)
class EntitySchema:
    """Where records of a kind live and what shape they must have."""
    collection: str
    shape: str = "record"  # "record" (object), "scalar" or "set" (object of true)
    required: Tuple[str, ...] = ()


ENTITY_SCHEMAS: Dict[str, EntitySchema] = {
    "user": EntitySchema(collection="people"),
    "post": EntitySchema(collection="posts", required=("author/uid",)),
    # comment ids are "{postId}/{commentId}", like ids are "{postId}/{uid}"
    "comment": EntitySchema(collection="comments", required=("author/uid",)),
    "like": EntitySchema(collection="likes", shape="scalar"),
    "hashtag-index": EntitySchema(collection="hashtags", shape="set"),
}


@dataclass(frozen=True)
class Entity:
    id: str
    kind: str
    fields: Mapping[str, Any] = field(default_factory=dict)

    def get(self, field_path: str, default: Any = None) -> Any:
        value = get_field(self.fields, field_path)
        return default if value is _MISSING else value


def validate_entity(kind: str, entity_id: str, raw: Any,
                    schemas: Mapping[str, EntitySchema] = ENTITY_SCHEMAS) -> Entity:
    """
    Check a raw store value against the schema of its kind.

    Raises:
        ConfigurationError: unknown kind or a value of the wrong shape
    """
    schema = schemas.get(kind)
    if schema is None:
        raise ConfigurationError(f"Unknown entity kind {kind!r}")

    if schema.shape == "scalar":
        if isinstance(raw, (dict, list)):
            raise ConfigurationError(f"{kind} {entity_id} should be a scalar, got {type(raw).__name__}")
        return Entity(id=entity_id, kind=kind, fields={"value": raw})

    if not isinstance(raw, dict):
        raise ConfigurationError(f"{kind} {entity_id} should be an object, got {type(raw).__name__}")

    if schema.shape == "set" and any(v is not True for v in raw.values()):
        raise ConfigurationError(f"{kind} {entity_id} should only contain true members")

    missing = [f for f in schema.required if get_field(raw, f) is _MISSING]
    if missing:
        raise ConfigurationError(f"{kind} {entity_id} is missing required fields: {', '.join(missing)}")

    return Entity(id=entity_id, kind=kind, fields=raw)


async def load_entity(store: TreeStore, kind: str, entity_id: str,
                      schemas: Mapping[str, EntitySchema] = ENTITY_SCHEMAS) -> Optional[Entity]:
    """Read and validate one entity. Returns None when it does not exist."""
    schema = schemas.get(kind)
    if schema is None:
        raise ConfigurationError(f"Unknown entity kind {kind!r}")
    raw = await store.read(join_path(schema.collection, entity_id))
    if raw is None:
        return None
    return validate_entity(kind, entity_id, raw, schemas)
