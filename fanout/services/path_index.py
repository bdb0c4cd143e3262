# fanout/services/path_index.py
"""
Cascade rules and the path index built from them.

A cascade rule says, for one entity kind and event, which denormalized
paths may reference the entity. Rules are plain data so that new
relationships can be declared without touching the engine:

    {
        "kind": "user",
        "paths": [
            "feed/{id}",
            {"path": "posts/*", "where": "author/uid", "equals": "{id}"},
        ],
        "storage": ["{id}/"],
    }

``{id}`` is the root entity id. ``*`` segments are resolved by the
Scanner through the declared ``where`` index. Other ``{placeholders}``
are bound from fields of the root entity (``bind``), optionally passed
through a named extractor such as ``hashtags``.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from fanout.errors import ConfigurationError
from fanout.services.hashtags import extract_hashtags
from fanout.services.store import split_path

PLACEHOLDER = re.compile(r"\{([a-z_][a-z0-9_]*)\}")

EXTRACTORS: Dict[str, Callable[[Any], List[Any]]] = {
    "hashtags": extract_hashtags,
}

DEFAULT_RULES: List[Dict[str, Any]] = [
    {
        "kind": "user",
        "paths": [
            "feed/{id}",
            "followers/{id}",
            "people/{id}",
            {"path": "posts/*", "where": "author/uid", "equals": "{id}"},
            {"path": "likes/*/{id}", "where": "{id}", "start_at": 0},
            # one query per post: cost grows with the number of posts
            {"path": "comments/*/*", "where": "author/uid", "equals": "{id}"},
        ],
        "storage": ["{id}/"],
    },
    {
        "kind": "post",
        "bind": {
            "author_uid": "author/uid",
            "tag": {"field": "text", "extract": "hashtags"},
            "full_storage_uri": "full_storage_uri",
            "thumb_storage_uri": "thumb_storage_uri",
        },
        "paths": [
            "posts/{id}",
            "comments/{id}",
            "likes/{id}",
            "postFlags/{id}",
            "commentFlags/{id}",
            "people/{author_uid}/posts/{id}",
            "feed/{author_uid}/{id}",
            "hashtags/{tag}/{id}",
        ],
        "storage": ["{full_storage_uri}", "{thumb_storage_uri}"],
    },
    {
        "kind": "comment",
        "paths": ["comments/{id}", "commentFlags/{id}"],
    },
    {
        "kind": "like",
        "paths": ["likes/{id}"],
    },
    {
        "kind": "hashtag-index",
        "paths": ["hashtags/{id}"],
    },
]

_RULE_KEYS = {"kind", "event", "paths", "bind", "storage"}
_PATH_KEYS = {"path", "where", "equals", "start_at", "end_at"}


@dataclass(frozen=True)
class IndexQuery:
    """A secondary-key lookup; ``equals`` wins over the range bounds."""
    field: str
    equals: Any = None
    start_at: Any = None
    end_at: Any = None


@dataclass(frozen=True)
class PathRule:
    template: str
    query: Optional[IndexQuery] = None


@dataclass(frozen=True)
class Binding:
    name: str
    field: str
    extract: Optional[str] = None


@dataclass(frozen=True)
class CascadeRule:
    kind: str
    event: str
    paths: Tuple[PathRule, ...]
    bindings: Tuple[Binding, ...] = ()
    storage: Tuple[str, ...] = ()

    @property
    def binding_names(self) -> FrozenSet[str]:
        return frozenset(b.name for b in self.bindings)


@dataclass(frozen=True)
class DenormalizedPath:
    """A path template with the root id substituted in."""
    kind: str
    template: str
    query: Optional[IndexQuery] = None

    @property
    def placeholders(self) -> FrozenSet[str]:
        return frozenset(PLACEHOLDER.findall(self.template))

    @property
    def wildcards(self) -> int:
        return split_path(self.template).count("*")

    @property
    def is_concrete(self) -> bool:
        return self.wildcards == 0 and not self.placeholders

    def __str__(self) -> str:
        return self.template


def _parse_path(kind: str, raw: Any, bindings: FrozenSet[str]) -> PathRule:
    if isinstance(raw, str):
        raw = {"path": raw}
    if not isinstance(raw, dict) or "path" not in raw:
        raise ConfigurationError(f"Rule for {kind}: path entry must be a string or have a 'path' key: {raw!r}")
    unknown = set(raw) - _PATH_KEYS
    if unknown:
        raise ConfigurationError(f"Rule for {kind}: unknown path keys {sorted(unknown)}")

    template = raw["path"]
    segments = split_path(template)
    if not segments:
        raise ConfigurationError(f"Rule for {kind}: empty path template")
    stars = segments.count("*")
    if stars > 2:
        raise ConfigurationError(f"Rule for {kind}: at most two wildcards supported in {template!r}")
    if stars and "where" not in raw:
        raise ConfigurationError(f"Rule for {kind}: wildcard path {template!r} needs a 'where' index")
    if not stars and "where" in raw:
        raise ConfigurationError(f"Rule for {kind}: 'where' given for concrete path {template!r}")
    if stars and "equals" not in raw and "start_at" not in raw and "end_at" not in raw:
        raise ConfigurationError(f"Rule for {kind}: query on {template!r} has no bound")
    if stars == 2 and segments.index("*") + 1 != len(segments) - 1 - segments[::-1].index("*"):
        raise ConfigurationError(f"Rule for {kind}: nested wildcards must be adjacent in {template!r}")

    for name in PLACEHOLDER.findall(template):
        if name != "id" and name not in bindings:
            raise ConfigurationError(f"Rule for {kind}: placeholder {{{name}}} is not bound")
    for name in PLACEHOLDER.findall(str(raw.get("where", "")) + str(raw.get("equals", ""))):
        if name != "id":
            raise ConfigurationError(f"Rule for {kind}: index queries may only use {{id}}, got {{{name}}}")

    query = None
    if stars:
        query = IndexQuery(
            field=raw["where"],
            equals=raw.get("equals"),
            start_at=raw.get("start_at"),
            end_at=raw.get("end_at"),
        )
    return PathRule(template=template, query=query)


def parse_rule(raw: Mapping[str, Any]) -> CascadeRule:
    """
    Validate one rule dict.

    Raises:
        ConfigurationError: malformed rule
    """
    if not isinstance(raw, Mapping) or not raw.get("kind"):
        raise ConfigurationError(f"Cascade rule needs a kind: {raw!r}")
    kind = raw["kind"]
    unknown = set(raw) - _RULE_KEYS
    if unknown:
        raise ConfigurationError(f"Rule for {kind}: unknown keys {sorted(unknown)}")

    bindings = []
    for name, spec in (raw.get("bind") or {}).items():
        if isinstance(spec, str):
            spec = {"field": spec}
        if not isinstance(spec, Mapping) or "field" not in spec:
            raise ConfigurationError(f"Rule for {kind}: binding {name!r} needs a field")
        extract = spec.get("extract")
        if extract is not None and extract not in EXTRACTORS:
            raise ConfigurationError(f"Rule for {kind}: unknown extractor {extract!r}")
        bindings.append(Binding(name=name, field=spec["field"], extract=extract))
    names = frozenset(b.name for b in bindings)

    paths = raw.get("paths") or []
    if not paths:
        raise ConfigurationError(f"Rule for {kind}: no paths declared")

    storage = tuple(raw.get("storage") or ())
    for template in storage:
        for name in PLACEHOLDER.findall(template):
            if name != "id" and name not in names:
                raise ConfigurationError(f"Rule for {kind}: storage placeholder {{{name}}} is not bound")

    return CascadeRule(
        kind=kind,
        event=raw.get("event", "delete"),
        paths=tuple(_parse_path(kind, p, names) for p in paths),
        bindings=tuple(bindings),
        storage=storage,
    )


def load_rules(path: str) -> List[Dict[str, Any]]:
    """Read a JSON rule file."""
    with open(path, encoding="utf-8") as fh:
        rules = json.load(fh)
    if not isinstance(rules, list):
        raise ConfigurationError(f"{path}: expected a list of cascade rules")
    return rules


def _substitute_id(value: Any, entity_id: str) -> Any:
    if isinstance(value, str):
        return value.replace("{id}", entity_id)
    return value


class PathIndex:
    """
    Enumerates the denormalized paths that may reference an entity.

    Built once at startup; immutable afterwards.
    """

    def __init__(self, rules: Iterable[Mapping[str, Any]] = DEFAULT_RULES):
        parsed: Dict[Tuple[str, str], CascadeRule] = {}
        for raw in rules:
            rule = parse_rule(raw)
            key = (rule.kind, rule.event)
            if key in parsed:
                raise ConfigurationError(f"Duplicate cascade rule for {rule.kind}/{rule.event}")
            parsed[key] = rule
        self._rules = parsed

    @property
    def kinds(self) -> List[str]:
        return sorted({kind for kind, _ in self._rules})

    def rule_for(self, kind: str, event: str = "delete") -> CascadeRule:
        rule = self._rules.get((kind, event))
        if rule is None:
            raise ConfigurationError(f"Unknown entity kind {kind!r} for event {event!r}")
        return rule

    def paths_for(self, kind: str, entity_id: str, event: str = "delete") -> List[DenormalizedPath]:
        """
        Substitute ``entity_id`` into every template of the kind's rule.

        Args:
            kind: Entity kind (user, post, comment, like, hashtag-index)
            entity_id: Root entity id
            event: Rule event, "delete" unless custom rules say otherwise

        Returns:
            List of DenormalizedPath templates in rule order

        Raises:
            ConfigurationError: unknown kind, or an id that is empty or
                contains a wildcard
        """
        rule = self.rule_for(kind, event)
        entity_id = str(entity_id).strip("/")
        if not entity_id or "*" in split_path(entity_id) or PLACEHOLDER.search(entity_id):
            raise ConfigurationError(f"Invalid {kind} id {entity_id!r}")

        result = []
        for path_rule in rule.paths:
            query = None
            if path_rule.query is not None:
                q = path_rule.query
                query = IndexQuery(
                    field=_substitute_id(q.field, entity_id),
                    equals=_substitute_id(q.equals, entity_id),
                    start_at=_substitute_id(q.start_at, entity_id),
                    end_at=_substitute_id(q.end_at, entity_id),
                )
            result.append(DenormalizedPath(
                kind=kind,
                template=_substitute_id(path_rule.template, entity_id),
                query=query,
            ))
        return result

    def storage_for(self, kind: str, entity_id: str, event: str = "delete") -> List[str]:
        """Object-storage templates (``{id}/`` style prefixes or bound file names)."""
        rule = self.rule_for(kind, event)
        return [_substitute_id(t, str(entity_id).strip("/")) for t in rule.storage]
