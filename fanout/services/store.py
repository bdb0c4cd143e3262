# fanout/services/store.py
"""
Tree-shaped backing store.

Data lives in a JSON tree addressed by slash separated paths
(``posts/p1/author/uid``). Writing ``None`` to a path removes the whole
subtree, and parents left empty disappear with it. Secondary-key lookups
must go through a pre-declared index: ``query_by_field`` on an undeclared
(collection, field) pair raises ``ConfigurationError``.
"""

import copy
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from fanout.config import DB_RETRY_ATTEMPTS, DB_RETRY_MAX_WAIT, DB_RETRY_MIN_WAIT
from fanout.db import get_session
from fanout.errors import ConfigurationError
from fanout.models import Node

log = logging.getLogger(__name__)

_MISSING = object()

# collection pattern -> indexed fields; "*" as a field means "any child key"
DEFAULT_INDEXES: Dict[str, Set[str]] = {
    "posts": {"author/uid", "timestamp"},
    "comments/*": {"author/uid", "timestamp"},
    "likes": {"*"},
}

Cursor = Tuple[Any, str]


def split_path(path: str) -> List[str]:
    return [segment for segment in path.strip().split("/") if segment]


def normalize_path(path: str) -> str:
    return "/".join(split_path(path))


def join_path(*parts: str) -> str:
    return normalize_path("/".join(str(p) for p in parts))


def is_ancestor(ancestor: str, path: str) -> bool:
    """True when ``ancestor`` is a strict prefix of ``path`` at segment level."""
    ancestor, path = normalize_path(ancestor), normalize_path(path)
    return ancestor == "" or path.startswith(ancestor + "/")


def get_field(value: Any, field: str) -> Any:
    """Read a nested field (``author/uid``) out of a record, or _MISSING."""
    current = value
    for segment in split_path(field):
        if not isinstance(current, dict) or segment not in current:
            return _MISSING
        current = current[segment]
    return current


def order_key(value: Any) -> Tuple[int, Any]:
    """Total order across JSON types: null < false < true < numbers < strings < objects."""
    if value is None:
        return (0, 0)
    if value is False:
        return (1, 0)
    if value is True:
        return (2, 0)
    if isinstance(value, (int, float)):
        return (3, value)
    if isinstance(value, str):
        return (4, value)
    return (5, 0)


def prune_nulls(value: Any) -> Any:
    """Drop null members (and members that become empty) from a JSON value."""
    if isinstance(value, dict):
        cleaned = {}
        for key, child in value.items():
            child = prune_nulls(child)
            if child is not None:
                cleaned[str(key)] = child
        return cleaned or None
    return value


class TreeStore:
    """
    Base class for tree stores.

    Subclasses implement ``_read_sync``, ``_children_sync`` and
    ``_apply_sync``; everything else (index checks, query filtering,
    ordering and paging) is shared.
    """

    def __init__(self, indexes: Optional[Mapping[str, Iterable[str]]] = None):
        source = DEFAULT_INDEXES if indexes is None else indexes
        self.indexes: Dict[str, Set[str]] = {
            normalize_path(collection): set(fields) for collection, fields in source.items()
        }

    # -- contract ---------------------------------------------------------

    async def read(self, path: str) -> Any:
        return self._read_sync(normalize_path(path))

    async def write(self, path: str, value: Any) -> None:
        self._apply_sync({normalize_path(path): prune_nulls(copy.deepcopy(value))})

    async def update(self, updates: Mapping[str, Any]) -> None:
        """Apply a set of path -> value pairs as one batch."""
        batch = {normalize_path(p): prune_nulls(copy.deepcopy(v)) for p, v in updates.items()}
        if batch:
            self._apply_sync(batch)

    async def keys(self, path: str) -> List[str]:
        """Keys of the direct children of ``path``, sorted."""
        return sorted(self._children_sync(normalize_path(path)).keys())

    async def query_by_field(
        self,
        collection: str,
        field: str,
        equal_to: Any = _MISSING,
        start_at: Any = None,
        end_at: Any = None,
        limit: Optional[int] = None,
        start_after: Optional[Cursor] = None,
    ) -> List[Tuple[str, Any]]:
        """
        Find children of ``collection`` whose ``field`` matches.

        Args:
            collection: Path whose direct children are searched
            field: Nested field of each child (``author/uid``), must be indexed
            equal_to: Exact value to match
            start_at: Inclusive lower bound (ignored when equal_to is given)
            end_at: Inclusive upper bound (ignored when equal_to is given)
            limit: Maximum number of rows to return
            start_after: ``(value, key)`` cursor from a previous page

        Returns:
            List of (key, value) tuples ordered by field value then key
        """
        collection = normalize_path(collection)
        self.check_index(collection, field)
        children = self._children_sync(collection)
        return select_children(children, field, equal_to, start_at, end_at, limit, start_after)

    async def ping(self) -> bool:
        self._read_sync("")
        return True

    # -- index declarations ------------------------------------------------

    def check_index(self, collection: str, field: str) -> None:
        segments = split_path(collection)
        for pattern, fields in self.indexes.items():
            pattern_segments = split_path(pattern)
            if len(pattern_segments) != len(segments):
                continue
            if all(p == "*" or p == s for p, s in zip(pattern_segments, segments)):
                if "*" in fields or normalize_path(field) in fields:
                    return
        raise ConfigurationError(f"No index declared for {collection!r} on field {field!r}")

    # -- storage hooks -------------------------------------------------------

    def _read_sync(self, path: str) -> Any:
        raise NotImplementedError

    def _children_sync(self, path: str) -> Dict[str, Any]:
        raise NotImplementedError

    def _apply_sync(self, batch: Mapping[str, Any]) -> None:
        raise NotImplementedError


def select_children(
    children: Mapping[str, Any],
    field: str,
    equal_to: Any = _MISSING,
    start_at: Any = None,
    end_at: Any = None,
    limit: Optional[int] = None,
    start_after: Optional[Cursor] = None,
) -> List[Tuple[str, Any]]:
    matches = []
    for key, value in children.items():
        field_value = get_field(value, field)
        if field_value is _MISSING:
            continue
        if equal_to is not _MISSING:
            if order_key(field_value) != order_key(equal_to):
                continue
        else:
            if start_at is not None and order_key(field_value) < order_key(start_at):
                continue
            if end_at is not None and order_key(field_value) > order_key(end_at):
                continue
        matches.append((order_key(field_value), key, field_value, value))

    matches.sort(key=lambda m: (m[0], m[1]))
    if start_after is not None:
        cursor = (order_key(start_after[0]), start_after[1])
        matches = [m for m in matches if (m[0], m[1]) > cursor]
    if limit is not None:
        matches = matches[:limit]
    return [(key, copy.deepcopy(value)) for _, key, _, value in matches]


class MemoryTreeStore(TreeStore):
    """Tree store on nested dicts. Used by tests and dry runs."""

    def __init__(self, data: Optional[Mapping[str, Any]] = None, indexes=None):
        super().__init__(indexes)
        self._root: Dict[str, Any] = prune_nulls(copy.deepcopy(dict(data or {}))) or {}

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self._root)

    def _read_sync(self, path: str) -> Any:
        current: Any = self._root
        for segment in split_path(path):
            if not isinstance(current, dict) or segment not in current:
                return None
            current = current[segment]
        return copy.deepcopy(current) if current != {} else None

    def _children_sync(self, path: str) -> Dict[str, Any]:
        value = self._read_sync(path)
        return value if isinstance(value, dict) else {}

    def _apply_sync(self, batch: Mapping[str, Any]) -> None:
        for path, value in batch.items():
            self._set(split_path(path), value)

    def _set(self, segments: Sequence[str], value: Any) -> None:
        if not segments:
            self._root = value if isinstance(value, dict) else {}
            return
        if value is None:
            trail = [self._root]
            for segment in segments[:-1]:
                child = trail[-1].get(segment)
                if not isinstance(child, dict):
                    return
                trail.append(child)
            trail[-1].pop(segments[-1], None)
            # empty parents vanish
            for depth in range(len(trail) - 1, 0, -1):
                if trail[depth]:
                    break
                del trail[depth - 1][segments[depth - 1]]
            return
        current = self._root
        for segment in segments[:-1]:
            if not isinstance(current.get(segment), dict):
                current[segment] = {}
            current = current[segment]
        current[segments[-1]] = value


def _flatten(path: str, value: Any) -> List[Tuple[str, Any]]:
    if isinstance(value, dict):
        rows = []
        for key, child in value.items():
            rows.extend(_flatten(join_path(path, key), child))
        return rows
    if value is None:
        return []
    return [(path, value)]


def _parent_of(path: str) -> str:
    return path.rsplit("/", 1)[0] if "/" in path else ""


def _rebuild(base: str, rows: Iterable[Tuple[str, Any]]) -> Any:
    tree: Dict[str, Any] = {}
    for path, value in rows:
        if path == base:
            return value
        relative = split_path(path[len(base):]) if base else split_path(path)
        current = tree
        for segment in relative[:-1]:
            current = current.setdefault(segment, {})
        current[relative[-1]] = value
    return tree or None


_db_retry = retry(
    stop=stop_after_attempt(DB_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=1, min=DB_RETRY_MIN_WAIT, max=DB_RETRY_MAX_WAIT),
    retry=retry_if_exception_type(SQLAlchemyError),
    reraise=True,
)


class SqlTreeStore(TreeStore):
    """
    Tree store persisted through SQLAlchemy.

    Every scalar leaf is one ``Node`` row keyed by its full path, so a
    subtree read is a prefix scan and a subtree delete is a prefix delete.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None, indexes=None):
        super().__init__(indexes)
        self.session_factory = session_factory

    async def ping(self) -> bool:
        self._ping_sync()
        return True

    @_db_retry
    def _ping_sync(self) -> None:
        with get_session(self.session_factory) as db:
            db.execute(text("SELECT 1"))

    def _rows_under(self, db, path: str):
        query = db.query(Node.path, Node.value)
        if path:
            query = query.filter((Node.path == path) | Node.path.startswith(path + "/", autoescape=True))
        return query.order_by(Node.path).all()

    @_db_retry
    def _read_sync(self, path: str) -> Any:
        with get_session(self.session_factory) as db:
            rows = [(row.path, row.value) for row in self._rows_under(db, path)]
        return _rebuild(path, rows)

    def _children_sync(self, path: str) -> Dict[str, Any]:
        value = self._read_sync(path)
        return value if isinstance(value, dict) else {}

    def _apply_sync(self, batch: Mapping[str, Any]) -> None:
        with get_session(self.session_factory) as db:
            for path, value in batch.items():
                self._write_in_session(db, path, value)

    def _write_in_session(self, db, path: str, value: Any) -> None:
        if path:
            db.query(Node).filter(
                (Node.path == path) | Node.path.startswith(path + "/", autoescape=True)
            ).delete(synchronize_session=False)
            # a scalar ancestor is replaced by the new subtree
            segments = split_path(path)
            ancestors = ["/".join(segments[:i]) for i in range(1, len(segments))]
            if ancestors:
                db.query(Node).filter(Node.path.in_(ancestors)).delete(synchronize_session=False)
        else:
            db.query(Node).delete(synchronize_session=False)
        rows = _flatten(path, value)
        if rows:
            db.add_all(Node(path=p, parent=_parent_of(p), value=v) for p, v in rows)
        db.flush()
