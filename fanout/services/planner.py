# fanout/services/planner.py
"""Turns resolved paths into a deduplicated, commutative batch of WorkItems."""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional

from fanout.errors import ConfigurationError
from fanout.services.store import is_ancestor, normalize_path


class Operation(str, Enum):
    DELETE = "delete"
    SET = "set"


@dataclass(frozen=True, eq=False)
class WorkItem:
    """
    One unconditional write or delete.

    Items never carry deltas, so applying the same item twice leaves the
    store in the same state as applying it once.
    """
    path: str
    operation: Operation = Operation.DELETE
    payload: Any = None

    @property
    def value(self) -> Any:
        return None if self.operation is Operation.DELETE else self.payload

    def _identity(self):
        return (self.path, self.operation.value, json.dumps(self.value, sort_keys=True, default=str))

    def __eq__(self, other) -> bool:
        if not isinstance(other, WorkItem):
            return NotImplemented
        return self._identity() == other._identity()

    def __hash__(self) -> int:
        return hash(self._identity())

    def __repr__(self) -> str:
        if self.operation is Operation.DELETE:
            return f"WorkItem(delete {self.path})"
        return f"WorkItem(set {self.path}={self.payload!r})"

    async def apply(self, store) -> str:
        await store.write(self.path, self.value)
        return self.path


class FanOutPlanner:
    """
    Plans fan-out batches.

    ``plan`` is a pure function of its inputs: a retry after a partial
    failure recomputes the plan instead of persisting it.
    """

    def plan(self, concrete_paths: Iterable[str], operation: Operation = Operation.DELETE,
             payload: Any = None) -> FrozenSet[WorkItem]:
        """
        Build one WorkItem per distinct path.

        Args:
            concrete_paths: Resolved store paths (duplicates allowed)
            operation: Operation applied to every path
            payload: Value written for ``Operation.SET``

        Returns:
            Frozen set of WorkItems
        """
        operation = Operation(operation)
        if operation is Operation.SET and payload is None:
            operation = Operation.DELETE
        items = [WorkItem(path=normalize_path(p), operation=operation,
                          payload=payload if operation is Operation.SET else None)
                 for p in concrete_paths]
        return self.merge(items)

    def plan_updates(self, updates: Mapping[str, Any]) -> FrozenSet[WorkItem]:
        """Plan an explicit path -> value mapping (``None`` deletes)."""
        items = [
            WorkItem(path=normalize_path(p), operation=Operation.DELETE)
            if v is None else WorkItem(path=normalize_path(p), operation=Operation.SET, payload=v)
            for p, v in updates.items()
        ]
        return self.merge(items)

    def merge(self, items: Iterable[WorkItem]) -> FrozenSet[WorkItem]:
        """
        Deduplicate items and drop deletes already covered by a deleted ancestor.

        Raises:
            ConfigurationError: two items for one path disagree, or a write
                sits under a deleted path (the items would not commute)
        """
        by_path: Dict[str, WorkItem] = {}
        for item in items:
            if not item.path:
                raise ConfigurationError("Refusing to plan a write to the store root")
            existing = by_path.get(item.path)
            if existing is not None and existing != item:
                raise ConfigurationError(
                    f"Conflicting work for {item.path}: {existing!r} vs {item!r}"
                )
            by_path[item.path] = item

        deleted = sorted(p for p, item in by_path.items() if item.operation is Operation.DELETE)
        kept: List[WorkItem] = []
        for path, item in by_path.items():
            covering = self._deleted_ancestor(path, deleted)
            if covering is None:
                kept.append(item)
            elif item.operation is Operation.SET:
                raise ConfigurationError(
                    f"{item!r} does not commute with delete of ancestor {covering}"
                )
        for path, item in by_path.items():
            if item.operation is Operation.SET:
                for other in by_path:
                    if other != path and is_ancestor(path, other):
                        raise ConfigurationError(
                            f"{item!r} overlaps with work on descendant {other}"
                        )
        return frozenset(kept)

    @staticmethod
    def _deleted_ancestor(path: str, deleted: List[str]) -> Optional[str]:
        for candidate in deleted:
            if candidate != path and is_ancestor(candidate, path):
                return candidate
        return None

    @staticmethod
    def to_batch(items: Iterable[WorkItem]) -> Dict[str, Any]:
        """Render items as a path -> value mapping for a single batch commit."""
        return {item.path: item.value for item in sorted(items, key=lambda i: i.path)}


planner = FanOutPlanner()


def plan(concrete_paths: Iterable[str], operation: Operation = Operation.DELETE,
         payload: Any = None) -> FrozenSet[WorkItem]:
    """Convenience wrapper around the default planner."""
    return planner.plan(concrete_paths, operation, payload)
