# fanout/services/scanner.py
"""
Resolves denormalized path templates into concrete store paths.

Wildcards are resolved only through declared indexes. A template with two
adjacent wildcards (``comments/*/*``) is a scan of scans: the first level
is listed, then one indexed query runs per top-level record. The number of
queries therefore grows with the number of top-level records at scan time;
a failure in one of them is recorded and the remaining records are still
scanned.
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional, Set

from fanout.errors import ConfigurationError, ScanFailure
from fanout.services.entities import ENTITY_SCHEMAS, EntitySchema, load_entity
from fanout.services.path_index import EXTRACTORS, PLACEHOLDER, CascadeRule, DenormalizedPath, IndexQuery
from fanout.services.pool import BoundedWorkPool, WorkUnit
from fanout.services.store import TreeStore, join_path, split_path

log = logging.getLogger(__name__)


@dataclass
class ScanResult:
    paths: Set[str] = field(default_factory=set)
    failures: List[ScanFailure] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failures


def expand_bindings(template: str, bindings: Mapping[str, Any]) -> List[str]:
    """
    Substitute bound values into a template.

    A list value fans the template out once per element. A missing or
    empty value means the template matches nothing.
    """
    names = sorted(set(PLACEHOLDER.findall(template)))
    if not names:
        return [template]
    choices = []
    for name in names:
        value = bindings.get(name)
        if value is None or value == [] or value == "":
            return []
        values = value if isinstance(value, (list, tuple, set, frozenset)) else [value]
        choices.append([str(v) for v in values if v not in (None, "")])
    expanded = []
    for combo in itertools.product(*choices):
        result = template
        for name, value in zip(names, combo):
            result = result.replace("{" + name + "}", value)
        expanded.append(result)
    return expanded


class Scanner:
    """Queries the store to turn templates into concrete paths."""

    def __init__(self, store: TreeStore, schemas: Mapping[str, EntitySchema] = ENTITY_SCHEMAS):
        self.store = store
        self.schemas = schemas

    async def resolve_bindings(self, rule: CascadeRule, entity_id: str) -> Dict[str, Any]:
        """
        Read the root entity and pull out the rule's bound fields.

        Returns an empty mapping when the rule binds nothing or the entity
        no longer exists (a cascade re-run after completion).
        """
        if not rule.bindings:
            return {}
        entity = await load_entity(self.store, rule.kind, entity_id, self.schemas)
        if entity is None:
            log.info("%s %s no longer exists; bound paths are skipped", rule.kind, entity_id)
            return {}
        values: Dict[str, Any] = {}
        for binding in rule.bindings:
            value = entity.get(binding.field)
            if binding.extract is not None:
                value = EXTRACTORS[binding.extract](value)
            values[binding.name] = value
        return values

    async def scan(self, template: DenormalizedPath, bindings: Optional[Mapping[str, Any]] = None,
                   failures: Optional[List[ScanFailure]] = None) -> AsyncIterator[str]:
        """
        Lazily yield the concrete paths a template resolves to.

        Args:
            template: Template from the PathIndex
            bindings: Values for non-id placeholders
            failures: When given, failed nested queries are appended here
                instead of raised

        Raises:
            ScanFailure: the top-level query failed (or a nested one, when no
                ``failures`` list is supplied)
        """
        for expanded in expand_bindings(template.template, bindings or {}):
            segments = split_path(expanded)
            stars = segments.count("*")
            if stars == 0:
                yield "/".join(segments)
            elif stars == 1:
                async for path in self._scan_indexed(segments, template.query):
                    yield path
            else:
                async for path in self._scan_nested(segments, template.query, failures):
                    yield path

    async def _scan_indexed(self, segments: List[str], query: IndexQuery) -> AsyncIterator[str]:
        position = segments.index("*")
        collection = join_path(*segments[:position])
        try:
            if query.equals is not None:
                rows = await self.store.query_by_field(collection, query.field, equal_to=query.equals)
            else:
                rows = await self.store.query_by_field(
                    collection, query.field, start_at=query.start_at, end_at=query.end_at
                )
        except ConfigurationError:
            raise
        except Exception as exc:
            raise ScanFailure(join_path(*segments), exc) from exc
        for key, _ in rows:
            yield join_path(*segments[:position], key, *segments[position + 1:])

    async def _scan_nested(self, segments: List[str], query: IndexQuery,
                           failures: Optional[List[ScanFailure]]) -> AsyncIterator[str]:
        position = segments.index("*")
        collection = join_path(*segments[:position])
        try:
            parents = await self.store.keys(collection)
        except ConfigurationError:
            raise
        except Exception as exc:
            raise ScanFailure(join_path(*segments), exc) from exc
        log.debug("Nested scan of %s: %d top-level records", collection, len(parents))
        for parent in parents:
            inner = segments[:position] + [parent] + segments[position + 1:]
            try:
                async for path in self._scan_indexed(inner, query):
                    yield path
            except ScanFailure as failure:
                if failures is None:
                    raise
                log.warning("%s", failure)
                failures.append(failure)

    async def scan_all(self, templates: Iterable[DenormalizedPath],
                       bindings: Optional[Mapping[str, Any]] = None) -> ScanResult:
        """
        Scan every template independently and merge the results.

        Each template is its own unit of work in an unbounded pool, so one
        failed scan never hides the paths found by its siblings.

        Raises:
            ConfigurationError: a template needs an index the store does
                not declare
        """
        result = ScanResult()

        def unit(template: DenormalizedPath) -> WorkUnit:
            async def run():
                found = 0
                async for path in self.scan(template, bindings, result.failures):
                    result.paths.add(path)
                    found += 1
                return found
            return WorkUnit(label=template.template, run=run)

        report = await BoundedWorkPool(None, name="scan").start([unit(t) for t in templates])
        for failure in report.failures:
            if isinstance(failure.cause, ConfigurationError):
                raise failure.cause
        for failure in report.failures:
            cause = failure.cause
            if isinstance(cause, ScanFailure):
                result.failures.append(cause)
            else:
                result.failures.append(ScanFailure(str(failure.unit), cause))
        return result
