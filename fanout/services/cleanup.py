# fanout/services/cleanup.py
"""
Cascading deletion and the batch cleanup jobs built on it.

A cascade is: PathIndex templates -> Scanner -> FanOutPlanner -> one
WorkUnit per WorkItem (plus one per object-storage target) run through a
BoundedWorkPool. Cleanup is best effort: a failed unit is reported and
the rest of the cascade still runs. Re-running a cascade recomputes the
plan from the current store contents.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, FrozenSet, List, Optional

from fanout.config import INACTIVE_ACCOUNT_DAYS, LIST_USERS_PAGE_SIZE, MAX_CONCURRENT, POST_MAX_AGE_DAYS
from fanout.errors import ScanFailure
from fanout.services.collaborators import AuthProvider, ObjectStorage, UserRecord
from fanout.services.path_index import PathIndex
from fanout.services.planner import FanOutPlanner, WorkItem
from fanout.services.pool import BoundedWorkPool, CompletionReport, WorkUnit
from fanout.services.scanner import Scanner, expand_bindings
from fanout.services.store import TreeStore

log = logging.getLogger(__name__)

POSTS_PAGE_SIZE = 500


@dataclass
class CascadePlan:
    root_kind: str
    root_id: str
    work_items: FrozenSet[WorkItem] = frozenset()
    storage_targets: List[str] = field(default_factory=list)
    scan_failures: List[ScanFailure] = field(default_factory=list)

    @property
    def paths(self) -> List[str]:
        return sorted(item.path for item in self.work_items)


@dataclass
class CascadeReport:
    plan: CascadePlan
    completion: CompletionReport

    @property
    def complete(self) -> bool:
        return self.completion.ok and not self.plan.scan_failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root_kind": self.plan.root_kind,
            "root_id": self.plan.root_id,
            "paths": self.plan.paths,
            "storage_targets": self.plan.storage_targets,
            "scan_failures": [{"path": f.path, "error": str(f.cause)} for f in self.plan.scan_failures],
            "complete": self.complete,
            **self.completion.to_dict(),
        }


def storage_object_name(uri: str) -> str:
    """Strip ``gs://bucket/`` (or any scheme and bucket) from a storage URI."""
    if "://" in uri:
        _, rest = uri.split("://", 1)
        return rest.split("/", 1)[1] if "/" in rest else ""
    return uri.lstrip("/")


class CascadeDeleter:
    """Runs cascading deletions for one store and rule set."""

    def __init__(
        self,
        store: TreeStore,
        path_index: Optional[PathIndex] = None,
        scanner: Optional[Scanner] = None,
        planner: Optional[FanOutPlanner] = None,
        storage: Optional[ObjectStorage] = None,
        concurrency: Optional[int] = MAX_CONCURRENT,
    ):
        """
        Initialize the deleter.

        Args:
            store: Backing tree store
            path_index: Cascade rules (defaults to the built-in rule set)
            scanner: Scanner over ``store``
            planner: Fan-out planner
            storage: Object storage; storage targets are skipped when None
            concurrency: Pool ceiling for applying work items
        """
        self.store = store
        self.path_index = path_index or PathIndex()
        self.scanner = scanner or Scanner(store)
        self.planner = planner or FanOutPlanner()
        self.storage = storage
        self.concurrency = concurrency

    async def plan(self, root_kind: str, root_id: str) -> CascadePlan:
        """Compute, without writing anything, what a cascade would delete."""
        templates = self.path_index.paths_for(root_kind, root_id)
        rule = self.path_index.rule_for(root_kind)
        bindings = await self.scanner.resolve_bindings(rule, root_id)
        scan = await self.scanner.scan_all(templates, bindings)
        items = self.planner.plan(scan.paths)

        storage_targets: List[str] = []
        bindings_with_id = dict(bindings, id=root_id)
        for template in self.path_index.storage_for(root_kind, root_id):
            for target in expand_bindings(template, bindings_with_id):
                if target.endswith("/"):
                    storage_targets.append(target)
                else:
                    name = storage_object_name(target)
                    if name:
                        storage_targets.append(name)

        return CascadePlan(
            root_kind=root_kind,
            root_id=root_id,
            work_items=items,
            storage_targets=sorted(set(storage_targets)),
            scan_failures=scan.failures,
        )

    def _units(self, plan: CascadePlan) -> List[WorkUnit]:
        units = [
            WorkUnit(label=item, run=lambda item=item: item.apply(self.store))
            for item in sorted(plan.work_items, key=lambda i: i.path)
        ]
        if self.storage is not None:
            for target in plan.storage_targets:
                if target.endswith("/"):
                    run = lambda target=target: self.storage.delete_prefix(target)
                else:
                    run = lambda target=target: self.storage.delete(target)
                units.append(WorkUnit(label=f"storage:{target}", run=run))
        elif plan.storage_targets:
            log.warning("No object storage configured; skipping %d storage target(s) for %s %s",
                        len(plan.storage_targets), plan.root_kind, plan.root_id)
        return units

    async def run(self, root_kind: str, root_id: str) -> CascadeReport:
        """
        Delete an entity and everything derived from it.

        Raises:
            ConfigurationError: unknown kind or invalid rule set
        """
        plan = await self.plan(root_kind, root_id)
        log.info("Cascade delete %s %s: %d path(s), %d storage target(s), %d scan failure(s)",
                 root_kind, root_id, len(plan.work_items), len(plan.storage_targets), len(plan.scan_failures))
        pool = BoundedWorkPool(self.concurrency, name=f"cascade:{root_kind}:{root_id}")
        completion = await pool.start(self._units(plan))
        return CascadeReport(plan=plan, completion=completion)


async def iter_post_pages(store: TreeStore, older_than_ms: int,
                          page_size: int = POSTS_PAGE_SIZE) -> AsyncIterator[List[str]]:
    """
    Lazily page through ids of posts with ``timestamp <= older_than_ms``.

    Posts without an author are skipped. Stop consuming to stop paging.
    """
    cursor = None
    while True:
        rows = await store.query_by_field(
            "posts", "timestamp", end_at=older_than_ms, limit=page_size, start_after=cursor
        )
        if not rows:
            return
        yield [key for key, value in rows if isinstance(value, dict) and value.get("author")]
        if len(rows) < page_size:
            return
        last_key, last_value = rows[-1]
        cursor = (last_value.get("timestamp"), last_key)


def _now_ms(now: Optional[datetime]) -> int:
    now = now or datetime.now(timezone.utc)
    return int(now.timestamp() * 1000)


async def delete_old_posts(deleter: CascadeDeleter, max_age_days: int = POST_MAX_AGE_DAYS,
                           now: Optional[datetime] = None,
                           concurrency: Optional[int] = MAX_CONCURRENT) -> CompletionReport:
    """
    Cascade-delete every post older than ``max_age_days``.

    Returns:
        CompletionReport with one unit per post
    """
    threshold = _now_ms(now) - max_age_days * 24 * 3600 * 1000

    async def units():
        async for page in iter_post_pages(deleter.store, threshold):
            log.info("Old posts page: %d post(s) to delete", len(page))
            for post_id in page:
                yield WorkUnit(label=f"post:{post_id}", run=lambda pid=post_id: _cascade(deleter, "post", pid))

    report = await BoundedWorkPool(concurrency, name="delete-old-posts").start(units())
    log.info("%d old posts deleted", report.succeeded)
    return report


async def _cascade(deleter: CascadeDeleter, kind: str, entity_id: str) -> Dict[str, Any]:
    report = await deleter.run(kind, entity_id)
    if not report.complete:
        log.warning("Cascade for %s %s only partially completed: %d failed unit(s), %d scan failure(s)",
                    kind, entity_id, report.completion.failed, len(report.plan.scan_failures))
    return report.to_dict()


async def iter_user_pages(auth: AuthProvider, page_size: int = LIST_USERS_PAGE_SIZE) -> AsyncIterator[List[UserRecord]]:
    """Lazily yield pages of users; restartable by starting a new iterator."""
    token = None
    while True:
        page = await auth.list_users(page_size, token)
        yield page.users
        token = page.next_page_token
        if not token:
            return


def is_inactive(user: UserRecord, cutoff: datetime) -> bool:
    last = user.last_sign_in
    if last is None:
        return False
    if last.tzinfo is None:
        last = last.replace(tzinfo=timezone.utc)
    return last < cutoff


async def iter_inactive_users(auth: AuthProvider, inactive_days: int = INACTIVE_ACCOUNT_DAYS,
                              now: Optional[datetime] = None,
                              page_size: int = LIST_USERS_PAGE_SIZE) -> AsyncIterator[UserRecord]:
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=inactive_days)
    async for users in iter_user_pages(auth, page_size):
        for user in users:
            if is_inactive(user, cutoff):
                yield user


async def delete_inactive_accounts(auth: AuthProvider, deleter: Optional[CascadeDeleter] = None,
                                   inactive_days: int = INACTIVE_ACCOUNT_DAYS,
                                   now: Optional[datetime] = None,
                                   concurrency: Optional[int] = MAX_CONCURRENT,
                                   page_size: int = LIST_USERS_PAGE_SIZE) -> CompletionReport:
    """
    Delete every account that has not signed in for ``inactive_days``.

    When a deleter is given the user's data is cascaded right after the
    account itself is removed.
    """
    async def delete_one(user: UserRecord):
        await auth.delete_user(user.id)
        log.info("Deleted user account %s because of inactivity", user.id)
        if deleter is not None:
            return await _cascade(deleter, "user", user.id)
        return user.id

    async def units():
        async for user in iter_inactive_users(auth, inactive_days, now, page_size):
            yield WorkUnit(label=f"user:{user.id}", run=lambda u=user: delete_one(u))

    report = await BoundedWorkPool(concurrency, name="delete-inactive-accounts").start(units())
    log.info("%d accounts deleted", report.succeeded)
    return report
