"""
Tests for the tree stores (in-memory and SQLAlchemy-backed).
"""

import pytest

from conftest import NOW_MS, DAY_MS, social_tree
from fanout.errors import ConfigurationError
from fanout.services.store import (
    MemoryTreeStore,
    SqlTreeStore,
    is_ancestor,
    normalize_path,
    order_key,
    prune_nulls,
)


@pytest.fixture(params=["memory", "sql"])
def store(request, session_factory):
    if request.param == "memory":
        return MemoryTreeStore()
    return SqlTreeStore(session_factory)


async def seeded(store):
    await store.write("", social_tree())
    return store


class TestPathHelpers:
    def test_normalize_strips_slashes(self):
        assert normalize_path("/posts//p1/") == "posts/p1"

    def test_is_ancestor(self):
        assert is_ancestor("posts", "posts/p1")
        assert not is_ancestor("posts/p1", "posts/p1")
        assert not is_ancestor("posts/p1", "posts/p10")

    def test_prune_nulls_drops_empty_branches(self):
        assert prune_nulls({"a": {"b": None}, "c": 1}) == {"c": 1}

    def test_order_key_sorts_types_apart(self):
        assert order_key(True) != order_key(1)
        assert order_key(None) < order_key(False) < order_key(0) < order_key("a")


class TestTreeStore:
    """Behaviour shared by every store implementation."""

    @pytest.mark.asyncio
    async def test_read_nested_and_missing(self, store):
        await seeded(store)
        assert await store.read("posts/p1/author/uid") == "u1"
        assert await store.read("people/u1/posts") == {"p1": True, "p2": True, "p3": True}
        assert await store.read("posts/nope") is None

    @pytest.mark.asyncio
    async def test_write_none_removes_subtree_and_empty_parents(self, store):
        await seeded(store)
        await store.write("comments/p1/c0", None)

        assert await store.read("comments/p1") is None
        assert await store.keys("comments") == ["p4"]

    @pytest.mark.asyncio
    async def test_update_applies_batch(self, store):
        await seeded(store)
        await store.update({"feed/u1/p1": None, "feed/u1/p9": True, "posts/p2/sanitized": True})

        feed = await store.read("feed/u1")
        assert "p1" not in feed and feed["p9"] is True
        assert await store.read("posts/p2/sanitized") is True

    @pytest.mark.asyncio
    async def test_write_replaces_scalar_with_subtree_and_back(self, store):
        await store.write("a/b", 1)
        await store.write("a/b/c", "x")
        assert await store.read("a") == {"b": {"c": "x"}}

        await store.write("a/b", 2)
        assert await store.read("a") == {"b": 2}

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, store):
        await seeded(store)
        await store.write("posts/p1", None)
        await store.write("posts/p1", None)
        assert await store.read("posts/p1") is None

    @pytest.mark.asyncio
    async def test_query_by_equality(self, store):
        await seeded(store)
        rows = await store.query_by_field("posts", "author/uid", equal_to="u1")
        assert [key for key, _ in rows] == ["p1", "p2", "p3"]

    @pytest.mark.asyncio
    async def test_query_on_child_key(self, store):
        await seeded(store)
        rows = await store.query_by_field("likes", "u1", start_at=0)
        assert [key for key, _ in rows] == ["p4", "p5"]

    @pytest.mark.asyncio
    async def test_query_range_is_ordered_and_paged(self, store):
        await seeded(store)
        cutoff = NOW_MS - 30 * DAY_MS
        first = await store.query_by_field("posts", "timestamp", end_at=NOW_MS, limit=2)
        assert [key for key, _ in first] == ["p4", "p1"]

        last_key, last_value = first[-1]
        rest = await store.query_by_field(
            "posts", "timestamp", end_at=NOW_MS, start_after=(last_value["timestamp"], last_key)
        )
        assert [key for key, _ in rest] == ["p2", "p3", "p5"]

        old = await store.query_by_field("posts", "timestamp", end_at=cutoff)
        assert [key for key, _ in old] == ["p4", "p1"]

    @pytest.mark.asyncio
    async def test_query_under_wildcard_index(self, store):
        await seeded(store)
        rows = await store.query_by_field("comments/p4", "author/uid", equal_to="u1")
        assert [key for key, _ in rows] == ["c1"]

    @pytest.mark.asyncio
    async def test_undeclared_index_is_rejected(self, store):
        await seeded(store)
        with pytest.raises(ConfigurationError):
            await store.query_by_field("posts", "text", equal_to="hello #cat")
        with pytest.raises(ConfigurationError):
            await store.query_by_field("people", "full_name", equal_to="Ada")

    @pytest.mark.asyncio
    async def test_ping(self, store):
        assert await store.ping() is True


class TestMemoryTreeStore:
    def test_snapshot_is_a_copy(self):
        store = MemoryTreeStore({"a": {"b": 1}})
        snap = store.snapshot()
        snap["a"]["b"] = 2
        assert store.snapshot() == {"a": {"b": 1}}

    def test_custom_indexes(self):
        store = MemoryTreeStore({"people": {"u1": {"full_name": "Ada"}}}, indexes={"people": {"full_name"}})
        store.check_index("people", "full_name")
        with pytest.raises(ConfigurationError):
            store.check_index("posts", "author/uid")
