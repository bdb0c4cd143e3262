"""Shared fixtures: an in-memory SQL store, a small social tree and fake collaborators."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.pool import StaticPool

from fanout.db import make_session_factory
from fanout.services.collaborators import PushResult, UserPage, UserRecord
from fanout.services.store import MemoryTreeStore, SqlTreeStore

NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)
NOW_MS = int(NOW.timestamp() * 1000)
DAY_MS = 24 * 3600 * 1000


def social_tree() -> Dict[str, Any]:
    """u1 wrote p1, p2, p3; liked p4 and p5; commented once on p4 (c1)."""
    return {
        "people": {
            "u1": {"full_name": "Ada", "posts": {"p1": True, "p2": True, "p3": True}},
            "u2": {"full_name": "Bob", "posts": {"p4": True, "p5": True}},
        },
        "posts": {
            "p1": {"text": "hello #cat", "timestamp": NOW_MS - 40 * DAY_MS, "author": {"uid": "u1"},
                   "full_storage_uri": "gs://demo/u1/full/p1/a.jpg",
                   "thumb_storage_uri": "gs://demo/u1/thumb/p1/a.jpg"},
            "p2": {"text": "second", "timestamp": NOW_MS - 2 * DAY_MS, "author": {"uid": "u1"}},
            "p3": {"text": "third #dog", "timestamp": NOW_MS - DAY_MS, "author": {"uid": "u1"}},
            "p4": {"text": "bob #cat", "timestamp": NOW_MS - 50 * DAY_MS, "author": {"uid": "u2"}},
            "p5": {"text": "bob again", "timestamp": NOW_MS - DAY_MS, "author": {"uid": "u2"}},
        },
        "comments": {
            "p1": {"c0": {"text": "nice", "author": {"uid": "u2"}}},
            "p4": {"c1": {"text": "great", "author": {"uid": "u1"}},
                   "c2": {"text": "thanks", "author": {"uid": "u2"}}},
        },
        "likes": {
            "p1": {"u2": NOW_MS},
            "p4": {"u1": NOW_MS, "u2": NOW_MS},
            "p5": {"u1": NOW_MS},
        },
        "followers": {"u1": {"u2": True}, "u2": {"u1": True}},
        "feed": {
            "u1": {"p1": True, "p2": True, "p3": True, "p4": True, "p5": True},
            "u2": {"p1": True, "p2": True, "p3": True, "p4": True, "p5": True},
        },
        "hashtags": {"cat": {"p1": True, "p4": True}, "dog": {"p3": True}},
        "postFlags": {"p1": {"u2": True}},
    }


@pytest.fixture
def memory_store():
    return MemoryTreeStore(social_tree())


@pytest.fixture
def session_factory():
    """In-memory SQLite shared by every session of one test."""
    return make_session_factory(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )


@pytest.fixture
def sql_store(session_factory):
    return SqlTreeStore(session_factory)


class FakeAuth:
    def __init__(self, users: Optional[List[UserRecord]] = None):
        self.users = {u.id: u for u in users or []}
        self.deleted: List[str] = []
        self.claims: Dict[str, Any] = {}
        self.list_calls = 0

    async def get_user(self, uid):
        if uid not in self.users:
            raise LookupError(f"no user {uid}")
        return self.users[uid]

    async def get_user_by_email(self, email):
        for user in self.users.values():
            if user.email == email:
                return user
        raise LookupError(f"no user with email {email}")

    async def list_users(self, page_size, page_token=None):
        self.list_calls += 1
        ordered = sorted(self.users)
        start = int(page_token or 0)
        chunk = ordered[start:start + page_size]
        nxt = str(start + page_size) if start + page_size < len(ordered) else None
        return UserPage(users=[self.users[uid] for uid in chunk], next_page_token=nxt)

    async def set_custom_claims(self, uid, claims):
        self.claims[uid] = claims

    async def delete_user(self, uid):
        self.deleted.append(uid)


class FakePush:
    def __init__(self, errors: Optional[Dict[str, str]] = None, fail: bool = False):
        self.errors = errors or {}
        self.fail = fail
        self.sent: List[Any] = []

    async def send(self, tokens, payload):
        if self.fail:
            raise ConnectionError("push relay down")
        self.sent.append((list(tokens), payload))
        return [PushResult(token=t, success=t not in self.errors, error_code=self.errors.get(t)) for t in tokens]


class FakeMail:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages = []

    async def send(self, message):
        if self.fail:
            raise ConnectionError("relay down")
        self.messages.append(message)
        return "Queued. Thank you."


class FakeStorage:
    def __init__(self, fail_on=()):
        self.deleted: List[str] = []
        self.prefixes: List[str] = []
        self.fail_on = set(fail_on)

    async def download(self, path, destination):
        raise FileNotFoundError(path)

    async def get_metadata(self, path):
        return None

    async def upload(self, local_file, path, metadata=None):
        return None

    async def delete(self, path):
        if path in self.fail_on:
            raise ConnectionError(f"cannot delete {path}")
        self.deleted.append(path)

    async def delete_prefix(self, prefix):
        self.prefixes.append(prefix)
        return 0


@pytest.fixture
def fake_auth():
    return FakeAuth([
        UserRecord(id="u1", email="ada@example.com", display_name="Ada"),
        UserRecord(id="u2", email="bob@example.com", display_name="Bob", photo_url="https://img/bob.jpg"),
    ])


@pytest.fixture
def fake_storage():
    return FakeStorage()
