"""Tests for moderator e-mails and admin claims."""

import pytest

from conftest import FakeAuth, FakeMail
from fanout.services.admins import mark_admin, unmark_admin
from fanout.services.collaborators import UserRecord
from fanout.services.flags import build_flag_email, send_flag_email
from fanout.services.store import MemoryTreeStore


class TestFlagEmail:
    def setup_method(self):
        self.store = MemoryTreeStore({
            "posts": {"p1": {"text": "<b>spam</b>", "thumb_url": "https://img/t.jpg", "author": {"uid": "u1"}}},
            "comments": {"p1": {"c1": {"text": "rude", "author": {"uid": "u1"}}}},
        })
        self.auth = FakeAuth([UserRecord(id="u2", email="bob@example.com", display_name="Bob")])

    def test_body_escapes_text(self):
        message = build_flag_email("p1", "u2", "Bob", None, {"text": "<script>"})
        assert "&lt;script&gt;" in message.html
        assert "<script>" not in message.html

    @pytest.mark.asyncio
    async def test_post_flag(self):
        mail = FakeMail()
        ack = await send_flag_email(self.store, self.auth, mail, "p1", "u2")

        assert ack == "Queued. Thank you."
        (message,) = mail.messages
        assert message.subject.endswith("- p1")
        assert message.subject.startswith("A post")
        assert "bob@example.com" in message.html
        assert "https://img/t.jpg" in message.html

    @pytest.mark.asyncio
    async def test_comment_flag(self):
        mail = FakeMail()
        await send_flag_email(self.store, self.auth, mail, "p1", "u2", comment_id="c1")
        (message,) = mail.messages
        assert message.subject.startswith("A comment")
        assert "rude" in message.html
        assert "thumbnail" not in message.html

    @pytest.mark.asyncio
    async def test_unknown_reporter_is_anonymous(self):
        mail = FakeMail()
        await send_flag_email(self.store, self.auth, mail, "p1", "ghost")
        assert "Anonymous" in mail.messages[0].html

    @pytest.mark.asyncio
    async def test_mail_problems_are_not_raised(self):
        assert await send_flag_email(self.store, self.auth, FakeMail(fail=True), "p1", "u2") is None
        assert await send_flag_email(self.store, self.auth, None, "p1", "u2") is None


class TestAdmins:
    def setup_method(self):
        self.store = MemoryTreeStore({"admins": {"0": {"email": "ada@example.com"}, "1": {"email": "who@x"}}})
        self.auth = FakeAuth([UserRecord(id="u1", email="ada@example.com")])

    @pytest.mark.asyncio
    async def test_mark_admin(self):
        assert await mark_admin(self.store, self.auth, "0")
        assert self.auth.claims == {"u1": {"admin": True}}
        entry = await self.store.read("admins/0")
        assert entry["status"] == "OK"
        assert entry["uid"] == "u1"

    @pytest.mark.asyncio
    async def test_mark_unknown_email(self):
        assert not await mark_admin(self.store, self.auth, "1")
        entry = await self.store.read("admins/1")
        assert entry["status"] == "ERROR"
        assert "who@x" in entry["error"]

    @pytest.mark.asyncio
    async def test_unmark_admin(self):
        assert await unmark_admin(self.auth, "ada@example.com")
        assert self.auth.claims == {"u1": {"admin": None}}
        assert not await unmark_admin(self.auth, "nobody@example.com")
