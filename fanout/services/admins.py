# fanout/services/admins.py
"""Grants and revokes the ``admin`` custom claim from ``/admins/{index}`` entries."""

import logging
import time
from typing import Optional

from fanout.services.collaborators import AuthProvider
from fanout.services.store import TreeStore, join_path

log = logging.getLogger(__name__)


async def mark_admin(store: TreeStore, auth: AuthProvider, index: str) -> bool:
    entry_path = join_path("admins", index)
    entry = await store.read(entry_path) or {}
    email = entry.get("email")
    try:
        user = await auth.get_user_by_email(email)
        await auth.set_custom_claims(user.id, {"admin": True})
    except Exception as exc:
        log.error("There was an error marking user %s as an admin: %s", email, exc)
        await store.update({join_path(entry_path, "error"): str(exc), join_path(entry_path, "status"): "ERROR"})
        return False
    log.info("User %s successfully marked as an admin", email)
    await store.update({
        join_path(entry_path, "email"): user.email or email,
        join_path(entry_path, "uid"): user.id,
        join_path(entry_path, "status"): "OK",
        join_path(entry_path, "timestamp"): int(time.time() * 1000),
        join_path(entry_path, "error"): None,
    })
    return True


async def unmark_admin(auth: AuthProvider, email: Optional[str]) -> bool:
    try:
        user = await auth.get_user_by_email(email)
        await auth.set_custom_claims(user.id, {"admin": None})
    except Exception as exc:
        log.error("There was an error un-marking user %s as an admin: %s", email, exc)
        return False
    log.info("User %s successfully unmarked as an admin", email)
    return True
