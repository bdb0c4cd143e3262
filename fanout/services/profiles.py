# fanout/services/profiles.py
"""Public profile documents under ``/people/{uid}``."""

import logging
from typing import Any, Dict

from unidecode import unidecode

from fanout.config import LIST_USERS_PAGE_SIZE
from fanout.services.cleanup import iter_user_pages
from fanout.services.collaborators import AuthProvider, UserRecord
from fanout.services.store import TreeStore

log = logging.getLogger(__name__)


def build_profile_update(user: UserRecord) -> Dict[str, Any]:
    display_name = user.display_name or "Anonymous"
    search_full_name = unidecode(display_name.lower())
    search_reversed = " ".join(reversed(search_full_name.split(" ")))

    update: Dict[str, Any] = {}
    if user.photo_url:
        update[f"people/{user.id}/profile_picture"] = user.photo_url
    update[f"people/{user.id}/full_name"] = display_name
    update[f"people/{user.id}/_search_index"] = {
        "full_name": search_full_name,
        "reversed_full_name": search_reversed,
    }
    return update


async def create_public_profile(store: TreeStore, user: UserRecord) -> None:
    await store.update(build_profile_update(user))


async def update_all_profiles(store: TreeStore, auth: AuthProvider, page_size: int = LIST_USERS_PAGE_SIZE) -> int:
    """Rebuild every public profile, one batch per page of users."""
    total = 0
    async for users in iter_user_pages(auth, page_size):
        updates: Dict[str, Any] = {}
        for user in users:
            updates.update(build_profile_update(user))
        await store.update(updates)
        total += len(users)
        log.info("Profiles updated for %d user(s)", len(users))
    return total
