# fanout/services/notifications.py
"""Push notification for new followers, with cleanup of dead device tokens."""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from fanout.config import SITE_URL
from fanout.services.collaborators import AuthProvider, PushSender
from fanout.services.planner import FanOutPlanner
from fanout.services.store import TreeStore, join_path

log = logging.getLogger(__name__)

STALE_TOKEN_ERRORS = {
    "messaging/invalid-registration-token",
    "messaging/registration-token-not-registered",
}


class FollowOutcome(str, Enum):
    UNFOLLOWED = "unfollowed"
    DISABLED = "notifications_disabled"
    ALREADY_SENT = "already_sent"
    NO_TOKENS = "no_tokens"
    SENT = "sent"
    FAILED = "failed"


@dataclass
class FollowNotification:
    outcome: FollowOutcome
    sent: int = 0
    removed_tokens: List[str] = field(default_factory=list)


async def notify_new_follower(store: TreeStore, auth: AuthProvider, push: PushSender,
                              followed_uid: str, follower_uid: str,
                              following: bool = True) -> FollowNotification:
    """
    Tell a user they have a new follower.

    Push and auth failures are logged and swallowed; the follow itself
    has already been committed.
    """
    if not following:
        log.info("User %s un-followed user %s", follower_uid, followed_uid)
        return FollowNotification(FollowOutcome.UNFOLLOWED)

    profile_path = join_path("people", followed_uid)
    if not await store.read(join_path(profile_path, "notificationEnabled")):
        log.info("User %s has not enabled notifications", followed_uid)
        return FollowNotification(FollowOutcome.DISABLED)

    if await store.read(join_path(profile_path, "notificationsSent", follower_uid)):
        log.info("Already notified %s about follower %s", followed_uid, follower_uid)
        return FollowNotification(FollowOutcome.ALREADY_SENT)

    tokens = sorted((await store.read(join_path(profile_path, "notificationTokens")) or {}).keys())
    if not tokens:
        log.info("There are no notification tokens to send to")
        return FollowNotification(FollowOutcome.NO_TOKENS)

    try:
        follower = await auth.get_user(follower_uid)
        payload = {
            "notification": {
                "title": "You have a new follower!",
                "body": f"{follower.display_name or 'Someone'} is now following you.",
                "icon": follower.photo_url or "/images/silhouette.jpg",
                "click_action": f"{SITE_URL}/user/{follower_uid}",
            }
        }
        results = await push.send(tokens, payload)
    except Exception as exc:
        log.error("Sending follower notification to %s failed: %s", followed_uid, exc)
        return FollowNotification(FollowOutcome.FAILED)

    await store.write(join_path(profile_path, "notificationsSent", follower_uid), int(time.time() * 1000))

    stale = []
    for result in results:
        if result.success:
            continue
        if result.error_code in STALE_TOKEN_ERRORS:
            log.info("Token %s is not registered anymore", result.token)
            stale.append(result.token)
        else:
            log.error("Failure sending notification to %s: %s", result.token, result.error_code)

    if stale:
        items = FanOutPlanner().plan(join_path(profile_path, "notificationTokens", t) for t in stale)
        await store.update(FanOutPlanner.to_batch(items))
        log.info("Removed %d unregistered token(s)", len(stale))

    sent = sum(1 for r in results if r.success)
    log.info("Successfully sent %d notification(s)", sent)
    return FollowNotification(FollowOutcome.SENT, sent=sent, removed_tokens=stale)
