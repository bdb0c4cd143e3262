# fanout/services/flags.py
"""E-mails the moderation team when a post or comment is flagged."""

import html
import logging
from typing import Optional

from fanout.config import MAILGUN_DOMAIN, REPORT_RECIPIENT, SITE_URL
from fanout.services.collaborators import AuthProvider, MailMessage, MailSender
from fanout.services.store import TreeStore, join_path

log = logging.getLogger(__name__)


def build_flag_email(post_id: str, reporter_uid: str, reporter_name: Optional[str],
                     reporter_email: Optional[str], reported: dict,
                     comment_id: Optional[str] = None) -> MailMessage:
    what = "comment" if comment_id else "post"
    user_url = f"{SITE_URL}/user/{reporter_uid}"
    post_url = f"{SITE_URL}/post/{post_id}"
    email_part = f" ({html.escape(reporter_email)})" if reporter_email else ""
    thumbnail = ""
    if not comment_id and reported.get("thumb_url"):
        thumb = html.escape(reported["thumb_url"], quote=True)
        thumbnail = (f'Post image thumbnail:<br><a href="{thumb}">'
                     f'<img style="max-width: 400px" src="{thumb}"></a><br>')
    body = (
        f"Hey moderators,<br><br>"
        f'The user <a href="{user_url}">{html.escape(reporter_name or "Anonymous")}{email_part}</a> '
        f"has flagged a {what}. Make sure to review it asap:<br><br>"
        f"Post URL: {post_url}<br>"
        f"{thumbnail}"
        f"Text of the {what} reported: <b>{html.escape(reported.get('text') or '')}</b>"
    )
    return MailMessage(
        sender=f"FriendlyPix Bot <bot@{MAILGUN_DOMAIN or 'localhost'}>",
        to=REPORT_RECIPIENT,
        subject=f"A {what} has been flagged for inappropriate content - {comment_id or post_id}",
        html=body,
    )


async def send_flag_email(store: TreeStore, auth: AuthProvider, mail: Optional[MailSender],
                          post_id: str, reporter_uid: str,
                          comment_id: Optional[str] = None) -> Optional[str]:
    """
    Notify moderators about a flag. Mail problems are logged, never raised.

    Returns:
        The relay's acknowledgement, or None when nothing was sent
    """
    path = join_path("comments", post_id, comment_id) if comment_id else join_path("posts", post_id)
    reported = await store.read(path) or {}
    try:
        user = await auth.get_user(reporter_uid)
        name, email = user.display_name, user.email
    except Exception as exc:
        log.warning("Could not load reporter %s: %s", reporter_uid, exc)
        name, email = None, None

    message = build_flag_email(post_id, reporter_uid, name, email, reported, comment_id)
    if mail is None:
        log.error("Content was flagged but no mail relay is configured. Subject: %s", message.subject)
        return None
    try:
        ack = await mail.send(message)
    except Exception as exc:
        log.error("Flag e-mail for %s could not be sent: %s", path, exc)
        return None
    log.info("Flag e-mail sent for %s", path)
    return ack
