# fanout/services/jobs.py
"""
Entry points handed to the HTTP and CLI glue.

Collaborators are built once into a ``Services`` bundle and passed in;
nothing here looks up a module-level client.
"""

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from fanout.config import MAILGUN_API_KEY, MAILGUN_DOMAIN, MAX_CONCURRENT, STORAGE_ROOT
from fanout.errors import ConfigurationError
from fanout.services.cleanup import CascadeDeleter, CascadeReport
from fanout.services.collaborators import (
    AuthProvider,
    ImageClassifier,
    LocalObjectStorage,
    MailgunSender,
    MailSender,
    ObjectStorage,
    PushSender,
)
from fanout.services.moderation import (
    ImageSafetyPolicy,
    ImageVerdict,
    ModerationFilter,
    ModerationVerdict,
    default_filter,
)
from fanout.services.path_index import PathIndex
from fanout.services.store import SqlTreeStore, TreeStore

log = logging.getLogger(__name__)

OnFlagged = Callable[[ImageVerdict], Any]


@dataclass
class Services:
    store: TreeStore
    path_index: PathIndex = field(default_factory=PathIndex)
    moderation_filter: ModerationFilter = default_filter
    image_policy: ImageSafetyPolicy = field(default_factory=ImageSafetyPolicy)
    storage: Optional[ObjectStorage] = None
    auth: Optional[AuthProvider] = None
    classifier: Optional[ImageClassifier] = None
    push: Optional[PushSender] = None
    mail: Optional[MailSender] = None
    concurrency: Optional[int] = MAX_CONCURRENT

    def deleter(self) -> CascadeDeleter:
        return CascadeDeleter(
            self.store,
            path_index=self.path_index,
            storage=self.storage,
            concurrency=self.concurrency,
        )


def build_default_services(storage: Optional[ObjectStorage] = None) -> Services:
    """Services backed by the configured database and, when set, local storage and Mailgun."""
    if storage is None and STORAGE_ROOT:
        storage = LocalObjectStorage(STORAGE_ROOT)
    mail = MailgunSender(MAILGUN_API_KEY, MAILGUN_DOMAIN) if MAILGUN_API_KEY and MAILGUN_DOMAIN else None
    if mail is None:
        log.warning("Mailgun API key and domain are not configured; flag e-mails are disabled")
    return Services(store=SqlTreeStore(), storage=storage, mail=mail)


async def run_cascade_delete(services: Services, root_kind: str, root_id: str) -> CascadeReport:
    """Delete a root entity and every denormalized path that references it."""
    return await services.deleter().run(root_kind, root_id)


def run_moderate(services: Services, text: str) -> ModerationVerdict:
    return services.moderation_filter.moderate(text)


async def run_blur_check(services: Services, image_ref: str,
                         on_flagged: Callable[[ImageVerdict], Optional[Awaitable[Any]]],
                         fail_open: bool = False) -> ImageVerdict:
    """
    Classify an image and call ``on_flagged`` when the policy says to blur.

    Args:
        services: Must carry a classifier
        image_ref: Object name of the uploaded image
        on_flagged: Sync or async callback receiving the verdict
        fail_open: Treat a classifier failure as "not flagged" (logged as
            could-not-verify) instead of raising ExternalServiceError
    """
    if services.classifier is None:
        raise ConfigurationError("No image classifier configured")
    verdict = await services.image_policy.check(services.classifier, image_ref, fail_open=fail_open)
    if verdict.flagged:
        outcome = on_flagged(verdict)
        if inspect.isawaitable(outcome):
            await outcome
    return verdict
