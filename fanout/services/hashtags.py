# fanout/services/hashtags.py
"""Hashtag index maintenance: ``hashtags/{tag}/{postId} = true``."""

import logging
import re
from typing import FrozenSet, List, Optional

from fanout.services.planner import FanOutPlanner, Operation, WorkItem
from fanout.services.store import TreeStore, join_path

log = logging.getLogger(__name__)

_WORD_SPLIT = re.compile(r"[^a-z0-9#_-]+", re.IGNORECASE)


def extract_hashtags(text: Optional[str]) -> List[str]:
    """
    Return the lower-cased hashtags of a text in order of first appearance.

    A ``#`` glued to a previous word starts a new tag, so ``#cat#dog`` yields
    both ``cat`` and ``dog``.
    """
    if not text:
        return []
    tags: List[str] = []
    for word in _WORD_SPLIT.split(text.replace("#", " #")):
        if word.startswith("#") and len(word) > 1:
            tag = word[1:].lower()
            if tag not in tags:
                tags.append(tag)
    return tags


def hashtag_paths(post_id: str, text: Optional[str]) -> List[str]:
    return [join_path("hashtags", tag, post_id) for tag in extract_hashtags(text)]


def plan_hashtag_index(post_id: str, text: Optional[str], add: bool = True,
                       planner: Optional[FanOutPlanner] = None) -> FrozenSet[WorkItem]:
    planner = planner or FanOutPlanner()
    if add:
        return planner.plan(hashtag_paths(post_id, text), Operation.SET, payload=True)
    return planner.plan(hashtag_paths(post_id, text), Operation.DELETE)


async def index_post_hashtags(store: TreeStore, post_id: str, text: Optional[str] = None) -> FrozenSet[WorkItem]:
    """Add a post to the index of every hashtag in its text."""
    if text is None:
        text = await store.read(join_path("posts", post_id, "text"))
    items = plan_hashtag_index(post_id, text, add=True)
    if items:
        await store.update(FanOutPlanner.to_batch(items))
        log.info("Indexed post %s under %d hashtag(s)", post_id, len(items))
    return items


async def unindex_post_hashtags(store: TreeStore, post_id: str, text: Optional[str]) -> FrozenSet[WorkItem]:
    """Remove a post from the hashtag indexes derived from its (former) text."""
    items = plan_hashtag_index(post_id, text, add=False)
    if items:
        await store.update(FanOutPlanner.to_batch(items))
        log.info("Removed post %s from %d hashtag index(es)", post_id, len(items))
    return items
