# fanout/services/images.py
"""Blurs offensive images and points the post at the blurred version."""

import asyncio
import logging
import os
import tempfile
from typing import Optional

from PIL import Image, ImageFilter

from fanout.config import BLUR_RADIUS
from fanout.services.collaborators import ObjectStorage
from fanout.services.moderation import ImageVerdict
from fanout.services.store import TreeStore, join_path

log = logging.getLogger(__name__)


def blur_file(path: str, radius: int = BLUR_RADIUS) -> None:
    """Blur an image file in place."""
    with Image.open(path) as image:
        image_format = image.format
        blurred = image.filter(ImageFilter.GaussianBlur(radius))
        blurred.save(path, format=image_format)


def parse_object_name(object_name: str):
    """
    Split ``{uid}/{size}/{postId}/...`` into its parts.

    Returns:
        (uid, size, post_id), or None when the name does not follow the layout
    """
    parts = [p for p in object_name.split("/") if p]
    if len(parts) < 3:
        return None
    return parts[0], parts[1], parts[2]


async def refresh_image_url(store: TreeStore, post_id: str, size: str) -> Optional[str]:
    """Append ``&blurred`` to ``posts/{postId}/{size}_url`` so clients refetch."""
    url_path = join_path("posts", post_id, f"{size}_url")
    url = await store.read(url_path)
    if not url:
        log.warning("No %s_url on post %s; nothing to refresh", size, post_id)
        return None
    if url.endswith("&blurred"):
        return url
    new_url = f"{url}&blurred"
    await store.write(url_path, new_url)
    log.info("Blurred image URL updated for post %s", post_id)
    return new_url


class ImageBlurrer:
    """
    ``on_flagged`` callback: download, blur, re-upload, refresh the post URL.

    The object's custom metadata is read before the download and written
    back with the blurred upload.
    """

    def __init__(self, storage: ObjectStorage, store: TreeStore, radius: int = BLUR_RADIUS):
        self.storage = storage
        self.store = store
        self.radius = radius

    async def __call__(self, verdict: ImageVerdict) -> Optional[str]:
        object_name = verdict.image_ref
        metadata = await self.storage.get_metadata(object_name)
        with tempfile.TemporaryDirectory() as tmp_dir:
            local_file = os.path.join(tmp_dir, os.path.basename(object_name))
            await self.storage.download(object_name, local_file)
            log.info("The file has been downloaded to %s", local_file)
            await asyncio.to_thread(blur_file, local_file, self.radius)
            await self.storage.upload(local_file, object_name, metadata=metadata)
            log.info("Blurred image uploaded to storage at %s", object_name)

        parts = parse_object_name(object_name)
        if parts is None:
            log.warning("Object %s is not a post image; URL not refreshed", object_name)
            return None
        _, size, post_id = parts
        return await refresh_image_url(self.store, post_id, size)
