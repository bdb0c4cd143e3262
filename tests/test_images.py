"""Tests for the blur pipeline and local object storage."""

import pytest
from PIL import Image

from fanout.errors import ExternalServiceError
from fanout.services.collaborators import LocalObjectStorage
from fanout.services.images import ImageBlurrer, blur_file, parse_object_name, refresh_image_url
from fanout.services.moderation import ImageStatus, ImageVerdict
from fanout.services.store import MemoryTreeStore


def checkerboard(path, size=32):
    image = Image.new("RGB", (size, size), "white")
    for x in range(size):
        for y in range(size):
            if (x // 4 + y // 4) % 2:
                image.putpixel((x, y), (0, 0, 0))
    path.parent.mkdir(parents=True, exist_ok=True)
    image.save(path, format="PNG")


class TestBlur:
    def test_blur_file_changes_pixels(self, tmp_path):
        path = tmp_path / "a.png"
        checkerboard(path)
        blur_file(str(path), radius=4)
        with Image.open(path) as image:
            assert image.format == "PNG"
            assert image.getpixel((3, 3)) != (255, 255, 255)

    def test_parse_object_name(self):
        assert parse_object_name("u1/full/p1/a.jpg") == ("u1", "full", "p1")
        assert parse_object_name("avatar.jpg") is None


class TestRefreshImageUrl:
    @pytest.mark.asyncio
    async def test_appends_marker_once(self):
        store = MemoryTreeStore({"posts": {"p1": {"thumb_url": "https://img/t.jpg?token=1"}}})
        assert await refresh_image_url(store, "p1", "thumb") == "https://img/t.jpg?token=1&blurred"
        assert await refresh_image_url(store, "p1", "thumb") == "https://img/t.jpg?token=1&blurred"
        assert await store.read("posts/p1/thumb_url") == "https://img/t.jpg?token=1&blurred"

    @pytest.mark.asyncio
    async def test_no_url(self):
        assert await refresh_image_url(MemoryTreeStore(), "p1", "full") is None


class TestImageBlurrer:
    @pytest.mark.asyncio
    async def test_blurs_and_refreshes(self, tmp_path):
        checkerboard(tmp_path / "bucket" / "u1" / "full" / "p1" / "a.png")
        storage = LocalObjectStorage(str(tmp_path / "bucket"))
        store = MemoryTreeStore({"posts": {"p1": {"full_url": "https://img/a.png?token=1"}}})

        verdict = ImageVerdict("u1/full/p1/a.png", ImageStatus.FLAGGED)
        new_url = await ImageBlurrer(storage, store, radius=4)(verdict)

        assert new_url == "https://img/a.png?token=1&blurred"
        with Image.open(tmp_path / "bucket" / "u1" / "full" / "p1" / "a.png") as image:
            assert image.getpixel((3, 3)) != (255, 255, 255)

    @pytest.mark.asyncio
    async def test_keeps_object_metadata(self, tmp_path):
        checkerboard(tmp_path / "upload.png")
        storage = LocalObjectStorage(str(tmp_path / "bucket"))
        metadata = {"contentType": "image/png", "firebaseStorageDownloadTokens": "tok-1"}
        await storage.upload(str(tmp_path / "upload.png"), "u1/full/p1/a.png", metadata=metadata)
        store = MemoryTreeStore({"posts": {"p1": {"full_url": "https://img/a.png?token=1"}}})

        await ImageBlurrer(storage, store, radius=4)(ImageVerdict("u1/full/p1/a.png", ImageStatus.FLAGGED))

        assert await storage.get_metadata("u1/full/p1/a.png") == metadata
        with Image.open(tmp_path / "bucket" / "u1" / "full" / "p1" / "a.png") as image:
            assert image.getpixel((3, 3)) != (255, 255, 255)

    @pytest.mark.asyncio
    async def test_missing_object(self, tmp_path):
        storage = LocalObjectStorage(str(tmp_path))
        with pytest.raises(ExternalServiceError):
            await ImageBlurrer(storage, MemoryTreeStore())(ImageVerdict("u1/full/p1/x.png", ImageStatus.FLAGGED))


class TestLocalObjectStorage:
    @pytest.mark.asyncio
    async def test_delete_and_prefix(self, tmp_path):
        for name in ("u1/full/p1/a.jpg", "u1/thumb/p1/a.jpg", "u2/full/p2/b.jpg"):
            (tmp_path / name).parent.mkdir(parents=True, exist_ok=True)
            (tmp_path / name).write_bytes(b"x")
        storage = LocalObjectStorage(str(tmp_path))

        await storage.delete("u2/full/p2/b.jpg")
        assert not (tmp_path / "u2/full/p2/b.jpg").exists()
        assert await storage.delete_prefix("u1/") == 2
        assert not (tmp_path / "u1").exists()
        assert await storage.delete_prefix("u9/") == 0

    @pytest.mark.asyncio
    async def test_paths_cannot_escape_root(self, tmp_path):
        storage = LocalObjectStorage(str(tmp_path / "root"))
        with pytest.raises(ExternalServiceError):
            await storage.delete("../outside.txt")

    @pytest.mark.asyncio
    async def test_metadata_follows_the_object(self, tmp_path):
        source = tmp_path / "src.bin"
        source.write_bytes(b"x")
        storage = LocalObjectStorage(str(tmp_path / "root"))

        await storage.upload(str(source), "u1/full/p1/a.jpg", metadata={"owner": "u1"})
        await storage.upload(str(source), "u1/full/p2/b.jpg")
        assert await storage.get_metadata("u1/full/p1/a.jpg") == {"owner": "u1"}
        assert await storage.get_metadata("u1/full/p2/b.jpg") is None

        assert await storage.delete_prefix("u1/") == 2
        assert not (tmp_path / "root" / ".metadata" / "u1").exists()
        with pytest.raises(ExternalServiceError):
            await storage.get_metadata("u1/full/p1/a.jpg")
