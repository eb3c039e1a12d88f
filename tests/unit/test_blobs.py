"""
Unit tests for the upload and resized image cache.
"""

import pytest

from notes.rwtxt_store.errors import NotFoundError
from notes.rwtxt_store.storage import BlobCache


class TestBlobCache:
    """Tests for BlobCache."""

    @pytest.mark.asyncio
    async def test_save_and_get(self, store):
        """Uploads come back byte for byte."""
        data = bytes(range(256))
        await store.blobs.save_blob("img1", "cat.png", data)

        blob = await store.blobs.get_blob("img1")
        assert blob.name == "cat.png"
        assert blob.data == data

    @pytest.mark.asyncio
    async def test_views_count_fetches(self, store):
        """Each fetch increments the counter."""
        await store.blobs.save_blob("img1", "cat.png", b"x")

        views = [(await store.blobs.get_blob("img1")).views for _ in range(3)]
        assert views == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_resave_keeps_views(self, store):
        """Replacing a payload keeps the counter."""
        await store.blobs.save_blob("img1", "cat.png", b"old")
        await store.blobs.get_blob("img1")
        await store.blobs.save_blob("img1", "dog.png", b"new")

        blob = await store.blobs.get_blob("img1")
        assert (blob.name, blob.data, blob.views) == ("dog.png", b"new", 1)

    @pytest.mark.asyncio
    async def test_missing(self, store):
        """Missing payloads raise NotFoundError of the right kind."""
        with pytest.raises(NotFoundError) as exc_info:
            await store.blobs.get_blob("nope")
        assert exc_info.value.kind == "blob"

        with pytest.raises(NotFoundError) as exc_info:
            await store.blobs.get_resized_image("nope")
        assert exc_info.value.kind == "image"

    @pytest.mark.asyncio
    async def test_resized_images_are_separate(self, store):
        """Renditions live apart from uploads and count their own views."""
        await store.blobs.save_blob("img1", "cat.png", b"full")
        rendition_id = BlobCache.resized_image_id("img1", 400)
        await store.blobs.save_resized_image(rendition_id, "cat.png", b"small")

        image = await store.blobs.get_resized_image(rendition_id)
        assert image.data == b"small"
        assert (await store.blobs.get_resized_image(rendition_id)).views == 1
        assert (await store.blobs.get_blob("img1")).views == 0
        with pytest.raises(NotFoundError):
            await store.blobs.get_blob(rendition_id)

    @pytest.mark.asyncio
    async def test_list_blob_ids(self, store):
        """Only uploads are listed."""
        await store.blobs.save_blob("b", "2", b"2")
        await store.blobs.save_blob("a", "1", b"1")
        await store.blobs.save_resized_image("r", "3", b"3")
        assert await store.blobs.list_blob_ids() == ["a", "b"]

    def test_ids(self):
        """Derived ids are stable and purpose-specific."""
        assert BlobCache.content_id(b"data") == BlobCache.content_id(b"data")
        assert BlobCache.content_id(b"data") != BlobCache.content_id(b"other")
        assert BlobCache.resized_image_id("a", 100) != BlobCache.resized_image_id("a", 200)
        assert len(BlobCache.content_id(b"data")) == 32
