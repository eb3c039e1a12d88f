"""
Unit tests for the file repository.

Tests cover:
- Constructing and saving files
- History merging on save
- Resolving by id and by slug
- Listings, view counters and existence checks
"""

import asyncio

import pytest

from notes.rwtxt_store.errors import NotFoundError, StorageFailure, ValidationError
from notes.rwtxt_store.security import is_file_id


class TestFileRepository:
    """Tests for FileRepository."""

    @pytest.mark.asyncio
    async def test_new_file_is_not_persisted(self, store):
        """new_file() only builds the record."""
        f = store.files.new_file("Hello", "hello world")
        assert is_file_id(f.id)
        assert f.slug == "hello"
        assert f.history.current == "hello world"
        assert f.created == f.modified

        with pytest.raises(NotFoundError):
            await store.files.get(f.id, "public")

    @pytest.mark.asyncio
    async def test_save_defaults_to_public(self, store):
        """Files without a domain land in public."""
        saved = await store.files.save(store.files.new_file("s", "text"))
        assert saved.domain == "public"

        [fetched] = await store.files.get(saved.id, "public")
        assert fetched.domain == "public"
        assert fetched.data == "text"

    @pytest.mark.asyncio
    async def test_save_unknown_domain(self, store):
        """Saving into a missing domain raises NotFoundError."""
        f = store.files.new_file("s", "text", domain="ghost")
        with pytest.raises(NotFoundError) as exc_info:
            await store.files.save(f)
        assert exc_info.value.kind == "domain"

    @pytest.mark.asyncio
    async def test_save_merges_against_stored_history(self, store):
        """A stale caller copy can't drop stored versions."""
        await store.domains.create_domain("notes", "")
        f = store.files.new_file("doc", "v1", domain="notes")
        await store.files.save(f)

        f.data = "v2"
        await store.files.save(f)

        # f.history still only knows v1
        f.data = "v3"
        saved = await store.files.save(f)

        assert [saved.history.snapshot(i) for i in range(len(saved.history))] == ["v1", "v2", "v3"]
        [fetched] = await store.files.get(f.id, "notes")
        assert fetched.history.timestamps() == saved.history.timestamps()

    @pytest.mark.asyncio
    async def test_save_keeps_created_time(self, store):
        """Later saves refresh modified but not created."""
        f = store.files.new_file("doc", "one")
        first = await store.files.save(f)
        await asyncio.sleep(0.001)
        f.data = "two"
        second = await store.files.save(f)

        assert second.created == first.created
        assert second.modified > first.modified

    @pytest.mark.asyncio
    async def test_save_updates_slug(self, store):
        """The slug follows the latest save."""
        f = store.files.new_file("old-name", "text")
        await store.files.save(f)
        f.slug = "New-Name"
        await store.files.save(f)

        [fetched] = await store.files.get("new-name", "public")
        assert fetched.id == f.id
        with pytest.raises(NotFoundError):
            await store.files.get("old-name", "public")

    @pytest.mark.asyncio
    async def test_save_into_other_domain_rejected(self, store):
        """A file id stays with the domain of its first save."""
        await store.domains.create_domain("a", "")
        await store.domains.create_domain("b", "")
        f = store.files.new_file("doc", "text", domain="a")
        await store.files.save(f)

        f.domain = "b"
        f.data = "hijacked"
        with pytest.raises(ValidationError) as exc_info:
            await store.files.save(f)
        assert exc_info.value.field_name == "domain"

        [fetched] = await store.files.get(f.id, "a")
        assert fetched.domain == "a"
        assert fetched.data == "text"

    @pytest.mark.asyncio
    async def test_get_by_id_ignores_domain(self, store):
        """Ids are global; the domain argument doesn't scope them."""
        await store.domains.create_domain("notes", "")
        saved = await store.files.save(store.files.new_file("doc", "text", domain="notes"))

        [fetched] = await store.files.get(saved.id, "public")
        assert fetched.domain == "notes"

    @pytest.mark.asyncio
    async def test_get_by_slug_is_scoped(self, store):
        """Slugs are looked up within the domain only."""
        await store.domains.create_domain("notes", "")
        await store.files.save(store.files.new_file("doc", "text", domain="notes"))

        with pytest.raises(NotFoundError):
            await store.files.get("doc", "public")
        assert len(await store.files.get("DOC", "notes")) == 1

    @pytest.mark.asyncio
    async def test_id_shaped_slug(self, store):
        """An id-shaped slug that isn't an id falls back to slug lookup."""
        saved = await store.files.save(store.files.new_file("abcdefghij", "text"))
        assert saved.id != "abcdefghij"

        [fetched] = await store.files.get("abcdefghij", "public")
        assert fetched.id == saved.id

    @pytest.mark.asyncio
    async def test_get_tolerates_missing_index_row(self, store):
        """A file whose index row is missing is still readable."""
        saved = await store.files.save(store.files.new_file("doc", "still here"))
        async with store.db.locked() as conn:
            conn.execute("DELETE FROM fts WHERE id = ?", (saved.id,))

        [fetched] = await store.files.get(saved.id, "public")
        assert fetched.data == "still here"

    @pytest.mark.asyncio
    async def test_undecodable_history(self, store, caplog):
        """A corrupt history row stays readable and can't be saved over."""
        await store.domains.create_domain("notes", "")
        f = store.files.new_file("doc", "indexed text", domain="notes")
        await store.files.save(f)
        other = await store.files.save(store.files.new_file("other", "fine", domain="notes"))

        async with store.db.locked() as conn:
            conn.execute("UPDATE fs SET history = ? WHERE id = ?", ("{not json", f.id))

        [fetched] = await store.files.get(f.id, "notes")
        assert fetched.data == "indexed text"
        assert len(fetched.history) == 0
        assert "undecodable history" in caplog.text

        listed = await store.files.get_all("notes")
        assert {x.id for x in listed} == {f.id, other.id}
        assert [x.id for x in await store.files.find("indexed", "notes")] == [f.id]

        f.data = "overwrite"
        with pytest.raises(StorageFailure) as exc_info:
            await store.files.save(f)
        assert exc_info.value.step == "decode"

        async with store.db.locked() as conn:
            row = conn.execute("SELECT history FROM fs WHERE id = ?", (f.id,)).fetchone()
        assert row["history"] == "{not json"

    @pytest.mark.asyncio
    async def test_get_all_order(self, store):
        """get_all() sorts by modified by default, by created on request."""
        await store.domains.create_domain("notes", "")
        first = store.files.new_file("first", "1", domain="notes")
        await store.files.save(first)
        await asyncio.sleep(0.001)
        second = store.files.new_file("second", "2", domain="notes")
        await store.files.save(second)
        # Editing the first makes it the most recently modified
        first.data = "1 edited"
        await store.files.save(first)

        by_modified = await store.files.get_all("notes")
        assert [f.slug for f in by_modified] == ["first", "second"]

        by_created = await store.files.get_all("notes", order_by_created=True)
        assert [f.slug for f in by_created] == ["second", "first"]

    @pytest.mark.asyncio
    async def test_get_top_x(self, store):
        """get_top_x() limits the listing."""
        await store.domains.create_domain("notes", "")
        for i in range(5):
            await store.files.save(store.files.new_file(f"doc{i}", f"text {i}", domain="notes"))

        top = await store.files.get_top_x("notes", 3)
        assert [f.slug for f in top] == ["doc4", "doc3", "doc2"]

    @pytest.mark.asyncio
    async def test_get_top_x_most_viewed(self, store):
        """Most viewed files come first."""
        await store.domains.create_domain("notes", "")
        quiet = await store.files.save(store.files.new_file("quiet", "q", domain="notes"))
        popular = await store.files.save(store.files.new_file("popular", "p", domain="notes"))
        for _ in range(3):
            await store.files.update_views(popular)
        await store.files.update_views(quiet.id)

        top = await store.files.get_top_x_most_viewed("notes", 2)
        assert [(f.slug, f.views) for f in top] == [("popular", 3), ("quiet", 1)]

    @pytest.mark.asyncio
    async def test_listing_unknown_domain_is_empty(self, store):
        """Listing a domain that doesn't exist returns nothing."""
        assert await store.files.get_all("ghost") == []

    @pytest.mark.asyncio
    async def test_update_views_errors_are_logged(self, store, caplog):
        """View counter failures don't raise."""
        saved = await store.files.save(store.files.new_file("doc", "text"))
        await store.db.close()

        await store.files.update_views(saved)
        assert "Could not update views" in caplog.text

        # Reopen so the fixture can stop cleanly
        await store.db.initialize()

    @pytest.mark.asyncio
    async def test_exists(self, store):
        """exists() returns the canonical id and the many-matches flag."""
        await store.domains.create_domain("notes", "")
        a = await store.files.save(store.files.new_file("dup", "a", domain="notes"))

        assert await store.files.exists(a.id, "notes") == (a.id, False)
        assert await store.files.exists("dup", "notes") == (a.id, False)
        assert await store.files.exists("dup", "public") == ("", False)
        assert await store.files.exists(a.id, "public") == ("", False)
        assert await store.files.exists("missing", "notes") == ("", False)

        b = await store.files.save(store.files.new_file("dup", "b", domain="notes"))
        assert await store.files.exists("dup", "notes") == (b.id, True)

    @pytest.mark.asyncio
    async def test_index_failure_names_step(self, store):
        """A failing index write surfaces as StorageFailure(step="index")."""
        f = store.files.new_file("doc", "text")
        await store.files.save(f)

        async with store.db.locked() as conn:
            conn.execute("DROP TABLE fts")

        f.data = "new text"
        with pytest.raises(StorageFailure) as exc_info:
            await store.files.save(f)
        assert exc_info.value.step == "index"

        async with store.db.locked() as conn:
            conn.execute("CREATE VIRTUAL TABLE fts USING fts5(id UNINDEXED, data)")

        # The upsert step stayed committed
        [fetched] = await store.files.get(f.id, "public")
        assert fetched.history.current == "new text"
        assert fetched.data == "new text"
        assert (await store.search.check()).missing_from_index == {f.id}

        # Retrying converges
        saved = await store.files.save(f)
        assert saved.data == "new text"
        assert len(saved.history) == 2
        assert (await store.search.check()).consistent
        assert [r.id for r in await store.files.find("new", "public")] == [f.id]
