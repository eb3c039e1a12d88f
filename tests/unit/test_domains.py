"""
Unit tests for the domain directory.

Tests cover:
- Creating domains and name collisions
- Lookup and case-insensitivity
- Updating visibility, options and passwords
- Authentication
"""

import pytest

from notes.rwtxt_store.errors import (
    AlreadyExistsError,
    InvalidCredentialsError,
    NotFoundError,
    ValidationError,
)
from notes.rwtxt_store.storage import DomainOptions


class TestDomainDirectory:
    """Tests for DomainDirectory."""

    @pytest.mark.asyncio
    async def test_create_domain(self, store):
        """A new domain is private with default options."""
        domain = await store.domains.create_domain("Notes", "secret")
        assert domain.name == "notes"
        assert domain.is_public is False
        assert domain.options == DomainOptions()

        fetched = await store.domains.lookup_domain("notes")
        assert fetched.id == domain.id

    @pytest.mark.asyncio
    async def test_create_duplicate(self, store):
        """Names are unique regardless of case."""
        await store.domains.create_domain("notes", "a")
        with pytest.raises(AlreadyExistsError):
            await store.domains.create_domain("  NOTES ", "b")

    @pytest.mark.asyncio
    async def test_public_already_exists(self, store):
        """The bootstrapped public domain can't be re-created."""
        with pytest.raises(AlreadyExistsError):
            await store.domains.create_domain("public", "")

    @pytest.mark.asyncio
    async def test_create_empty_name(self, store):
        """Empty names are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            await store.domains.create_domain("   ", "pw")
        assert exc_info.value.field_name == "name"

    @pytest.mark.asyncio
    async def test_lookup_missing(self, store):
        """Unknown domains raise NotFoundError."""
        with pytest.raises(NotFoundError) as exc_info:
            await store.domains.lookup_domain("nowhere")
        assert exc_info.value.kind == "domain"

    @pytest.mark.asyncio
    async def test_lookup_public(self, store):
        """The public domain is public."""
        public = await store.domains.lookup_domain("PUBLIC")
        assert public.is_public is True

    @pytest.mark.asyncio
    async def test_update_without_password_keeps_it(self, store):
        """An empty password updates only visibility and options."""
        await store.domains.create_domain("notes", "secret")
        options = DomainOptions(most_recent=7, custom_title="My notes")

        updated = await store.domains.update_domain("notes", "", True, options)
        assert updated.is_public is True

        fetched = await store.domains.lookup_domain("notes")
        assert fetched.is_public is True
        assert fetched.options.most_recent == 7
        assert fetched.options.custom_title == "My notes"

        await store.domains.authenticate_domain("notes", "secret")

    @pytest.mark.asyncio
    async def test_update_with_password(self, store):
        """A non-empty password replaces the old one."""
        await store.domains.create_domain("notes", "old")
        await store.domains.update_domain("notes", "new", False, DomainOptions())

        await store.domains.authenticate_domain("notes", "new")
        with pytest.raises(InvalidCredentialsError):
            await store.domains.authenticate_domain("notes", "old")

    @pytest.mark.asyncio
    async def test_update_missing(self, store):
        """Updating an unknown domain raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await store.domains.update_domain("ghost", "", True, DomainOptions())

    @pytest.mark.asyncio
    async def test_authenticate(self, store):
        """Only the right password authenticates."""
        created = await store.domains.create_domain("notes", "secret")

        domain = await store.domains.authenticate_domain("Notes", "secret")
        assert domain.id == created.id

        for wrong in ("", "Secret", "secret ", "secret2"):
            with pytest.raises(InvalidCredentialsError):
                await store.domains.authenticate_domain("notes", wrong)

    @pytest.mark.asyncio
    async def test_authenticate_missing(self, store):
        """Authenticating against an unknown domain raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await store.domains.authenticate_domain("ghost", "pw")

    @pytest.mark.asyncio
    async def test_empty_password_domain(self, store):
        """A domain created without a password accepts only the empty one."""
        await store.domains.create_domain("open", "")
        await store.domains.authenticate_domain("open", "")
        with pytest.raises(InvalidCredentialsError):
            await store.domains.authenticate_domain("open", "guess")

    @pytest.mark.asyncio
    async def test_list_domains(self, store):
        """list_domains() returns every name, sorted."""
        await store.domains.create_domain("zeta", "")
        await store.domains.create_domain("alpha", "")
        assert await store.domains.list_domains() == ["alpha", "public", "zeta"]
