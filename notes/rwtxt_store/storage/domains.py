"""
Domain directory: tenant namespaces and their passwords.

Invariants:
    - Domain names are stored stripped and lower-cased, and are unique
    - The password hash never leaves this module
    - An empty password means "no password required" and is still hashed
    - Domains are never deleted

How to change safely:
    - New per-domain settings go into DomainOptions, not new columns
    - Keep the lock-held helpers free of locking so other components can
      compose them inside one ``locked()`` block
"""

from __future__ import annotations

import logging
import sqlite3

from ..errors import AlreadyExistsError, InvalidCredentialsError, NotFoundError, ValidationError
from ..security import check_password, hash_password
from .database import Database, transaction, translate_errors
from .models import Domain, DomainOptions

logger = logging.getLogger(__name__)


def normalize_domain_name(name: str | None) -> str:
    """Strip and lower-case a domain name.

    Raises:
        ValidationError: If the name is empty
    """
    normalized = (name or "").strip().lower()
    if not normalized:
        raise ValidationError("Domain name must not be empty", field_name="name")
    return normalized


def domain_row(conn: sqlite3.Connection, name: str) -> sqlite3.Row | None:
    """Fetch a domain row by normalized name. Caller holds the lock."""
    return conn.execute(
        "SELECT id, name, hashed_pass, ispublic, options FROM domains WHERE name = ?",
        (name,),
    ).fetchone()


def domain_id(conn: sqlite3.Connection, name: str) -> int:
    """Resolve a normalized domain name to its id. Caller holds the lock.

    Raises:
        NotFoundError: If the domain doesn't exist
    """
    row = conn.execute("SELECT id FROM domains WHERE name = ?", (name,)).fetchone()
    if row is None:
        raise NotFoundError("domain", name)
    return row["id"]


def row_to_domain(row: sqlite3.Row) -> Domain:
    return Domain(
        id=row["id"],
        name=row["name"],
        is_public=bool(row["ispublic"]),
        options=DomainOptions.from_json(row["options"]),
    )


class DomainDirectory:
    """Create, look up, update and authenticate domains.

    Every public method holds the store-wide lock for its whole duration.
    bcrypt work happens outside the lock.
    """

    def __init__(self, db: Database, bcrypt_rounds: int = 10) -> None:
        self.db = db
        self.bcrypt_rounds = bcrypt_rounds

    async def create_domain(self, name: str, password: str = "") -> Domain:
        """Create a private domain with empty options.

        Args:
            name: Domain name (case-insensitive)
            password: Password, "" for none

        Returns:
            The new Domain

        Raises:
            ValidationError: If the name is empty
            AlreadyExistsError: If the name is taken
            StorageFailure: On database errors
        """
        name = normalize_domain_name(name)
        hashed = hash_password(password, rounds=self.bcrypt_rounds)
        options = DomainOptions()

        async with self.db.locked() as conn:
            with translate_errors("create_domain"):
                if domain_row(conn, name) is not None:
                    raise AlreadyExistsError(name)
            with transaction(conn, "create_domain"):
                cursor = conn.execute(
                    "INSERT INTO domains (name, hashed_pass, ispublic, options) VALUES (?, ?, 0, ?)",
                    (name, hashed, options.to_json()),
                )
                new_id = cursor.lastrowid

        logger.info("Created domain", extra={"domain": name, "domain_id": new_id})
        return Domain(id=new_id, name=name, is_public=False, options=options)

    async def lookup_domain(self, name: str) -> Domain:
        """Fetch a domain's id, visibility and options.

        Raises:
            NotFoundError: If the domain doesn't exist
        """
        name = normalize_domain_name(name)
        async with self.db.locked() as conn:
            with translate_errors("lookup_domain"):
                row = domain_row(conn, name)
        if row is None:
            raise NotFoundError("domain", name)
        return row_to_domain(row)

    async def update_domain(
        self,
        name: str,
        password: str,
        is_public: bool,
        options: DomainOptions,
    ) -> Domain:
        """Update visibility and options, and the password when one is given.

        Args:
            name: Domain name
            password: New password, or "" to leave it unchanged
            is_public: New visibility
            options: New options (replaces the stored ones)

        Returns:
            The updated Domain

        Raises:
            NotFoundError: If the domain doesn't exist
        """
        name = normalize_domain_name(name)
        hashed = hash_password(password, rounds=self.bcrypt_rounds) if password else None

        async with self.db.locked() as conn:
            with translate_errors("update_domain"):
                row = domain_row(conn, name)
            if row is None:
                raise NotFoundError("domain", name)
            with transaction(conn, "update_domain"):
                if hashed is None:
                    conn.execute(
                        "UPDATE domains SET ispublic = ?, options = ? WHERE id = ?",
                        (int(is_public), options.to_json(), row["id"]),
                    )
                else:
                    conn.execute(
                        "UPDATE domains SET hashed_pass = ?, ispublic = ?, options = ? WHERE id = ?",
                        (hashed, int(is_public), options.to_json(), row["id"]),
                    )

        logger.info(
            "Updated domain",
            extra={"domain": name, "is_public": is_public, "password_changed": hashed is not None},
        )
        return Domain(id=row["id"], name=name, is_public=is_public, options=options)

    async def authenticate_domain(self, name: str, password: str) -> Domain:
        """Check a domain password.

        Returns:
            The Domain on success

        Raises:
            NotFoundError: If the domain doesn't exist
            InvalidCredentialsError: If the password doesn't match
        """
        name = normalize_domain_name(name)
        async with self.db.locked() as conn:
            with translate_errors("authenticate_domain"):
                row = domain_row(conn, name)
        if row is None:
            raise NotFoundError("domain", name)

        if not check_password(row["hashed_pass"], password):
            logger.info("Rejected domain password", extra={"domain": name})
            raise InvalidCredentialsError(name)
        return row_to_domain(row)

    async def list_domains(self) -> list[str]:
        """All domain names, sorted."""
        async with self.db.locked() as conn:
            with translate_errors("list_domains"):
                rows = conn.execute("SELECT name FROM domains ORDER BY name").fetchall()
        return [row["name"] for row in rows]
