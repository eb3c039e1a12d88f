"""
Error types for the rwtxt store.

This module defines every exception raised by the storage core:
- RwtxtError: Base exception
- NotFoundError: Domain, file, key, blob or image absent
- AlreadyExistsError: Domain name collision
- InvalidCredentialsError: Password does not match the stored hash
- ValidationError: Caller supplied an unusable value
- StorageFailure: SQLite I/O or schema error

Invariants:
    - All errors inherit from RwtxtError
    - Ordinary not-found conditions never escape as anything but NotFoundError
    - StorageFailure always names the step that failed so callers can retry
"""

from __future__ import annotations

from typing import Any


class RwtxtError(Exception):
    """Base exception for all store errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "RWTXT_ERROR"
        self.details = details or {}


class NotFoundError(RwtxtError):
    """A requested record does not exist.

    Attributes:
        kind: What was looked up (domain, file, key, blob, image)
        identifier: The name, id, slug or token that missed
    """

    def __init__(self, kind: str, identifier: str, message: str | None = None) -> None:
        super().__init__(
            message or f"{kind} '{identifier}' does not exist",
            code="NOT_FOUND",
            details={"kind": kind, "identifier": identifier},
        )
        self.kind = kind
        self.identifier = identifier


class AlreadyExistsError(RwtxtError):
    """A domain with the same name already exists."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"domain '{name}' already exists",
            code="ALREADY_EXISTS",
            details={"name": name},
        )
        self.name = name


class InvalidCredentialsError(RwtxtError):
    """Password does not match the domain's stored hash."""

    def __init__(self, domain: str) -> None:
        super().__init__(
            f"incorrect password to log into domain '{domain}'",
            code="INVALID_CREDENTIALS",
            details={"domain": domain},
        )
        self.domain = domain


class ValidationError(RwtxtError):
    """Caller input failed validation.

    Raised when:
    - Domain name is empty
    - A save targets a file id owned by another domain
    """

    def __init__(self, message: str, field_name: str | None = None) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name},
        )
        self.field_name = field_name


class StorageFailure(RwtxtError):
    """The embedded database failed.

    Attributes:
        step: Name of the operation step that failed (e.g. "upsert", "index")
    """

    def __init__(self, message: str, step: str | None = None) -> None:
        super().__init__(
            message,
            code="STORAGE_FAILURE",
            details={"step": step},
        )
        self.step = step
