"""Password hashing, access tokens and opaque identifiers."""

from .passwords import (
    check_password,
    hash_password,
    is_file_id,
    new_access_token,
    new_file_id,
    tagged_hash,
)

__all__ = [
    "check_password",
    "hash_password",
    "is_file_id",
    "new_access_token",
    "new_file_id",
    "tagged_hash",
]
