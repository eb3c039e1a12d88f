"""
Password hashing and random identifiers.

Domain passwords are human-chosen, so they are hashed with bcrypt (salted,
adaptive cost) and compared with bcrypt's constant-time check. Fast hashes
are only used for purpose-tagged lookup keys, never for passwords.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
import string

import bcrypt

DEFAULT_ROUNDS = 10

ID_ALPHABET = string.ascii_lowercase + string.digits
ID_LENGTH = 10


def _prehash(password: str) -> bytes:
    # bcrypt only accepts 72 bytes of input
    return base64.b64encode(hashlib.sha256(password.encode("utf-8")).digest())


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a bcrypt hash of ``password``.

    Any length is accepted: the password is reduced to a base64 SHA-256
    digest before bcrypt sees it. An empty password is allowed.
    """
    hashed = bcrypt.hashpw(_prehash(password), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("ascii")


def check_password(hashed: str | None, password: str) -> bool:
    """Check ``password`` against a stored bcrypt hash."""
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(_prehash(password), hashed.encode("ascii"))
    except ValueError:
        # Not a bcrypt hash (corrupt row)
        return False


def new_file_id() -> str:
    """Random fixed-length opaque id for a file."""
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(ID_LENGTH))


def is_file_id(value: str) -> bool:
    """Whether ``value`` has the shape of an opaque file id."""
    return len(value) == ID_LENGTH and all(c in ID_ALPHABET for c in value)


def new_access_token() -> str:
    """Random bearer token for an access key."""
    return secrets.token_urlsafe(32)


def tagged_hash(tag: str, data: str | bytes) -> str:
    """HMAC-SHA-512/256 of ``data`` keyed by a purpose ``tag``.

    The tag is a natural-language description of the purpose so different
    uses produce different outputs. NOT suitable for passwords.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hmac.new(tag.encode("utf-8"), data, "sha512_256").hexdigest()
