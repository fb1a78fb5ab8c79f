"""
auth/passwords.py -- One-way password hashing (bcrypt, direct usage).

Using bcrypt directly rather than passlib[bcrypt]: passlib's wrap-bug
detection feeds bcrypt 4.x a password longer than 72 bytes, which it rejects.

verify_password() raises instead of returning a bool so callers can tell a
wrong password (PasswordMismatch) from a corrupt stored hash (MalformedHash).
Neither the plaintext nor the hash is ever logged.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from functools import lru_cache

import bcrypt

from auth.errors import MalformedHash, PasswordMismatch

DEFAULT_ROUNDS = 12

# bcrypt ignores input past this many bytes; recent releases reject it instead.
_MAX_PASSWORD_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_MAX_PASSWORD_BYTES]


def hash_password(plain: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Only the first 72 bytes of the UTF-8 encoding take part, as with every
    bcrypt implementation.
    """
    return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> None:
    """Check plain against hashed in constant time.

    Raises PasswordMismatch on a wrong password, MalformedHash when hashed is
    not a parseable bcrypt hash.
    """
    try:
        ok = bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except ValueError as exc:
        raise MalformedHash("stored password hash is not a valid bcrypt hash") from exc
    if not ok:
        raise PasswordMismatch("password does not match")


@lru_cache(maxsize=None)
def dummy_hash(rounds: int = DEFAULT_ROUNDS) -> str:
    """Hash used for timing equalization, built once per cost factor.

    Login runs one verification against it when the username does not exist,
    so it must use the same cost factor as real account hashes.
    """
    return hash_password("pimpmypack_timing_dummy", rounds)


def equalize_timing(plain: str, rounds: int = DEFAULT_ROUNDS) -> None:
    """Burn one bcrypt verification at the given cost without a real hash to compare against."""
    try:
        verify_password(plain, dummy_hash(rounds))
    except PasswordMismatch:
        pass
