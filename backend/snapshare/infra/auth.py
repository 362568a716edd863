from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Literal

import bcrypt
import jwt
from argon2 import PasswordHasher as Argon2Hasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError

ARGON2_PREFIX = "argon2id$"
BCRYPT_PREFIX = "bcrypt$"
TOKEN_ALGORITHM = "HS256"


@dataclass
class PasswordHasher:
    """Hashes organizer passwords with argon2id (default) or bcrypt.

    Stored hashes carry a scheme prefix so either scheme can be verified
    regardless of the currently configured default. ``verify`` returns a
    replacement hash when the stored one uses outdated parameters.
    """

    default_scheme: Literal["argon2id", "bcrypt"] = "argon2id"
    argon2_time_cost: int = 3
    argon2_memory_cost: int = 65536
    argon2_parallelism: int = 2
    bcrypt_cost: int = 12

    def __post_init__(self) -> None:
        self._argon2 = Argon2Hasher(
            time_cost=self.argon2_time_cost,
            memory_cost=self.argon2_memory_cost,
            parallelism=self.argon2_parallelism,
            hash_len=32,
            salt_len=16,
        )

    def hash(self, password: str) -> str:
        if self.default_scheme == "bcrypt":
            salt = bcrypt.gensalt(rounds=self.bcrypt_cost)
            digest = bcrypt.hashpw(password.encode(), salt).decode().lstrip("$")
            return f"{BCRYPT_PREFIX}{digest}"
        return f"{ARGON2_PREFIX}{self._argon2.hash(password).lstrip('$')}"

    def verify(self, password: str, stored_hash: str) -> tuple[bool, str | None]:
        if not stored_hash:
            return False, None
        if stored_hash.startswith(ARGON2_PREFIX):
            encoded = "$" + stored_hash.removeprefix(ARGON2_PREFIX).lstrip("$")
            try:
                self._argon2.verify(encoded, password)
            except (VerifyMismatchError, InvalidHashError):
                return False, None
            if self.default_scheme != "argon2id" or self._argon2.check_needs_rehash(encoded):
                return True, self.hash(password)
            return True, None
        if stored_hash.startswith(BCRYPT_PREFIX):
            encoded = "$" + stored_hash.removeprefix(BCRYPT_PREFIX).lstrip("$")
            try:
                valid = bcrypt.checkpw(password.encode(), encoded.encode())
            except ValueError:
                return False, None
            if not valid:
                return False, None
            current_rounds = encoded.split("$")[2]
            if self.default_scheme != "bcrypt" or current_rounds != f"{self.bcrypt_cost:02d}":
                return True, self.hash(password)
            return True, None
        return False, None


def password_hasher_from_settings(settings) -> PasswordHasher:
    return PasswordHasher(
        default_scheme=settings.password_hash_scheme,
        argon2_time_cost=settings.password_hash_argon2_time_cost,
        argon2_memory_cost=settings.password_hash_argon2_memory_cost,
        argon2_parallelism=settings.password_hash_argon2_parallelism,
        bcrypt_cost=settings.password_hash_bcrypt_cost,
    )


def create_session_token(
    organizer_id: uuid.UUID,
    session_id: uuid.UUID,
    *,
    ttl_minutes: int,
    settings,
) -> str:
    now = datetime.now(tz=timezone.utc)
    payload: Dict[str, Any] = {
        "sub": str(organizer_id),
        "sid": str(session_id),
        "iat": now,
        "exp": now + timedelta(minutes=ttl_minutes),
    }
    return jwt.encode(payload, settings.auth_secret_key.get_secret_value(), algorithm=TOKEN_ALGORITHM)


def decode_session_token(token: str, secret: str) -> dict[str, Any]:
    return jwt.decode(token, secret, algorithms=[TOKEN_ALGORITHM])
