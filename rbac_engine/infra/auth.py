from __future__ import annotations

import hashlib
import hmac
import os
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

SESSION_SECRET = os.getenv("SESSION_SECRET", "dev-secret-change-me")
SESSION_ALGORITHM = os.getenv("SESSION_ALGORITHM", "HS256")
SESSION_TTL_MIN = int(os.getenv("SESSION_TTL_MIN", "1440"))
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")
SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "0") == "1"

PASSWORD_HASH_ALGORITHM = "pbkdf2_sha256"
PASSWORD_HASH_ITERATIONS = int(os.getenv("PASSWORD_HASH_ITERATIONS", "260000"))


@dataclass(frozen=True)
class SessionRecord:
    user_id: str
    organization_id: str | None
    expires_at: datetime


def create_session_token(
    *,
    user_id: str,
    organization_id: str | None = None,
    expires_at: datetime | None = None,
) -> str:
    now = datetime.now(UTC)
    expire = expires_at or now + timedelta(minutes=SESSION_TTL_MIN)
    payload: dict[str, Any] = {
        "sub": user_id,
        "org_id": organization_id,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(payload, SESSION_SECRET, algorithm=SESSION_ALGORITHM)


def decode_session_token(token: str) -> SessionRecord:
    decoded = jwt.decode(
        token,
        SESSION_SECRET,
        algorithms=[SESSION_ALGORITHM],
        options={"require": ["sub", "exp"]},
    )
    if not isinstance(decoded, dict):
        raise ValueError("Invalid token payload")
    user_id = decoded.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise ValueError("Invalid token subject")
    organization_id = decoded.get("org_id")
    if organization_id is not None and not isinstance(organization_id, str):
        raise ValueError("Invalid token organization")
    return SessionRecord(
        user_id=user_id,
        organization_id=organization_id or None,
        expires_at=datetime.fromtimestamp(int(decoded["exp"]), UTC),
    )


def hash_password(raw_password: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256",
        raw_password.encode(),
        salt.encode(),
        PASSWORD_HASH_ITERATIONS,
    ).hex()
    return f"{PASSWORD_HASH_ALGORITHM}${PASSWORD_HASH_ITERATIONS}${salt}${digest}"


def verify_password(raw_password: str, password_hash: str) -> bool:
    try:
        algorithm, iterations, salt, expected = password_hash.split("$", 3)
    except ValueError:
        return False
    if algorithm != PASSWORD_HASH_ALGORITHM:
        return False
    digest = hashlib.pbkdf2_hmac(
        "sha256",
        raw_password.encode(),
        salt.encode(),
        int(iterations),
    ).hex()
    return hmac.compare_digest(digest, expected)
