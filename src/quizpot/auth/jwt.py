"""
RS256 access tokens for players and admins.

Tokens are minted after the Telegram WebApp login and carry the user id,
the public handle and the admin flag. Request handlers only ever see the
decoded ``AccessClaims``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any

import jwt

from quizpot.config import get_settings

TOKEN_TYPE = "access"


@dataclass(frozen=True)
class AccessClaims:
    user_id: int
    username: str
    is_admin: bool = False


@lru_cache(maxsize=1)
def _signing_keys() -> tuple[str, str]:
    """(private, public) PEM contents, read once per process."""
    settings = get_settings()
    return (
        Path(settings.jwt_private_key_path).read_text(),
        Path(settings.jwt_public_key_path).read_text(),
    )


def reset_keys() -> None:
    """Forget cached keys after the key paths change."""
    _signing_keys.cache_clear()


def create_access_token(user_id: int, username: str, is_admin: bool = False) -> str:
    """
    Sign an access token for ``user_id``.

    Lifetime and issuer come from settings (``QP_JWT_*``).
    """
    private_key, _ = _signing_keys()
    settings = get_settings()
    issued = datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        "sub": str(user_id),
        "username": username,
        "admin": is_admin,
        "type": TOKEN_TYPE,
        "iss": settings.jwt_issuer,
        "iat": issued,
        "exp": issued + timedelta(minutes=settings.jwt_access_token_expire_minutes),
    }
    return jwt.encode(claims, private_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> AccessClaims:
    """
    Verify signature, issuer, expiry and token type.

    Raises:
        jwt.InvalidTokenError: For any token that is not a valid access token,
            including a malformed subject.
    """
    _, public_key = _signing_keys()
    settings = get_settings()
    try:
        raw: dict[str, Any] = jwt.decode(
            token,
            public_key,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
            options={"require": ["sub", "exp", "iss"]},
        )
    except jwt.ExpiredSignatureError:
        raise jwt.InvalidTokenError("Token has expired") from None

    if raw.get("type") != TOKEN_TYPE:
        raise jwt.InvalidTokenError(f"Expected an {TOKEN_TYPE} token, got '{raw.get('type')}'")
    try:
        user_id = int(raw["sub"])
    except (TypeError, ValueError):
        raise jwt.InvalidTokenError("Malformed subject") from None

    return AccessClaims(
        user_id=user_id,
        username=str(raw.get("username", "")),
        is_admin=bool(raw.get("admin", False)),
    )
