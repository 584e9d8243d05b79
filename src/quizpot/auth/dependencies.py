"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from quizpot.auth.jwt import decode_access_token
from quizpot.dependencies import get_db
from quizpot.db.models import User
from quizpot.users.service import get_user_by_id

_bearer = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Resolve the bearer token to a stored, unblocked user.

    Raises 401 on a bad token or unknown user and 403 for blocked accounts.
    """
    try:
        claims = decode_access_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    user = await get_user_by_id(db, claims.user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    if user.is_blocked:
        raise HTTPException(status_code=403, detail="Account is blocked")
    return user


async def get_current_admin(user: User = Depends(get_current_user)) -> User:
    # The stored flag wins over the token claim, so revoking admin is immediate.
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
