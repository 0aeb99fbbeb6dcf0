"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from obelisk.auth.jwt import verify_token
from obelisk.auth.service import get_user_by_id
from obelisk.database import get_session
from obelisk.db.models import User

_bearer = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> User:
    """
    Extract and verify JWT, return User model.

    Raises 401/403 on failure.
    """
    try:
        payload = verify_token(credentials.credentials, expected_type="access")
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    user = await get_user_by_id(db, int(payload["sub"]))
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    if user.is_banned:
        raise HTTPException(status_code=403, detail="Account is banned")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Same as get_current_user but rejects non-admin callers with 403."""
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Forbidden: Admin only")
    return user
