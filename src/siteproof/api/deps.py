"""FastAPI dependency injection helpers."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator

from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from siteproof.db.session import get_session
from siteproof.errors import AppError
from siteproof.models.db import User
from siteproof.security import decode_access_token, issued_before

# Bearer token security
bearer_scheme = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async for session in get_session():
        yield session


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
    session: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the bearer token to a user.

    Tokens issued before the user's last logout-all are rejected.
    """
    if credentials is None or not credentials.credentials:
        raise AppError.unauthorized()

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise AppError.unauthorized("Invalid or expired token")

    try:
        user_id = uuid.UUID(str(payload["sub"]))
    except ValueError:
        raise AppError.unauthorized("Invalid or expired token")

    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise AppError.unauthorized("User not found")
    if issued_before(payload, user.token_invalidated_at):
        raise AppError.unauthorized("Token has been revoked")
    return user
