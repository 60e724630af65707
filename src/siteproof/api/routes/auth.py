"""Registration, login and token revocation."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from siteproof.api.deps import get_current_user, get_db
from siteproof.errors import AppError
from siteproof.models.db import Company, User, utcnow
from siteproof.models.schemas import AuthResponse, LoginRequest, RegisterRequest, UserResponse
from siteproof.security import create_access_token, hash_password, needs_rehash, verify_password

logger = logging.getLogger(__name__)

router = APIRouter()


def _auth_response(user: User) -> AuthResponse:
    token = create_access_token(str(user.id), user.email, user.role_in_company)
    return AuthResponse(user=UserResponse.model_validate(user), token=token)


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
async def register(data: RegisterRequest, session: AsyncSession = Depends(get_db)):
    """Create an account; a company name makes the user its owner."""
    email = data.email.lower()
    result = await session.execute(select(User).where(func.lower(User.email) == email))
    if result.scalar_one_or_none():
        raise AppError.bad_request("Email already registered")

    user = User(
        email=email,
        password_hash=hash_password(data.password),
        full_name=data.full_name,
        role_in_company="member",
    )
    if data.company_name:
        company = Company(name=data.company_name)
        session.add(company)
        await session.flush()
        user.company_id = company.id
        user.role_in_company = "owner"

    session.add(user)
    await session.flush()
    await session.refresh(user)
    logger.info("Registered user %s", user.email)
    return _auth_response(user)


@router.post("/auth/login", response_model=AuthResponse)
async def login(data: LoginRequest, session: AsyncSession = Depends(get_db)):
    result = await session.execute(select(User).where(func.lower(User.email) == data.email.lower()))
    user = result.scalar_one_or_none()
    if user is None or not verify_password(data.password, user.password_hash):
        raise AppError.unauthorized("Invalid email or password")

    if needs_rehash(user.password_hash):
        user.password_hash = hash_password(data.password)
        await session.flush()
        logger.info("Upgraded legacy password hash for %s", user.email)

    return _auth_response(user)


@router.get("/auth/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user)):
    return user


@router.post("/auth/logout")
async def logout(user: User = Depends(get_current_user)):
    """Tokens are stateless; the client discards its token."""
    return {"message": "Logged out"}


@router.post("/auth/logout-all")
async def logout_all(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
):
    """Revoke every token issued to the user so far."""
    user.token_invalidated_at = utcnow()
    await session.flush()
    logger.info("Invalidated all tokens for %s", user.email)
    return {"message": "Logged out from all devices"}
