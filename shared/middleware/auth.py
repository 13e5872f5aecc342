"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.
JWT is validated here; revoked tokens are rejected via the Redis deny-list.
"""

import uuid
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.models.models import User, UserRole
from shared.utils.errors import Forbidden, Unauthenticated
from shared.utils.security import verify_access_token

security = HTTPBearer(auto_error=False)


class TokenData:
    def __init__(self, payload: dict):
        self.user_id: str = payload["sub"]
        self.role: UserRole = UserRole(payload["role"])
        self.email: str = payload["email"]
        self.jti: str = payload["jti"]
        self.payload = payload


async def decode_token(token: str, redis) -> TokenData:
    """Verify signature/expiry and the deny-list. Shared by HTTP and WebSocket auth."""
    try:
        payload = verify_access_token(token)
    except JWTError:
        raise Unauthenticated("Invalid or expired token")

    # Check if token has been revoked (logged out)
    jti = payload.get("jti")
    if jti and await RedisCache(redis).is_token_revoked(jti):
        raise Unauthenticated("Token has been revoked")

    return TokenData(payload)


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    """Extract and validate JWT from Authorization header."""
    if not credentials:
        raise Unauthenticated("Authentication required")
    return await decode_token(credentials.credentials, redis)


async def get_current_user(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Load full User object from database using JWT sub claim."""
    result = await db.execute(select(User).where(User.id == _as_uuid(token_data.user_id)))
    user = result.scalar_one_or_none()

    if not user:
        raise Unauthenticated("User not found")
    if not user.is_active:
        raise Forbidden("User account is inactive")
    return user


class RoleRequired:
    """Dependency factory for role-based access control."""

    def __init__(self, *roles: UserRole):
        self.roles = roles

    async def __call__(
        self,
        current_user: User = Depends(get_current_user),
    ) -> User:
        if current_user.role not in self.roles:
            raise Forbidden(f"Required role: {[r.value for r in self.roles]}")
        return current_user


# Convenience role dependencies
require_provider = RoleRequired(UserRole.PROVIDER, UserRole.ADMIN)
require_admin = RoleRequired(UserRole.ADMIN)


def _as_uuid(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise Unauthenticated("Invalid token subject")
