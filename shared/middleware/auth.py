"""
shared/middleware/auth.py
Bearer-token authentication and role gates for route handlers.
Handlers receive a loaded, active User; failures surface as
UnauthorizedError (401) or ForbiddenError (403).
"""

import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.models.models import User, UserRole
from shared.utils.errors import ForbiddenError, UnauthorizedError
from shared.utils.security import verify_access_token

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class TokenClaims:
    user_id: uuid.UUID
    role: UserRole
    jti: str

    @classmethod
    def from_token(cls, token: str) -> "TokenClaims":
        try:
            payload = verify_access_token(token)
            return cls(
                user_id=uuid.UUID(payload["sub"]),
                role=UserRole(payload["role"]),
                jti=payload["jti"],
            )
        except (JWTError, KeyError, ValueError):
            raise UnauthorizedError("Invalid or expired token")


async def get_token_claims(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    redis=Depends(get_redis),
) -> TokenClaims:
    if credentials is None:
        raise UnauthorizedError("Authentication required")
    claims = TokenClaims.from_token(credentials.credentials)
    if await RedisCache(redis).is_token_revoked(claims.jti):
        raise UnauthorizedError("Token has been revoked")
    return claims


async def get_current_user(
    claims: TokenClaims = Depends(get_token_claims),
    db: AsyncSession = Depends(get_db),
) -> User:
    user = await db.scalar(select(User).where(User.id == claims.user_id))
    if user is None:
        raise UnauthorizedError("User not found")
    if not user.is_active:
        raise ForbiddenError("User account is inactive")
    return user


class RoleRequired:
    """`Depends(RoleRequired(UserRole.ADMIN))` admits only the listed roles."""

    def __init__(self, *roles: UserRole):
        self.roles = roles

    async def __call__(self, current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in self.roles:
            allowed = ", ".join(r.value for r in self.roles)
            raise ForbiddenError(f"This action requires role: {allowed}")
        return current_user


require_staff = RoleRequired(UserRole.STAFF)
require_admin = RoleRequired(UserRole.ADMIN)
