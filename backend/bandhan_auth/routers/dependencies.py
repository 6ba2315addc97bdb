"""
Authentication Dependencies
JWT validation, user extraction and per-request service wiring
"""
from typing import Optional
from uuid import UUID
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bandhan_auth.database import get_db
from bandhan_auth.errors import AgeNotVerified, Unauthorized
from bandhan_auth.models.user import User
from bandhan_auth.services.audit_service import AuditTrail, RequestContext
from bandhan_auth.utils.clock import Clock
from bandhan_auth.utils.security import decode_token


# Security scheme; missing credentials are reported as our own 401
security = HTTPBearer(auto_error=False)


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def get_audit(
    request: Request,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock)
) -> AuditTrail:
    """Audit trail bound to this request's session and caller"""
    return AuditTrail(db, RequestContext.from_request(request), clock)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    Dependency to get current authenticated user from an access token
    """
    if credentials is None:
        raise Unauthorized()

    payload = decode_token(credentials.credentials)
    if not payload or payload.get("type") != "access":
        raise Unauthorized()

    try:
        user_id = UUID(payload.get("sub"))
    except (TypeError, ValueError):
        raise Unauthorized()

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise Unauthorized()

    return user


async def require_age_verified(user: User = Depends(get_current_user)) -> User:
    """
    Age gate for protected routes. Reads the latch only; age is never
    recomputed here.
    """
    if not user.is_age_verified:
        raise AgeNotVerified()
    return user
