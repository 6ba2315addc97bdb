"""
Session / Token Issuer
Access tokens embed the verification level at mint time; refresh always
re-reads it from storage.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bandhan_auth.config import settings
from bandhan_auth.errors import RefreshTokenInvalid
from bandhan_auth.models.session import UserSession
from bandhan_auth.models.user import User
from bandhan_auth.services.audit_service import AuditTrail, RequestContext
from bandhan_auth.utils.clock import Clock, utcnow
from bandhan_auth.utils.security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_token,
    verify_token_hash,
)


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60


def access_claims(user: User) -> dict:
    return {
        "sub": str(user.id),
        "verificationLevel": user.verification_level,
    }


def mint_access_token(user: User) -> str:
    """Access token carrying the user's current tier"""
    return create_access_token(access_claims(user))


class TokenIssuer:
    """Mints, refreshes and revokes tokens against the sessions table"""

    def __init__(self, db: AsyncSession, audit: AuditTrail, clock: Clock = utcnow):
        self.db = db
        self.audit = audit
        self.clock = clock

    async def mint(self, user: User, context: Optional[RequestContext] = None) -> TokenPair:
        """
        Issue an access/refresh pair and store the refresh hash in a new session.
        The caller commits.
        """
        session = UserSession(
            user_id=user.id,
            refresh_token_hash="",
            device_info=context.user_agent if context else None,
            ip_address=context.ip_address if context else None,
            expires_at=self.clock() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
            is_revoked=False,
        )
        self.db.add(session)
        await self.db.flush()

        refresh_token = create_refresh_token({"sub": str(user.id), "sid": str(session.id)})
        refresh_hash = hash_token(refresh_token)
        session.refresh_token_hash = refresh_hash
        user.refresh_token = refresh_hash

        return TokenPair(access_token=mint_access_token(user), refresh_token=refresh_token)

    async def _reject(self, reason: str, user_id: Optional[UUID] = None):
        self.audit.record(
            event_type="REFRESH_TOKEN_REJECTED",
            action="REFRESH",
            entity_type="SESSION",
            user_id=user_id,
            metadata={"reason": reason},
        )
        await self.db.commit()
        logger.warning(f"Refresh token rejected: {reason}")
        raise RefreshTokenInvalid()

    async def refresh(self, refresh_token: Optional[str]) -> str:
        """Validate a refresh token and return a new access token with the latest tier"""
        if not refresh_token:
            await self._reject("missing_token")

        payload = decode_token(refresh_token)
        if not payload or payload.get("type") != "refresh":
            await self._reject("malformed_or_expired")

        try:
            user_id = UUID(payload.get("sub"))
            session_id = UUID(payload.get("sid"))
        except (TypeError, ValueError):
            await self._reject("malformed_claims")

        session = (await self.db.execute(
            select(UserSession).where(UserSession.id == session_id, UserSession.user_id == user_id)
        )).scalar_one_or_none()
        if session is None:
            await self._reject("unknown_session", user_id)
        if session.is_revoked:
            await self._reject("session_revoked", user_id)
        if session.expires_at <= self.clock():
            await self._reject("session_expired", user_id)
        if not verify_token_hash(refresh_token, session.refresh_token_hash):
            await self._reject("hash_mismatch", user_id)

        user = (await self.db.execute(
            select(User).where(User.id == user_id).execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if user is None or not user.is_active:
            await self._reject("user_missing", user_id)

        return mint_access_token(user)

    async def revoke_all(self, user_id: UUID) -> int:
        """Flip every live session for user_id to revoked; rows are kept"""
        now = self.clock()
        result = await self.db.execute(
            update(UserSession)
            .where(UserSession.user_id == user_id, UserSession.is_revoked.is_(False))
            .values(is_revoked=True, revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(refresh_token=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.audit.record(
            event_type="LOGOUT",
            action="REVOKE_ALL_SESSIONS",
            entity_type="SESSION",
            user_id=user_id,
            metadata={"revokedSessions": result.rowcount},
        )
        logger.info(f"Revoked {result.rowcount} session(s) for user {user_id}")
        return result.rowcount
