"""
OTP Ledger
Issues, rate-limits and consumes phone OTP challenges (Tier 1).

Code generation and delivery belong to the SMS provider; the ledger keeps
only the provider's reference, its own expiry and a shared attempt budget.
One-time consumption is an atomic compare-and-set on is_used.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bandhan_auth.errors import (
    InvalidCode,
    InvalidPhoneFormat,
    MaxAttemptsExceeded,
    OtpExpired,
    RateLimited,
)
from bandhan_auth.models.otp_request import OtpIssuance, OtpRequest
from bandhan_auth.models.user import User
from bandhan_auth.services.audit_service import AuditTrail
from bandhan_auth.services.sms_provider import OtpProvider
from bandhan_auth.utils.clock import Clock, utcnow
from bandhan_auth.utils.security import is_valid_indian_phone, is_well_formed_otp, mask_phone


@dataclass
class OtpChallenge:
    challenge_id: UUID
    expires_in_seconds: int
    max_attempts: int
    attempts_remaining: int


@dataclass
class VerifiedIdentity:
    user: User
    is_new_user: bool


class OtpLedger:
    """Works inside the caller's session; the caller commits"""

    def __init__(
        self,
        db: AsyncSession,
        provider: OtpProvider,
        audit: AuditTrail,
        clock: Clock = utcnow,
        ttl_seconds: int = 300,
        max_attempts: int = 5,
        rate_limit_count: int = 5,
        rate_limit_window: timedelta = timedelta(minutes=60),
    ):
        self.db = db
        self.provider = provider
        self.audit = audit
        self.clock = clock
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts
        self.rate_limit_count = rate_limit_count
        self.rate_limit_window = rate_limit_window

    @classmethod
    def from_settings(cls, db, provider, audit, clock, settings) -> "OtpLedger":
        return cls(
            db,
            provider,
            audit,
            clock=clock,
            ttl_seconds=settings.OTP_TTL_SECONDS,
            max_attempts=settings.OTP_MAX_ATTEMPTS,
            rate_limit_count=settings.OTP_RATE_LIMIT_COUNT,
            rate_limit_window=timedelta(minutes=settings.OTP_RATE_LIMIT_WINDOW_MINUTES),
        )

    async def _live_request(self, phone: str, now) -> Optional[OtpRequest]:
        """Latest unused, unexpired request for phone"""
        result = await self.db.execute(
            select(OtpRequest)
            .where(
                OtpRequest.phone == phone,
                OtpRequest.is_used.is_(False),
                OtpRequest.is_expired.is_(False),
                OtpRequest.expires_at > now,
            )
            .order_by(OtpRequest.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _check_rate_limit(self, phone: str, now):
        window_start = now - self.rate_limit_window
        count, oldest = (await self.db.execute(
            select(func.count(OtpIssuance.id), func.min(OtpIssuance.created_at))
            .where(OtpIssuance.phone == phone, OtpIssuance.created_at > window_start)
        )).one()
        if count >= self.rate_limit_count:
            retry_after = int((oldest + self.rate_limit_window - now).total_seconds()) + 1
            logger.warning(f"OTP rate limit hit for {mask_phone(phone)} ({count} in window)")
            raise RateLimited(details={
                "limit": self.rate_limit_count,
                "windowMinutes": int(self.rate_limit_window.total_seconds() // 60),
                "retryAfterSeconds": max(retry_after, 1),
            })

    async def issue(self, phone: str) -> OtpChallenge:
        """
        Send (or re-send) a code to phone.

        A live request is re-issued in place and charged one attempt, so
        resending cannot reset the attempt budget.
        """
        if not is_valid_indian_phone(phone):
            raise InvalidPhoneFormat()

        now = self.clock()
        await self._check_rate_limit(phone, now)

        expires_at = now + timedelta(seconds=self.ttl_seconds)
        live = await self._live_request(phone, now)
        if live is not None:
            if live.attempt_count >= live.max_attempts:
                raise MaxAttemptsExceeded(details={"attemptsRemaining": 0})
            # Reserve the attempt before spending provider quota
            reserved = await self.db.execute(
                update(OtpRequest)
                .where(
                    OtpRequest.id == live.id,
                    OtpRequest.is_used.is_(False),
                    OtpRequest.attempt_count < OtpRequest.max_attempts,
                )
                .values(attempt_count=OtpRequest.attempt_count + 1, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if reserved.rowcount != 1:
                raise MaxAttemptsExceeded(details={"attemptsRemaining": 0})

            provider_ref = await self.provider.send_code(phone)
            otp_request = (await self.db.execute(
                select(OtpRequest).where(OtpRequest.id == live.id)
                .execution_options(populate_existing=True)
            )).scalar_one()
            otp_request.provider_ref = provider_ref
            otp_request.expires_at = expires_at
            await self.db.flush()
        else:
            provider_ref = await self.provider.send_code(phone)
            otp_request = OtpRequest(
                phone=phone,
                provider_ref=provider_ref,
                attempt_count=1,
                max_attempts=self.max_attempts,
                expires_at=expires_at,
                created_at=now,
                updated_at=now,
            )
            self.db.add(otp_request)
            await self.db.flush()

        self.db.add(OtpIssuance(phone=phone, otp_request_id=otp_request.id, created_at=now))
        self.audit.record(
            event_type="OTP_SENT",
            action="SEND_OTP",
            entity_type="OTP_REQUEST",
            entity_id=otp_request.id,
            metadata={"phone": phone, "attemptCount": otp_request.attempt_count},
        )
        logger.info(f"OTP challenge {otp_request.id} issued to {mask_phone(phone)}")
        return OtpChallenge(
            challenge_id=otp_request.id,
            expires_in_seconds=self.ttl_seconds,
            max_attempts=otp_request.max_attempts,
            attempts_remaining=otp_request.attempts_remaining,
        )

    async def _charge_failure(self, otp_request: OtpRequest, now) -> int:
        """Spend one attempt; burn the request when the budget is gone"""
        await self.db.execute(
            update(OtpRequest)
            .where(OtpRequest.id == otp_request.id)
            .values(attempt_count=OtpRequest.attempt_count + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(
            update(OtpRequest)
            .where(OtpRequest.id == otp_request.id, OtpRequest.attempt_count >= OtpRequest.max_attempts)
            .values(is_expired=True)
            .execution_options(synchronize_session=False)
        )
        refreshed = (await self.db.execute(
            select(OtpRequest).where(OtpRequest.id == otp_request.id)
            .execution_options(populate_existing=True)
        )).scalar_one()
        self.audit.record(
            event_type="OTP_VERIFICATION_FAILED",
            action="VERIFY_OTP",
            entity_type="OTP_REQUEST",
            entity_id=refreshed.id,
            metadata={"phone": refreshed.phone, "attemptsRemaining": refreshed.attempts_remaining},
        )
        await self.db.commit()
        return refreshed.attempts_remaining

    async def _burn(self, otp_request: OtpRequest, now):
        """Retire a request whose budget was spent by resends"""
        await self.db.execute(
            update(OtpRequest)
            .where(OtpRequest.id == otp_request.id)
            .values(is_expired=True, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.audit.record(
            event_type="OTP_VERIFICATION_FAILED",
            action="VERIFY_OTP",
            entity_type="OTP_REQUEST",
            entity_id=otp_request.id,
            metadata={"phone": otp_request.phone, "attemptsRemaining": 0, "reason": "max_attempts"},
        )
        await self.db.commit()

    async def _upsert_user(self, phone: str, now) -> VerifiedIdentity:
        existing = (await self.db.execute(
            select(User).where(User.phone == phone)
        )).scalar_one_or_none()
        if existing is not None:
            return VerifiedIdentity(user=existing, is_new_user=False)

        user = User(phone=phone, verification_level=0, created_at=now, updated_at=now)
        try:
            async with self.db.begin_nested():
                self.db.add(user)
        except IntegrityError:
            # a concurrent first login for the same phone won the insert
            user = (await self.db.execute(
                select(User).where(User.phone == phone)
            )).scalar_one()
            return VerifiedIdentity(user=user, is_new_user=False)
        return VerifiedIdentity(user=user, is_new_user=True)

    async def consume(self, phone: str, code: str) -> VerifiedIdentity:
        """
        Redeem a code for phone. Returns the (possibly new) user; tier
        advancement and session creation are left to the caller.
        """
        if not is_valid_indian_phone(phone):
            raise InvalidPhoneFormat()

        now = self.clock()
        otp_request = await self._live_request(phone, now)
        if otp_request is None:
            raise OtpExpired()

        if otp_request.attempt_count >= otp_request.max_attempts:
            await self._burn(otp_request, now)
            logger.warning(f"OTP challenge {otp_request.id} has no attempts left")
            raise MaxAttemptsExceeded(details={"attemptsRemaining": 0})

        if not is_well_formed_otp(code) or not await self.provider.confirm(
            phone, otp_request.provider_ref, code
        ):
            remaining = await self._charge_failure(otp_request, now)
            logger.warning(f"Wrong OTP for {mask_phone(phone)}, {remaining} attempt(s) left")
            if remaining <= 0:
                raise MaxAttemptsExceeded(details={"attemptsRemaining": 0})
            raise InvalidCode(details={"attemptsRemaining": remaining})

        # Compare-and-set: only one caller can flip is_used
        claimed = await self.db.execute(
            update(OtpRequest)
            .where(
                OtpRequest.id == otp_request.id,
                OtpRequest.is_used.is_(False),
                OtpRequest.is_expired.is_(False),
                OtpRequest.attempt_count < OtpRequest.max_attempts,
            )
            .values(is_used=True, used_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            logger.warning(f"OTP challenge {otp_request.id} was already consumed")
            raise OtpExpired()

        return await self._upsert_user(phone, now)
