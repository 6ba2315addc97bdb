"""
Authentication Router
Phone OTP (Tier 1), token refresh and logout
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from bandhan_auth.config import settings
from bandhan_auth.database import get_db
from bandhan_auth.models.user import User
from bandhan_auth.routers.dependencies import get_audit, get_clock, get_current_user
from bandhan_auth.schemas.auth import (
    AccessTokenResponse, OtpSentResponse, PhoneOtpSendRequest, PhoneOtpVerifyRequest, RefreshRequest
)
from bandhan_auth.services.audit_service import AuditTrail, RequestContext
from bandhan_auth.services.otp_ledger import OtpLedger
from bandhan_auth.services.token_service import TokenIssuer
from bandhan_auth.services.verification import Tier, VerificationStateMachine
from bandhan_auth.utils.clock import Clock
from bandhan_auth.utils.security import mask_phone


router = APIRouter()


def get_ledger(
    request: Request,
    db: AsyncSession = Depends(get_db),
    audit: AuditTrail = Depends(get_audit),
    clock: Clock = Depends(get_clock)
) -> OtpLedger:
    return OtpLedger.from_settings(db, request.app.state.otp_provider, audit, clock, settings)


@router.post("/phone-otp/send", response_model=OtpSentResponse)
async def send_phone_otp(
    body: PhoneOtpSendRequest,
    db: AsyncSession = Depends(get_db),
    ledger: OtpLedger = Depends(get_ledger)
):
    """
    Send a one-time code to an Indian mobile number

    - **phone**: +91 followed by 10 digits starting with 6-9

    Limited to 5 sends per phone per rolling hour.
    """
    challenge = await ledger.issue(body.phone)
    await db.commit()

    return {
        "message": "OTP sent successfully",
        "maskedPhone": mask_phone(body.phone),
        "expiresInSeconds": challenge.expires_in_seconds,
        "maxAttempts": challenge.max_attempts,
        "attemptsRemaining": challenge.attempts_remaining,
    }


@router.post("/phone-otp/verify")
async def verify_phone_otp(
    body: PhoneOtpVerifyRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ledger: OtpLedger = Depends(get_ledger),
    audit: AuditTrail = Depends(get_audit),
    clock: Clock = Depends(get_clock)
):
    """
    Verify the OTP, create or load the account and complete Tier 1 (Bronze)

    Returns the user plus an access/refresh token pair.
    """
    identity = await ledger.consume(body.phone, body.otp)

    if identity.is_new_user:
        audit.record(
            event_type="USER_CREATED",
            action="PHONE_SIGNUP",
            user_id=identity.user.id,
            entity_id=identity.user.id,
            metadata={"phone": body.phone},
        )

    upgrade = await VerificationStateMachine(db, audit, clock).complete_tier(
        identity.user.id,
        Tier.BRONZE,
        metadata={"phone": body.phone, "method": "SMS_OTP"},
    )
    tokens = await TokenIssuer(db, audit, clock).mint(upgrade.user, RequestContext.from_request(request))
    await db.commit()

    return {
        "message": "Phone verified successfully",
        "isNewUser": identity.is_new_user,
        "user": upgrade.user.to_dict(),
        "accessToken": tokens.access_token,
        "refreshToken": tokens.refresh_token,
        "tokenType": tokens.token_type,
        "expiresIn": tokens.expires_in,
    }


@router.post("/refresh", response_model=AccessTokenResponse)
async def refresh_access_token(
    body: RefreshRequest,
    db: AsyncSession = Depends(get_db),
    audit: AuditTrail = Depends(get_audit),
    clock: Clock = Depends(get_clock)
):
    """
    Exchange a refresh token for an access token carrying the current tier
    """
    access_token = await TokenIssuer(db, audit, clock).refresh(body.refresh_token)
    return {
        "accessToken": access_token,
        "tokenType": "bearer",
        "expiresIn": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    }


@router.post("/logout")
async def logout(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    audit: AuditTrail = Depends(get_audit),
    clock: Clock = Depends(get_clock)
):
    """
    Revoke every session of the current user (all devices)
    """
    revoked = await TokenIssuer(db, audit, clock).revoke_all(user.id)
    await db.commit()
    return {"message": "Logged out from all devices", "revokedSessions": revoked}
