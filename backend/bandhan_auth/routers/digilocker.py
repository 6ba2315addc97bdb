"""
DigiLocker Routes
OAuth handshake for Tier 2 (Silver) verification
"""
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from bandhan_auth.config import settings
from bandhan_auth.database import get_db
from bandhan_auth.models.user import User
from bandhan_auth.routers.dependencies import get_audit, get_clock, get_current_user
from bandhan_auth.services.audit_service import AuditTrail
from bandhan_auth.services.oauth_broker import OAuthStateBroker
from bandhan_auth.utils.clock import Clock

router = APIRouter(prefix="/digilocker", tags=["DigiLocker Integration"])


def get_broker(
    request: Request,
    db: AsyncSession = Depends(get_db),
    audit: AuditTrail = Depends(get_audit),
    clock: Clock = Depends(get_clock)
) -> OAuthStateBroker:
    return OAuthStateBroker(
        db,
        request.app.state.digilocker,
        request.app.state.vault,
        audit,
        clock,
        state_ttl=timedelta(minutes=settings.DIGILOCKER_STATE_TTL_MINUTES),
    )


@router.get("/init")
async def initiate_digilocker_auth(
    current_user: User = Depends(get_current_user),
    broker: OAuthStateBroker = Depends(get_broker)
):
    """
    Start DigiLocker OAuth2 flow
    Returns the authorization URL and its single-use state (valid 15 minutes)
    """
    auth = await broker.initiate(current_user.id)
    return {
        "authorizationUrl": auth.authorization_url,
        "state": auth.state,
        "expiresInSeconds": auth.expires_in_seconds,
    }


@router.get("/callback")
async def digilocker_callback(
    code: Optional[str] = Query(None, description="Authorization code"),
    state: Optional[str] = Query(None, description="State parameter"),
    error: Optional[str] = Query(None, description="Provider error code"),
    broker: OAuthStateBroker = Depends(get_broker)
):
    """
    Handle the provider redirect. Public: the state parameter is the credential.
    """
    result = await broker.handle_callback(code, state, provider_error=error)
    user = result.upgrade.user
    return {
        "message": "DigiLocker verification successful",
        "user": user.to_dict(),
        "accessToken": result.access_token,
        "verificationLevel": user.verification_level,
    }


@router.get("/status")
async def digilocker_status(current_user: User = Depends(get_current_user)):
    """
    Tier 2 status for the current user; never exposes the sealed token
    """
    return {
        "isVerified": current_user.digilocker_verified_at is not None,
        "verifiedAt": current_user.digilocker_verified_at.isoformat() if current_user.digilocker_verified_at else None,
        "verificationLevel": current_user.verification_level,
        "hasStoredCredential": current_user.digilocker_token is not None,
    }
