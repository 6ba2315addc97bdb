"""
Verification Routes
Age gate (DPDP Act 2023) and video selfie (Tier 3, Gold)
"""
from datetime import date, datetime

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from bandhan_auth.config import settings
from bandhan_auth.database import get_db
from bandhan_auth.errors import InvalidDateOfBirth
from bandhan_auth.models.user import User
from bandhan_auth.routers.dependencies import get_audit, get_clock, get_current_user
from bandhan_auth.schemas.verification import AgeVerifyRequest, VideoSelfieRequest
from bandhan_auth.services.age_gate import AgeGate
from bandhan_auth.services.audit_service import AuditTrail
from bandhan_auth.services.selfie_service import VideoSelfieVerifier
from bandhan_auth.utils.clock import Clock

router = APIRouter()

MIN_VIDEO_SECONDS = 5
MAX_VIDEO_SECONDS = 30


def parse_date_of_birth(value) -> date:
    if not value:
        raise InvalidDateOfBirth(message="Date of birth is required.", message_hi="जन्मतिथि आवश्यक है।")
    try:
        if len(value) == 10:
            return date.fromisoformat(value)
        # Full timestamps only, as sent by JS Date.toISOString()
        if value[10:11] not in ("T", " "):
            raise ValueError(value)
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        raise InvalidDateOfBirth(details={"expectedFormat": "YYYY-MM-DD"})


@router.post("/age-verify")
async def verify_age(
    body: AgeVerifyRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    audit: AuditTrail = Depends(get_audit),
    clock: Clock = Depends(get_clock)
):
    """
    Submit date of birth (YYYY-MM-DD). Must be 18 or older.
    """
    date_of_birth = parse_date_of_birth(body.date_of_birth)
    check = await AgeGate(db, audit, clock).verify(current_user.id, date_of_birth)
    return {
        "message": "Age verified successfully",
        "isAgeVerified": check.user.is_age_verified,
        "isAdult": check.is_adult,
        "ageVerifiedAt": check.user.age_verified_at.isoformat() if check.user.age_verified_at else None,
        "dpdpNotice": {
            "notice": "Your date of birth is stored securely and used only for age verification.",
            "rights": "You can request data deletion as per DPDP Act 2023.",
        },
    }


@router.get("/age-verify/status")
async def age_verify_status(current_user: User = Depends(get_current_user)):
    """Age gate status; only the birth year is exposed"""
    return {
        "isAgeVerified": current_user.is_age_verified,
        "ageVerifiedAt": current_user.age_verified_at.isoformat() if current_user.age_verified_at else None,
        "requiresVerification": not current_user.is_age_verified,
        "dobYear": current_user.date_of_birth.year if current_user.date_of_birth else None,
    }


@router.post("/video-selfie/verify")
async def verify_video_selfie(
    body: VideoSelfieRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    audit: AuditTrail = Depends(get_audit),
    clock: Clock = Depends(get_clock)
):
    """
    Submit a base64 selfie video for liveness detection (Tier 3)
    """
    verifier = VideoSelfieVerifier(
        db,
        request.app.state.liveness,
        request.app.state.vault,
        audit,
        clock,
        min_confidence=settings.LIVENESS_MIN_CONFIDENCE,
        allowed_types=settings.ALLOWED_VIDEO_TYPES,
        max_bytes=settings.MAX_VIDEO_SIZE_MB * 1024 * 1024,
    )
    result = await verifier.verify(current_user.id, body.video_data)
    user = result.upgrade.user
    return {
        "message": "Video selfie verification successful",
        "user": user.to_dict(),
        "tokens": {"accessToken": result.access_token},
        "liveness": {"confidence": result.liveness.confidence},
    }


@router.get("/video-selfie/status")
async def video_selfie_status(current_user: User = Depends(get_current_user)):
    return {
        "verificationLevel": current_user.verification_level,
        "tier1Complete": current_user.phone_verified_at is not None,
        "tier2Complete": current_user.digilocker_verified_at is not None,
        "tier3Complete": current_user.video_selfie_verified_at is not None,
        "fullyVerified": current_user.verification_level >= 3,
        "videoSelfieVerifiedAt": (
            current_user.video_selfie_verified_at.isoformat() if current_user.video_selfie_verified_at else None
        ),
    }


@router.get("/video-selfie/instructions")
async def video_selfie_instructions():
    """Capture instructions; public"""
    return {
        "instructions": {
            "steps": [
                "Find a well-lit area with even lighting on your face",
                "Hold your device at eye level, about arm's length away",
                "Ensure your entire face is visible in the frame",
                "Remove glasses, masks, or anything covering your face",
                "Follow the on-screen prompts (turn head, blink, smile)",
                "Keep still during the final capture",
            ],
            "requirements": {
                "lighting": "Good, even lighting (avoid backlighting)",
                "background": "Plain background preferred",
                "face": "Full face visible, no obstructions",
                "device": "Stable connection, camera working",
            },
            "videoSpecs": {
                "maxDuration": MAX_VIDEO_SECONDS,
                "minDuration": MIN_VIDEO_SECONDS,
                "maxFileSize": settings.MAX_VIDEO_SIZE_MB,
                "allowedFormats": settings.ALLOWED_VIDEO_TYPES,
            },
        }
    }
