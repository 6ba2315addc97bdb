"""
User Router
Profile access behind the age gate
"""
from fastapi import APIRouter, Depends

from bandhan_auth.models.user import User
from bandhan_auth.routers.dependencies import require_age_verified

router = APIRouter()


@router.get("/profile")
async def get_profile(current_user: User = Depends(require_age_verified)):
    """
    Current user's profile. Requires a verified age; phone is masked.
    """
    return {
        "user": {
            **current_user.to_dict(),
            "tiers": {
                "bronze": current_user.phone_verified_at is not None,
                "silver": current_user.digilocker_verified_at is not None,
                "gold": current_user.video_selfie_verified_at is not None,
            },
            "createdAt": current_user.created_at.isoformat() if current_user.created_at else None,
        }
    }
