"""
Location Router
Location history with 90-day retention (DPDP Act 2023)
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from bandhan_auth.config import settings
from bandhan_auth.database import get_db
from bandhan_auth.models.user import User
from bandhan_auth.routers.dependencies import get_audit, get_clock, get_current_user
from bandhan_auth.schemas.verification import LocationRequest
from bandhan_auth.services.audit_service import AuditTrail
from bandhan_auth.services.location_service import LocationService
from bandhan_auth.utils.clock import Clock

router = APIRouter()


def get_location_service(
    db: AsyncSession = Depends(get_db),
    audit: AuditTrail = Depends(get_audit),
    clock: Clock = Depends(get_clock)
) -> LocationService:
    return LocationService(db, audit, clock, retention_days=settings.LOCATION_RETENTION_DAYS)


@router.post("", status_code=status.HTTP_201_CREATED)
async def record_location(
    body: LocationRequest,
    current_user: User = Depends(get_current_user),
    service: LocationService = Depends(get_location_service)
):
    """Record a location; requires analytics consent"""
    location = await service.record(current_user.id, body.latitude, body.longitude, body.accuracy)
    return {
        "message": "Location recorded",
        "location": {**location.to_dict(), "retentionDays": settings.LOCATION_RETENTION_DAYS},
        "dpdpNotice": {
            "retention": (
                f"Location data will be automatically deleted after "
                f"{settings.LOCATION_RETENTION_DAYS} days as per DPDP Act 2023."
            ),
            "rights": "You can request immediate deletion of your location data.",
        },
    }


@router.get("/history")
async def location_history(
    current_user: User = Depends(get_current_user),
    service: LocationService = Depends(get_location_service)
):
    """Live (unexpired) locations, newest first, at most 100"""
    locations = await service.history(current_user.id)
    return {
        "locations": [location.to_dict() for location in locations],
        "totalRecords": len(locations),
        "retentionDays": settings.LOCATION_RETENTION_DAYS,
    }


@router.delete("/history")
async def delete_location_history(
    current_user: User = Depends(get_current_user),
    service: LocationService = Depends(get_location_service)
):
    """Right to erasure"""
    deleted = await service.delete_history(current_user.id)
    return {
        "message": "Location history deleted successfully",
        "recordsDeleted": deleted,
    }
