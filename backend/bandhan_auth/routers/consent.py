"""
Consent Router
Purpose-based consent management (DPDP Act 2023)
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from bandhan_auth.database import get_db
from bandhan_auth.models.user import User
from bandhan_auth.routers.dependencies import get_audit, get_clock, get_current_user
from bandhan_auth.schemas.consent import ConsentRequest, VerifyPurposeRequest
from bandhan_auth.services.audit_service import AuditTrail, RequestContext
from bandhan_auth.services.consent_service import ConsentService
from bandhan_auth.utils.clock import Clock

router = APIRouter()

DPDP_RIGHTS = [
    "Right to access personal data",
    "Right to correction and erasure",
    "Right to grievance redressal",
    "Right to withdraw consent",
]


def get_consent_service(
    db: AsyncSession = Depends(get_db),
    audit: AuditTrail = Depends(get_audit),
    clock: Clock = Depends(get_clock)
) -> ConsentService:
    return ConsentService(db, audit, clock)


@router.get("")
async def get_consent(
    current_user: User = Depends(get_current_user),
    service: ConsentService = Depends(get_consent_service)
):
    """Latest consent record for the current user"""
    consent = await service.latest(current_user.id)
    return {
        "consent": consent.to_dict() if consent else None,
        "dpdpCompliance": {
            "notice": "As per DPDP Act 2023, you have the right to withdraw consent at any time.",
            "rights": DPDP_RIGHTS,
        },
    }


@router.post("")
async def update_consent(
    body: ConsentRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: ConsentService = Depends(get_consent_service)
):
    """
    Give or update consent

    - **purposeMatching / purposeMarketing / purposeAnalytics / purposeThirdParty**: at least one required
    """
    consent = await service.give(current_user.id, body.as_purposes(), RequestContext.from_request(request))
    return {
        "message": "Consent updated successfully",
        "consent": consent.to_dict(),
        "dpdpNotice": {
            "withdrawalInfo": "You can withdraw consent at any time via /consent/withdraw",
            "dataPrincipalRights": "As per DPDP Act 2023, you have rights over your personal data.",
        },
    }


@router.post("/withdraw")
async def withdraw_consent(
    current_user: User = Depends(get_current_user),
    service: ConsentService = Depends(get_consent_service)
):
    """Withdraw the active consent"""
    consent = await service.withdraw(current_user.id)
    return {
        "message": "Consent withdrawn successfully",
        "withdrawnAt": consent.consent_withdrawn_at.isoformat(),
        "dpdpNotice": {
            "effect": "Data processing for marketing and third-party purposes will stop.",
            "dataRetention": "Some data may be retained as required by law.",
        },
    }


@router.get("/history")
async def consent_history(
    current_user: User = Depends(get_current_user),
    service: ConsentService = Depends(get_consent_service)
):
    """Last 50 consent records, newest first"""
    records = await service.history(current_user.id)
    history = [{"id": str(record.id), **record.to_dict()} for record in records]
    return {"history": history, "totalRecords": len(history)}


@router.post("/verify-purpose")
async def verify_consent_purpose(
    body: VerifyPurposeRequest,
    current_user: User = Depends(get_current_user),
    service: ConsentService = Depends(get_consent_service)
):
    """403 CONSENT_REQUIRED unless the active consent covers the purpose"""
    consent = await service.require(current_user.id, body.purpose)
    return {
        "hasConsent": True,
        "purpose": body.purpose,
        "consentGivenAt": consent.consent_given_at.isoformat() if consent.consent_given_at else None,
    }
