"""
Consent Service
Purpose-based consent under the DPDP Act 2023.
Every change creates a new versioned row; withdrawals stamp the active one.
"""
from typing import Dict, List, Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bandhan_auth.errors import ConsentNotActive, ConsentRequired, InvalidConsentPurpose, InvalidInput
from bandhan_auth.models.consent import CONSENT_PURPOSES, Consent
from bandhan_auth.services.audit_service import AuditTrail, RequestContext
from bandhan_auth.utils.clock import Clock, utcnow

CONSENT_VERSION = "1.0"
HISTORY_LIMIT = 50


class ConsentService:
    def __init__(self, db: AsyncSession, audit: AuditTrail, clock: Clock = utcnow):
        self.db = db
        self.audit = audit
        self.clock = clock

    async def latest(self, user_id: UUID) -> Optional[Consent]:
        result = await self.db.execute(
            select(Consent)
            .where(Consent.user_id == user_id)
            .order_by(Consent.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def active(self, user_id: UUID) -> Optional[Consent]:
        result = await self.db.execute(
            select(Consent)
            .where(Consent.user_id == user_id, Consent.consent_withdrawn_at.is_(None))
            .order_by(Consent.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def history(self, user_id: UUID) -> List[Consent]:
        result = await self.db.execute(
            select(Consent)
            .where(Consent.user_id == user_id)
            .order_by(Consent.created_at.desc())
            .limit(HISTORY_LIMIT)
        )
        return list(result.scalars().all())

    async def give(self, user_id: UUID, purposes: Dict[str, Optional[bool]],
                   context: Optional[RequestContext] = None) -> Consent:
        """
        Record a new consent version. Purposes left as None inherit from the
        active record, or default to False.
        """
        provided = {name: value for name, value in purposes.items() if value is not None}
        if not provided:
            raise InvalidInput(
                message="At least one consent purpose must be specified.",
                message_hi="कम से कम एक सहमति उद्देश्य निर्दिष्ट करना आवश्यक है।",
            )
        unknown = set(provided) - set(CONSENT_PURPOSES)
        if unknown:
            raise InvalidConsentPurpose(details={"validPurposes": list(CONSENT_PURPOSES)})

        existing = await self.active(user_id)
        values = {}
        for name in CONSENT_PURPOSES:
            if name in provided:
                values[Consent.PURPOSE_COLUMNS[name]] = provided[name]
            else:
                values[Consent.PURPOSE_COLUMNS[name]] = existing.has_purpose(name) if existing else False

        now = self.clock()
        consent = Consent(
            user_id=user_id,
            consent_version=CONSENT_VERSION,
            consent_given_at=now,
            created_at=now,
            ip_address=context.ip_address if context else None,
            user_agent=context.user_agent if context else None,
            **values,
        )
        self.db.add(consent)
        await self.db.flush()

        self.audit.record(
            event_type="CONSENT_GIVEN",
            action="CONSENT_PROVIDED",
            entity_type="CONSENT",
            user_id=user_id,
            entity_id=consent.id,
            metadata={"purposes": provided, "consentVersion": CONSENT_VERSION},
        )
        await self.db.commit()
        logger.info(f"Consent v{CONSENT_VERSION} recorded for user {user_id}")
        return consent

    async def withdraw(self, user_id: UUID) -> Consent:
        consent = await self.active(user_id)
        if consent is None:
            raise ConsentNotActive()

        consent.consent_withdrawn_at = self.clock()
        self.audit.record(
            event_type="CONSENT_WITHDRAWN",
            action="CONSENT_WITHDRAWN",
            entity_type="CONSENT",
            user_id=user_id,
            entity_id=consent.id,
            metadata={"previousPurposes": consent.purposes()},
        )
        await self.db.commit()
        logger.info(f"Consent withdrawn for user {user_id}")
        return consent

    async def require(self, user_id: UUID, purpose: str) -> Consent:
        """Return the active consent if it covers purpose, else raise ConsentRequired"""
        if purpose not in CONSENT_PURPOSES:
            raise InvalidConsentPurpose(
                message=f"Invalid consent purpose. Valid purposes: {', '.join(CONSENT_PURPOSES)}",
                details={"validPurposes": list(CONSENT_PURPOSES)},
            )
        consent = await self.active(user_id)
        if consent is None:
            raise ConsentRequired(
                message="No consent record found. Please provide consent before proceeding.",
                details={"requiredConsent": purpose},
            )
        if not consent.has_purpose(purpose):
            raise ConsentRequired(
                message=f"Consent not given for purpose: {purpose}",
                details={"requiredConsent": purpose},
            )
        return consent
