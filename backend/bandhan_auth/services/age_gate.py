"""
Age Gate
DPDP Act 2023: the service is for adults only.
is_age_verified is a one-way latch; the route guard reads it and never
recomputes age.
"""
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bandhan_auth.errors import AgeRestrictionViolation, InvalidDateOfBirth, UserNotFound
from bandhan_auth.models.user import User
from bandhan_auth.services.audit_service import AuditTrail
from bandhan_auth.utils.clock import Clock, utcnow

MINIMUM_AGE = 18
MAXIMUM_AGE = 120


def calculate_age(date_of_birth: date, today: date) -> int:
    """Whole years between date_of_birth and today"""
    age = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def is_adult(date_of_birth: date, today: date) -> bool:
    return calculate_age(date_of_birth, today) >= MINIMUM_AGE


@dataclass
class AgeCheck:
    is_adult: bool
    age: int
    user: User


class AgeGate:
    def __init__(self, db: AsyncSession, audit: AuditTrail, clock: Clock = utcnow):
        self.db = db
        self.audit = audit
        self.clock = clock

    async def verify(self, user_id: UUID, date_of_birth: date) -> AgeCheck:
        """
        Check date_of_birth and latch is_age_verified on success.
        Under-18 submissions are audited and rejected but may be resubmitted.
        """
        now = self.clock()
        today = now.date()
        if date_of_birth > today:
            raise InvalidDateOfBirth(message="Date of birth cannot be in the future.",
                                     message_hi="जन्मतिथि भविष्य की नहीं हो सकती।")

        age = calculate_age(date_of_birth, today)
        if age > MAXIMUM_AGE:
            raise InvalidDateOfBirth(details={"expectedFormat": "YYYY-MM-DD"})

        user = (await self.db.execute(
            select(User).where(User.id == user_id).execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if user is None:
            raise UserNotFound()

        if age < MINIMUM_AGE:
            self.audit.record(
                event_type="AGE_VERIFICATION_FAILED",
                action="UNDERAGE_REGISTRATION_ATTEMPT",
                user_id=user_id,
                entity_id=user_id,
                metadata={"providedAge": age, "requiredAge": MINIMUM_AGE},
            )
            await self.db.commit()
            logger.warning(f"Underage verification attempt by user {user_id}")
            raise AgeRestrictionViolation(details={
                "providedAge": age,
                "requiredAge": MINIMUM_AGE,
                "yearsUntilEligible": MINIMUM_AGE - age,
            })

        if user.is_age_verified:
            # Latched; the first verified date of birth stands
            return AgeCheck(is_adult=True, age=age, user=user)

        await self.db.execute(
            update(User)
            .where(User.id == user_id, User.is_age_verified.is_(False))
            .values(date_of_birth=date_of_birth, is_age_verified=True, age_verified_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.audit.record(
            event_type="AGE_VERIFIED",
            action="AGE_VERIFICATION_COMPLETE",
            user_id=user_id,
            entity_id=user_id,
            metadata={"age": age, "isAdult": True},
        )
        await self.db.commit()
        await self.db.refresh(user)
        logger.info(f"User {user_id} age verified")
        return AgeCheck(is_adult=True, age=age, user=user)
