"""
Verification State Machine
Unverified(0) -> Bronze(1) -> Silver(2) -> Gold(3)

Each tier is tracked by its own completion timestamp. verification_level is
recomputed inside a single UPDATE as the number of non-null tier timestamps,
max-merged with the stored level, so concurrent writers can never make it
regress or overshoot.
"""
import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bandhan_auth.errors import InvariantViolation, UserNotFound
from bandhan_auth.models.user import User
from bandhan_auth.services.audit_service import AuditTrail
from bandhan_auth.utils.clock import Clock, utcnow

MAX_LEVEL = 3


class Tier(enum.IntEnum):
    BRONZE = 1  # phone OTP
    SILVER = 2  # DigiLocker
    GOLD = 3  # video selfie liveness


TIER_TIMESTAMPS = {
    Tier.BRONZE: User.phone_verified_at,
    Tier.SILVER: User.digilocker_verified_at,
    Tier.GOLD: User.video_selfie_verified_at,
}

TIER_EVENTS = {
    Tier.BRONZE: "PHONE_VERIFIED",
    Tier.SILVER: "DIGILOCKER_VERIFIED",
    Tier.GOLD: "VIDEO_SELFIE_VERIFIED",
}


@dataclass
class TierUpgradeResult:
    user: User
    tier: Tier
    previous_level: int
    level: int

    @property
    def upgraded(self) -> bool:
        return self.level > self.previous_level


def completed_tiers(user: User) -> int:
    """Count of tier timestamps that are set on a loaded user"""
    return sum(1 for column in TIER_TIMESTAMPS.values() if getattr(user, column.key) is not None)


class VerificationStateMachine:
    """
    The only writer of tier state. Callers own the transaction; nothing here
    commits, so a tier change and its audit row land together or not at all.
    """

    def __init__(self, db: AsyncSession, audit: AuditTrail, clock: Clock = utcnow):
        self.db = db
        self.audit = audit
        self.clock = clock

    async def _load(self, user_id: UUID) -> User:
        result = await self.db.execute(
            select(User).where(User.id == user_id).execution_options(populate_existing=True)
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise UserNotFound()
        return user

    def _level_expression(self, tier: Tier):
        # In SET clauses column references read the pre-update row
        completed = 1
        for other, column in TIER_TIMESTAMPS.items():
            if other != tier:
                completed = completed + case((column.isnot(None), 1), else_=0)
        return case(
            (User.verification_level > completed, User.verification_level),
            else_=completed,
        )

    async def complete_tier(
        self,
        user_id: UUID,
        tier: Tier,
        values: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TierUpgradeResult:
        """
        Mark tier as completed for user_id.

        values are extra column assignments written in the same statement
        (sealed credentials). The tier timestamp is set only if still null.
        """
        before = await self._load(user_id)
        previous_level = before.verification_level
        stamp = TIER_TIMESTAMPS[tier]
        first_completion = getattr(before, stamp.key) is None

        now = self.clock()
        assignments = {
            stamp.key: func.coalesce(stamp, now),
            User.verification_level.key: self._level_expression(tier),
            User.updated_at.key: now,
        }
        if tier == Tier.BRONZE:
            assignments[User.is_phone_verified.key] = True
        assignments.update(values or {})

        result = await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(**assignments)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise UserNotFound()

        user = await self._load(user_id)
        if user.verification_level < previous_level or user.verification_level > MAX_LEVEL:
            logger.error(
                f"Tier write for user {user_id} produced level {user.verification_level} "
                f"from {previous_level}"
            )
            raise InvariantViolation()

        if first_completion or user.verification_level != previous_level:
            self.audit.record(
                event_type=TIER_EVENTS[tier],
                action="TIER_COMPLETED",
                user_id=user.id,
                entity_id=user.id,
                metadata={
                    **(metadata or {}),
                    "tier": tier.name,
                    "previousLevel": previous_level,
                    "verificationLevel": user.verification_level,
                },
            )
            logger.info(
                f"User {user.id} completed {tier.name}: level {previous_level} -> {user.verification_level}"
            )
        return TierUpgradeResult(
            user=user,
            tier=tier,
            previous_level=previous_level,
            level=user.verification_level,
        )
