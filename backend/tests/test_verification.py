"""
Verification state machine: tier timestamps and the monotonic level
"""
import uuid

import pytest
from sqlalchemy import func, select

from bandhan_auth.errors import UserNotFound
from bandhan_auth.models import AuditLog, User
from bandhan_auth.services.audit_service import AuditTrail
from bandhan_auth.services.verification import Tier, VerificationStateMachine, completed_tiers


@pytest.fixture
async def user(session, clock):
    account = User(phone="+919876543210", verification_level=0, created_at=clock(), updated_at=clock())
    session.add(account)
    await session.commit()
    return account


@pytest.fixture
def machine(session, clock):
    return VerificationStateMachine(session, AuditTrail(session, clock=clock), clock)


class TestVerificationStateMachine:

    @pytest.mark.asyncio
    async def test_bronze_sets_phone_fields(self, session, machine, user, clock):
        result = await machine.complete_tier(user.id, Tier.BRONZE)
        await session.commit()

        assert result.previous_level == 0
        assert result.level == 1
        assert result.upgraded
        assert result.user.is_phone_verified is True
        assert result.user.phone_verified_at == clock()

    @pytest.mark.asyncio
    async def test_full_ladder(self, session, machine, user):
        levels = []
        for tier in (Tier.BRONZE, Tier.SILVER, Tier.GOLD):
            levels.append((await machine.complete_tier(user.id, tier)).level)
        await session.commit()
        assert levels == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_level_counts_tiers_not_tier_number(self, session, machine, user):
        # Silver before Bronze is one completed tier, not level 2
        result = await machine.complete_tier(user.id, Tier.SILVER)
        assert result.level == 1
        assert result.user.digilocker_verified_at is not None
        assert result.user.phone_verified_at is None

        result = await machine.complete_tier(user.id, Tier.BRONZE)
        assert result.level == 2

    @pytest.mark.asyncio
    async def test_repeat_is_idempotent(self, session, machine, user, clock):
        first = await machine.complete_tier(user.id, Tier.BRONZE)
        stamped = first.user.phone_verified_at
        clock.advance(days=3)

        for _ in range(3):
            again = await machine.complete_tier(user.id, Tier.BRONZE)
            assert again.level == 1
            assert not again.upgraded
        assert again.user.phone_verified_at == stamped

        await session.flush()
        rows = (await session.execute(
            select(func.count(AuditLog.id)).where(AuditLog.event_type == "PHONE_VERIFIED")
        )).scalar_one()
        assert rows == 1

    @pytest.mark.asyncio
    async def test_level_never_exceeds_three(self, session, machine, user):
        for tier in (Tier.GOLD, Tier.SILVER, Tier.BRONZE, Tier.GOLD, Tier.SILVER):
            result = await machine.complete_tier(user.id, tier)
        assert result.level == 3
        assert completed_tiers(result.user) == 3

    @pytest.mark.asyncio
    async def test_level_never_regresses(self, session, machine, user):
        # A stored level higher than the timestamp count is kept
        user.verification_level = 2
        await session.commit()

        result = await machine.complete_tier(user.id, Tier.BRONZE)
        assert result.level == 2
        assert result.previous_level == 2

    @pytest.mark.asyncio
    async def test_extra_values_land_with_the_tier(self, session, machine, user):
        result = await machine.complete_tier(
            user.id,
            Tier.SILVER,
            values={"digilocker_token": "c2VhbGVk", "digilocker_token_iv": "aXY=", "digilocker_token_tag": "dGFn"},
        )
        assert result.user.digilocker_token == "c2VhbGVk"
        assert result.user.digilocker_token_iv == "aXY="

    @pytest.mark.asyncio
    async def test_one_audit_row_per_transition(self, session, machine, user):
        await machine.complete_tier(user.id, Tier.BRONZE, metadata={"phone": "+919876543210"})
        await machine.complete_tier(user.id, Tier.GOLD)
        await session.commit()

        rows = (await session.execute(
            select(AuditLog).where(AuditLog.user_id == user.id).order_by(AuditLog.event_type)
        )).scalars().all()
        assert [row.event_type for row in rows] == ["PHONE_VERIFIED", "VIDEO_SELFIE_VERIFIED"]
        bronze = rows[0].event_metadata
        assert bronze["tier"] == "BRONZE"
        assert bronze["previousLevel"] == 0
        assert bronze["verificationLevel"] == 1
        assert bronze["phone"] == "+91-XXX-XXX3210"

    @pytest.mark.asyncio
    async def test_nothing_is_committed_by_the_machine(self, database, session, machine, user):
        user_id = user.id
        await machine.complete_tier(user_id, Tier.BRONZE)
        await session.rollback()

        async with database.session_factory() as other:
            stored = (await other.execute(select(User).where(User.id == user_id))).scalar_one()
            audits = (await other.execute(select(func.count(AuditLog.id)))).scalar_one()
        assert stored.verification_level == 0
        assert stored.phone_verified_at is None
        assert audits == 0

    @pytest.mark.asyncio
    async def test_unknown_user(self, machine):
        with pytest.raises(UserNotFound):
            await machine.complete_tier(uuid.uuid4(), Tier.BRONZE)
