"""
Races on one-time artefacts: a second caller redeems the same OTP row or
OAuth state while the first is still waiting on its provider call.
"""
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from bandhan_auth.database import Database
from bandhan_auth.errors import OtpExpired, StateMismatch
from bandhan_auth.models import AuditLog, OAuthState, OtpRequest, User
from bandhan_auth.services.audit_service import AuditTrail
from bandhan_auth.services.oauth_broker import OAuthStateBroker
from bandhan_auth.services.otp_ledger import OtpLedger
from bandhan_auth.services.sms_provider import OtpProvider

TEST_PHONE = "+919876543210"
VALID_OTP = "123456"


class InterleavingOtpProvider(OtpProvider):
    """Runs rival once, in the middle of the first confirm call"""

    def __init__(self, inner, rival):
        self.inner = inner
        self.rival = rival

    async def send_code(self, phone: str) -> str:
        return await self.inner.send_code(phone)

    async def confirm(self, phone: str, provider_ref: str, code: str) -> bool:
        rival, self.rival = self.rival, None
        if rival is not None:
            await rival()
        return await self.inner.confirm(phone, provider_ref, code)


class InterleavingDigiLocker:
    """Runs rival once, in the middle of the first code exchange"""

    def __init__(self, inner, rival):
        self.inner = inner
        self.rival = rival

    async def has_verified_identity(self, access_token: str) -> bool:
        return await self.inner.has_verified_identity(access_token)

    async def exchange_code_for_token(self, code: str) -> str:
        rival, self.rival = self.rival, None
        if rival is not None:
            await rival()
        return await self.inner.exchange_code_for_token(code)


@pytest.fixture
async def file_database(tmp_path):
    """Separate sessions get separate connections, unlike the in-memory store"""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'race.db'}", environment="test")
    await db.create_all()
    yield db
    await db.dispose()


class TestOtpRace:

    @pytest.mark.asyncio
    async def test_only_one_device_redeems_a_code(self, file_database, clock, otp_provider):
        async with file_database.session_factory() as db:
            db.add(OtpRequest(
                phone=TEST_PHONE,
                provider_ref="ref-1",
                attempt_count=1,
                max_attempts=5,
                expires_at=clock() + timedelta(minutes=5),
                created_at=clock(),
            ))
            await db.commit()

        winners = []

        async def rival():
            async with file_database.session_factory() as db:
                ledger = OtpLedger(db, otp_provider, AuditTrail(db, clock=clock), clock=clock)
                identity = await ledger.consume(TEST_PHONE, VALID_OTP)
                await db.commit()
                winners.append(identity.user.id)

        async with file_database.session_factory() as db:
            ledger = OtpLedger(db, InterleavingOtpProvider(otp_provider, rival), AuditTrail(db, clock=clock), clock=clock)
            with pytest.raises(OtpExpired):
                await ledger.consume(TEST_PHONE, VALID_OTP)
            await db.rollback()

        assert len(winners) == 1
        async with file_database.session_factory() as db:
            otp_request = (await db.execute(select(OtpRequest))).scalar_one()
            users = (await db.execute(select(func.count(User.id)))).scalar_one()
        assert otp_request.is_used is True
        assert users == 1

    @pytest.mark.asyncio
    async def test_resends_during_confirm_exhaust_the_budget(self, file_database, clock, otp_provider):
        async with file_database.session_factory() as db:
            db.add(OtpRequest(
                phone=TEST_PHONE,
                provider_ref="ref-0",
                attempt_count=1,
                max_attempts=5,
                expires_at=clock() + timedelta(minutes=5),
                created_at=clock(),
            ))
            await db.commit()

        async def rival():
            async with file_database.session_factory() as db:
                ledger = OtpLedger(db, otp_provider, AuditTrail(db, clock=clock), clock=clock)
                for _ in range(4):
                    await ledger.issue(TEST_PHONE)
                    await db.commit()

        async with file_database.session_factory() as db:
            ledger = OtpLedger(db, InterleavingOtpProvider(otp_provider, rival), AuditTrail(db, clock=clock), clock=clock)
            with pytest.raises(OtpExpired):
                await ledger.consume(TEST_PHONE, VALID_OTP)
            await db.rollback()

        async with file_database.session_factory() as db:
            otp_request = (await db.execute(select(OtpRequest))).scalar_one()
            users = (await db.execute(select(func.count(User.id)))).scalar_one()
        assert otp_request.attempt_count == 5
        assert otp_request.is_used is False
        assert users == 0


class TestOAuthStateRace:

    @pytest.mark.asyncio
    async def test_only_one_callback_upgrades(self, file_database, clock, vault, digilocker):
        async with file_database.session_factory() as db:
            user = User(
                phone=TEST_PHONE,
                verification_level=1,
                is_phone_verified=True,
                phone_verified_at=clock(),
                created_at=clock(),
                updated_at=clock(),
            )
            db.add(user)
            await db.flush()
            db.add(OAuthState(id="shared-state", user_id=user.id, expires_at=clock() + timedelta(minutes=15)))
            await db.commit()
            user_id = user.id

        levels = []

        async def rival():
            async with file_database.session_factory() as db:
                broker = OAuthStateBroker(db, digilocker, vault, AuditTrail(db, clock=clock), clock)
                result = await broker.handle_callback("code-b", "shared-state")
                levels.append(result.upgrade.level)

        async with file_database.session_factory() as db:
            broker = OAuthStateBroker(db, InterleavingDigiLocker(digilocker, rival), vault, AuditTrail(db, clock=clock), clock)
            with pytest.raises(StateMismatch):
                await broker.handle_callback("code-a", "shared-state")

        assert levels == [2]
        async with file_database.session_factory() as db:
            stored = (await db.execute(select(User).where(User.id == user_id))).scalar_one()
            states = (await db.execute(select(func.count()).select_from(OAuthState))).scalar_one()
            events = (await db.execute(
                select(AuditLog.event_type, AuditLog.event_metadata)
                .where(AuditLog.event_type.in_(["DIGILOCKER_VERIFIED", "DIGILOCKER_STATE_MISMATCH"]))
            )).all()
        assert stored.verification_level == 2
        assert states == 0
        assert sorted(event for event, _ in events) == ["DIGILOCKER_STATE_MISMATCH", "DIGILOCKER_VERIFIED"]
        mismatch = next(metadata for event, metadata in events if event == "DIGILOCKER_STATE_MISMATCH")
        assert mismatch == {"reason": "state_replayed"}
