"""
Age gate (DPDP Act 2023): 18+ only, one-way latch, route guard
"""
from datetime import date

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from bandhan_auth.models import AuditLog, User
from bandhan_auth.services.age_gate import calculate_age, is_adult


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def submit(client: AsyncClient, token: str, date_of_birth):
    return await client.post("/auth/age-verify", json={"dateOfBirth": date_of_birth}, headers=auth(token))


class TestAgeCalculation:

    def test_birthday_not_yet_reached(self):
        assert calculate_age(date(2008, 6, 1), date(2026, 1, 15)) == 17

    def test_birthday_today(self):
        assert calculate_age(date(2008, 1, 15), date(2026, 1, 15)) == 18
        assert is_adult(date(2008, 1, 15), date(2026, 1, 15))

    def test_day_before_eighteenth(self):
        assert not is_adult(date(2008, 1, 16), date(2026, 1, 15))

    def test_leap_day_birthday(self):
        assert calculate_age(date(2008, 2, 29), date(2026, 2, 28)) == 17
        assert calculate_age(date(2008, 2, 29), date(2026, 3, 1)) == 18


class TestAgeVerify:
    """The test clock reads 2026-01-15"""

    @pytest.mark.asyncio
    async def test_adult_is_latched(self, client: AsyncClient, login):
        session = await login()
        response = await submit(client, session["accessToken"], "1995-08-15")
        assert response.status_code == 200
        data = response.json()
        assert data["isAgeVerified"] is True
        assert data["isAdult"] is True
        assert data["ageVerifiedAt"].startswith("2026-01-15")

    @pytest.mark.asyncio
    async def test_eighteenth_birthday_passes(self, client: AsyncClient, login):
        session = await login()
        response = await submit(client, session["accessToken"], "2008-01-15")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_full_timestamp_is_accepted(self, client: AsyncClient, login):
        session = await login()
        response = await submit(client, session["accessToken"], "1995-08-15T00:00:00.000Z")
        assert response.status_code == 200
        assert response.json()["isAgeVerified"] is True

    @pytest.mark.asyncio
    async def test_minor_is_rejected_and_audited(self, client: AsyncClient, login, database):
        session = await login()
        response = await submit(client, session["accessToken"], "2008-06-01")
        assert response.status_code == 403
        data = response.json()
        assert data["error"] == "AGE_RESTRICTION_VIOLATION"
        assert data["requiresAction"] == "ACCOUNT_RESTRICTION"
        assert data["details"] == {"providedAge": 17, "requiredAge": 18, "yearsUntilEligible": 1}

        async with database.session_factory() as db:
            user = (await db.execute(select(User))).scalar_one()
            failures = (await db.execute(
                select(func.count(AuditLog.id)).where(AuditLog.event_type == "AGE_VERIFICATION_FAILED")
            )).scalar_one()
        assert user.is_age_verified is False
        assert user.date_of_birth is None
        assert failures == 1

    @pytest.mark.asyncio
    async def test_minor_may_resubmit(self, client: AsyncClient, login):
        session = await login()
        assert (await submit(client, session["accessToken"], "2010-03-03")).status_code == 403
        assert (await submit(client, session["accessToken"], "1990-03-03")).status_code == 200

    @pytest.mark.asyncio
    async def test_latch_keeps_first_date(self, client: AsyncClient, login):
        session = await login()
        await submit(client, session["accessToken"], "1995-08-15")
        again = await submit(client, session["accessToken"], "1980-01-01")
        assert again.status_code == 200

        status = await client.get("/auth/age-verify/status", headers=auth(session["accessToken"]))
        assert status.json()["dobYear"] == 1995
        assert status.json()["isAgeVerified"] is True

    @pytest.mark.asyncio
    async def test_latch_survives_later_minor_submission(self, client: AsyncClient, login):
        session = await login()
        await submit(client, session["accessToken"], "1995-08-15")
        assert (await submit(client, session["accessToken"], "2012-01-01")).status_code == 403

        status = await client.get("/auth/age-verify/status", headers=auth(session["accessToken"]))
        assert status.json()["isAgeVerified"] is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["15/08/1995", "not-a-date", "1995-13-01", "2000-01-01xyz", "2000-01-01T99:00:00Z", None])
    async def test_malformed_date(self, client: AsyncClient, login, value):
        session = await login()
        response = await submit(client, session["accessToken"], value)
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_DATE_OF_BIRTH"

    @pytest.mark.asyncio
    async def test_future_date(self, client: AsyncClient, login):
        session = await login()
        response = await submit(client, session["accessToken"], "2030-01-01")
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_DATE_OF_BIRTH"

    @pytest.mark.asyncio
    async def test_implausible_age(self, client: AsyncClient, login):
        session = await login()
        response = await submit(client, session["accessToken"], "1890-01-01")
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client: AsyncClient):
        response = await client.post("/auth/age-verify", json={"dateOfBirth": "1995-08-15"})
        assert response.status_code == 401


class TestAgeGuard:

    @pytest.mark.asyncio
    async def test_profile_blocked_until_verified(self, client: AsyncClient, login):
        session = await login()
        blocked = await client.get("/profile", headers=auth(session["accessToken"]))
        assert blocked.status_code == 403
        assert blocked.json()["error"] == "AGE_NOT_VERIFIED"
        assert blocked.json()["requiresAction"] == "AGE_VERIFICATION"

        await submit(client, session["accessToken"], "1995-08-15")
        allowed = await client.get("/profile", headers=auth(session["accessToken"]))
        assert allowed.status_code == 200
        profile = allowed.json()["user"]
        assert profile["tiers"] == {"bronze": True, "silver": False, "gold": False}
        assert profile["phone"] == "+91-XXX-XXX3210"

    @pytest.mark.asyncio
    async def test_profile_without_token(self, client: AsyncClient):
        response = await client.get("/profile")
        assert response.status_code == 401
