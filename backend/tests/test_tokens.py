"""
Session/token issuer: refresh, logout and session custody
"""
from datetime import timedelta

import pytest
from httpx import AsyncClient
from jose import jwt
from sqlalchemy import select

from bandhan_auth.models import AuditLog, User, UserSession
from bandhan_auth.utils.security import create_access_token, create_refresh_token, verify_token_hash


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TestTokenClaims:

    @pytest.mark.asyncio
    async def test_access_token_carries_level_not_phone(self, login):
        session = await login()
        claims = jwt.get_unverified_claims(session["accessToken"])
        assert claims["type"] == "access"
        assert claims["verificationLevel"] == 1
        assert claims["sub"] == session["user"]["id"]
        assert "phone" not in claims

    @pytest.mark.asyncio
    async def test_session_row_holds_only_a_hash(self, login, database):
        session = await login()
        async with database.session_factory() as db:
            rows = (await db.execute(select(UserSession))).scalars().all()
            user = (await db.execute(select(User))).scalar_one()
        assert len(rows) == 1
        assert rows[0].is_revoked is False
        assert rows[0].refresh_token_hash != session["refreshToken"]
        assert verify_token_hash(session["refreshToken"], rows[0].refresh_token_hash)
        assert user.refresh_token == rows[0].refresh_token_hash


class TestRefresh:

    @pytest.mark.asyncio
    async def test_refresh_returns_access_token(self, client: AsyncClient, login):
        session = await login()
        response = await client.post("/auth/refresh", json={"refreshToken": session["refreshToken"]})
        assert response.status_code == 200
        data = response.json()
        assert data["tokenType"] == "bearer"
        assert data["expiresIn"] == 900
        assert jwt.get_unverified_claims(data["accessToken"])["type"] == "access"

    @pytest.mark.asyncio
    async def test_missing_refresh_token(self, client: AsyncClient, database):
        response = await client.post("/auth/refresh", json={})
        assert response.status_code == 403
        assert response.json()["error"] == "REFRESH_TOKEN_INVALID"

        async with database.session_factory() as db:
            row = (await db.execute(
                select(AuditLog).where(AuditLog.event_type == "REFRESH_TOKEN_REJECTED")
            )).scalar_one()
        assert row.event_metadata == {"reason": "missing_token"}

    @pytest.mark.asyncio
    async def test_access_token_is_not_a_refresh_token(self, client: AsyncClient, login):
        session = await login()
        response = await client.post("/auth/refresh", json={"refreshToken": session["accessToken"]})
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_forged_session_id(self, client: AsyncClient, login):
        session = await login()
        forged = create_refresh_token({"sub": session["user"]["id"], "sid": "0" * 32})
        response = await client.post("/auth/refresh", json={"refreshToken": forged})
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_session_expiry_uses_stored_deadline(self, client: AsyncClient, login, clock):
        session = await login()
        clock.advance(days=7, seconds=1)
        response = await client.post("/auth/refresh", json={"refreshToken": session["refreshToken"]})
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_rejection_is_audited(self, client: AsyncClient, database):
        await client.post("/auth/refresh", json={"refreshToken": "garbage"})
        async with database.session_factory() as db:
            row = (await db.execute(
                select(AuditLog).where(AuditLog.event_type == "REFRESH_TOKEN_REJECTED")
            )).scalar_one()
        assert row.event_metadata == {"reason": "malformed_or_expired"}


class TestLogout:

    @pytest.mark.asyncio
    async def test_logout_revokes_every_device(self, client: AsyncClient, login, database):
        first = await login()
        second = await login()

        response = await client.post("/auth/logout", headers=auth(second["accessToken"]))
        assert response.status_code == 200
        assert response.json()["revokedSessions"] == 2

        for session in (first, second):
            refreshed = await client.post("/auth/refresh", json={"refreshToken": session["refreshToken"]})
            assert refreshed.status_code == 403
            assert refreshed.json()["error"] == "REFRESH_TOKEN_INVALID"

        async with database.session_factory() as db:
            rows = (await db.execute(select(UserSession))).scalars().all()
            user = (await db.execute(select(User))).scalar_one()
            logout = (await db.execute(select(AuditLog).where(AuditLog.event_type == "LOGOUT"))).scalar_one()
        assert len(rows) == 2
        assert all(row.is_revoked and row.revoked_at is not None for row in rows)
        assert user.refresh_token is None
        assert logout.event_metadata == {"revokedSessions": 2}

    @pytest.mark.asyncio
    async def test_logout_requires_access_token(self, client: AsyncClient):
        response = await client.post("/auth/logout")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_expired_access_token(self, client: AsyncClient, login):
        session = await login()
        expired = create_access_token({"sub": session["user"]["id"]}, expires_delta=timedelta(seconds=-5))
        response = await client.post("/auth/logout", headers=auth(expired))
        assert response.status_code == 401
