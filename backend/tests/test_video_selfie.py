"""
Tier 3: video selfie upload validation and liveness outcome
"""
import base64
import json

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from bandhan_auth.errors import InvalidVideoFormat, VideoTooLarge
from bandhan_auth.models import AuditLog, User
from bandhan_auth.services.liveness import LivenessResult
from bandhan_auth.services.selfie_service import decode_video, selfie_context
from bandhan_auth.services.vault import SealedSecret

ALLOWED = ["video/mp4", "video/webm", "video/quicktime"]
VIDEO = b"\x00\x00\x00\x18ftypmp42" + b"\x01" * 2048


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def data_url(video: bytes = VIDEO, mime_type: str = "video/webm") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(video).decode()}"


class TestDecodeVideo:

    def test_data_url(self):
        video, mime_type = decode_video(data_url(), ALLOWED, 10_000)
        assert video == VIDEO
        assert mime_type == "video/webm"

    def test_raw_base64_defaults_to_mp4(self):
        video, mime_type = decode_video(base64.b64encode(VIDEO).decode(), ALLOWED, 10_000)
        assert mime_type == "video/mp4"

    def test_disallowed_type(self):
        with pytest.raises(InvalidVideoFormat):
            decode_video(data_url(mime_type="video/x-msvideo"), ALLOWED, 10_000)

    def test_too_large(self):
        with pytest.raises(VideoTooLarge):
            decode_video(data_url(), ALLOWED, 1_000)

    def test_too_short(self):
        with pytest.raises(InvalidVideoFormat):
            decode_video(data_url(b"tiny"), ALLOWED, 10_000)

    def test_not_base64(self):
        with pytest.raises(InvalidVideoFormat):
            decode_video("data:video/mp4;base64,@@@@" + "A" * 2000, ALLOWED, 10_000)

    def test_empty(self):
        with pytest.raises(InvalidVideoFormat):
            decode_video("", ALLOWED, 10_000)


class TestVideoSelfieVerify:

    @pytest.mark.asyncio
    async def test_live_selfie_completes_gold(self, client: AsyncClient, login, database, vault):
        session = await login()
        response = await client.post(
            "/auth/video-selfie/verify",
            json={"videoData": data_url()},
            headers=auth(session["accessToken"]),
        )
        assert response.status_code == 200, response.text
        data = response.json()
        # Bronze plus Gold, Silver skipped
        assert data["user"]["verificationLevel"] == 2
        assert data["user"]["videoSelfieVerifiedAt"] is not None
        assert data["liveness"]["confidence"] == 0.97
        assert data["tokens"]["accessToken"]

        async with database.session_factory() as db:
            user = (await db.execute(select(User))).scalar_one()
        sealed = SealedSecret(user.video_selfie_result, user.video_selfie_result_iv, user.video_selfie_result_tag)
        stored = json.loads(await vault.unseal(sealed, context=selfie_context(user.id)))
        assert stored["isLive"] is True
        assert stored["confidence"] == 0.97

    @pytest.mark.asyncio
    async def test_low_confidence_is_rejected(self, client: AsyncClient, login, liveness, database):
        session = await login()
        liveness.result = LivenessResult(
            is_live=True,
            confidence=0.6,
            checks={"faceDetected": True, "eyeMovement": False, "headMovement": True, "depthAnalysis": False},
        )
        response = await client.post(
            "/auth/video-selfie/verify",
            json={"videoData": data_url()},
            headers=auth(session["accessToken"]),
        )
        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "LIVENESS_DETECTION_FAILED"
        assert data["details"]["failedChecks"] == ["eyeMovement", "depthAnalysis"]

        async with database.session_factory() as db:
            user = (await db.execute(select(User))).scalar_one()
            failures = (await db.execute(
                select(func.count(AuditLog.id)).where(AuditLog.event_type == "LIVENESS_DETECTION_FAILED")
            )).scalar_one()
        assert user.verification_level == 1
        assert user.video_selfie_verified_at is None
        assert failures == 1

    @pytest.mark.asyncio
    async def test_not_live(self, client: AsyncClient, login, liveness):
        session = await login()
        liveness.result = LivenessResult(is_live=False, confidence=0.99)
        response = await client.post(
            "/auth/video-selfie/verify",
            json={"videoData": data_url()},
            headers=auth(session["accessToken"]),
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_bad_format_never_reaches_liveness(self, client: AsyncClient, login):
        session = await login()
        response = await client.post(
            "/auth/video-selfie/verify",
            json={"videoData": data_url(mime_type="image/png")},
            headers=auth(session["accessToken"]),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_VIDEO_FORMAT"

    @pytest.mark.asyncio
    async def test_status_after_full_ladder(self, client: AsyncClient, login):
        session = await login()
        init = await client.get("/auth/digilocker/init", headers=auth(session["accessToken"]))
        await client.get("/auth/digilocker/callback", params={"code": "c", "state": init.json()["state"]})
        await client.post(
            "/auth/video-selfie/verify",
            json={"videoData": data_url()},
            headers=auth(session["accessToken"]),
        )

        status = await client.get("/auth/video-selfie/status", headers=auth(session["accessToken"]))
        data = status.json()
        assert data["verificationLevel"] == 3
        assert data["fullyVerified"] is True
        assert data["tier1Complete"] and data["tier2Complete"] and data["tier3Complete"]

    @pytest.mark.asyncio
    async def test_instructions_are_public(self, client: AsyncClient):
        response = await client.get("/auth/video-selfie/instructions")
        assert response.status_code == 200
        assert response.json()["instructions"]["videoSpecs"]["maxFileSize"] == 10
