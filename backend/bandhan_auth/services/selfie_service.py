"""
Video Selfie Verification (Tier 3)
Validates the upload, asks the liveness service, seals the result and
advances the user to Gold. The video is never persisted.
"""
import base64
import binascii
import json
import re
from dataclasses import dataclass
from typing import List, Tuple
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from bandhan_auth.errors import InvalidVideoFormat, LivenessFailed, VideoTooLarge
from bandhan_auth.services.audit_service import AuditTrail
from bandhan_auth.services.liveness import LivenessChecker, LivenessResult
from bandhan_auth.services.token_service import mint_access_token
from bandhan_auth.services.vault import CredentialVault
from bandhan_auth.services.verification import Tier, TierUpgradeResult, VerificationStateMachine
from bandhan_auth.utils.clock import Clock, utcnow

DATA_URL_REGEX = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)
DEFAULT_MIME_TYPE = "video/mp4"
MIN_VIDEO_BYTES = 750


def selfie_context(user_id) -> str:
    return f"video-selfie:{user_id}"


@dataclass
class SelfieResult:
    upgrade: TierUpgradeResult
    liveness: LivenessResult
    access_token: str


def decode_video(video_data: str, allowed_types: List[str], max_bytes: int) -> Tuple[bytes, str]:
    """
    Accept raw base64 or a data URL; return (bytes, mime type).
    Raises InvalidVideoFormat / VideoTooLarge.
    """
    if not video_data:
        raise InvalidVideoFormat(message="No video data provided.", message_hi="कोई वीडियो डेटा नहीं मिला।")

    mime_type = DEFAULT_MIME_TYPE
    payload = video_data
    match = DATA_URL_REGEX.match(video_data)
    if match:
        mime_type, payload = match.group(1), match.group(2)

    if mime_type not in allowed_types:
        raise InvalidVideoFormat(
            message=f"Invalid video format. Allowed: {', '.join(allowed_types)}",
            details={"allowedTypes": allowed_types, "received": mime_type},
        )

    # Reject on the encoded length first so oversized bodies are never decoded
    if len(payload) * 3 // 4 > max_bytes + 2:
        raise VideoTooLarge(details={"maxSize": max_bytes, "received": len(payload) * 3 // 4})

    try:
        video = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidVideoFormat(message="Video data is not valid base64.",
                                 message_hi="वीडियो डेटा मान्य base64 नहीं है।")

    if len(video) > max_bytes:
        raise VideoTooLarge(details={"maxSize": max_bytes, "received": len(video)})
    if len(video) < MIN_VIDEO_BYTES:
        raise InvalidVideoFormat(message="Video data is too short or invalid.",
                                 message_hi="वीडियो डेटा बहुत छोटा या अमान्य है।")
    return video, mime_type


class VideoSelfieVerifier:
    def __init__(
        self,
        db: AsyncSession,
        checker: LivenessChecker,
        vault: CredentialVault,
        audit: AuditTrail,
        clock: Clock = utcnow,
        min_confidence: float = 0.9,
        allowed_types: List[str] = ("video/mp4", "video/webm", "video/quicktime"),
        max_bytes: int = 10 * 1024 * 1024,
    ):
        self.db = db
        self.checker = checker
        self.vault = vault
        self.audit = audit
        self.clock = clock
        self.min_confidence = min_confidence
        self.allowed_types = list(allowed_types)
        self.max_bytes = max_bytes
        self.state_machine = VerificationStateMachine(db, audit, clock)

    async def verify(self, user_id: UUID, video_data: str) -> SelfieResult:
        video, mime_type = decode_video(video_data, self.allowed_types, self.max_bytes)
        result = await self.checker.check(video, mime_type)

        if not result.is_live or result.confidence < self.min_confidence:
            self.audit.record(
                event_type="LIVENESS_DETECTION_FAILED",
                action="TIER_3_VERIFICATION_FAILED",
                user_id=user_id,
                entity_id=user_id,
                metadata={
                    "confidence": result.confidence,
                    "checks": result.checks,
                    "reason": "Liveness check failed",
                },
            )
            await self.db.commit()
            logger.warning(f"Liveness failed for user {user_id} (confidence {result.confidence:.2f})")
            raise LivenessFailed(details={
                "confidence": result.confidence,
                "failedChecks": result.failed_checks,
            })

        sealed = await self.vault.seal(
            json.dumps({
                "isLive": result.is_live,
                "confidence": result.confidence,
                "verifiedAt": self.clock().isoformat(),
                "checks": result.checks,
            }),
            context=selfie_context(user_id),
        )
        upgrade = await self.state_machine.complete_tier(
            user_id,
            Tier.GOLD,
            values={
                "video_selfie_result": sealed.ciphertext,
                "video_selfie_result_iv": sealed.iv,
                "video_selfie_result_tag": sealed.auth_tag,
            },
            metadata={"confidence": result.confidence, "dataEncrypted": True},
        )
        await self.db.commit()
        return SelfieResult(upgrade=upgrade, liveness=result, access_token=mint_access_token(upgrade.user))
