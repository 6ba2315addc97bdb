"""
Liveness Detection Client (Tier 3)
Contract for an external face-liveness service plus an HTTP implementation
"""
import base64
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List

import httpx
from loguru import logger

from bandhan_auth.errors import ProviderUnavailable, VerificationFailed

LIVENESS_CHECKS = ("faceDetected", "eyeMovement", "headMovement", "depthAnalysis")


@dataclass
class LivenessResult:
    is_live: bool
    confidence: float
    checks: Dict[str, bool] = field(default_factory=dict)

    @property
    def failed_checks(self) -> List[str]:
        return [name for name, passed in self.checks.items() if not passed]


class LivenessChecker(ABC):
    @abstractmethod
    async def check(self, video: bytes, mime_type: str) -> LivenessResult:
        """Analyse a selfie video; the video itself is never stored"""

    async def aclose(self):
        pass


class HttpLivenessChecker(LivenessChecker):
    """
    Generic JSON liveness endpoint.
    POST {url} {"video": <base64>, "mimeType": ...} -> {"isLive", "confidence", "checks"}
    """

    def __init__(self, url: str, api_key: str, timeout: float = 10.0):
        self.url = url
        self.client = httpx.AsyncClient(
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"} if api_key else {},
        )

    async def check(self, video: bytes, mime_type: str) -> LivenessResult:
        if not self.url:
            logger.error("LIVENESS_API_URL is not configured")
            raise ProviderUnavailable()

        try:
            response = await self.client.post(self.url, json={
                "video": base64.b64encode(video).decode(),
                "mimeType": mime_type,
            })
        except httpx.TimeoutException:
            logger.error("Liveness service timed out")
            raise ProviderUnavailable()
        except httpx.HTTPError as e:
            logger.error(f"Liveness service transport error: {type(e).__name__}")
            raise ProviderUnavailable()

        if response.status_code >= 500:
            raise ProviderUnavailable()
        if response.status_code != 200:
            logger.warning(f"Liveness service rejected the request: {response.status_code}")
            raise VerificationFailed(message="Liveness service rejected the video.",
                                     message_hi="लाइवनेस सेवा ने वीडियो अस्वीकार कर दिया।")
        try:
            data = response.json()
        except ValueError:
            raise ProviderUnavailable()

        checks = data.get("checks") or {}
        return LivenessResult(
            is_live=bool(data.get("isLive")),
            confidence=float(data.get("confidence") or 0.0),
            checks={name: bool(checks.get(name)) for name in LIVENESS_CHECKS},
        )

    async def aclose(self):
        await self.client.aclose()
