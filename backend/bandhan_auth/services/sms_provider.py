"""
OTP Delivery Provider
The provider owns code generation, delivery and confirmation.
We only keep its opaque reference.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict

import httpx
from loguru import logger

from bandhan_auth.errors import OtpSendFailed, ProviderUnavailable
from bandhan_auth.utils.security import mask_phone


class OtpProvider(ABC):
    """Contract consumed by the OTP ledger"""

    @abstractmethod
    async def send_code(self, phone: str) -> str:
        """Generate and deliver a code; return the provider's reference"""

    @abstractmethod
    async def confirm(self, phone: str, provider_ref: str, code: str) -> bool:
        """Ask the provider whether code is the one it delivered"""

    async def aclose(self):
        pass


class Msg91OtpProvider(OtpProvider):
    """MSG91 OTP API v5 (DLT-registered template)"""

    SEND_PATH = "/otp"
    VERIFY_PATH = "/otp/verify"

    def __init__(self, auth_key: str, template_id: str, base_url: str, timeout: float = 10.0):
        self.auth_key = auth_key
        self.template_id = template_id
        self.client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"authkey": auth_key, "Accept": "application/json"},
        )

    @staticmethod
    def _msisdn(phone: str) -> str:
        # MSG91 expects the country code without the leading plus
        return phone.lstrip("+")

    async def _request(self, method: str, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self.client.request(method, path, params=params)
        except httpx.TimeoutException:
            logger.error(f"MSG91 {path} timed out")
            raise ProviderUnavailable()
        except httpx.HTTPError as e:
            logger.error(f"MSG91 {path} transport error: {type(e).__name__}")
            raise ProviderUnavailable()

        if response.status_code >= 500:
            logger.error(f"MSG91 {path} returned {response.status_code}")
            raise ProviderUnavailable()
        try:
            return response.json()
        except ValueError:
            logger.error(f"MSG91 {path} returned a non-JSON body")
            raise ProviderUnavailable()

    async def send_code(self, phone: str) -> str:
        data = await self._request("POST", self.SEND_PATH, {
            "template_id": self.template_id,
            "mobile": self._msisdn(phone),
        })
        if data.get("type") != "success" or not data.get("request_id"):
            logger.error(f"MSG91 refused OTP send for {mask_phone(phone)}")
            raise OtpSendFailed()
        logger.info(f"OTP dispatched to {mask_phone(phone)}")
        return data["request_id"]

    async def confirm(self, phone: str, provider_ref: str, code: str) -> bool:
        data = await self._request("GET", self.VERIFY_PATH, {
            "otp": code,
            "mobile": self._msisdn(phone),
        })
        return data.get("type") == "success"

    async def aclose(self):
        await self.client.aclose()
