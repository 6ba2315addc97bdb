"""
DigiLocker Integration Service
OAuth2 client for the MeitY DigiLocker API (Tier 2 verification)
DigiLocker API Documentation: https://partners.digitallocker.gov.in/

Only the access token leaves this module, and only to be sealed.
Profile responses are used as an existence check and dropped here.
"""
from typing import Any, Dict
from urllib.parse import urlencode

import httpx
from loguru import logger

from bandhan_auth.errors import ProviderUnavailable, VerificationFailed


class DigiLockerService:
    """Service for DigiLocker API integration"""

    # Minimal scope: we never request documents or eAadhaar
    SCOPE = "profile"

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str,
                 auth_url: str, token_url: str, profile_url: str, timeout: float = 10.0):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.auth_url = auth_url
        self.token_url = token_url
        self.profile_url = profile_url
        self.client = httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings) -> "DigiLockerService":
        return cls(
            client_id=settings.DIGILOCKER_CLIENT_ID,
            client_secret=settings.DIGILOCKER_CLIENT_SECRET,
            redirect_uri=settings.DIGILOCKER_REDIRECT_URI,
            auth_url=settings.DIGILOCKER_AUTH_URL,
            token_url=settings.DIGILOCKER_TOKEN_URL,
            profile_url=settings.DIGILOCKER_PROFILE_URL,
            timeout=settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
        )

    def get_authorization_url(self, state: str) -> str:
        """
        Build the DigiLocker authorization URL (no network call)

        Args:
            state: Opaque CSRF state, echoed back on the callback
        """
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.SCOPE,
            "state": state,
        }
        return f"{self.auth_url}?{urlencode(params)}"

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException:
            logger.error(f"DigiLocker call timed out: {url}")
            raise ProviderUnavailable()
        except httpx.HTTPError as e:
            logger.error(f"DigiLocker transport error: {type(e).__name__}")
            raise ProviderUnavailable()

    async def exchange_code_for_token(self, code: str) -> str:
        """
        Exchange authorization code for an access token.
        Single round trip, never retried.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        response = await self._send(
            "POST",
            self.token_url,
            data=data,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

        if response.status_code >= 500:
            logger.error(f"DigiLocker token endpoint returned {response.status_code}")
            raise ProviderUnavailable()

        try:
            token_data: Dict[str, Any] = response.json()
        except ValueError:
            token_data = {}

        if response.status_code != 200 or token_data.get("error") or not token_data.get("access_token"):
            # error codes only; provider descriptions are not echoed to clients
            logger.warning(
                f"DigiLocker token exchange rejected: status={response.status_code} "
                f"error={token_data.get('error', 'unknown')}"
            )
            raise VerificationFailed()

        logger.info("DigiLocker token exchange successful")
        return token_data["access_token"]

    async def has_verified_identity(self, access_token: str) -> bool:
        """
        Confirm a real DigiLocker account stands behind the token.
        The profile body is inspected for a subject id and discarded.
        """
        response = await self._send(
            "GET",
            self.profile_url,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if response.status_code >= 500:
            raise ProviderUnavailable()
        if response.status_code != 200:
            logger.warning(f"DigiLocker profile fetch rejected: status={response.status_code}")
            return False
        try:
            exists = bool(response.json().get("sub"))
        except ValueError:
            exists = False
        return exists

    async def aclose(self):
        await self.client.aclose()
