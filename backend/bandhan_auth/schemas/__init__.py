# Schemas Package
from bandhan_auth.schemas.auth import (
    PhoneOtpSendRequest, PhoneOtpVerifyRequest, OtpSentResponse, RefreshRequest, AccessTokenResponse
)
from bandhan_auth.schemas.consent import ConsentRequest, VerifyPurposeRequest
from bandhan_auth.schemas.verification import AgeVerifyRequest, VideoSelfieRequest, LocationRequest

__all__ = [
    "PhoneOtpSendRequest", "PhoneOtpVerifyRequest", "OtpSentResponse", "RefreshRequest",
    "AccessTokenResponse",
    "ConsentRequest", "VerifyPurposeRequest",
    "AgeVerifyRequest", "VideoSelfieRequest", "LocationRequest"
]
