"""
Error Codes and Types
Typed API errors with English and Hindi user-facing messages
"""
import enum
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from loguru import logger


class ErrorCode(str, enum.Enum):
    """Machine-readable error codes returned to clients"""
    # Authentication
    UNAUTHORIZED = "UNAUTHORIZED"
    REFRESH_TOKEN_INVALID = "REFRESH_TOKEN_INVALID"

    # Age verification
    AGE_RESTRICTION_VIOLATION = "AGE_RESTRICTION_VIOLATION"
    AGE_NOT_VERIFIED = "AGE_NOT_VERIFIED"
    INVALID_DATE_OF_BIRTH = "INVALID_DATE_OF_BIRTH"

    # Phone OTP
    INVALID_PHONE_FORMAT = "INVALID_PHONE_FORMAT"
    OTP_SEND_FAILED = "OTP_SEND_FAILED"
    OTP_VERIFICATION_FAILED = "OTP_VERIFICATION_FAILED"
    OTP_EXPIRED = "OTP_EXPIRED"
    OTP_MAX_ATTEMPTS_EXCEEDED = "OTP_MAX_ATTEMPTS_EXCEEDED"

    # DigiLocker
    DIGILOCKER_VERIFICATION_FAILED = "DIGILOCKER_VERIFICATION_FAILED"
    DIGILOCKER_STATE_MISMATCH = "DIGILOCKER_STATE_MISMATCH"

    # Video selfie
    LIVENESS_DETECTION_FAILED = "LIVENESS_DETECTION_FAILED"
    INVALID_VIDEO_FORMAT = "INVALID_VIDEO_FORMAT"
    VIDEO_TOO_LARGE = "VIDEO_TOO_LARGE"

    # Consent
    CONSENT_REQUIRED = "CONSENT_REQUIRED"
    CONSENT_WITHDRAWN = "CONSENT_WITHDRAWN"
    INVALID_CONSENT_PURPOSE = "INVALID_CONSENT_PURPOSE"

    # Encryption
    ENCRYPTION_FAILED = "ENCRYPTION_FAILED"
    DECRYPTION_FAILED = "DECRYPTION_FAILED"

    # Data
    USER_NOT_FOUND = "USER_NOT_FOUND"

    # Rate limiting
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Validation
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"

    # Server
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


class ApiError(Exception):
    """Base class for every error that is rendered to the client"""

    code: ErrorCode = ErrorCode.INTERNAL_SERVER_ERROR
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    message: str = "An unexpected error occurred."
    message_hi: str = "एक अनपेक्षित त्रुटि हुई।"
    requires_action: Optional[str] = None

    def __init__(self, message: Optional[str] = None, message_hi: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        if message:
            self.message = message
        if message_hi:
            self.message_hi = message_hi
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "error": self.code.value,
            "message": self.message,
            "messageHi": self.message_hi,
        }
        if self.details:
            body["details"] = self.details
        if self.requires_action:
            body["requiresAction"] = self.requires_action
        return body


# ---------------------------------------------------------------------------
# Validation errors (400)
# ---------------------------------------------------------------------------

class InvalidPhoneFormat(ApiError):
    code = ErrorCode.INVALID_PHONE_FORMAT
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid phone number format. Use +91XXXXXXXXXX (Indian format)."
    message_hi = "अमान्य फ़ोन नंबर। +91XXXXXXXXXX प्रारूप का उपयोग करें।"


class InvalidDateOfBirth(ApiError):
    code = ErrorCode.INVALID_DATE_OF_BIRTH
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid date format. Use ISO 8601 format (YYYY-MM-DD)."
    message_hi = "अमान्य तारीख। YYYY-MM-DD प्रारूप का उपयोग करें।"


class InvalidInput(ApiError):
    code = ErrorCode.INVALID_INPUT
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid input."
    message_hi = "अमान्य इनपुट।"


class InvalidVideoFormat(ApiError):
    code = ErrorCode.INVALID_VIDEO_FORMAT
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid video format."
    message_hi = "अमान्य वीडियो प्रारूप।"


class VideoTooLarge(ApiError):
    code = ErrorCode.VIDEO_TOO_LARGE
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Video too large."
    message_hi = "वीडियो बहुत बड़ा है।"


class InvalidConsentPurpose(ApiError):
    code = ErrorCode.INVALID_CONSENT_PURPOSE
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid consent purpose."
    message_hi = "अमान्य सहमति उद्देश्य।"


# ---------------------------------------------------------------------------
# OTP errors
# ---------------------------------------------------------------------------

class OtpExpired(ApiError):
    code = ErrorCode.OTP_EXPIRED
    status_code = status.HTTP_400_BAD_REQUEST
    message = "OTP has expired or already been used. Please request a new OTP."
    message_hi = "OTP की समय-सीमा समाप्त हो गई है या पहले ही उपयोग हो चुका है। कृपया नया OTP मांगें।"


class InvalidCode(ApiError):
    code = ErrorCode.OTP_VERIFICATION_FAILED
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid OTP. Please try again."
    message_hi = "अमान्य OTP। कृपया पुनः प्रयास करें।"


class MaxAttemptsExceeded(ApiError):
    code = ErrorCode.OTP_MAX_ATTEMPTS_EXCEEDED
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Maximum OTP attempts exceeded. Please request a new OTP later."
    message_hi = "OTP प्रयासों की अधिकतम सीमा पार हो गई है। कृपया बाद में नया OTP मांगें।"


class RateLimited(ApiError):
    code = ErrorCode.RATE_LIMIT_EXCEEDED
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    message = "Too many OTP requests. Please try again after 1 hour."
    message_hi = "बहुत अधिक OTP अनुरोध। कृपया 1 घंटे बाद पुनः प्रयास करें।"


class OtpSendFailed(ApiError):
    code = ErrorCode.OTP_SEND_FAILED
    status_code = status.HTTP_502_BAD_GATEWAY
    message = "We could not send the OTP. Please try again."
    message_hi = "हम OTP नहीं भेज सके। कृपया पुनः प्रयास करें।"


# ---------------------------------------------------------------------------
# Security boundary errors (403, always audit-logged by the caller)
# ---------------------------------------------------------------------------

class StateMismatch(ApiError):
    code = ErrorCode.DIGILOCKER_STATE_MISMATCH
    status_code = status.HTTP_403_FORBIDDEN
    message = "Invalid or expired state parameter. Please restart the verification process."
    message_hi = "अमान्य या समाप्त state पैरामीटर। कृपया सत्यापन प्रक्रिया फिर से शुरू करें।"


class RefreshTokenInvalid(ApiError):
    code = ErrorCode.REFRESH_TOKEN_INVALID
    status_code = status.HTTP_403_FORBIDDEN
    message = "Invalid or expired refresh token."
    message_hi = "अमान्य या समाप्त रिफ्रेश टोकन।"


class AgeRestrictionViolation(ApiError):
    code = ErrorCode.AGE_RESTRICTION_VIOLATION
    status_code = status.HTTP_403_FORBIDDEN
    message = "You must be 18 years or older to use this service."
    message_hi = "इस सेवा का उपयोग करने के लिए आपकी आयु 18 वर्ष या उससे अधिक होनी चाहिए।"
    requires_action = "ACCOUNT_RESTRICTION"


class AgeNotVerified(ApiError):
    code = ErrorCode.AGE_NOT_VERIFIED
    status_code = status.HTTP_403_FORBIDDEN
    message = "Age verification required. Please provide your date of birth."
    message_hi = "आयु सत्यापन आवश्यक है। कृपया अपनी जन्मतिथि दर्ज करें।"
    requires_action = "AGE_VERIFICATION"


class ConsentRequired(ApiError):
    code = ErrorCode.CONSENT_REQUIRED
    status_code = status.HTTP_403_FORBIDDEN
    message = "Consent required for this purpose."
    message_hi = "इस उद्देश्य के लिए सहमति आवश्यक है।"


class ConsentNotActive(ApiError):
    code = ErrorCode.CONSENT_WITHDRAWN
    status_code = status.HTTP_400_BAD_REQUEST
    message = "No active consent found to withdraw."
    message_hi = "वापस लेने के लिए कोई सक्रिय सहमति नहीं मिली।"


class Unauthorized(ApiError):
    code = ErrorCode.UNAUTHORIZED
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Could not validate credentials."
    message_hi = "प्रमाण-पत्र सत्यापित नहीं हो सके।"


class UserNotFound(ApiError):
    code = ErrorCode.USER_NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND
    message = "User not found."
    message_hi = "उपयोगकर्ता नहीं मिला।"


# ---------------------------------------------------------------------------
# Upstream provider errors
# ---------------------------------------------------------------------------

class VerificationFailed(ApiError):
    code = ErrorCode.DIGILOCKER_VERIFICATION_FAILED
    status_code = status.HTTP_400_BAD_REQUEST
    message = "DigiLocker verification failed. Please try again."
    message_hi = "DigiLocker सत्यापन विफल रहा। कृपया पुनः प्रयास करें।"


class LivenessFailed(ApiError):
    code = ErrorCode.LIVENESS_DETECTION_FAILED
    status_code = status.HTTP_400_BAD_REQUEST
    message = ("Liveness detection failed. Please ensure you're recording in good lighting "
               "and follow the on-screen instructions.")
    message_hi = "लाइवनेस जांच विफल रही। कृपया अच्छी रोशनी में रिकॉर्ड करें और निर्देशों का पालन करें।"


class ProviderUnavailable(ApiError):
    code = ErrorCode.SERVICE_UNAVAILABLE
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    message = "A verification partner is not responding. Please try again shortly."
    message_hi = "सत्यापन सेवा अभी उपलब्ध नहीं है। कृपया थोड़ी देर बाद प्रयास करें।"


# ---------------------------------------------------------------------------
# Internal errors
# ---------------------------------------------------------------------------

class EncryptionFailed(ApiError):
    code = ErrorCode.ENCRYPTION_FAILED
    message = "We could not secure your data. Please try again."
    message_hi = "हम आपका डेटा सुरक्षित नहीं कर सके। कृपया पुनः प्रयास करें।"


class DecryptionFailed(ApiError):
    code = ErrorCode.DECRYPTION_FAILED
    message = "Stored credential failed its integrity check."
    message_hi = "संग्रहीत जानकारी की अखंडता जांच विफल रही।"


class InvariantViolation(ApiError):
    """Raised when an atomic update finds state that should be impossible"""
    code = ErrorCode.INTERNAL_SERVER_ERROR


async def api_error_handler(request: Request, exc: ApiError):
    """Render ApiError subclasses; internal ones are logged as errors"""
    if exc.status_code >= 500:
        logger.error(f"{exc.code.value}: {exc.message} path={request.url.path}")
        if isinstance(exc, InvariantViolation):
            return JSONResponse(
                status_code=exc.status_code,
                content=ApiError().to_dict()
            )
    elif exc.status_code == status.HTTP_403_FORBIDDEN:
        logger.warning(f"Security boundary: {exc.code.value} path={request.url.path}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
