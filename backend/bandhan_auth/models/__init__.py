# Models Package
from bandhan_auth.models.user import User
from bandhan_auth.models.otp_request import OtpRequest, OtpIssuance
from bandhan_auth.models.session import UserSession, OAuthState
from bandhan_auth.models.audit_log import AuditLog
from bandhan_auth.models.consent import Consent, CONSENT_PURPOSES
from bandhan_auth.models.location import LocationHistory

__all__ = [
    "User", "OtpRequest", "OtpIssuance", "UserSession", "OAuthState",
    "AuditLog", "Consent", "CONSENT_PURPOSES", "LocationHistory"
]
