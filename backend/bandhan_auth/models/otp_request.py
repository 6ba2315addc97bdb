"""
OTP Models
One-time code requests and the issuance log used for sliding-window rate limiting
"""
import uuid
from sqlalchemy import Column, String, Boolean, DateTime, Integer, ForeignKey, Index, Uuid

from bandhan_auth.database import Base
from bandhan_auth.utils.clock import utcnow


class OtpRequest(Base):
    """A challenge bound to a phone number; destroyed only logically via is_used / is_expired"""
    __tablename__ = "otp_requests"
    __table_args__ = (
        Index("ix_otp_requests_phone_live", "phone", "is_used", "is_expired"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    phone = Column(String(15), nullable=False, index=True)
    provider_ref = Column(String(255), nullable=False)  # opaque reference returned by the SMS provider

    attempt_count = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=5, nullable=False)

    expires_at = Column(DateTime, nullable=False)
    is_used = Column(Boolean, default=False, nullable=False)
    is_expired = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<OtpRequest {self.id} attempts={self.attempt_count}/{self.max_attempts}>"

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.max_attempts - self.attempt_count)


class OtpIssuance(Base):
    """Append-only record of every successful send, one row per SMS"""
    __tablename__ = "otp_issuances"
    __table_args__ = (
        Index("ix_otp_issuances_phone_created", "phone", "created_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    phone = Column(String(15), nullable=False)
    otp_request_id = Column(Uuid, ForeignKey("otp_requests.id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
