"""
User Model
Authoritative account aggregate carrying the verification tier state
"""
import uuid
from sqlalchemy import Column, String, Boolean, DateTime, Date, Integer, Text, CheckConstraint, Uuid
from sqlalchemy.orm import relationship

from bandhan_auth.database import Base
from bandhan_auth.utils.clock import utcnow


class User(Base):
    """User account model"""
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("verification_level >= 0 AND verification_level <= 3", name="ck_users_verification_level"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    phone = Column(String(15), unique=True, nullable=False, index=True)  # E.164, immutable once verified

    # Age gate (one-way latch)
    date_of_birth = Column(Date, nullable=True)
    is_age_verified = Column(Boolean, default=False, nullable=False)
    age_verified_at = Column(DateTime, nullable=True)

    # Verification tiers; level is a cache of how many tier timestamps are set
    verification_level = Column(Integer, default=0, nullable=False)

    # Tier 1 - phone OTP
    is_phone_verified = Column(Boolean, default=False, nullable=False)
    phone_verified_at = Column(DateTime, nullable=True)

    # Tier 2 - DigiLocker (sealed access token only, never the ID document)
    digilocker_token = Column(Text, nullable=True)
    digilocker_token_iv = Column(String(64), nullable=True)
    digilocker_token_tag = Column(String(64), nullable=True)
    digilocker_verified_at = Column(DateTime, nullable=True)

    # Tier 3 - video selfie (sealed liveness result)
    video_selfie_result = Column(Text, nullable=True)
    video_selfie_result_iv = Column(String(64), nullable=True)
    video_selfie_result_tag = Column(String(64), nullable=True)
    video_selfie_verified_at = Column(DateTime, nullable=True)

    # Hash of the most recently issued refresh token
    refresh_token = Column(String(255), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    sessions = relationship("UserSession", back_populates="user", lazy="noload")
    consents = relationship("Consent", back_populates="user", lazy="noload")

    def __repr__(self):
        return f"<User {self.id} level={self.verification_level}>"

    def to_dict(self):
        """Public view of the user; phone is always masked"""
        from bandhan_auth.utils.security import mask_phone
        return {
            "id": str(self.id),
            "phone": mask_phone(self.phone),
            "isPhoneVerified": self.is_phone_verified,
            "isAgeVerified": self.is_age_verified,
            "verificationLevel": self.verification_level,
            "phoneVerifiedAt": self.phone_verified_at.isoformat() if self.phone_verified_at else None,
            "digiLockerVerifiedAt": self.digilocker_verified_at.isoformat() if self.digilocker_verified_at else None,
            "videoSelfieVerifiedAt": self.video_selfie_verified_at.isoformat() if self.video_selfie_verified_at else None,
        }
