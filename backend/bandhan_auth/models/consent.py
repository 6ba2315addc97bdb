"""
Consent Model
Purpose-based consent records (DPDP Act 2023); each change is a new row
"""
import uuid
from sqlalchemy import Column, String, Boolean, DateTime, Text, ForeignKey, Uuid
from sqlalchemy.orm import relationship

from bandhan_auth.database import Base
from bandhan_auth.utils.clock import utcnow

CONSENT_PURPOSES = (
    "purposeMatching",
    "purposeMarketing",
    "purposeAnalytics",
    "purposeThirdParty",
)


class Consent(Base):
    """Consent record"""
    __tablename__ = "consents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)

    purpose_matching = Column(Boolean, default=False, nullable=False)
    purpose_marketing = Column(Boolean, default=False, nullable=False)
    purpose_analytics = Column(Boolean, default=False, nullable=False)
    purpose_third_party = Column(Boolean, default=False, nullable=False)

    consent_version = Column(String(10), default="1.0", nullable=False)
    consent_given_at = Column(DateTime, default=utcnow)
    consent_withdrawn_at = Column(DateTime, nullable=True)

    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)

    user = relationship("User", back_populates="consents")

    # camelCase purpose name -> column attribute
    PURPOSE_COLUMNS = {
        "purposeMatching": "purpose_matching",
        "purposeMarketing": "purpose_marketing",
        "purposeAnalytics": "purpose_analytics",
        "purposeThirdParty": "purpose_third_party",
    }

    def __repr__(self):
        return f"<Consent {self.id} v{self.consent_version}>"

    def has_purpose(self, purpose: str) -> bool:
        return bool(getattr(self, self.PURPOSE_COLUMNS[purpose]))

    def purposes(self) -> dict:
        return {name: self.has_purpose(name) for name in CONSENT_PURPOSES}

    def to_dict(self):
        return {
            **self.purposes(),
            "consentGivenAt": self.consent_given_at.isoformat() if self.consent_given_at else None,
            "consentWithdrawnAt": self.consent_withdrawn_at.isoformat() if self.consent_withdrawn_at else None,
            "consentVersion": self.consent_version,
            "isActive": self.consent_withdrawn_at is None,
        }
