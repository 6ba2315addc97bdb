"""
Location History Model
Coordinates with a hard retention expiry
"""
import uuid
from sqlalchemy import Column, Boolean, DateTime, Float, ForeignKey, Uuid

from bandhan_auth.database import Base
from bandhan_auth.utils.clock import utcnow


class LocationHistory(Base):
    """Location record"""
    __tablename__ = "location_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    accuracy = Column(Float, nullable=True)

    expires_at = Column(DateTime, nullable=False, index=True)
    is_expired = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": str(self.id),
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy,
            "recordedAt": self.created_at.isoformat() if self.created_at else None,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
        }
