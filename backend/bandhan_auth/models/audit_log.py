"""
Audit Log Model
Append-only trail of verification, consent and retention events
"""
import uuid
from sqlalchemy import Column, String, DateTime, Text, JSON, Uuid

from bandhan_auth.database import Base
from bandhan_auth.utils.clock import utcnow


class AuditLog(Base):
    """Audit log model; metadata must already be PII-redacted"""
    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_type = Column(String(50), nullable=False, index=True)
    user_id = Column(Uuid, nullable=True, index=True)

    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(64), nullable=True)
    action = Column(String(80), nullable=False)
    event_metadata = Column("metadata", JSON, nullable=True)

    # Request metadata
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)

    def __repr__(self):
        return f"<AuditLog {self.event_type} - {self.id}>"

    def to_dict(self):
        return {
            "id": str(self.id),
            "eventType": self.event_type,
            "entityType": self.entity_type,
            "action": self.action,
            "metadata": self.event_metadata,
            "createdAt": self.created_at.isoformat() if self.created_at else None
        }
