"""
Session Models
Refresh-token custody and single-use DigiLocker OAuth state
"""
import uuid
from sqlalchemy import Column, String, Boolean, DateTime, Text, ForeignKey, Uuid
from sqlalchemy.orm import relationship

from bandhan_auth.database import Base
from bandhan_auth.utils.clock import utcnow


class UserSession(Base):
    """A device login; revoked rows are kept as device history"""
    __tablename__ = "sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    refresh_token_hash = Column(String(255), nullable=False)  # bcrypt, never plaintext

    device_info = Column(Text, nullable=True)
    ip_address = Column(String(45), nullable=True)  # IPv6 compatible

    expires_at = Column(DateTime, nullable=False)
    is_revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)

    user = relationship("User", back_populates="sessions")

    def __repr__(self):
        return f"<UserSession {self.id} revoked={self.is_revoked}>"


class OAuthState(Base):
    """
    DigiLocker CSRF state. The primary key is the state value itself so
    lookup is a single equality match and a second consume finds nothing.
    """
    __tablename__ = "oauth_states"

    id = Column(String(64), primary_key=True)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<OAuthState user={self.user_id}>"
