"""
Audit Trail Service
Writes append-only audit rows inside the caller's transaction
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from bandhan_auth.models.audit_log import AuditLog
from bandhan_auth.utils.clock import Clock, utcnow
from bandhan_auth.utils.security import mask_phone

# Metadata keys that must never reach the audit table
_FORBIDDEN_KEYS = {"token", "access_token", "accessToken", "refresh_token", "refreshToken",
                   "otp", "code", "aadhaar", "profile", "videoData"}


@dataclass
class RequestContext:
    """Who is calling; attached to every audit row"""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            ip = forwarded.split(",")[0].strip()
        else:
            ip = request.client.host if request.client else None
        user_agent = request.headers.get("User-Agent")
        return cls(ip_address=ip, user_agent=user_agent[:500] if user_agent else None)


def redact(metadata: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Drop raw credentials and mask phone numbers"""
    if metadata is None:
        return None
    clean = {}
    for key, value in metadata.items():
        if key in _FORBIDDEN_KEYS:
            continue
        if key == "phone" and isinstance(value, str):
            value = mask_phone(value)
        elif isinstance(value, dict):
            value = redact(value)
        clean[key] = value
    return clean


class AuditTrail:
    """Adds audit rows to the session; the caller owns the commit"""

    def __init__(self, db: AsyncSession, context: Optional[RequestContext] = None, clock: Clock = utcnow):
        self.db = db
        self.context = context or RequestContext()
        self.clock = clock

    def record(
        self,
        event_type: str,
        action: str,
        entity_type: str = "USER",
        user_id: Optional[UUID] = None,
        entity_id: Optional[Any] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        entry = AuditLog(
            event_type=event_type,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            action=action,
            event_metadata=redact(metadata),
            ip_address=self.context.ip_address,
            user_agent=self.context.user_agent,
            created_at=self.clock(),
        )
        self.db.add(entry)
        return entry
