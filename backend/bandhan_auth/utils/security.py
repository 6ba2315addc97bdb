"""
Security Utilities
Token signing, hashing, and masking helpers
"""
import hashlib
import re
import secrets
from datetime import timedelta
from typing import Optional
import bcrypt
from jose import jwt, JWTError
from loguru import logger

from bandhan_auth.config import settings
from bandhan_auth.utils.clock import utcnow

# +91 followed by a 10-digit mobile number starting with 6-9
INDIAN_PHONE_REGEX = re.compile(r"^\+91[6-9]\d{9}$")
OTP_CODE_REGEX = re.compile(r"^\d{6}$")


def is_valid_indian_phone(phone: str) -> bool:
    return bool(phone) and bool(INDIAN_PHONE_REGEX.match(phone))


def is_well_formed_otp(code: str) -> bool:
    return bool(code) and bool(OTP_CODE_REGEX.match(code))


def mask_phone(phone: Optional[str]) -> Optional[str]:
    """
    Mask an Indian phone number for logs, audit metadata and responses
    Example: "+919876543210" -> "+91-XXX-XXX3210"
    """
    if not phone:
        return phone
    match = re.match(r"^(\+91)(\d{3})(\d{3})(\d{4})$", phone)
    if not match:
        return mask_sensitive_value(phone)
    return f"{match.group(1)}-XXX-XXX{match.group(4)}"


def mask_sensitive_value(value: str, visible_chars: int = 4) -> str:
    """
    Mask sensitive value, showing only last few characters
    Example: "1234567890" -> "XXXXXX7890"
    """
    if not value or len(value) <= visible_chars:
        return "X" * len(value) if value else ""

    masked_length = len(value) - visible_chars
    return "X" * masked_length + value[-visible_chars:]


def _prehash(token: str) -> bytes:
    # bcrypt only looks at the first 72 bytes; JWTs are longer than that
    return hashlib.sha256(token.encode()).hexdigest().encode()


def hash_token(token: str) -> str:
    """Hash a refresh token using bcrypt"""
    return bcrypt.hashpw(_prehash(token), bcrypt.gensalt()).decode()


def verify_token_hash(token: str, hashed: str) -> bool:
    """Verify a refresh token against its stored hash"""
    try:
        return bcrypt.checkpw(_prehash(token), hashed.encode())
    except ValueError:
        return False


def _encode(claims: dict, token_type: str, expires_delta: timedelta) -> str:
    issued_at = utcnow()
    to_encode = claims.copy()
    to_encode.update({
        "exp": issued_at + expires_delta,
        "iat": issued_at,
        "jti": secrets.token_hex(8),
        "type": token_type
    })
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create JWT access token
    """
    return _encode(
        data,
        "access",
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )


def create_refresh_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create JWT refresh token
    """
    return _encode(
        data,
        "refresh",
        expires_delta or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    )


def decode_token(token: str) -> Optional[dict]:
    """
    Decode and validate JWT token
    Returns payload if valid, None otherwise
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return payload
    except JWTError as e:
        logger.warning(f"Token decode error: {e}")
        return None
