"""
Application Configuration
Manages all environment variables and settings
"""
from typing import List
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "Bandhan Verification API"
    APP_VERSION: str = "2.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 4000

    # Database - SQLite for local development, asyncpg URL in production
    DATABASE_URL: str = "sqlite+aiosqlite:///./bandhan.db"
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20

    # JWT
    SECRET_KEY: str = "change-me-in-production-at-least-32-characters"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Phone OTP (Tier 1)
    OTP_TTL_SECONDS: int = 300
    OTP_MAX_ATTEMPTS: int = 5
    OTP_RATE_LIMIT_COUNT: int = 5
    OTP_RATE_LIMIT_WINDOW_MINUTES: int = 60

    # MSG91 OTP gateway
    MSG91_BASE_URL: str = "https://control.msg91.com/api/v5"
    MSG91_AUTH_KEY: str = ""
    MSG91_TEMPLATE_ID: str = ""

    # DigiLocker Integration (Tier 2)
    # Register at https://partners.digitallocker.gov.in/ to get credentials
    DIGILOCKER_CLIENT_ID: str = ""
    DIGILOCKER_CLIENT_SECRET: str = ""
    DIGILOCKER_REDIRECT_URI: str = "http://localhost:4000/auth/digilocker/callback"
    DIGILOCKER_AUTH_URL: str = "https://digilocker.meripehchaan.gov.in/public/oauth2/1/authorize"
    DIGILOCKER_TOKEN_URL: str = "https://digilocker.meripehchaan.gov.in/public/oauth2/1/token"
    DIGILOCKER_PROFILE_URL: str = "https://digilocker.meripehchaan.gov.in/public/oauth2/1/profile"
    DIGILOCKER_STATE_TTL_MINUTES: int = 15

    # Key management for the credential vault
    KMS_PROVIDER: str = "aws"  # "aws" or "local" (local is refused in production)
    AWS_REGION: str = "ap-south-1"  # Mumbai region for India
    AWS_KMS_KEY_ID: str = ""
    LOCAL_KMS_MASTER_KEY: str = ""  # base64, 32 bytes; development only

    # Liveness detection (Tier 3)
    LIVENESS_API_URL: str = ""
    LIVENESS_API_KEY: str = ""
    LIVENESS_MIN_CONFIDENCE: float = 0.9
    MAX_VIDEO_SIZE_MB: int = 10
    ALLOWED_VIDEO_TYPES: List[str] = ["video/mp4", "video/webm", "video/quicktime"]

    # Every outbound call (SMS, DigiLocker, KMS, liveness) is bounded by this
    EXTERNAL_CALL_TIMEOUT_SECONDS: float = 10.0

    # CORS
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "https://bandhan.ai",
    ]

    # Rate Limiting (per IP, all routes)
    RATE_LIMIT_REQUESTS: int = 100
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    # Audit Logging
    AUDIT_LOG_ENABLED: bool = True

    # Location retention (DPDP Act 2023)
    LOCATION_RETENTION_DAYS: int = 90
    LOCATION_PURGE_AFTER_DAYS: int = 180
    CLEANUP_INTERVAL_SECONDS: int = 86400
    CLEANUP_ENABLED: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
