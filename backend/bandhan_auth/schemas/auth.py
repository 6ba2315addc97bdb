"""
Authentication Schemas
Pydantic models for phone OTP, token refresh and logout
"""
from pydantic import BaseModel, Field, validator
from typing import Optional


class PhoneOtpSendRequest(BaseModel):
    """Request an OTP for an Indian mobile number"""
    phone: str = Field(..., max_length=20, description="Phone number in +91XXXXXXXXXX format")

    @validator("phone")
    def strip_phone(cls, v):
        return v.strip()

    class Config:
        json_schema_extra = {
            "example": {"phone": "+919876543210"}
        }


class PhoneOtpVerifyRequest(BaseModel):
    """Redeem the OTP delivered by SMS"""
    phone: str = Field(..., max_length=20)
    otp: str = Field(..., max_length=10, description="6-digit code")

    @validator("phone", "otp")
    def strip_value(cls, v):
        return v.strip()

    class Config:
        json_schema_extra = {
            "example": {"phone": "+919876543210", "otp": "123456"}
        }


class OtpSentResponse(BaseModel):
    message: str
    maskedPhone: str
    expiresInSeconds: int
    maxAttempts: int
    attemptsRemaining: int


class RefreshRequest(BaseModel):
    """Exchange a refresh token for a new access token"""
    refresh_token: Optional[str] = Field(None, alias="refreshToken")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {"refreshToken": "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9..."}
        }


class AccessTokenResponse(BaseModel):
    accessToken: str
    tokenType: str = "bearer"
    expiresIn: int
