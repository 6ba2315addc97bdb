"""
Verification Schemas
Age gate, video selfie and location requests
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any


class AgeVerifyRequest(BaseModel):
    """Date of birth, ISO 8601 (YYYY-MM-DD); parsed by the route so bad input maps to INVALID_DATE_OF_BIRTH"""
    date_of_birth: Optional[str] = Field(None, alias="dateOfBirth", max_length=32)

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {"dateOfBirth": "1995-08-15"}
        }


class VideoSelfieRequest(BaseModel):
    """Base64 video or data URL (data:video/webm;base64,...)"""
    video_data: Optional[str] = Field(None, alias="videoData")
    metadata: Optional[Dict[str, Any]] = None

    class Config:
        populate_by_name = True


class LocationRequest(BaseModel):
    latitude: float
    longitude: float
    accuracy: Optional[float] = Field(None, ge=0)

    class Config:
        json_schema_extra = {
            "example": {"latitude": 19.076, "longitude": 72.8777, "accuracy": 25.0}
        }
