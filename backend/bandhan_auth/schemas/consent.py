"""
Consent Schemas
Pydantic models for purpose-based consent (DPDP Act 2023)
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict


class ConsentRequest(BaseModel):
    """Give or update consent; omitted purposes keep their current value"""
    purpose_matching: Optional[bool] = Field(None, alias="purposeMatching")
    purpose_marketing: Optional[bool] = Field(None, alias="purposeMarketing")
    purpose_analytics: Optional[bool] = Field(None, alias="purposeAnalytics")
    purpose_third_party: Optional[bool] = Field(None, alias="purposeThirdParty")

    def as_purposes(self) -> Dict[str, Optional[bool]]:
        return self.model_dump(by_alias=True)

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "purposeMatching": True,
                "purposeAnalytics": True
            }
        }


class VerifyPurposeRequest(BaseModel):
    """Check whether consent covers a purpose"""
    purpose: str = Field(..., description="One of purposeMatching, purposeMarketing, purposeAnalytics, purposeThirdParty")
