"""
NetBill - Referral Schemas

Pydantic schemas for referral codes and marketing referrals.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from netbill.models.referral import BenefitType


# ===========================================
# REQUEST SCHEMAS
# ===========================================

class ReferralCodeCreate(BaseModel):
    """Schema for issuing a personal referral code."""
    customer_id: UUID
    max_uses: Optional[int] = Field(None, ge=1, description="Defaults to referral_max_uses")
    expiry_days: Optional[int] = Field(None, ge=1, description="Defaults to referral_code_expiry_days")


class ApplyReferralRequest(BaseModel):
    """Schema for redeeming a referral code on behalf of a new customer."""
    code: str = Field(..., min_length=1, max_length=20)
    referred_customer_id: UUID
    # Accepted for compatibility; the benefit is decided from the code owner
    benefit_type_hint: Optional[BenefitType] = None

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()


class MarketingReferralCreate(BaseModel):
    """Schema for registering a marketer-sourced customer."""
    marketer_name: str = Field(..., min_length=1, max_length=255)
    marketer_phone: Optional[str] = Field(None, max_length=20)
    marketer_email: Optional[EmailStr] = None
    customer_id: Optional[UUID] = None
    fee_amount: Decimal = Field(..., description="Must lie within the configured marketing fee range")


class FixedMarketingCodeCreate(BaseModel):
    """Schema for a campaign code that belongs to no customer."""
    code: str = Field(..., min_length=3, max_length=20, pattern=r"^[A-Za-z0-9]+$")
    marketer_name: str = Field(..., min_length=1, max_length=255)
    marketer_phone: Optional[str] = Field(None, max_length=20)
    marketer_email: Optional[EmailStr] = None
    max_uses: int = Field(1000, ge=1)
    expiry_days: int = Field(365, ge=1)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()
