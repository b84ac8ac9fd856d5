"""
NetBill - Settings Schemas

Partial update payload for the referral programme settings.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class ReferralSettingsUpdate(BaseModel):
    """Only the fields that are set are written."""
    referral_enabled: Optional[bool] = None
    referrer_discount_enabled: Optional[bool] = None
    referrer_cash_enabled: Optional[bool] = None
    referred_installation_discount_enabled: Optional[bool] = None
    referrer_discount_fixed: Optional[Decimal] = Field(None, ge=0)
    referrer_cash_amount: Optional[Decimal] = Field(None, ge=0)
    referred_installation_discount_fixed: Optional[Decimal] = Field(None, ge=0)
    marketing_min_fee: Optional[Decimal] = Field(None, ge=0)
    marketing_max_fee: Optional[Decimal] = Field(None, ge=0)
    referral_code_expiry_days: Optional[int] = Field(None, ge=1)
    referral_max_uses: Optional[int] = Field(None, ge=1)

    @model_validator(mode="after")
    def check_fee_range(self):
        if (
            self.marketing_min_fee is not None
            and self.marketing_max_fee is not None
            and self.marketing_min_fee > self.marketing_max_fee
        ):
            raise ValueError("marketing_min_fee must not exceed marketing_max_fee")
        return self
