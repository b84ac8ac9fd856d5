"""
NetBill - Pydantic Schemas Package
"""

from netbill.schemas.discount import DiscountCreate, DiscountUpdate
from netbill.schemas.invoice import InvoiceCreate
from netbill.schemas.referral import (
    ApplyReferralRequest,
    FixedMarketingCodeCreate,
    MarketingReferralCreate,
    ReferralCodeCreate,
)
from netbill.schemas.settings import ReferralSettingsUpdate

__all__ = [
    "DiscountCreate",
    "DiscountUpdate",
    "InvoiceCreate",
    "ApplyReferralRequest",
    "FixedMarketingCodeCreate",
    "MarketingReferralCreate",
    "ReferralCodeCreate",
    "ReferralSettingsUpdate",
]
