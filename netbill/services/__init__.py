"""
NetBill - Services Package

Business logic services.
"""

from netbill.services.customer_service import CustomerService
from netbill.services.ledger_service import LedgerService
from netbill.services.settings_service import (
    ReferralSettings,
    ReferralSettingsService,
    invalidate_referral_settings_cache,
)

# Discount catalog and referral ledger
from netbill.services.discount_service import DiscountService
from netbill.services.referral_service import ReferralService

# Invoice integration
from netbill.services.billing_discount_service import BillingDiscountService

__all__ = [
    "CustomerService",
    "LedgerService",
    "ReferralSettings",
    "ReferralSettingsService",
    "invalidate_referral_settings_cache",
    "DiscountService",
    "ReferralService",
    "BillingDiscountService",
]
