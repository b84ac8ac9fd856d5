"""
NetBill - SQLAlchemy Models Package

This package contains all database models for the discount and referral engine.
"""

from netbill.models.base import BaseModel, TimestampMixin, AuditMixin
from netbill.models.customer import Customer, CustomerStatus, Package
from netbill.models.invoice import Invoice, InvoiceStatus
# Discount catalog
from netbill.models.discount import (
    Discount,
    DiscountApplication,
    DiscountStatus,
    DiscountType,
    TargetType,
)
# Referral ledger
from netbill.models.referral import (
    BenefitType,
    MarketingReferral,
    MarketingReferralStatus,
    ReferralCode,
    ReferralTransaction,
    ReferralTransactionStatus,
)
from netbill.models.accounting import (
    AccountingCategory,
    AccountingTransaction,
    EntryType,
    LedgerCategory,
    ReferenceType,
)
from netbill.models.settings import SystemSetting

__all__ = [
    # Base
    "BaseModel",
    "TimestampMixin",
    "AuditMixin",
    # Collaborators
    "Customer",
    "CustomerStatus",
    "Package",
    "Invoice",
    "InvoiceStatus",
    # Discounts
    "Discount",
    "DiscountApplication",
    "DiscountStatus",
    "DiscountType",
    "TargetType",
    # Referrals
    "BenefitType",
    "MarketingReferral",
    "MarketingReferralStatus",
    "ReferralCode",
    "ReferralTransaction",
    "ReferralTransactionStatus",
    # Accounting
    "AccountingCategory",
    "AccountingTransaction",
    "EntryType",
    "LedgerCategory",
    "ReferenceType",
    # Settings
    "SystemSetting",
]
