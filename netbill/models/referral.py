"""
NetBill - Referral Models

Referral codes, redemption transactions and marketing referrals.

A referral code either belongs to one customer (personal code) or has no
customer at all (fixed marketing code created for a campaign).
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric,
    String, Enum as SQLEnum, text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from netbill.models.base import BaseModel, enum_values

if TYPE_CHECKING:
    from netbill.models.customer import Customer


class BenefitType(str, Enum):
    """Monetary outcome awarded for a referral."""
    CASH = "cash"          # Paid out to the referrer
    DISCOUNT = "discount"  # Billing credit


class ReferralTransactionStatus(str, Enum):
    """Referral transaction lifecycle."""
    PENDING = "pending"    # Redeemed, benefit not consumed yet
    APPLIED = "applied"    # Consumed by a billing cycle (terminal)


class MarketingReferralStatus(str, Enum):
    """Marketing fee payment status."""
    UNPAID = "unpaid"
    PAID = "paid"          # Terminal


class ReferralCode(BaseModel):
    """
    Referral code.

    usage_count never exceeds max_uses; a customer holds at most one
    active code.
    """

    __tablename__ = "referral_codes"
    __table_args__ = (
        CheckConstraint("usage_count <= max_uses", name="usage_within_cap"),
        Index(
            "uq_referral_codes_active_customer",
            "customer_id",
            unique=True,
            postgresql_where=text("is_active = true"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="Null for fixed marketing codes",
    )
    code: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
        index=True,
    )
    max_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    customer: Mapped[Optional["Customer"]] = relationship("Customer", foreign_keys=[customer_id])

    @property
    def is_fixed_marketing_code(self) -> bool:
        return self.customer_id is None

    def is_redeemable(self, now: Optional[datetime] = None) -> bool:
        """Active, unexpired and under its use cap."""
        now = now or datetime.utcnow()
        if not self.is_active:
            return False
        expires_at = self.expires_at
        if expires_at is not None and expires_at.tzinfo is not None:
            expires_at = expires_at.astimezone(timezone.utc).replace(tzinfo=None)
        if expires_at is not None and expires_at <= now:
            return False
        return self.usage_count < self.max_uses


class ReferralTransaction(BaseModel):
    """
    One redemption of a referral code.

    Created PENDING at redemption time; moves to APPLIED exactly once when
    its benefit is consumed while billing the referred customer.
    """

    __tablename__ = "referral_transactions"
    __table_args__ = (
        CheckConstraint(
            "referrer_id IS NULL OR referrer_id <> referred_id",
            name="no_self_referral",
        ),
    )

    referrer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("customers.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    referred_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    referral_code_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("referral_codes.id", ondelete="SET NULL"),
        nullable=True,
    )

    benefit_type: Mapped[BenefitType] = mapped_column(
        SQLEnum(BenefitType, name="referralbenefittype", values_callable=enum_values),
        nullable=False,
    )
    benefit_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )
    status: Mapped[ReferralTransactionStatus] = mapped_column(
        SQLEnum(ReferralTransactionStatus, name="referraltransactionstatus", values_callable=enum_values),
        nullable=False,
        default=ReferralTransactionStatus.PENDING,
        index=True,
    )
    applied_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    applied_invoice_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("invoices.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Invoice whose billing consumed the benefit",
    )

    referral_code: Mapped[Optional["ReferralCode"]] = relationship("ReferralCode")


class MarketingReferral(BaseModel):
    """Campaign tracking for a marketer-owned referral code."""

    __tablename__ = "marketing_referrals"

    marketer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    marketer_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    marketer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    referral_code: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
        index=True,
    )
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("customers.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    fee_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )
    status: Mapped[MarketingReferralStatus] = mapped_column(
        SQLEnum(MarketingReferralStatus, name="marketingreferralstatus", values_callable=enum_values),
        nullable=False,
        default=MarketingReferralStatus.UNPAID,
        index=True,
    )
    paid_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_paid(self) -> bool:
        return self.status == MarketingReferralStatus.PAID
