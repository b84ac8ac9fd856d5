"""
NetBill - Billing Discount Models

Compensation and promotional discounts (the discount catalog) and the
audit rows recording each discount applied to an invoice.

Lifecycle of a discount:
    DRAFT  <-> ACTIVE  ->  RETIRED
A discount that was ever applied to an invoice is retired instead of
deleted, so its application rows keep pointing at a real definition.
RETIRED is terminal.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean, CheckConstraint, Date, DateTime, ForeignKey, JSON, Numeric, String, Text,
    UniqueConstraint, Enum as SQLEnum, func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from netbill.models.base import BaseModel, AuditMixin, enum_values


class DiscountType(str, Enum):
    """How the discount value is interpreted."""
    PERCENTAGE = "percentage"  # discount_value is a percentage of the invoice
    FIXED = "fixed"            # discount_value is a currency amount


class TargetType(str, Enum):
    """Which customers a discount targets."""
    ALL = "all"
    AREA = "area"          # target_ids are address fragments
    PACKAGE = "package"    # target_ids are package ids
    CUSTOMER = "customer"  # target_ids are customer ids


class DiscountStatus(str, Enum):
    """Discount lifecycle state."""
    DRAFT = "draft"
    ACTIVE = "active"
    RETIRED = "retired"


class Discount(BaseModel, AuditMixin):
    """
    Billing discount definition.

    Valid from start_date to end_date inclusive.
    """

    __tablename__ = "billing_discounts"
    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="valid_window"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Discount type and value
    discount_type: Mapped[DiscountType] = mapped_column(
        SQLEnum(DiscountType, name="discounttype", values_callable=enum_values),
        nullable=False,
    )
    discount_value: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
        comment="Percentage (0-100] or fixed currency amount",
    )
    max_discount_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=True,
        comment="Cap on percentage discounts; null = uncapped",
    )

    # Targeting
    target_type: Mapped[TargetType] = mapped_column(
        SQLEnum(TargetType, name="discounttargettype", values_callable=enum_values),
        nullable=False,
        default=TargetType.ALL,
    )
    target_ids: Mapped[List[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="Customer ids, package ids or area names, depending on target_type",
    )

    compensation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Validity window
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Lifecycle
    status: Mapped[DiscountStatus] = mapped_column(
        SQLEnum(DiscountStatus, name="discountstatus", values_callable=enum_values),
        nullable=False,
        default=DiscountStatus.ACTIVE,
        index=True,
    )
    apply_to_existing_invoices: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    applications: Mapped[List["DiscountApplication"]] = relationship(
        "DiscountApplication",
        back_populates="discount",
    )

    @property
    def is_active(self) -> bool:
        return self.status == DiscountStatus.ACTIVE

    @property
    def is_retired(self) -> bool:
        return self.status == DiscountStatus.RETIRED

    def status_text(self, today: Optional[date] = None) -> str:
        """Human readable status for listings."""
        today = today or date.today()
        if self.status == DiscountStatus.RETIRED:
            return "Retired"
        if self.end_date < today:
            return "Expired"
        if self.status == DiscountStatus.DRAFT:
            return "Draft"
        if self.start_date > today:
            return "Inactive"  # scheduled, window not open yet
        return "Active"


class DiscountApplication(BaseModel):
    """
    Audit record of one discount applied to one invoice.

    At most one row per (discount_id, invoice_id).
    """

    __tablename__ = "billing_discount_applications"
    __table_args__ = (
        UniqueConstraint("discount_id", "invoice_id", name="uq_billing_discount_applications_discount_invoice"),
    )

    discount_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("billing_discounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    original_amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    final_amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    applied_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    discount: Mapped["Discount"] = relationship(
        "Discount",
        back_populates="applications",
    )
