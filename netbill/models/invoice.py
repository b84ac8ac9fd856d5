"""
NetBill - Invoice Model

Monthly subscription invoice. The discount engine owns the discount_amount,
final_amount and discount_notes columns; everything else is written by the
billing cycle.

Once an invoice is paid its discounts are immutable.
"""

import uuid
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Date, ForeignKey, Numeric, String, Text, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from netbill.models.base import BaseModel, enum_values

if TYPE_CHECKING:
    from netbill.models.customer import Customer


class InvoiceStatus(str, Enum):
    """Invoice payment status."""
    UNPAID = "unpaid"
    PAID = "paid"
    CANCELLED = "cancelled"


class Invoice(BaseModel):
    """
    Invoice model for subscription billing.

    amount is the package price before any discount;
    final_amount = max(0, amount - discount_amount).
    """

    __tablename__ = "invoices"

    # Invoice Number
    invoice_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        index=True,
    )

    # Customer
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    package_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("packages.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Dates
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    # Amounts
    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )
    final_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )
    discount_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Status
    status: Mapped[InvoiceStatus] = mapped_column(
        SQLEnum(InvoiceStatus, name="invoicestatus", values_callable=enum_values),
        default=InvoiceStatus.UNPAID,
        nullable=False,
        index=True,
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    customer: Mapped["Customer"] = relationship(
        "Customer",
        back_populates="invoices",
    )

    @property
    def is_paid(self) -> bool:
        """Check if invoice is settled."""
        return self.status == InvoiceStatus.PAID
