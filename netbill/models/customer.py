"""
NetBill - Customer Model

Subscriber and package records the discount engine reads for targeting
and referral decisions. Full customer management lives outside the engine.
"""

import uuid
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import ForeignKey, Numeric, String, Text, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from netbill.models.base import BaseModel, enum_values

if TYPE_CHECKING:
    from netbill.models.invoice import Invoice


class CustomerStatus(str, Enum):
    """Subscription status of a customer."""
    ACTIVE = "active"          # Subscribed and paying
    INACTIVE = "inactive"
    SUSPENDED = "suspended"    # Isolated for non-payment
    PENDING = "pending"        # Registered, not yet installed


class Package(BaseModel):
    """Internet service package a customer subscribes to."""

    __tablename__ = "packages"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    customers: Mapped[List["Customer"]] = relationship(
        "Customer",
        back_populates="package",
    )


class Customer(BaseModel):
    """
    Customer model for ISP subscribers.

    The address is free text; area-targeted discounts match against it.
    """

    __tablename__ = "customers"

    # Basic Info
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Subscription
    package_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("packages.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    status: Mapped[CustomerStatus] = mapped_column(
        SQLEnum(CustomerStatus, name="customerstatus", values_callable=enum_values),
        default=CustomerStatus.PENDING,
        nullable=False,
        index=True,
    )

    # Referral attribution
    referral_code_used: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    referred_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("customers.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Relationships
    package: Mapped[Optional["Package"]] = relationship(
        "Package",
        back_populates="customers",
    )
    invoices: Mapped[List["Invoice"]] = relationship(
        "Invoice",
        back_populates="customer",
    )

    @property
    def is_active(self) -> bool:
        """Active customers already hold a paid subscription."""
        return self.status == CustomerStatus.ACTIVE
