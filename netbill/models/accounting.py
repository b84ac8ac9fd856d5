"""
NetBill - Accounting Ledger Models

Expense categories and ledger entries written for referral programme costs:
referral discounts, cash rewards, installation discounts and marketing fees.
"""

import uuid
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import Date, ForeignKey, Numeric, String, Text, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from netbill.models.base import BaseModel, enum_values


class EntryType(str, Enum):
    """Direction of a ledger entry."""
    INCOME = "income"
    EXPENSE = "expense"


class LedgerCategory(str, Enum):
    """Expense categories the referral programme books against."""
    REFERRAL_DISCOUNT = "Referral Discount"
    REFERRAL_CASH_REWARD = "Referral Cash Reward"
    REFERRAL_MARKETING_FEE = "Referral Marketing Fee"
    REFERRAL_INSTALLATION_DISCOUNT = "Referral Installation Discount"


class ReferenceType(str, Enum):
    """What a ledger entry points back to."""
    REFERRAL_TRANSACTION = "referral_transaction"
    MARKETING_REFERRAL = "marketing_referral"
    CUSTOMER = "customer"


class AccountingCategory(BaseModel):
    """Category for expense/income classification."""

    __tablename__ = "accounting_categories"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    type: Mapped[EntryType] = mapped_column(
        SQLEnum(EntryType, name="accountingentrytype", values_callable=enum_values),
        default=EntryType.EXPENSE,
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    transactions: Mapped[List["AccountingTransaction"]] = relationship(
        "AccountingTransaction",
        back_populates="category",
    )


class AccountingTransaction(BaseModel):
    """
    Ledger entry.

    reference_type/reference_id link the entry to the referral transaction,
    marketing referral or customer that caused it.
    """

    __tablename__ = "accounting_transactions"

    category_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("accounting_categories.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    type: Mapped[EntryType] = mapped_column(
        SQLEnum(EntryType, name="accountingentrytype", values_callable=enum_values),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    reference_type: Mapped[Optional[ReferenceType]] = mapped_column(
        SQLEnum(ReferenceType, name="ledgerreferencetype", values_callable=enum_values),
        nullable=True,
        index=True,
    )
    reference_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
        index=True,
    )
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    category: Mapped["AccountingCategory"] = relationship(
        "AccountingCategory",
        back_populates="transactions",
    )
