"""
NetBill - Accounting Ledger Service

Writes expense entries for referral programme costs and summarises them.
Categories are created on first use.
"""

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from netbill.models.accounting import (
    AccountingCategory,
    AccountingTransaction,
    EntryType,
    LedgerCategory,
    ReferenceType,
)

logger = logging.getLogger(__name__)


class LedgerService:
    """Service for referral accounting entries."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_or_create_category(self, category: LedgerCategory) -> AccountingCategory:
        """Get the expense category, creating it if missing."""
        result = await self.db.execute(
            select(AccountingCategory).where(AccountingCategory.name == category.value)
        )
        existing = result.scalar_one_or_none()
        if existing:
            return existing

        created = AccountingCategory(
            name=category.value,
            type=EntryType.EXPENSE,
            description="Referral programme expense",
        )
        self.db.add(created)
        await self.db.flush()
        logger.info(f"Created accounting category {category.value}")
        return created

    async def record_expense(
        self,
        category: LedgerCategory,
        amount: Decimal,
        description: str,
        reference_type: ReferenceType,
        reference_id: uuid.UUID,
        customer_id: Optional[uuid.UUID] = None,
        referrer_id: Optional[uuid.UUID] = None,
    ) -> AccountingTransaction:
        """
        Record one expense entry.

        Runs inside the caller's unit of work; failures propagate so the
        surrounding operation rolls back with it.
        """
        cat = await self.get_or_create_category(category)

        notes = None
        if customer_id:
            notes = f"Customer ID: {customer_id}"
            if referrer_id:
                notes += f", Referrer ID: {referrer_id}"

        entry = AccountingTransaction(
            category_id=cat.id,
            type=EntryType.EXPENSE,
            amount=amount,
            description=description,
            reference_type=reference_type,
            reference_id=reference_id,
            transaction_date=date.today(),
            notes=notes,
        )
        self.db.add(entry)
        await self.db.flush()

        logger.info(f"Referral ledger entry created: {category.value} {amount}")
        return entry

    async def has_entry(
        self,
        category: LedgerCategory,
        reference_type: ReferenceType,
        reference_id: uuid.UUID,
    ) -> bool:
        """Check whether an entry already exists for the reference."""
        result = await self.db.execute(
            select(func.count(AccountingTransaction.id))
            .join(AccountingCategory, AccountingTransaction.category_id == AccountingCategory.id)
            .where(AccountingCategory.name == category.value)
            .where(AccountingTransaction.reference_type == reference_type)
            .where(AccountingTransaction.reference_id == reference_id)
        )
        return (result.scalar() or 0) > 0

    async def get_referral_accounting_summary(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        """Totals per referral expense category, optionally bounded by date."""
        query = (
            select(
                AccountingCategory.name.label("category_name"),
                AccountingCategory.type.label("type"),
                func.count(AccountingTransaction.id).label("transaction_count"),
                func.coalesce(func.sum(AccountingTransaction.amount), 0).label("total_amount"),
            )
            .join(AccountingCategory, AccountingTransaction.category_id == AccountingCategory.id)
            .where(AccountingCategory.name.in_([c.value for c in LedgerCategory]))
        )
        if start_date:
            query = query.where(AccountingTransaction.transaction_date >= start_date)
        if end_date:
            query = query.where(AccountingTransaction.transaction_date <= end_date)

        query = query.group_by(AccountingCategory.name, AccountingCategory.type).order_by(
            AccountingCategory.type, AccountingCategory.name
        )
        result = await self.db.execute(query)

        summary = []
        total_expenses = Decimal("0")
        total_transactions = 0
        for row in result.all():
            amount = Decimal(str(row.total_amount))
            summary.append({
                "category_name": row.category_name,
                "type": row.type.value if isinstance(row.type, EntryType) else row.type,
                "transaction_count": row.transaction_count,
                "total_amount": amount,
            })
            total_expenses += amount
            total_transactions += row.transaction_count

        return {
            "summary": summary,
            "total_expenses": total_expenses,
            "total_transactions": total_transactions,
        }
