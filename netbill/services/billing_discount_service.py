"""
NetBill - Billing Discount Service

Combines referral benefits and catalog discounts into one invoice
adjustment and records it on the invoice.

Stacking rule: pending referral benefits always apply; of the matching
catalog (compensation) discounts only the single largest one applies.
finalAmount is clamped at zero.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from netbill.database import in_unit_of_work, unit_of_work
from netbill.models.discount import DiscountApplication
from netbill.models.invoice import Invoice, InvoiceStatus
from netbill.schemas.invoice import InvoiceCreate
from netbill.services.customer_service import CustomerService
from netbill.services.discount_service import DiscountService
from netbill.services.referral_service import ReferralService
from netbill.utils.error_handling import (
    AppException,
    ConflictException,
    InvoiceAlreadyPaidException,
    InvoiceNotFoundException,
    PersistenceException,
    validate_amount,
)
from netbill.utils.formatting import format_currency, quantize_money

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
REFERRAL_DESCRIPTION = "Referral Discount"
COMPENSATION_PREFIX = "Compensation Discount"


@dataclass
class AppliedDiscount:
    """One source contributing to an invoice's discount."""
    type: str  # "referral" or "compensation"
    amount: Decimal
    description: str
    source: str
    discount_id: Optional[uuid.UUID] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class InvoiceDiscountResult:
    original_amount: Decimal
    total_discount: Decimal
    final_amount: Decimal
    applied_discounts: List[AppliedDiscount] = field(default_factory=list)
    discount_percentage: Decimal = ZERO

    @classmethod
    def zero(cls, original_amount: Decimal) -> "InvoiceDiscountResult":
        return cls(
            original_amount=original_amount,
            total_discount=ZERO,
            final_amount=original_amount,
        )

    @property
    def compensation_discounts(self) -> List[AppliedDiscount]:
        return [d for d in self.applied_discounts if d.type == "compensation" and d.discount_id]


def format_discount_notes(applied_discounts: List[AppliedDiscount]) -> Optional[str]:
    """
    Render applied discounts as invoice notes, e.g.
    "Referral Discount: Rp 25.000; Compensation Discount: Outage: Rp 20.000".
    """
    notes = [
        f"{d.description}: {format_currency(d.amount)}"
        for d in applied_discounts
        if d.amount > 0
    ]
    return "; ".join(notes) if notes else None


class BillingDiscountService:
    """Service merging referral and catalog discounts into invoices."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.discounts = DiscountService(db)
        self.referrals = ReferralService(db)
        self.customers = CustomerService(db)

    # ===========================================
    # CALCULATION
    # ===========================================

    async def calculate_invoice_discounts(
        self,
        customer_id: uuid.UUID,
        original_amount: Decimal,
        invoice_id: Optional[uuid.UUID] = None,
        on_date: Optional[date] = None,
    ) -> InvoiceDiscountResult:
        """
        Work out the discount for one invoice amount.

        Consumes the customer's pending referral benefits. When invoice_id
        is given, benefits that invoice consumed earlier are counted again
        so a recalculation keeps them.

        Business and programming errors degrade to a zero discount and are
        logged; datastore errors propagate so the surrounding unit of work
        rolls back.
        """
        original_amount = quantize_money(validate_amount(original_amount, "amount", allow_zero=True))

        try:
            applied: List[AppliedDiscount] = []

            # Reads first: consuming referral benefits is the only write
            candidates = await self.discounts.get_applicable_discounts(
                customer_id, original_amount, on_date=on_date
            )
            referral_amount = ZERO
            if invoice_id is not None:
                referral_amount += await self.referrals.get_consumed_benefits(invoice_id)
            referral_amount += await self.referrals.apply_referral_benefits(
                customer_id, original_amount, invoice_id=invoice_id
            )
            if referral_amount > 0:
                applied.append(AppliedDiscount(
                    type="referral",
                    amount=quantize_money(referral_amount),
                    description=REFERRAL_DESCRIPTION,
                    source="referral_system",
                ))

            best = None
            for candidate in candidates:
                if candidate.calculated_discount <= 0:
                    continue
                if best is None or candidate.calculated_discount > best.calculated_discount:
                    best = candidate
            if best is not None:
                applied.append(AppliedDiscount(
                    type="compensation",
                    amount=best.calculated_discount,
                    description=f"{COMPENSATION_PREFIX}: {best.name}",
                    source="billing_discounts",
                    discount_id=best.discount_id,
                    details={
                        "name": best.name,
                        "type": best.discount_type.value,
                        "compensation_reason": best.compensation_reason,
                    },
                ))

            total = quantize_money(sum((d.amount for d in applied), ZERO))
            final_amount = max(ZERO, quantize_money(original_amount - total))
            percentage = (
                quantize_money(total / original_amount * 100) if original_amount > 0 else ZERO
            )
            return InvoiceDiscountResult(
                original_amount=original_amount,
                total_discount=total,
                final_amount=final_amount,
                applied_discounts=applied,
                discount_percentage=percentage,
            )
        except (PersistenceException, SQLAlchemyError):
            raise
        except Exception:
            logger.error(
                f"Discount calculation failed for customer {customer_id}; billing without discount",
                exc_info=True,
            )
            return InvoiceDiscountResult.zero(original_amount)

    # ===========================================
    # INVOICES
    # ===========================================

    async def generate_invoice_number(self, on_date: Optional[date] = None) -> str:
        """Next INV-YYYYMM-NNNN number for the month."""
        day = on_date or date.today()
        prefix = f"INV-{day.strftime('%Y%m')}-"

        # Longer sequences sort first so -10000 beats -9999
        result = await self.db.execute(
            select(Invoice.invoice_number)
            .where(Invoice.invoice_number.like(f"{prefix}%"))
            .order_by(func.length(Invoice.invoice_number).desc(), Invoice.invoice_number.desc())
            .limit(1)
        )
        last_number = result.scalar()

        if last_number:
            try:
                seq = int(last_number.split("-")[-1]) + 1
            except ValueError:
                seq = 1
        else:
            seq = 1

        return f"{prefix}{seq:04d}"

    def _add_applications(self, invoice: Invoice, result: InvoiceDiscountResult) -> None:
        for applied in result.compensation_discounts:
            self.db.add(DiscountApplication(
                discount_id=applied.discount_id,
                customer_id=invoice.customer_id,
                invoice_id=invoice.id,
                original_amount=result.original_amount,
                discount_amount=applied.amount,
                final_amount=result.final_amount,
                notes=applied.description,
            ))

    async def create_invoice_with_discounts(
        self,
        data: Union[InvoiceCreate, Dict[str, Any]],
    ) -> Dict[str, Any]:
        """
        Create an unpaid invoice with all applicable discounts.

        Invoice, consumed referral benefits and application rows commit
        together.
        """
        if isinstance(data, dict):
            data = InvoiceCreate.model_validate(data)

        async with unit_of_work(self.db):
            customer = await self.customers.require_customer(data.customer_id)
            amount = quantize_money(data.amount)

            invoice = Invoice(
                invoice_number=data.invoice_number or await self.generate_invoice_number(),
                customer_id=customer.id,
                package_id=data.package_id or customer.package_id,
                amount=amount,
                discount_amount=ZERO,
                final_amount=amount,
                due_date=data.due_date,
                status=InvoiceStatus.UNPAID,
                notes=data.notes,
            )
            self.db.add(invoice)
            await self.db.flush()

            result = await self.calculate_invoice_discounts(
                customer.id, amount, invoice_id=invoice.id
            )

            invoice.discount_amount = result.total_discount
            invoice.final_amount = result.final_amount
            invoice.discount_notes = format_discount_notes(result.applied_discounts)
            self._add_applications(invoice, result)
            await self.db.flush()

        logger.info(
            f"Invoice created with discounts: {invoice.invoice_number} - "
            f"Total discount: {result.total_discount}"
        )
        return {"invoice": invoice, "discount_result": result}

    async def update_invoice_discounts(self, invoice_id: uuid.UUID) -> InvoiceDiscountResult:
        """
        Recalculate the discounts of an unpaid invoice.

        Previous application rows of the invoice are replaced, so each
        discount appears at most once per invoice.
        """
        async with unit_of_work(self.db):
            result = await self.db.execute(
                select(Invoice)
                .where(Invoice.id == invoice_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            invoice = result.scalar_one_or_none()
            if invoice is None:
                raise InvoiceNotFoundException(invoice_id)
            if invoice.is_paid:
                raise InvoiceAlreadyPaidException(invoice.invoice_number)

            discount_result = await self.calculate_invoice_discounts(
                invoice.customer_id, invoice.amount, invoice_id=invoice.id
            )

            invoice.discount_amount = discount_result.total_discount
            invoice.final_amount = discount_result.final_amount
            invoice.discount_notes = format_discount_notes(discount_result.applied_discounts)

            await self.discounts.delete_invoice_applications(invoice.id)
            self._add_applications(invoice, discount_result)
            await self.db.flush()

        logger.info(
            f"Invoice discounts updated: {invoice.invoice_number} - "
            f"Total discount: {discount_result.total_discount}"
        )
        return discount_result

    async def apply_discounts_to_unpaid_invoices(
        self,
        customer_id: Optional[uuid.UUID] = None,
    ) -> Dict[str, Any]:
        """
        Recalculate every unpaid invoice, optionally for one customer.

        Each invoice is its own unit of work; a failure is recorded in the
        results and the batch moves on. Must not run inside another unit
        of work, since every invoice commits on its own.
        """
        if in_unit_of_work(self.db):
            raise ConflictException(
                message="Batch discount update cannot run inside an open transaction",
                resource_type="Invoice",
            )

        query = select(Invoice.id, Invoice.invoice_number).where(Invoice.status == InvoiceStatus.UNPAID)
        if customer_id:
            query = query.where(Invoice.customer_id == customer_id)
        query = query.order_by(Invoice.created_at.desc())

        async with unit_of_work(self.db):
            rows = (await self.db.execute(query)).all()

        updated_count = 0
        results = []
        for invoice_id, invoice_number in rows:
            try:
                await self.update_invoice_discounts(invoice_id)
            except Exception as e:
                error = e.message if isinstance(e, AppException) else str(e)
                logger.error(
                    f"Failed to update discounts for invoice {invoice_number}: {error}",
                    exc_info=not isinstance(e, AppException),
                )
                results.append({
                    "invoice_id": invoice_id,
                    "invoice_number": invoice_number,
                    "status": "failed",
                    "error": error,
                })
                continue

            updated_count += 1
            results.append({
                "invoice_id": invoice_id,
                "invoice_number": invoice_number,
                "status": "updated",
            })

        logger.info(f"Applied discounts to {updated_count} of {len(rows)} unpaid invoices")
        return {
            "total_invoices": len(rows),
            "updated_count": updated_count,
            "results": results,
        }

    # ===========================================
    # REPORTING
    # ===========================================

    async def get_customer_discount_summary(
        self,
        customer_id: uuid.UUID,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        """Discount totals over a customer's invoices, by due date."""
        filters = [Invoice.customer_id == customer_id]
        if start_date:
            filters.append(Invoice.due_date >= start_date)
        if end_date:
            filters.append(Invoice.due_date <= end_date)

        result = await self.db.execute(
            select(
                func.count(Invoice.id).label("total_invoices"),
                func.coalesce(func.sum(Invoice.amount), 0).label("total_original"),
                func.coalesce(func.sum(Invoice.discount_amount), 0).label("total_discount"),
                func.coalesce(func.sum(Invoice.final_amount), 0).label("total_final"),
                func.count(Invoice.id).filter(Invoice.discount_amount > 0).label("with_discount"),
            )
            .where(*filters)
        )
        invoices = result.one()

        result = await self.db.execute(
            select(Invoice.amount, Invoice.discount_amount)
            .where(*filters)
            .where(Invoice.amount > 0)
        )
        percentages = [
            Decimal(str(discount)) / Decimal(str(amount)) * 100
            for amount, discount in result.all()
        ]
        avg_percentage = (
            quantize_money(sum(percentages, Decimal("0")) / len(percentages)) if percentages else None
        )

        result = await self.db.execute(
            select(
                func.count(DiscountApplication.id).label("applications"),
                func.coalesce(func.sum(DiscountApplication.discount_amount), 0).label("total"),
            )
            .join(Invoice, DiscountApplication.invoice_id == Invoice.id)
            .where(*filters)
        )
        compensation = result.one()

        return {
            "total_invoices": invoices.total_invoices,
            "total_original_amount": quantize_money(invoices.total_original),
            "total_discount_amount": quantize_money(invoices.total_discount),
            "total_final_amount": quantize_money(invoices.total_final),
            "invoices_with_discount": invoices.with_discount,
            "avg_discount_percentage": avg_percentage,
            "compensation_applications": compensation.applications,
            "total_compensation_discount": quantize_money(compensation.total),
        }
