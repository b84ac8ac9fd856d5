"""
NetBill - Discount Service

Discount catalog management and resolution.

Provides:
- Discount CRUD with lifecycle (draft, active, retired)
- Targeting by all customers, customer ids, package ids or address area
- Per-invoice discount calculation (percentage with optional cap, fixed)
- Bulk application to existing unpaid invoices with audit rows
- Catalog reads and statistics
"""

import logging
import math
import uuid
from dataclasses import dataclass, asdict
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import and_, delete, exists, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from netbill.database import unit_of_work
from netbill.models.customer import Customer
from netbill.models.discount import (
    Discount,
    DiscountApplication,
    DiscountStatus,
    DiscountType,
    TargetType,
)
from netbill.models.invoice import Invoice, InvoiceStatus
from netbill.schemas.discount import DiscountCreate, DiscountUpdate
from netbill.services.customer_service import CustomerService
from netbill.utils.error_handling import (
    ConflictException,
    DiscountNotFoundException,
    ErrorCode,
    InvalidDateRangeException,
    ValidationException,
)
from netbill.utils.formatting import format_currency, quantize_money

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


@dataclass
class ApplicableDiscount:
    """A catalog discount that matches a customer, with its computed amount."""
    discount_id: uuid.UUID
    name: str
    discount_type: DiscountType
    discount_value: Decimal
    target_type: TargetType
    calculated_discount: Decimal
    discount_display: str
    description: Optional[str] = None
    max_discount_amount: Optional[Decimal] = None
    compensation_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ===========================================
# CALCULATION
# ===========================================

def calculate_discount(discount: Discount, invoice_amount: Decimal) -> Decimal:
    """
    Amount one discount takes off an invoice.

    Percentage discounts are capped by max_discount_amount when set and
    never exceed the invoice amount. Fixed discounts are returned as
    configured; the invoice total is clamped at zero by the caller.
    """
    amount = Decimal(str(invoice_amount or 0))
    value = Decimal(str(discount.discount_value))

    if discount.discount_type == DiscountType.PERCENTAGE:
        if amount <= 0:
            return ZERO
        calculated = amount * value / HUNDRED
        if discount.max_discount_amount is not None:
            calculated = min(calculated, Decimal(str(discount.max_discount_amount)))
        calculated = min(calculated, amount)
        return max(quantize_money(calculated), ZERO)

    return quantize_money(value)


def format_discount_value(discount_type: DiscountType, value: Decimal) -> str:
    if discount_type == DiscountType.PERCENTAGE:
        return f"{Decimal(str(value)).normalize():f}%"
    return format_currency(value)


def matches_target(discount: Discount, customer: Customer) -> bool:
    """Check a discount's targeting rule against one customer."""
    targets = discount.target_ids or []
    if discount.target_type == TargetType.ALL:
        return True
    if discount.target_type == TargetType.CUSTOMER:
        return str(customer.id) in targets
    if discount.target_type == TargetType.PACKAGE:
        return customer.package_id is not None and str(customer.package_id) in targets
    if discount.target_type == TargetType.AREA:
        address = (customer.address or "").lower()
        return bool(address) and any(area.lower() in address for area in targets)
    return False


# ===========================================
# VALIDATION
# ===========================================

def _parse_uuid_targets(target_ids: List[str]) -> List[str]:
    parsed = []
    for raw in target_ids:
        try:
            parsed.append(str(uuid.UUID(str(raw))))
        except ValueError:
            raise ValidationException(
                message=f"Invalid target id: {raw}",
                field="target_ids",
                details={"target_id": str(raw)},
            )
    return parsed


def validate_discount_definition(values: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a complete discount definition and return it normalized.

    Used for creation and for the merged result of a partial update.
    """
    name = (values.get("name") or "").strip()
    if not name:
        raise ValidationException(message="Discount name is required", field="name")
    values["name"] = name

    discount_type = values.get("discount_type")
    if discount_type is None:
        raise ValidationException(message="Discount type is required", field="discount_type")
    discount_type = DiscountType(discount_type)
    values["discount_type"] = discount_type

    raw_value = values.get("discount_value")
    try:
        value = Decimal(str(raw_value))
    except (InvalidOperation, TypeError, ValueError):
        value = None
    if value is None or not value.is_finite():
        raise ValidationException(
            message=f"Invalid discount value: {raw_value}",
            field="discount_value",
            code=ErrorCode.INVALID_DISCOUNT_VALUE,
        )
    if discount_type == DiscountType.PERCENTAGE and not (0 < value <= 100):
        raise ValidationException(
            message="Percentage discount must be greater than 0 and at most 100",
            field="discount_value",
            code=ErrorCode.INVALID_DISCOUNT_VALUE,
            details={"discount_value": str(value)},
        )
    if discount_type == DiscountType.FIXED and value <= 0:
        raise ValidationException(
            message="Fixed discount must be greater than 0",
            field="discount_value",
            code=ErrorCode.INVALID_DISCOUNT_VALUE,
            details={"discount_value": str(value)},
        )
    values["discount_value"] = value

    cap = values.get("max_discount_amount")
    if cap is not None:
        cap = Decimal(str(cap))
        if not cap.is_finite() or cap <= 0:
            raise ValidationException(
                message="Maximum discount amount must be greater than 0",
                field="max_discount_amount",
                code=ErrorCode.INVALID_AMOUNT,
            )
        values["max_discount_amount"] = cap

    target_type = TargetType(values.get("target_type") or TargetType.ALL)
    values["target_type"] = target_type
    target_ids = [str(t).strip() for t in (values.get("target_ids") or []) if str(t).strip()]
    if target_type == TargetType.ALL:
        target_ids = []
    elif not target_ids:
        raise ValidationException(
            message=f"target_ids is required for target type '{target_type.value}'",
            field="target_ids",
        )
    elif target_type in (TargetType.CUSTOMER, TargetType.PACKAGE):
        target_ids = _parse_uuid_targets(target_ids)
    values["target_ids"] = target_ids

    start_date = values.get("start_date")
    end_date = values.get("end_date")
    if start_date is None or end_date is None:
        raise ValidationException(
            message="start_date and end_date are required",
            field="start_date" if start_date is None else "end_date",
        )
    if start_date > end_date:
        raise InvalidDateRangeException(str(start_date), str(end_date))

    return values


class DiscountService:
    """Service for discount catalog operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ===========================================
    # LOOKUPS
    # ===========================================

    async def _get_discount(self, discount_id: uuid.UUID) -> Discount:
        result = await self.db.execute(
            select(Discount).where(Discount.id == discount_id)
        )
        discount = result.scalar_one_or_none()
        if discount is None:
            raise DiscountNotFoundException(discount_id)
        return discount

    async def _application_count(self, discount_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count(DiscountApplication.id))
            .where(DiscountApplication.discount_id == discount_id)
        )
        return result.scalar() or 0

    @staticmethod
    def _to_dict(discount: Discount, today: Optional[date] = None) -> Dict[str, Any]:
        return {
            "id": discount.id,
            "name": discount.name,
            "description": discount.description,
            "discount_type": discount.discount_type.value,
            "discount_value": discount.discount_value,
            "max_discount_amount": discount.max_discount_amount,
            "target_type": discount.target_type.value,
            "target_ids": list(discount.target_ids or []),
            "compensation_reason": discount.compensation_reason,
            "start_date": discount.start_date,
            "end_date": discount.end_date,
            "status": discount.status.value,
            "status_text": discount.status_text(today),
            "is_active": discount.is_active,
            "apply_to_existing_invoices": discount.apply_to_existing_invoices,
            "created_by_id": discount.created_by_id,
            "created_at": discount.created_at,
            "updated_at": discount.updated_at,
        }

    # ===========================================
    # CRUD
    # ===========================================

    async def create_discount(
        self,
        data: Union[DiscountCreate, Dict[str, Any]],
    ) -> Discount:
        """
        Create a discount.

        When apply_to_existing_invoices is set on an active discount, the
        bulk application runs in the same unit of work.
        """
        if isinstance(data, dict):
            data = DiscountCreate.model_validate(data)

        values = validate_discount_definition(data.model_dump())
        if values["status"] == DiscountStatus.RETIRED:
            raise ValidationException(
                message="A discount cannot be created retired",
                field="status",
            )

        async with unit_of_work(self.db):
            discount = Discount(
                name=values["name"],
                description=values.get("description"),
                discount_type=values["discount_type"],
                discount_value=values["discount_value"],
                max_discount_amount=values.get("max_discount_amount"),
                target_type=values["target_type"],
                target_ids=values["target_ids"],
                compensation_reason=values.get("compensation_reason"),
                start_date=values["start_date"],
                end_date=values["end_date"],
                status=values["status"],
                apply_to_existing_invoices=values["apply_to_existing_invoices"],
                created_by_id=values.get("created_by_id"),
            )
            self.db.add(discount)
            await self.db.flush()

            if discount.apply_to_existing_invoices:
                if discount.is_active:
                    await self.apply_discount_to_existing_invoices(discount.id)
                else:
                    logger.info(f"Discount {discount.name} created as draft; existing invoices left untouched")

        await self.db.refresh(discount)
        logger.info(f"Billing discount created: {discount.name} ({discount.discount_type.value})")
        return discount

    async def list_discounts(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
        target_type: Optional[TargetType] = None,
    ) -> Dict[str, Any]:
        """
        List discounts, newest first.

        status filter: "active" (active and not past its end date) or
        "inactive" (everything else).
        """
        page = max(page, 1)
        limit = max(limit, 1)
        today = date.today()

        filters = []
        currently_active = and_(Discount.status == DiscountStatus.ACTIVE, Discount.end_date >= today)
        if status == "active":
            filters.append(currently_active)
        elif status == "inactive":
            filters.append(~currently_active)
        if target_type:
            filters.append(Discount.target_type == TargetType(target_type))

        count_result = await self.db.execute(
            select(func.count(Discount.id)).where(*filters)
        )
        total = count_result.scalar() or 0

        application_count = (
            select(func.count(DiscountApplication.id))
            .where(DiscountApplication.discount_id == Discount.id)
            .correlate(Discount)
            .scalar_subquery()
        )
        result = await self.db.execute(
            select(Discount, application_count.label("application_count"))
            .where(*filters)
            .order_by(Discount.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )

        data = []
        for discount, count in result.all():
            item = self._to_dict(discount, today)
            item["application_count"] = count or 0
            data.append(item)

        return {
            "data": data,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    async def get_discount_by_id(self, discount_id: uuid.UUID) -> Dict[str, Any]:
        """Get one discount with its application count and total applied."""
        discount = await self._get_discount(discount_id)

        result = await self.db.execute(
            select(
                func.count(DiscountApplication.id).label("application_count"),
                func.coalesce(func.sum(DiscountApplication.discount_amount), 0).label("total_applied"),
            )
            .where(DiscountApplication.discount_id == discount_id)
        )
        row = result.one()

        data = self._to_dict(discount)
        data["application_count"] = row.application_count
        data["total_discount_applied"] = quantize_money(row.total_applied)
        return data

    async def update_discount(
        self,
        discount_id: uuid.UUID,
        changes: Union[DiscountUpdate, Dict[str, Any]],
    ) -> Discount:
        """
        Partially update a discount.

        The merged definition is validated as a whole. Retired discounts
        cannot be modified and retiring goes through delete_discount.
        """
        if isinstance(changes, dict):
            changes = DiscountUpdate.model_validate(changes)
        updates = changes.model_dump(exclude_unset=True)
        updated_by_id = updates.pop("updated_by_id", None)

        if not updates:
            raise ValidationException(message="No fields to update")
        if updates.get("status") == DiscountStatus.RETIRED:
            raise ValidationException(
                message="Use delete to retire a discount",
                field="status",
            )

        async with unit_of_work(self.db):
            discount = await self._get_discount(discount_id)
            if discount.is_retired:
                raise ConflictException(
                    message="Retired discounts cannot be modified",
                    resource_type="Discount",
                    code=ErrorCode.CANNOT_MODIFY,
                    details={"discount_id": str(discount_id)},
                )

            merged = {
                "name": discount.name,
                "description": discount.description,
                "discount_type": discount.discount_type,
                "discount_value": discount.discount_value,
                "max_discount_amount": discount.max_discount_amount,
                "target_type": discount.target_type,
                "target_ids": list(discount.target_ids or []),
                "compensation_reason": discount.compensation_reason,
                "start_date": discount.start_date,
                "end_date": discount.end_date,
                "status": discount.status,
            }
            merged.update(updates)
            merged = validate_discount_definition(merged)

            for key, value in merged.items():
                if getattr(discount, key) != value:
                    setattr(discount, key, value)
            if updated_by_id:
                discount.updated_by_id = updated_by_id
            await self.db.flush()

        await self.db.refresh(discount)
        logger.info(f"Billing discount updated: {discount_id} ({', '.join(sorted(updates))})")
        return discount

    async def delete_discount(self, discount_id: uuid.UUID) -> Dict[str, Any]:
        """
        Delete a discount.

        A discount with application rows is retired instead of removed.
        """
        async with unit_of_work(self.db):
            discount = await self._get_discount(discount_id)
            application_count = await self._application_count(discount_id)

            if application_count > 0:
                discount.status = DiscountStatus.RETIRED
                await self.db.flush()
                logger.info(f"Billing discount retired ({application_count} applications): {discount_id}")
                return {"id": discount_id, "deleted": False, "retired": True}

            await self.db.delete(discount)
            await self.db.flush()

        logger.info(f"Billing discount permanently deleted: {discount_id}")
        return {"id": discount_id, "deleted": True, "retired": False}

    # ===========================================
    # RESOLUTION
    # ===========================================

    async def get_applicable_discounts(
        self,
        customer_id: uuid.UUID,
        invoice_amount: Decimal = ZERO,
        on_date: Optional[date] = None,
    ) -> List[ApplicableDiscount]:
        """
        Active discounts valid on the given day (today by default) whose
        targeting rule matches the customer, newest first.

        Unknown customers get an empty list.
        """
        customer = await CustomerService(self.db).get_customer_by_id(customer_id)
        if customer is None:
            return []

        day = on_date or date.today()
        result = await self.db.execute(
            select(Discount)
            .where(Discount.status == DiscountStatus.ACTIVE)
            .where(Discount.start_date <= day)
            .where(Discount.end_date >= day)
            .order_by(Discount.created_at.desc())
        )

        applicable = []
        for discount in result.scalars().all():
            if not matches_target(discount, customer):
                continue
            applicable.append(ApplicableDiscount(
                discount_id=discount.id,
                name=discount.name,
                description=discount.description,
                discount_type=discount.discount_type,
                discount_value=discount.discount_value,
                max_discount_amount=discount.max_discount_amount,
                target_type=discount.target_type,
                compensation_reason=discount.compensation_reason,
                calculated_discount=calculate_discount(discount, invoice_amount),
                discount_display=format_discount_value(discount.discount_type, discount.discount_value),
                created_at=discount.created_at,
            ))
        return applicable

    def _target_filter(self, discount: Discount):
        """SQL filter selecting invoices whose customer the discount targets."""
        targets = discount.target_ids or []
        if discount.target_type == TargetType.ALL:
            return None
        if discount.target_type == TargetType.CUSTOMER:
            return Invoice.customer_id.in_([uuid.UUID(t) for t in targets])
        if discount.target_type == TargetType.PACKAGE:
            return Customer.package_id.in_([uuid.UUID(t) for t in targets])
        return or_(*[Customer.address.icontains(area, autoescape=True) for area in targets])

    async def apply_discount_to_existing_invoices(self, discount_id: uuid.UUID) -> int:
        """
        Apply an active discount to every matching unpaid invoice due
        within its validity window that it has not been applied to yet.

        Returns the number of invoices updated.
        """
        async with unit_of_work(self.db):
            discount = await self._get_discount(discount_id)
            if not discount.is_active:
                raise DiscountNotFoundException(discount_id)

            query = (
                select(Invoice)
                .join(Customer, Invoice.customer_id == Customer.id)
                .where(Invoice.status == InvoiceStatus.UNPAID)
                .where(Invoice.due_date >= discount.start_date)
                .where(Invoice.due_date <= discount.end_date)
                .where(
                    ~exists().where(
                        DiscountApplication.discount_id == discount.id,
                        DiscountApplication.invoice_id == Invoice.id,
                    )
                )
                .with_for_update(of=Invoice)
                .execution_options(populate_existing=True)
            )
            target = self._target_filter(discount)
            if target is not None:
                query = query.where(target)

            result = await self.db.execute(query)
            invoices = list(result.scalars().all())

            note = f"Discount: {discount.name}"
            for invoice in invoices:
                amount = calculate_discount(discount, invoice.amount)
                new_total = quantize_money(Decimal(str(invoice.discount_amount or 0)) + amount)
                final_amount = max(ZERO, quantize_money(Decimal(str(invoice.amount)) - new_total))

                self.db.add(DiscountApplication(
                    discount_id=discount.id,
                    customer_id=invoice.customer_id,
                    invoice_id=invoice.id,
                    original_amount=invoice.amount,
                    discount_amount=amount,
                    final_amount=final_amount,
                    notes=f"Applied from discount: {discount.name}",
                ))

                invoice.discount_amount = new_total
                invoice.final_amount = final_amount
                invoice.discount_notes = f"{invoice.discount_notes}; {note}" if invoice.discount_notes else note

            await self.db.flush()

        logger.info(f"Applied discount {discount.name} to {len(invoices)} existing invoices")
        return len(invoices)

    # ===========================================
    # READS
    # ===========================================

    async def list_discount_applications(
        self,
        discount_id: uuid.UUID,
        page: int = 1,
        limit: int = 10,
    ) -> Dict[str, Any]:
        """Applications of one discount with customer and invoice details."""
        await self._get_discount(discount_id)
        page = max(page, 1)
        limit = max(limit, 1)

        total = await self._application_count(discount_id)
        result = await self.db.execute(
            select(
                DiscountApplication,
                Customer.name.label("customer_name"),
                Customer.phone.label("customer_phone"),
                Invoice.invoice_number,
                Invoice.due_date,
                Invoice.status.label("invoice_status"),
            )
            .join(Customer, DiscountApplication.customer_id == Customer.id)
            .join(Invoice, DiscountApplication.invoice_id == Invoice.id)
            .where(DiscountApplication.discount_id == discount_id)
            .order_by(DiscountApplication.applied_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )

        data = []
        for row in result.all():
            application = row[0]
            data.append({
                "id": application.id,
                "discount_id": application.discount_id,
                "customer_id": application.customer_id,
                "invoice_id": application.invoice_id,
                "original_amount": application.original_amount,
                "discount_amount": application.discount_amount,
                "final_amount": application.final_amount,
                "notes": application.notes,
                "applied_at": application.applied_at,
                "customer_name": row.customer_name,
                "customer_phone": row.customer_phone,
                "invoice_number": row.invoice_number,
                "due_date": row.due_date,
                "invoice_status": row.invoice_status.value,
            })

        return {
            "data": data,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    async def get_discount_stats(self) -> Dict[str, Any]:
        """Catalog-wide discount statistics."""
        today = date.today()
        result = await self.db.execute(
            select(
                func.count(Discount.id).label("total"),
                func.count(Discount.id).filter(
                    and_(Discount.status == DiscountStatus.ACTIVE, Discount.end_date >= today)
                ).label("active"),
                func.count(Discount.id).filter(Discount.end_date < today).label("expired"),
            )
        )
        counts = result.one()

        result = await self.db.execute(
            select(
                func.coalesce(func.sum(DiscountApplication.discount_amount), 0).label("total_applied"),
                func.count(func.distinct(DiscountApplication.customer_id)).label("customers"),
                func.count(func.distinct(DiscountApplication.invoice_id)).label("invoices"),
            )
        )
        applied = result.one()

        return {
            "total_discounts": counts.total,
            "active_discounts": counts.active,
            "expired_discounts": counts.expired,
            "total_discount_applied": quantize_money(applied.total_applied),
            "customers_affected": applied.customers,
            "invoices_affected": applied.invoices,
        }

    async def delete_invoice_applications(self, invoice_id: uuid.UUID) -> None:
        """Remove every application row recorded against an invoice."""
        await self.db.execute(
            delete(DiscountApplication).where(DiscountApplication.invoice_id == invoice_id)
        )
