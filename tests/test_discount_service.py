"""
Tests for the discount catalog: validation, calculation, targeting,
bulk application and lifecycle.
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from netbill.models.discount import (
    Discount,
    DiscountApplication,
    DiscountStatus,
    DiscountType,
    TargetType,
)
from netbill.models.invoice import Invoice
from netbill.services.discount_service import (
    DiscountService,
    calculate_discount,
    format_discount_value,
)
from netbill.utils.error_handling import (
    ConflictException,
    DiscountNotFoundException,
    ErrorCode,
    InvalidDateRangeException,
    ValidationException,
)


def _definition(**overrides):
    today = date.today()
    values = {
        "name": "Outage compensation",
        "discount_type": "fixed",
        "discount_value": "20000",
        "target_type": "all",
        "start_date": today - timedelta(days=1),
        "end_date": today + timedelta(days=30),
    }
    values.update(overrides)
    return values


async def _application_count(db_session, discount_id):
    result = await db_session.execute(
        select(func.count(DiscountApplication.id)).where(DiscountApplication.discount_id == discount_id)
    )
    return result.scalar()


# ===========================================
# CALCULATION
# ===========================================

class TestCalculateDiscount:
    """Pure per-invoice discount amounts."""

    def test_percentage_of_amount(self):
        discount = Discount(discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("10"))
        assert calculate_discount(discount, Decimal("150000")) == Decimal("15000.00")

    def test_percentage_respects_cap(self):
        discount = Discount(
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("50"),
            max_discount_amount=Decimal("30000"),
        )
        assert calculate_discount(discount, Decimal("100000")) == Decimal("30000.00")

    def test_percentage_never_exceeds_amount(self):
        discount = Discount(discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("100"))
        assert calculate_discount(discount, Decimal("80000")) == Decimal("80000.00")

    def test_percentage_on_zero_amount(self):
        discount = Discount(discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("25"))
        assert calculate_discount(discount, Decimal("0")) == Decimal("0.00")

    def test_percentage_rounds_half_up(self):
        discount = Discount(discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("12.5"))
        # 12.5% of 100.04 = 12.505
        assert calculate_discount(discount, Decimal("100.04")) == Decimal("12.51")

    def test_fixed_is_value(self):
        discount = Discount(discount_type=DiscountType.FIXED, discount_value=Decimal("20000"))
        assert calculate_discount(discount, Decimal("100000")) == Decimal("20000.00")

    def test_display_value(self):
        assert format_discount_value(DiscountType.PERCENTAGE, Decimal("15.00")) == "15%"
        assert format_discount_value(DiscountType.FIXED, Decimal("20000")) == "Rp 20.000"


# ===========================================
# VALIDATION
# ===========================================

class TestDiscountValidation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["0", "150", "-5"])
    async def test_percentage_out_of_range(self, db_session, value):
        service = DiscountService(db_session)
        with pytest.raises(ValidationException) as exc_info:
            await service.create_discount(_definition(discount_type="percentage", discount_value=value))
        assert exc_info.value.code == ErrorCode.INVALID_DISCOUNT_VALUE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["0", "-1000"])
    async def test_fixed_must_be_positive(self, db_session, value):
        service = DiscountService(db_session)
        with pytest.raises(ValidationException) as exc_info:
            await service.create_discount(_definition(discount_value=value))
        assert exc_info.value.code == ErrorCode.INVALID_DISCOUNT_VALUE

    @pytest.mark.asyncio
    async def test_cap_must_be_positive(self, db_session):
        service = DiscountService(db_session)
        with pytest.raises(ValidationException) as exc_info:
            await service.create_discount(_definition(
                discount_type="percentage", discount_value="10", max_discount_amount="0",
            ))
        assert exc_info.value.field == "max_discount_amount"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("target_type", ["customer", "package", "area"])
    async def test_targeted_discount_needs_targets(self, db_session, target_type):
        service = DiscountService(db_session)
        with pytest.raises(ValidationException) as exc_info:
            await service.create_discount(_definition(target_type=target_type, target_ids=[]))
        assert exc_info.value.field == "target_ids"

    @pytest.mark.asyncio
    async def test_customer_targets_must_be_ids(self, db_session):
        service = DiscountService(db_session)
        with pytest.raises(ValidationException):
            await service.create_discount(_definition(target_type="customer", target_ids=["not-a-uuid"]))

    @pytest.mark.asyncio
    async def test_start_after_end(self, db_session):
        service = DiscountService(db_session)
        today = date.today()
        with pytest.raises(InvalidDateRangeException) as exc_info:
            await service.create_discount(_definition(start_date=today, end_date=today - timedelta(days=1)))
        assert exc_info.value.code == ErrorCode.INVALID_DATE_RANGE

    @pytest.mark.asyncio
    async def test_single_day_window_is_valid(self, db_session):
        service = DiscountService(db_session)
        today = date.today()
        discount = await service.create_discount(_definition(start_date=today, end_date=today))
        assert discount.start_date == discount.end_date

    @pytest.mark.asyncio
    async def test_all_target_clears_ids(self, db_session):
        service = DiscountService(db_session)
        discount = await service.create_discount(_definition(target_ids=["ignored"]))
        assert discount.target_ids == []

    @pytest.mark.asyncio
    async def test_cannot_create_retired(self, db_session):
        service = DiscountService(db_session)
        with pytest.raises(ValidationException):
            await service.create_discount(_definition(status="retired"))


# ===========================================
# TARGETING
# ===========================================

class TestApplicableDiscounts:

    @pytest.mark.asyncio
    async def test_all_customers(self, db_session, active_customer, make_discount):
        await make_discount()
        service = DiscountService(db_session)

        applicable = await service.get_applicable_discounts(active_customer.id, Decimal("100000"))

        assert len(applicable) == 1
        assert applicable[0].calculated_discount == Decimal("20000.00")
        assert applicable[0].discount_display == "Rp 20.000"

    @pytest.mark.asyncio
    async def test_customer_target(self, db_session, active_customer, new_customer, make_discount):
        await make_discount(target_type=TargetType.CUSTOMER, target_ids=[str(active_customer.id)])
        service = DiscountService(db_session)

        assert len(await service.get_applicable_discounts(active_customer.id, Decimal("100000"))) == 1
        assert await service.get_applicable_discounts(new_customer.id, Decimal("100000")) == []

    @pytest.mark.asyncio
    async def test_area_target_is_case_insensitive(self, db_session, active_customer, new_customer, make_discount):
        await make_discount(target_type=TargetType.AREA, target_ids=["SUKAMAJU"])
        service = DiscountService(db_session)

        assert len(await service.get_applicable_discounts(active_customer.id, Decimal("100000"))) == 1
        assert await service.get_applicable_discounts(new_customer.id, Decimal("100000")) == []

    @pytest.mark.asyncio
    async def test_package_target(self, db_session, active_customer, test_package, other_package, make_discount):
        await make_discount(name="Home", target_type=TargetType.PACKAGE, target_ids=[str(test_package.id)])
        await make_discount(name="Business", target_type=TargetType.PACKAGE, target_ids=[str(other_package.id)])
        service = DiscountService(db_session)

        applicable = await service.get_applicable_discounts(active_customer.id, Decimal("100000"))

        assert [d.name for d in applicable] == ["Home"]

    @pytest.mark.asyncio
    async def test_window_is_inclusive(self, db_session, active_customer, make_discount):
        today = date.today()
        await make_discount(start_date=today, end_date=today)
        service = DiscountService(db_session)

        assert len(await service.get_applicable_discounts(active_customer.id, Decimal("1"), on_date=today)) == 1
        assert await service.get_applicable_discounts(
            active_customer.id, Decimal("1"), on_date=today + timedelta(days=1)
        ) == []

    @pytest.mark.asyncio
    async def test_draft_and_retired_are_skipped(self, db_session, active_customer, make_discount):
        await make_discount(status=DiscountStatus.DRAFT)
        await make_discount(status=DiscountStatus.RETIRED)
        service = DiscountService(db_session)

        assert await service.get_applicable_discounts(active_customer.id, Decimal("100000")) == []

    @pytest.mark.asyncio
    async def test_unknown_customer(self, db_session, make_discount):
        await make_discount()
        service = DiscountService(db_session)

        assert await service.get_applicable_discounts(uuid4(), Decimal("100000")) == []


# ===========================================
# BULK APPLICATION
# ===========================================

class TestApplyToExistingInvoices:

    @pytest.mark.asyncio
    async def test_create_applies_to_unpaid_invoices(self, db_session, unpaid_invoice):
        service = DiscountService(db_session)

        discount = await service.create_discount(_definition(apply_to_existing_invoices=True))

        await db_session.refresh(unpaid_invoice)
        assert await _application_count(db_session, discount.id) == 1
        assert unpaid_invoice.discount_amount == Decimal("20000.00")
        assert unpaid_invoice.final_amount == Decimal("80000.00")
        assert unpaid_invoice.discount_notes == "Discount: Outage compensation"

    @pytest.mark.asyncio
    async def test_not_applied_twice(self, db_session, unpaid_invoice):
        service = DiscountService(db_session)
        discount = await service.create_discount(_definition(apply_to_existing_invoices=True))

        updated = await service.apply_discount_to_existing_invoices(discount.id)

        await db_session.refresh(unpaid_invoice)
        assert updated == 0
        assert await _application_count(db_session, discount.id) == 1
        assert unpaid_invoice.discount_amount == Decimal("20000.00")

    @pytest.mark.asyncio
    async def test_adds_to_existing_discount(self, db_session, unpaid_invoice, make_discount):
        first = await make_discount(name="First", discount_value=Decimal("10000"))
        second = await make_discount(name="Second", discount_value=Decimal("5000"))
        service = DiscountService(db_session)

        await service.apply_discount_to_existing_invoices(first.id)
        await service.apply_discount_to_existing_invoices(second.id)

        await db_session.refresh(unpaid_invoice)
        assert unpaid_invoice.discount_amount == Decimal("15000.00")
        assert unpaid_invoice.final_amount == Decimal("85000.00")
        assert unpaid_invoice.discount_notes == "Discount: First; Discount: Second"

    @pytest.mark.asyncio
    async def test_adds_to_discount_written_by_another_session(
        self, db_session, session_factory, unpaid_invoice, make_discount
    ):
        discount = await make_discount(name="Second", discount_value=Decimal("5000"))
        invoice_id = unpaid_invoice.id

        async with session_factory() as other_session:
            other = await other_session.get(Invoice, invoice_id)
            other.discount_amount = Decimal("10000.00")
            other.final_amount = Decimal("90000.00")
            other.discount_notes = "Discount: First"
            await other_session.commit()

        await DiscountService(db_session).apply_discount_to_existing_invoices(discount.id)

        await db_session.refresh(unpaid_invoice)
        assert unpaid_invoice.discount_amount == Decimal("15000.00")
        assert unpaid_invoice.final_amount == Decimal("85000.00")
        assert unpaid_invoice.discount_notes == "Discount: First; Discount: Second"

    @pytest.mark.asyncio
    async def test_final_amount_clamped(self, db_session, unpaid_invoice, make_discount):
        discount = await make_discount(discount_value=Decimal("150000"))
        service = DiscountService(db_session)

        await service.apply_discount_to_existing_invoices(discount.id)

        await db_session.refresh(unpaid_invoice)
        assert unpaid_invoice.final_amount == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_invoice_outside_window_untouched(self, db_session, unpaid_invoice, make_discount):
        today = date.today()
        discount = await make_discount(start_date=today + timedelta(days=5), end_date=today + timedelta(days=10))
        service = DiscountService(db_session)

        assert await service.apply_discount_to_existing_invoices(discount.id) == 0

    @pytest.mark.asyncio
    async def test_draft_discount_cannot_be_applied(self, db_session, unpaid_invoice, make_discount):
        discount = await make_discount(status=DiscountStatus.DRAFT)
        discount_id = discount.id
        service = DiscountService(db_session)

        with pytest.raises(DiscountNotFoundException):
            await service.apply_discount_to_existing_invoices(discount_id)

    @pytest.mark.asyncio
    async def test_draft_creation_skips_bulk_apply(self, db_session, unpaid_invoice):
        service = DiscountService(db_session)

        discount = await service.create_discount(_definition(status="draft", apply_to_existing_invoices=True))

        assert await _application_count(db_session, discount.id) == 0


# ===========================================
# LIFECYCLE
# ===========================================

class TestDiscountLifecycle:

    @pytest.mark.asyncio
    async def test_update_validates_merged_definition(self, db_session, make_discount):
        discount = await make_discount(discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("10"))
        discount_id = discount.id
        service = DiscountService(db_session)

        with pytest.raises(ValidationException):
            await service.update_discount(discount_id, {"discount_value": "150"})

    @pytest.mark.asyncio
    async def test_update_to_all_clears_targets(self, db_session, active_customer, make_discount):
        discount = await make_discount(target_type=TargetType.CUSTOMER, target_ids=[str(active_customer.id)])
        service = DiscountService(db_session)

        updated = await service.update_discount(discount.id, {"target_type": "all"})

        assert updated.target_type == TargetType.ALL
        assert updated.target_ids == []

    @pytest.mark.asyncio
    async def test_empty_update_rejected(self, db_session, make_discount):
        discount = await make_discount()
        service = DiscountService(db_session)

        with pytest.raises(ValidationException):
            await service.update_discount(discount.id, {})

    @pytest.mark.asyncio
    async def test_delete_without_applications_removes(self, db_session, make_discount):
        discount = await make_discount()
        discount_id = discount.id
        service = DiscountService(db_session)

        result = await service.delete_discount(discount_id)

        assert result == {"id": discount_id, "deleted": True, "retired": False}
        with pytest.raises(DiscountNotFoundException):
            await service.get_discount_by_id(discount_id)

    @pytest.mark.asyncio
    async def test_delete_with_applications_retires(self, db_session, unpaid_invoice, make_discount):
        discount = await make_discount()
        discount_id = discount.id
        service = DiscountService(db_session)
        await service.apply_discount_to_existing_invoices(discount_id)

        result = await service.delete_discount(discount_id)

        assert result["retired"] is True
        data = await service.get_discount_by_id(discount_id)
        assert data["status"] == "retired"
        assert data["application_count"] == 1
        assert data["total_discount_applied"] == Decimal("20000.00")

    @pytest.mark.asyncio
    async def test_retired_discount_is_immutable(self, db_session, make_discount):
        discount = await make_discount(status=DiscountStatus.RETIRED)
        discount_id = discount.id
        service = DiscountService(db_session)

        with pytest.raises(ConflictException) as exc_info:
            await service.update_discount(discount_id, {"name": "Renamed"})
        assert exc_info.value.code == ErrorCode.CANNOT_MODIFY

    @pytest.mark.asyncio
    async def test_status_text(self, db_session, make_discount):
        today = date.today()
        scheduled = await make_discount(start_date=today + timedelta(days=3), end_date=today + timedelta(days=9))
        expired = await make_discount(start_date=today - timedelta(days=9), end_date=today - timedelta(days=3))
        running = await make_discount()
        draft = await make_discount(status=DiscountStatus.DRAFT)

        assert scheduled.status_text(today) == "Inactive"
        assert expired.status_text(today) == "Expired"
        assert running.status_text(today) == "Active"
        assert draft.status_text(today) == "Draft"


# ===========================================
# READS
# ===========================================

class TestDiscountReads:

    @pytest.mark.asyncio
    async def test_list_with_status_filter(self, db_session, make_discount):
        today = date.today()
        await make_discount(name="Running")
        await make_discount(name="Old", start_date=today - timedelta(days=9), end_date=today - timedelta(days=3))
        await make_discount(name="Planned", status=DiscountStatus.DRAFT)
        service = DiscountService(db_session)

        everything = await service.list_discounts(page=1, limit=2)
        active = await service.list_discounts(status="active")
        inactive = await service.list_discounts(status="inactive")

        assert everything["total"] == 3
        assert everything["total_pages"] == 2
        assert len(everything["data"]) == 2
        assert [d["name"] for d in active["data"]] == ["Running"]
        assert sorted(d["name"] for d in inactive["data"]) == ["Old", "Planned"]

    @pytest.mark.asyncio
    async def test_list_applications(self, db_session, unpaid_invoice, new_customer, make_discount):
        discount = await make_discount()
        service = DiscountService(db_session)
        await service.apply_discount_to_existing_invoices(discount.id)

        result = await service.list_discount_applications(discount.id)

        assert result["total"] == 1
        row = result["data"][0]
        assert row["customer_name"] == new_customer.name
        assert row["invoice_number"] == unpaid_invoice.invoice_number
        assert row["discount_amount"] == Decimal("20000.00")
        assert row["invoice_status"] == "unpaid"

    @pytest.mark.asyncio
    async def test_stats(self, db_session, unpaid_invoice, make_discount):
        today = date.today()
        discount = await make_discount()
        await make_discount(start_date=today - timedelta(days=9), end_date=today - timedelta(days=3))
        service = DiscountService(db_session)
        await service.apply_discount_to_existing_invoices(discount.id)

        stats = await service.get_discount_stats()

        assert stats["total_discounts"] == 2
        assert stats["active_discounts"] == 1
        assert stats["expired_discounts"] == 1
        assert stats["total_discount_applied"] == Decimal("20000.00")
        assert stats["customers_affected"] == 1
        assert stats["invoices_affected"] == 1
