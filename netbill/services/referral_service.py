"""
NetBill - Referral Service

Referral code lifecycle and referral benefits.

Provides:
- Personal and fixed marketing referral codes
- Validation and redemption with race-safe usage counting
- Benefit decision (billing discount for active referrers, cash otherwise)
- Consumption of pending benefits by the billing cycle
- Marketing referrals, cash payouts and referral accounting
"""

import logging
import math
import secrets
import string
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from netbill.config import settings
from netbill.database import unit_of_work
from netbill.models.accounting import LedgerCategory, ReferenceType
from netbill.models.customer import Customer, CustomerStatus
from netbill.models.referral import (
    BenefitType,
    MarketingReferral,
    MarketingReferralStatus,
    ReferralCode,
    ReferralTransaction,
    ReferralTransactionStatus,
)
from netbill.schemas.referral import (
    ApplyReferralRequest,
    FixedMarketingCodeCreate,
    MarketingReferralCreate,
    ReferralCodeCreate,
)
from netbill.services.customer_service import CustomerService
from netbill.services.ledger_service import LedgerService
from netbill.services.settings_service import ReferralSettingsService
from netbill.utils.error_handling import (
    ConflictException,
    DuplicateEntryException,
    ErrorCode,
    ExhaustedRetriesException,
    NotFoundException,
    ReferralCodeNotFoundException,
    SelfReferralException,
    ValidationException,
)
from netbill.utils.formatting import format_currency, quantize_money

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
EXHAUSTED_REASON = "Referral code expired or exhausted"


class RejectionKind(str, Enum):
    """Why a referral code cannot be redeemed."""
    NOT_FOUND = "not_found"
    EXPIRED_OR_EXHAUSTED = "expired_or_exhausted"
    SELF_REFERRAL = "self_referral"
    DISABLED = "disabled"


@dataclass
class ReferralValidation:
    """Outcome of validate_referral_code."""
    valid: bool
    referral_code: Optional[ReferralCode] = None
    referrer_name: Optional[str] = None
    rejection: Optional[RejectionKind] = None
    reason: Optional[str] = None

    @property
    def is_fixed_marketing_code(self) -> bool:
        return self.referral_code is not None and self.referral_code.customer_id is None


@dataclass
class ReferralApplicationResult:
    """Outcome of a successful apply_referral."""
    transaction_id: uuid.UUID
    benefit_type: BenefitType
    benefit_amount: Decimal
    referrer_name: Optional[str]
    is_referrer_active_customer: bool
    is_fixed_marketing_code: bool
    message: str


def _utcnow() -> datetime:
    return datetime.utcnow()


def _validate_request(schema, **values):
    """Run plain arguments through their request schema."""
    try:
        return schema.model_validate(values)
    except PydanticValidationError as e:
        first = e.errors()[0]
        raise ValidationException(
            message=f"Invalid {first['loc'][0]}: {first['msg']}",
            field=str(first["loc"][0]),
        ) from e


class ReferralService:
    """Service for referral codes, redemptions and referral accounting."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.customers = CustomerService(db)
        self.ledger = LedgerService(db)
        self.settings_service = ReferralSettingsService(db)

    # ===========================================
    # CODES
    # ===========================================

    async def generate_referral_code(self) -> str:
        """
        Generate an unused referral code: the prefix followed by random
        uppercase letters and digits.
        """
        attempts = settings.referral_code_max_attempts
        for _ in range(attempts):
            suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(settings.referral_code_length))
            code = f"{settings.referral_code_prefix}{suffix}"
            if not await self._code_exists(code):
                return code

        logger.error(f"Referral code generation collided {attempts} times")
        raise ExhaustedRetriesException("generate unique referral code", attempts)

    async def _code_exists(self, code: str) -> bool:
        result = await self.db.execute(
            select(func.count(ReferralCode.id)).where(ReferralCode.code == code)
        )
        if (result.scalar() or 0) > 0:
            return True
        result = await self.db.execute(
            select(func.count(MarketingReferral.id)).where(MarketingReferral.referral_code == code)
        )
        return (result.scalar() or 0) > 0

    async def create_referral_code(
        self,
        customer_id: uuid.UUID,
        max_uses: Optional[int] = None,
        expiry_days: Optional[int] = None,
    ) -> ReferralCode:
        """Issue a personal referral code to a customer."""
        request = _validate_request(
            ReferralCodeCreate,
            customer_id=customer_id,
            max_uses=max_uses,
            expiry_days=expiry_days,
        )
        customer_id = request.customer_id
        program = await self.settings_service.get_settings()
        max_uses = request.max_uses if request.max_uses is not None else program.referral_max_uses
        expiry_days = request.expiry_days if request.expiry_days is not None else program.referral_code_expiry_days
        if max_uses < 1:
            raise ValidationException(message="max_uses must be at least 1", field="max_uses")
        if expiry_days < 1:
            raise ValidationException(message="expiry_days must be at least 1", field="expiry_days")

        async with unit_of_work(self.db):
            await self.customers.require_customer(customer_id)

            existing = await self.get_customer_referral_code(customer_id)
            if existing is not None:
                raise ConflictException(
                    message="Customer already has an active referral code",
                    resource_type="ReferralCode",
                    code=ErrorCode.ACTIVE_REFERRAL_CODE_EXISTS,
                    details={"customer_id": str(customer_id), "referral_code": existing.code},
                )

            referral_code = ReferralCode(
                customer_id=customer_id,
                code=await self.generate_referral_code(),
                max_uses=max_uses,
                usage_count=0,
                expires_at=_utcnow() + timedelta(days=expiry_days),
                is_active=True,
            )
            self.db.add(referral_code)
            await self.db.flush()

        logger.info(f"Referral code {referral_code.code} issued to customer {customer_id}")
        return referral_code

    async def get_referral_code(self, code: str) -> Optional[ReferralCode]:
        result = await self.db.execute(
            select(ReferralCode).where(ReferralCode.code == code.strip().upper())
        )
        return result.scalar_one_or_none()

    async def get_customer_referral_code(self, customer_id: uuid.UUID) -> Optional[ReferralCode]:
        """The customer's active referral code, if any."""
        result = await self.db.execute(
            select(ReferralCode)
            .where(ReferralCode.customer_id == customer_id)
            .where(ReferralCode.is_active == True)
            .order_by(ReferralCode.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_referral_codes(self, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        """All referral codes, newest first, with owner names."""
        page = max(page, 1)
        limit = max(limit, 1)

        count_result = await self.db.execute(select(func.count(ReferralCode.id)))
        total = count_result.scalar() or 0

        result = await self.db.execute(
            select(ReferralCode, Customer.name.label("customer_name"))
            .outerjoin(Customer, ReferralCode.customer_id == Customer.id)
            .order_by(ReferralCode.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )

        data = []
        for referral_code, customer_name in result.all():
            item = self._code_to_dict(referral_code)
            item["customer_name"] = customer_name
            data.append(item)

        return {
            "data": data,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    @staticmethod
    def _code_to_dict(referral_code: ReferralCode) -> Dict[str, Any]:
        return {
            "id": referral_code.id,
            "customer_id": referral_code.customer_id,
            "code": referral_code.code,
            "max_uses": referral_code.max_uses,
            "usage_count": referral_code.usage_count,
            "expires_at": referral_code.expires_at,
            "is_active": referral_code.is_active,
            "is_fixed_marketing_code": referral_code.is_fixed_marketing_code,
            "created_at": referral_code.created_at,
        }

    # ===========================================
    # VALIDATION AND REDEMPTION
    # ===========================================

    async def validate_referral_code(
        self,
        code: str,
        new_customer_id: Optional[uuid.UUID] = None,
    ) -> ReferralValidation:
        """
        Check whether a code can be redeemed by a new customer.

        Fails closed: the code must exist, be active, unexpired and under
        its use cap, and must not belong to the redeeming customer.
        """
        program = await self.settings_service.get_settings()
        if not program.referral_enabled:
            return ReferralValidation(
                valid=False,
                rejection=RejectionKind.DISABLED,
                reason="Referral program is disabled",
            )

        referral_code = await self.get_referral_code(code)
        if referral_code is None:
            return ReferralValidation(
                valid=False,
                rejection=RejectionKind.NOT_FOUND,
                reason="Referral code not found",
            )

        if not referral_code.is_redeemable(_utcnow()):
            return ReferralValidation(
                valid=False,
                referral_code=referral_code,
                rejection=RejectionKind.EXPIRED_OR_EXHAUSTED,
                reason=EXHAUSTED_REASON,
            )

        if new_customer_id is not None and referral_code.customer_id == new_customer_id:
            return ReferralValidation(
                valid=False,
                referral_code=referral_code,
                rejection=RejectionKind.SELF_REFERRAL,
                reason="Cannot use your own referral code",
            )

        if referral_code.customer_id is None:
            referrer_name = await self._marketer_name(referral_code.code)
        else:
            owner = await self.customers.get_customer_by_id(referral_code.customer_id)
            referrer_name = owner.name if owner else None

        return ReferralValidation(valid=True, referral_code=referral_code, referrer_name=referrer_name)

    async def _marketer_name(self, code: str) -> str:
        result = await self.db.execute(
            select(MarketingReferral.marketer_name).where(MarketingReferral.referral_code == code)
        )
        return result.scalar_one_or_none() or "Marketing Campaign"

    def _raise_rejection(self, code: str, validation: ReferralValidation) -> None:
        if validation.rejection == RejectionKind.NOT_FOUND:
            raise ReferralCodeNotFoundException(code)
        if validation.rejection == RejectionKind.SELF_REFERRAL:
            raise SelfReferralException(code)
        if validation.rejection == RejectionKind.DISABLED:
            raise ConflictException(
                message=validation.reason,
                resource_type="ReferralCode",
                code=ErrorCode.REFERRAL_DISABLED,
            )
        raise ConflictException(
            message=validation.reason or EXHAUSTED_REASON,
            resource_type="ReferralCode",
            code=ErrorCode.REFERRAL_CODE_EXHAUSTED,
            details={"referral_code": code},
        )

    async def apply_referral(
        self,
        code: str,
        referred_customer_id: uuid.UUID,
        benefit_type_hint: Optional[BenefitType] = None,
    ) -> ReferralApplicationResult:
        """
        Redeem a referral code for a newly registered customer.

        The benefit is decided from the code owner, never from the hint:
        fixed marketing codes and non-active referrers earn cash, active
        referrers earn a billing discount. The usage increment, customer
        attribution, pending transaction and installation discount entry
        commit together or not at all.
        """
        request = _validate_request(
            ApplyReferralRequest,
            code=code,
            referred_customer_id=referred_customer_id,
            benefit_type_hint=benefit_type_hint,
        )
        code = request.code
        referred_customer_id = request.referred_customer_id
        if request.benefit_type_hint is not None:
            logger.debug(f"Ignoring benefit type hint {request.benefit_type_hint} for referral {code}")

        async with unit_of_work(self.db):
            referred = await self.customers.require_customer(referred_customer_id)

            validation = await self.validate_referral_code(code, referred_customer_id)
            if not validation.valid:
                logger.warning(f"Referral {code} rejected for customer {referred_customer_id}: {validation.reason}")
                self._raise_rejection(code, validation)

            referral_code = validation.referral_code
            program = await self.settings_service.get_settings()
            is_fixed = referral_code.customer_id is None

            is_referrer_active = False
            if not is_fixed:
                referrer_status = await self.customers.get_customer_status(referral_code.customer_id)
                is_referrer_active = referrer_status == CustomerStatus.ACTIVE

            if is_referrer_active:
                benefit_type = BenefitType.DISCOUNT
                enabled = program.referrer_discount_enabled
                benefit_amount = quantize_money(program.referrer_discount_fixed)
            else:
                benefit_type = BenefitType.CASH
                enabled = program.referrer_cash_enabled
                benefit_amount = quantize_money(program.referrer_cash_amount)
            if not enabled:
                # Redemption still counts; the switched-off reward is worth nothing
                benefit_amount = Decimal("0.00")

            # Increment only while under the cap; a concurrent redemption
            # that took the last use leaves rowcount at 0.
            result = await self.db.execute(
                update(ReferralCode)
                .where(ReferralCode.id == referral_code.id)
                .where(ReferralCode.is_active == True)
                .where(ReferralCode.usage_count < ReferralCode.max_uses)
                .values(usage_count=ReferralCode.usage_count + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.warning(f"Referral {code} lost the redemption race for customer {referred_customer_id}")
                raise ConflictException(
                    message=EXHAUSTED_REASON,
                    resource_type="ReferralCode",
                    code=ErrorCode.REFERRAL_CODE_EXHAUSTED,
                    details={"referral_code": code},
                )

            await self.customers.record_referral(referred, code, referral_code.customer_id)

            transaction = ReferralTransaction(
                referrer_id=referral_code.customer_id,
                referred_id=referred_customer_id,
                referral_code_id=referral_code.id,
                benefit_type=benefit_type,
                benefit_amount=benefit_amount,
                status=ReferralTransactionStatus.PENDING,
            )
            self.db.add(transaction)
            await self.db.flush()

            if program.referred_installation_discount_enabled:
                await self.ledger.record_expense(
                    category=LedgerCategory.REFERRAL_INSTALLATION_DISCOUNT,
                    amount=quantize_money(program.referred_installation_discount_fixed),
                    description=f"Referral installation discount for customer {referred_customer_id}",
                    reference_type=ReferenceType.REFERRAL_TRANSACTION,
                    reference_id=transaction.id,
                    customer_id=referred_customer_id,
                    referrer_id=referral_code.customer_id,
                )

        await self.db.refresh(referral_code)

        referrer_name = validation.referrer_name
        if benefit_type == BenefitType.DISCOUNT:
            message = f"Referral applied. {referrer_name} will receive a bill discount of {format_currency(benefit_amount)}"
        else:
            message = f"Referral applied. {referrer_name} will receive a cash reward of {format_currency(benefit_amount)}"

        logger.info(
            f"Referral {code} applied for customer {referred_customer_id}: "
            f"{benefit_type.value} {benefit_amount}"
        )
        return ReferralApplicationResult(
            transaction_id=transaction.id,
            benefit_type=benefit_type,
            benefit_amount=benefit_amount,
            referrer_name=referrer_name,
            is_referrer_active_customer=is_referrer_active,
            is_fixed_marketing_code=is_fixed,
            message=message,
        )

    # ===========================================
    # BENEFITS
    # ===========================================

    async def apply_referral_benefits(
        self,
        customer_id: uuid.UUID,
        billing_amount: Optional[Decimal] = None,
        invoice_id: Optional[uuid.UUID] = None,
    ) -> Decimal:
        """
        Consume every pending referral benefit where the customer is the
        referred party.

        Each consumed transaction is marked applied (stamped with the
        invoice when given) and gets one referral discount ledger entry.
        Returns the summed benefit; 0 when nothing is pending.
        """
        async with unit_of_work(self.db):
            result = await self.db.execute(
                select(ReferralTransaction)
                .where(ReferralTransaction.referred_id == customer_id)
                .where(ReferralTransaction.status == ReferralTransactionStatus.PENDING)
                .order_by(ReferralTransaction.created_at)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            pending = list(result.scalars().all())

            total = Decimal("0.00")
            now = _utcnow()
            for transaction in pending:
                amount = quantize_money(transaction.benefit_amount)
                total += amount

                transaction.status = ReferralTransactionStatus.APPLIED
                transaction.applied_date = now
                transaction.applied_invoice_id = invoice_id

                await self.ledger.record_expense(
                    category=LedgerCategory.REFERRAL_DISCOUNT,
                    amount=amount,
                    description=f"Referral discount for customer {customer_id}",
                    reference_type=ReferenceType.REFERRAL_TRANSACTION,
                    reference_id=transaction.id,
                    customer_id=customer_id,
                    referrer_id=transaction.referrer_id,
                )

            await self.db.flush()

        if pending:
            logger.info(f"Applied {len(pending)} referral benefits for customer {customer_id}: {total}")
        return quantize_money(total)

    async def get_consumed_benefits(self, invoice_id: uuid.UUID) -> Decimal:
        """Referral benefit total already consumed by an invoice."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(ReferralTransaction.benefit_amount), 0))
            .where(ReferralTransaction.applied_invoice_id == invoice_id)
            .where(ReferralTransaction.status == ReferralTransactionStatus.APPLIED)
        )
        return quantize_money(result.scalar() or 0)

    # ===========================================
    # HISTORY AND STATS
    # ===========================================

    async def get_customer_referral_history(self, customer_id: uuid.UUID) -> List[Dict[str, Any]]:
        """Referral transactions where the customer referred or was referred."""
        referrer = aliased(Customer)
        referred = aliased(Customer)
        result = await self.db.execute(
            select(
                ReferralTransaction,
                referrer.name.label("referrer_name"),
                referred.name.label("referred_name"),
                ReferralCode.code.label("code"),
            )
            .outerjoin(referrer, ReferralTransaction.referrer_id == referrer.id)
            .outerjoin(referred, ReferralTransaction.referred_id == referred.id)
            .outerjoin(ReferralCode, ReferralTransaction.referral_code_id == ReferralCode.id)
            .where(
                or_(
                    ReferralTransaction.referrer_id == customer_id,
                    ReferralTransaction.referred_id == customer_id,
                )
            )
            .order_by(ReferralTransaction.created_at.desc())
        )

        history = []
        for row in result.all():
            transaction = row[0]
            history.append({
                "id": transaction.id,
                "referrer_id": transaction.referrer_id,
                "referred_id": transaction.referred_id,
                "referrer_name": row.referrer_name,
                "referred_name": row.referred_name,
                "code": row.code,
                "benefit_type": transaction.benefit_type.value,
                "benefit_amount": transaction.benefit_amount,
                "status": transaction.status.value,
                "applied_date": transaction.applied_date,
                "applied_invoice_id": transaction.applied_invoice_id,
                "created_at": transaction.created_at,
                "role": "referrer" if transaction.referrer_id == customer_id else "referred",
            })
        return history

    async def get_referral_stats(self, days: int = 30) -> Dict[str, Any]:
        """Referral activity over the last `days` days."""
        since = _utcnow() - timedelta(days=days)
        result = await self.db.execute(
            select(
                func.count(ReferralTransaction.id).label("total"),
                func.count(ReferralTransaction.id).filter(
                    ReferralTransaction.status == ReferralTransactionStatus.APPLIED
                ).label("applied"),
                func.coalesce(func.sum(ReferralTransaction.benefit_amount), 0).label("total_benefits"),
                func.avg(ReferralTransaction.benefit_amount).label("avg_benefit"),
            )
            .where(ReferralTransaction.created_at >= since)
        )
        row = result.one()

        return {
            "total_referrals": row.total,
            "applied_referrals": row.applied,
            "total_benefits": quantize_money(row.total_benefits),
            "avg_benefit_amount": quantize_money(row.avg_benefit) if row.avg_benefit is not None else None,
        }

    # ===========================================
    # MARKETING REFERRALS
    # ===========================================

    async def create_marketing_referral(
        self,
        data: Union[MarketingReferralCreate, Dict[str, Any]],
    ) -> MarketingReferral:
        """Register a marketer-sourced customer with a fee inside the configured range."""
        if isinstance(data, dict):
            data = MarketingReferralCreate.model_validate(data)

        program = await self.settings_service.get_settings()
        fee = quantize_money(data.fee_amount)
        if fee < program.marketing_min_fee or fee > program.marketing_max_fee:
            raise ValidationException(
                message=(
                    f"Marketing fee must be between {format_currency(program.marketing_min_fee)} "
                    f"and {format_currency(program.marketing_max_fee)}"
                ),
                field="fee_amount",
                code=ErrorCode.INVALID_AMOUNT,
                details={"fee_amount": str(fee)},
            )

        async with unit_of_work(self.db):
            if data.customer_id is not None:
                await self.customers.require_customer(data.customer_id)

            marketing = MarketingReferral(
                marketer_name=data.marketer_name,
                marketer_phone=data.marketer_phone,
                marketer_email=data.marketer_email,
                referral_code=await self.generate_referral_code(),
                customer_id=data.customer_id,
                fee_amount=fee,
                status=MarketingReferralStatus.UNPAID,
            )
            self.db.add(marketing)
            await self.db.flush()

        logger.info(f"Marketing referral {marketing.referral_code} created for {marketing.marketer_name}")
        return marketing

    async def create_fixed_marketing_code(
        self,
        data: Union[FixedMarketingCodeCreate, Dict[str, Any]],
    ) -> Dict[str, Any]:
        """Create a campaign code owned by no customer, with its marketing referral row."""
        if isinstance(data, dict):
            data = FixedMarketingCodeCreate.model_validate(data)

        async with unit_of_work(self.db):
            if await self._code_exists(data.code):
                raise DuplicateEntryException("ReferralCode", "code", data.code)

            referral_code = ReferralCode(
                customer_id=None,
                code=data.code,
                max_uses=data.max_uses,
                usage_count=0,
                expires_at=_utcnow() + timedelta(days=data.expiry_days),
                is_active=True,
            )
            marketing = MarketingReferral(
                marketer_name=data.marketer_name,
                marketer_phone=data.marketer_phone,
                marketer_email=data.marketer_email,
                referral_code=data.code,
                customer_id=None,
                fee_amount=Decimal("0.00"),
                status=MarketingReferralStatus.UNPAID,
            )
            self.db.add_all([referral_code, marketing])
            await self.db.flush()

        logger.info(f"Fixed marketing code {data.code} created for {data.marketer_name}")
        return {"referral_code": referral_code, "marketing_referral": marketing}

    async def list_fixed_marketing_codes(self) -> List[Dict[str, Any]]:
        """Campaign codes with their marketer details."""
        result = await self.db.execute(
            select(ReferralCode, MarketingReferral)
            .outerjoin(MarketingReferral, MarketingReferral.referral_code == ReferralCode.code)
            .where(ReferralCode.customer_id.is_(None))
            .order_by(ReferralCode.created_at.desc())
        )

        codes = []
        for referral_code, marketing in result.all():
            item = self._code_to_dict(referral_code)
            item["marketer_name"] = marketing.marketer_name if marketing else None
            item["marketer_phone"] = marketing.marketer_phone if marketing else None
            item["marketer_email"] = marketing.marketer_email if marketing else None
            codes.append(item)
        return codes

    async def deactivate_fixed_marketing_code(self, code: str) -> ReferralCode:
        """Stop a campaign code from being redeemed."""
        async with unit_of_work(self.db):
            referral_code = await self.get_referral_code(code)
            if referral_code is None or not referral_code.is_fixed_marketing_code:
                raise ReferralCodeNotFoundException(code)
            referral_code.is_active = False
            await self.db.flush()

        logger.info(f"Fixed marketing code {referral_code.code} deactivated")
        return referral_code

    async def mark_marketing_referral_paid(self, marketing_referral_id: uuid.UUID) -> MarketingReferral:
        """Settle a marketing fee and book it as an expense."""
        async with unit_of_work(self.db):
            result = await self.db.execute(
                select(MarketingReferral)
                .where(MarketingReferral.id == marketing_referral_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            marketing = result.scalar_one_or_none()
            if marketing is None:
                raise NotFoundException("MarketingReferral", marketing_referral_id)
            if marketing.is_paid:
                raise ConflictException(
                    message="Marketing referral is already paid",
                    resource_type="MarketingReferral",
                    code=ErrorCode.ALREADY_PROCESSED,
                    details={"marketing_referral_id": str(marketing_referral_id)},
                )

            marketing.status = MarketingReferralStatus.PAID
            marketing.paid_date = _utcnow()

            if marketing.fee_amount > 0:
                await self.ledger.record_expense(
                    category=LedgerCategory.REFERRAL_MARKETING_FEE,
                    amount=quantize_money(marketing.fee_amount),
                    description=f"Marketing fee for {marketing.marketer_name}",
                    reference_type=ReferenceType.MARKETING_REFERRAL,
                    reference_id=marketing.id,
                )
            await self.db.flush()

        logger.info(f"Marketing fee paid to {marketing.marketer_name}: {marketing.fee_amount}")
        return marketing

    # ===========================================
    # PAYOUTS AND ACCOUNTING
    # ===========================================

    async def process_referral_cash_payout(self, transaction_id: uuid.UUID) -> Dict[str, Any]:
        """
        Pay out the cash reward of one referral transaction.

        Only cash benefits qualify and each transaction pays out once.
        """
        async with unit_of_work(self.db):
            result = await self.db.execute(
                select(ReferralTransaction)
                .where(ReferralTransaction.id == transaction_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            transaction = result.scalar_one_or_none()
            if transaction is None:
                raise NotFoundException("ReferralTransaction", transaction_id)
            if transaction.benefit_type != BenefitType.CASH:
                raise ConflictException(
                    message="Only cash referral benefits can be paid out",
                    resource_type="ReferralTransaction",
                    code=ErrorCode.CANNOT_MODIFY,
                    details={"benefit_type": transaction.benefit_type.value},
                )
            if await self.ledger.has_entry(
                LedgerCategory.REFERRAL_CASH_REWARD,
                ReferenceType.REFERRAL_TRANSACTION,
                transaction.id,
            ):
                raise ConflictException(
                    message="Cash reward already paid for this referral",
                    resource_type="ReferralTransaction",
                    code=ErrorCode.ALREADY_PROCESSED,
                    details={"transaction_id": str(transaction_id)},
                )

            amount = quantize_money(transaction.benefit_amount)
            entry = await self.ledger.record_expense(
                category=LedgerCategory.REFERRAL_CASH_REWARD,
                amount=amount,
                description="Referral cash reward",
                reference_type=ReferenceType.REFERRAL_TRANSACTION,
                reference_id=transaction.id,
                customer_id=transaction.referrer_id,
            )

        logger.info(f"Cash payout processed for referrer {transaction.referrer_id}: {amount}")
        return {
            "transaction_id": transaction.id,
            "referrer_id": transaction.referrer_id,
            "amount": amount,
            "ledger_entry_id": entry.id,
        }

    async def get_referral_accounting_summary(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        return await self.ledger.get_referral_accounting_summary(start_date, end_date)
