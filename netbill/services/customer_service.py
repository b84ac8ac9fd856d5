"""
NetBill - Customer Service

Customer lookups used by discount targeting and referral decisions.
"""

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from netbill.models.customer import Customer, CustomerStatus
from netbill.utils.error_handling import CustomerNotFoundException


class CustomerService:
    """Service for customer operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_customer_by_id(self, customer_id: uuid.UUID) -> Optional[Customer]:
        """Get customer by ID."""
        result = await self.db.execute(
            select(Customer).where(Customer.id == customer_id)
        )
        return result.scalar_one_or_none()

    async def require_customer(self, customer_id: uuid.UUID) -> Customer:
        """Get customer by ID or raise CustomerNotFoundException."""
        customer = await self.get_customer_by_id(customer_id)
        if customer is None:
            raise CustomerNotFoundException(customer_id)
        return customer

    async def get_customer_status(self, customer_id: uuid.UUID) -> Optional[CustomerStatus]:
        result = await self.db.execute(
            select(Customer.status).where(Customer.id == customer_id)
        )
        return result.scalar_one_or_none()

    async def record_referral(
        self,
        customer: Customer,
        code: str,
        referrer_id: Optional[uuid.UUID],
    ) -> Customer:
        """Stamp referral attribution on the referred customer."""
        customer.referral_code_used = code
        customer.referred_by_id = referrer_id
        await self.db.flush()
        return customer
