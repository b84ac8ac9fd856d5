"""
NetBill - Discount Schemas

Pydantic schemas for the discount catalog.

Shape only: range checks that depend on other fields (percentage bounds,
target list required for the target type, validity window) run in
DiscountService against the merged definition, so create and partial
update share one set of rules.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from netbill.models.discount import DiscountStatus, DiscountType, TargetType


def _normalize_target_ids(value):
    if value is None:
        return value
    normalized = []
    for item in value:
        text = str(item).strip()
        if text:
            normalized.append(text)
    return normalized


# ===========================================
# REQUEST SCHEMAS
# ===========================================

class DiscountCreate(BaseModel):
    """Schema for creating a discount."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None

    # Type and value
    discount_type: DiscountType
    discount_value: Decimal
    max_discount_amount: Optional[Decimal] = Field(
        None, description="Cap for percentage discounts; omitted = uncapped"
    )

    # Targeting
    target_type: TargetType = TargetType.ALL
    target_ids: List[str] = Field(default_factory=list)

    compensation_reason: Optional[str] = None

    # Validity window (inclusive)
    start_date: date
    end_date: date

    status: DiscountStatus = DiscountStatus.ACTIVE
    apply_to_existing_invoices: bool = False
    created_by_id: Optional[UUID] = None

    @field_validator("target_ids", mode="before")
    @classmethod
    def normalize_target_ids(cls, v):
        return _normalize_target_ids(v) if v is not None else []


class DiscountUpdate(BaseModel):
    """Schema for a partial discount update. Omitted fields are kept."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = None
    max_discount_amount: Optional[Decimal] = None
    target_type: Optional[TargetType] = None
    target_ids: Optional[List[str]] = None
    compensation_reason: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[DiscountStatus] = None
    updated_by_id: Optional[UUID] = None

    @field_validator("target_ids", mode="before")
    @classmethod
    def normalize_target_ids(cls, v):
        return _normalize_target_ids(v)
