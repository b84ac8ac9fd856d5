"""
NetBill - Invoice Schemas

Input for invoices created through the discount engine.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class InvoiceCreate(BaseModel):
    """Schema for creating an invoice with discounts applied."""
    customer_id: UUID
    package_id: Optional[UUID] = None
    amount: Decimal = Field(..., ge=0, description="Package price before discounts")
    due_date: date
    invoice_number: Optional[str] = Field(None, max_length=50, description="Generated when omitted")
    notes: Optional[str] = None
