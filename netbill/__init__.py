"""
NetBill - Discount & Referral Benefit Engine

Decides which promotional, compensatory and referral discounts apply to an
ISP customer's invoice and records that decision against invoices and the
referral ledger.
"""

__version__ = "0.1.0"
