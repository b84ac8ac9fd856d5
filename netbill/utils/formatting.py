"""
NetBill - Display Formatting

Currency rendering for invoice notes and referral messages.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

from netbill.config import settings

TWO_PLACES = Decimal("0.01")


def quantize_money(amount: Union[Decimal, int, float, str]) -> Decimal:
    """Round a monetary amount to 2 places, half up."""
    return Decimal(str(amount)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def format_currency(amount: Union[Decimal, int, float, str]) -> str:
    """
    Render an amount with the configured currency symbol and Indonesian
    digit grouping.

    >>> format_currency(Decimal("25000"))
    'Rp 25.000'
    >>> format_currency(Decimal("1234.5"))
    'Rp 1.234,50'
    """
    value = quantize_money(amount)
    sign = "-" if value < 0 else ""
    whole, _, cents = f"{abs(value):.2f}".partition(".")
    grouped = f"{int(whole):,}".replace(",", ".")
    text = grouped if cents == "00" else f"{grouped},{cents}"
    return f"{settings.currency_symbol} {sign}{text}"
