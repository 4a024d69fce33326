"""Display formatting shared by the UI and reports."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union


def format_currency(amount: Union[Decimal, int, str, None], symbol: str = "$") -> str:
    """
    Format an amount as currency with thousands separators.

    >>> format_currency(Decimal("1234.5"))
    '$1,234.50'
    >>> format_currency(Decimal("-20"))
    '-$20.00'
    """
    try:
        value = Decimal(str(amount)) if amount is not None else Decimal("0")
    except InvalidOperation:
        value = Decimal("0")
    if not value.is_finite():
        value = Decimal("0")

    value = value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,.2f}"


def format_display_name(full_name: Optional[str]) -> str:
    """
    Short upper-case name: first name plus the initial of the second.

    >>> format_display_name("Pedro Sanches")
    'PEDRO S.'
    """
    if not full_name or not full_name.strip():
        return ""
    parts = full_name.strip().upper().split()
    if len(parts) < 2:
        return parts[0]
    return f"{parts[0]} {parts[1][0]}."
