"""
Money formatting for notification texts.

Usage:
    from billflow.utils.money import format_amount

    format_amount(1200.5)            -> "1,200.50"
    format_amount(Decimal("9.9"))    -> "9.90"
"""
from decimal import Decimal


def format_amount(amount, decimals: int = 2) -> str:
    """Amount with thousands separators and a fixed number of decimals."""
    if amount is None:
        return ""
    if isinstance(amount, str):
        amount = Decimal(amount)
    fmt = f"{{:,.{decimals}f}}"
    return fmt.format(amount)
