"""
Validation utilities for request models
"""
import re
from decimal import Decimal, InvalidOperation

from billflow.domain.currency import is_supported_currency


def normalize_decimal_input(value: str) -> str:
    """
    Normalize an amount string: comma as decimal separator becomes a dot.

    Example:
        >>> normalize_decimal_input("9,99")
        "9.99"
    """
    return value.strip().replace(",", ".")


def validate_decimal_amount(value: str, max_decimal_places: int = 2) -> tuple[bool, str | None]:
    """
    Check that value is a positive amount with at most max_decimal_places decimals.

    Returns:
        (is_valid, error_message)
    """
    normalized = normalize_decimal_input(value)
    try:
        decimal_value = Decimal(normalized)
    except (InvalidOperation, ValueError):
        return False, "Invalid amount"

    pattern = rf"^\d+(\.\d{{1,{max_decimal_places}}})?$"
    if not re.match(pattern, normalized):
        return False, f"At most {max_decimal_places} decimal places allowed"
    if decimal_value <= 0:
        return False, "Amount must be positive"

    return True, None


def validate_and_normalize_amount(value: str, max_decimal_places: int = 2) -> str:
    """
    Validate and normalize an amount string.

    Raises:
        ValueError: validation failed
    """
    is_valid, error = validate_decimal_amount(value, max_decimal_places)
    if not is_valid:
        raise ValueError(error)
    return normalize_decimal_input(value)


def validate_currency_code(value: str) -> str:
    code = value.strip().upper()
    if not is_supported_currency(code):
        raise ValueError(f"Unsupported currency: {value}")
    return code
