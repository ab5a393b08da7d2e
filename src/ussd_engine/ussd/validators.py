"""Input validation for USSD turns."""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

_NON_DIGIT = re.compile(r"\D")
_ACCOUNT = re.compile(r"^[A-Za-z0-9]{6,20}$")
_NAME = re.compile(r"^[A-Za-z][A-Za-z .'-]{1,49}$")
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class AmountValidationError(ValueError):
    """Amount is not a positive value with at most 2 decimal places."""


def normalize_mobile(raw: str) -> str | None:
    """Return the 233XXXXXXXXX form of a Ghana mobile number, or None."""
    digits = _NON_DIGIT.sub("", raw or "")
    if len(digits) == 10 and digits.startswith("0"):
        return "233" + digits[1:]
    if len(digits) == 12 and digits.startswith("233"):
        return digits
    return None


def parse_amount(raw: str | Decimal | float | int, minimum: Decimal | None = None) -> Decimal:
    """Parse a money amount.

    Raises:
        AmountValidationError: not numeric, not positive, more than two
            decimal places, or below the minimum.
    """
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise AmountValidationError(f"Invalid amount: {raw!r}") from None
    if not value.is_finite():
        raise AmountValidationError(f"Invalid amount: {raw!r}")
    if value <= 0:
        raise AmountValidationError("Amount must be greater than zero")
    exponent = value.normalize().as_tuple().exponent
    if isinstance(exponent, int) and exponent < -2:
        raise AmountValidationError("Amount cannot have more than 2 decimal places")
    if minimum is not None and value < minimum:
        raise AmountValidationError(f"Minimum amount is GHS {minimum:.2f}")
    return value.quantize(Decimal("0.01"))


def parse_choice(raw: str, count: int) -> int | None:
    """1-based menu choice -> 0-based index, or None when out of range."""
    if not raw.isdigit():
        return None
    index = int(raw) - 1
    if 0 <= index < count:
        return index
    return None


def parse_quantity(raw: str, minimum: int = 1, maximum: int = 100) -> int | None:
    if not raw.isdigit():
        return None
    value = int(raw)
    if minimum <= value <= maximum:
        return value
    return None


def is_valid_account_number(raw: str) -> bool:
    return bool(_ACCOUNT.match(raw.strip()))


def is_valid_name(raw: str) -> bool:
    return bool(_NAME.match(raw.strip()))


def is_valid_email(raw: str) -> bool:
    return bool(_EMAIL.match(raw.strip()))
