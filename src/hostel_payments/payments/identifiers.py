"""Order, receipt and transaction id generation."""

import re
import time
import secrets
import string
from decimal import Decimal, InvalidOperation
from typing import Optional

from ..database.models import PaymentType
from ..exceptions import ValidationError

_BASE36 = string.digits + string.ascii_lowercase
_RECEIPT_ALPHABET = string.digits + string.ascii_uppercase

ORDER_PREFIXES = {
    PaymentType.ELECTRICITY.value: "ELEC",
    PaymentType.HOSTEL_FEE.value: "HF",
}

ACADEMIC_YEAR_PATTERN = re.compile(r"^(\d{4})-(\d{4})$")
BILL_MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

CENT = Decimal("0.01")
# Largest values the Numeric(12, 2) amount and Numeric(10, 2) rate columns hold
MAX_AMOUNT = Decimal("9999999999.99")
MAX_RATE = Decimal("99999999.99")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _random(alphabet: str, length: int) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def generate_order_id(payment_type: str) -> str:
    """``<PREFIX>_<epoch ms>_<9 base36 chars>``; PREFIX is ELEC or HF."""
    prefix = ORDER_PREFIXES.get(payment_type, "PAY")
    return f"{prefix}_{_now_ms()}_{_random(_BASE36, 9)}"


def generate_receipt_number() -> str:
    return f"HFR{_now_ms()}{_random(_RECEIPT_ALPHABET, 5)}"


def generate_transaction_id() -> str:
    return f"HFT{_now_ms()}{_random(_RECEIPT_ALPHABET, 5)}"


def validate_academic_year(academic_year: Optional[str]) -> str:
    """Require ``YYYY-YYYY`` with consecutive years."""
    match = ACADEMIC_YEAR_PATTERN.match((academic_year or "").strip())
    if not match or int(match.group(2)) != int(match.group(1)) + 1:
        raise ValidationError("Academic year must be in format YYYY-YYYY (e.g., 2024-2025)")
    return match.group(0)


def validate_bill_month(month: Optional[str]) -> str:
    if not month or not BILL_MONTH_PATTERN.match(month):
        raise ValidationError("Month must be in format YYYY-MM")
    return month


def _to_money(value, label: str, ceiling: Decimal) -> Decimal:
    try:
        value = Decimal(str(value))
    except InvalidOperation as e:
        raise ValidationError(f"{label} must be a number") from e
    if not value.is_finite() or value <= 0:
        raise ValidationError(f"{label} must be greater than 0")
    if value > ceiling:
        raise ValidationError(f"{label} cannot exceed {ceiling}")
    if value != value.quantize(CENT):
        raise ValidationError(f"{label} cannot have more than 2 decimal places")
    return value.quantize(CENT)


def validate_amount(amount: Optional[Decimal], minimum: Optional[Decimal] = None) -> Decimal:
    """Positive, at most two decimal places, storable, and at least ``minimum`` if given."""
    if amount is None:
        raise ValidationError("Amount is required")
    amount = _to_money(amount, "Amount", MAX_AMOUNT)
    if minimum is not None and amount < minimum:
        raise ValidationError(f"Minimum payment amount is ₹{minimum}")
    return amount


def validate_rate(rate: Optional[Decimal]) -> Decimal:
    """Per-unit electricity rate: positive, at most two decimal places."""
    if rate is None:
        raise ValidationError("Rate is required")
    return _to_money(rate, "Rate", MAX_RATE)
