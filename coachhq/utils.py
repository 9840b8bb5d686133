# coachhq/utils.py
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from .errors import ValidationError

logger = logging.getLogger(__name__)

_CENTS = Decimal("0.01")
_MONEY_LIMIT = Decimal("1e8")


def safe_execute(func, *args, label: str = "", **kwargs):
    """
    Wrapper to safely execute a best-effort side effect.
    Logs success/failure without undoing the caller's committed work.
    """
    try:
        result = func(*args, **kwargs)
        logger.info(f"[SAFE EXEC OK] {label} → {result}")
        return result
    except Exception as e:
        logger.exception(f"[SAFE EXEC FAIL] {label} args={args} kwargs={kwargs}: {e}")
        return None


def normalize_optional_text(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_required_text(value, field: str) -> str:
    text = normalize_optional_text(value)
    if not text:
        raise ValidationError(f"{field} is required")
    return text


def parse_money(value, field: str = "amount") -> Optional[Decimal]:
    """
    Parse a price/amount into a 2dp Decimal.
    None or blank → None. Booleans, garbage, NaN and ±inf are rejected.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a valid number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    # Numeric(10, 2): at most eight digits before the point
    if amount.copy_abs() >= _MONEY_LIMIT:
        raise ValidationError(f"{field} is too large")
    amount = amount.quantize(_CENTS)
    if amount.copy_abs() >= _MONEY_LIMIT:
        raise ValidationError(f"{field} is too large")
    return amount


def parse_int(value, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{field} must be an integer")
        return int(value)
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")


def parse_id(value, field: str) -> int:
    """Durable ids are opaque positive integers."""
    if value is None or value == "":
        raise ValidationError(f"{field} is required")
    ident = parse_int(value, field)
    if ident <= 0:
        raise ValidationError(f"{field} must be a positive id")
    return ident


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None
