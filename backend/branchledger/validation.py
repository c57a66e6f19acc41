from __future__ import annotations

from dataclasses import dataclass
from typing import Any


# Maximum unit price: 99,999,999.99 (9,999,999,999 minor units)
MAX_PRICE_CENTS = 9_999_999_999

# 100.00% expressed in basis points
MAX_RATE_BPS = 10_000


class ValidationError(ValueError):
    """400-level input problem."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class NotFoundError(ValueError):
    """404-level: branch, product, bill or serial absent (or outside the tenant)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ConflictError(ValueError):
    """409-level business rule conflict."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InsufficientStockError(ConflictError):
    """A depleting movement would take on-hand below zero."""


class DuplicateError(ConflictError):
    """Serial number or invoice number already exists."""


class UnexpectedStorageError(RuntimeError):
    """Underlying write failed for a reason that is not a business rule."""


class LedgerImmutableError(RuntimeError):
    """Raised when code attempts to update or delete a stock ledger entry."""


@dataclass(frozen=True)
class PayloadPolicy:
    """
    Route-level payload policy:
    - writable_fields: keys clients may send (anything else is rejected)
    - required: keys that must be present and non-null
    """
    writable_fields: set[str]
    required: set[str] = frozenset()  # type: ignore


def check_payload(payload: Any, policy: PayloadPolicy) -> dict:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")

    missing = sorted(f for f in policy.required if payload.get(f) is None)
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    return payload


def coerce_int(value: Any, field: str, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """
    Strict integer coercion.

    Accepts ints and plain digit strings; rejects bools, floats, decimals and
    scientific notation so that money and quantities never round silently.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")

    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} must be <= {maximum}")
    return result


def coerce_str(value: Any, field: str, *, max_length: int | None = None, allow_blank: bool = False) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text and not allow_blank:
        raise ValidationError(f"{field} cannot be blank")
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def coerce_str_list(value: Any, field: str) -> list[str]:
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{field} must be a list")
    out = []
    for item in value:
        if not isinstance(item, (str, int)) or isinstance(item, bool):
            raise ValidationError(f"{field} must contain strings")
        out.append(str(item))
    return out


def enforce_rules_price(value: int, field: str) -> int:
    if value < 0:
        raise ValidationError(f"{field} must be >= 0")
    if value > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS} ({MAX_PRICE_CENTS / 100:,.2f})")
    return value


def enforce_rules_rate(value: int, field: str) -> int:
    if value < 0 or value > MAX_RATE_BPS:
        raise ValidationError(f"{field} must be between 0 and {MAX_RATE_BPS} basis points")
    return value
