from __future__ import annotations

from typing import Any


# Maximum single amount: ₹99,99,999.99 (999,999,999 paise)
# This prevents database overflow issues and nonsensical prices
MAX_AMOUNT_PAISE = 999_999_999


class DomainError(ValueError):
    """Base for every business-rule failure surfaced to clients as a 4xx."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ValidationError(DomainError):
    """400-level input problem; not retryable without changing the request."""
    status_code = 400


class NotFoundError(DomainError):
    """404-level missing product/order/payment/account/user."""
    status_code = 404


class ConflictError(DomainError):
    """409-level business rule conflict (e.g., coupon already used)."""
    status_code = 409


class ResourceError(DomainError):
    """409-level resource shortage; caller must resubmit with adjusted quantities."""
    status_code = 409


def coerce_int(value: Any, field: str, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """
    Strict integer coercion for JSON input.

    Rejects booleans, floats, decimals-in-strings and scientific notation
    so that quantities and paise amounts are never silently truncated.
    """
    if value is None:
        raise ValidationError(f"{field} is required")

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
        raise ValidationError(f"{field} cannot exceed {maximum}")
    return result


def optional_int(value: Any, field: str, **bounds) -> int | None:
    if value is None:
        return None
    return coerce_int(value, field, **bounds)


def clean_str(value: Any, field: str, *, required: bool = False, max_length: int | None = None) -> str | None:
    """Strip a string field; blank strings count as missing."""
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    stripped = value.strip()
    if not stripped:
        if required:
            raise ValidationError(f"{field} cannot be blank")
        return None
    if max_length and len(stripped) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return stripped


def require_json_object(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload
