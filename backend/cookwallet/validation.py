from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any


# Largest single ledger movement accepted (whole XAF).
# Guards against overflow and obviously mistyped amounts.
MAX_AMOUNT = 999_999_999

MIN_COMMISSION_RATE = Decimal("0")
MAX_COMMISSION_RATE = Decimal("50")
COMMISSION_RATE_STEP = Decimal("0.5")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., insufficient funds)."""


class NotFoundError(LookupError):
    """404-level missing entity."""


# =============================================================================
# VALIDATION ERRORS (rejected synchronously, no state change)
# =============================================================================

class InvalidAmount(ValidationError):
    """Amount is not a positive whole number of XAF."""


class InvalidRate(ValidationError):
    """Commission rate outside [0, 50] or not a multiple of 0.5."""


class MissingReference(ValidationError):
    """Manual payout completion requires proof of the out-of-band transfer."""


# =============================================================================
# BUSINESS-RULE CONFLICTS (caller must choose another path)
# =============================================================================

class InsufficientFunds(ConflictError):
    """Requested debit exceeds the balance it is allowed to draw from."""


class AlreadyResolved(ConflictError):
    """Payout task or deduction has already left its pending state."""


class RetryLimitExceeded(ConflictError):
    """Automatic retries are exhausted; only manual completion remains."""


class RetryInProgress(ConflictError):
    """Another transfer attempt for the same payout task has not returned yet."""


class InvalidTransition(ConflictError):
    """State machine transition not legal from the current state."""


def coerce_amount(value: Any, field: str = "amount") -> int:
    """
    Strict whole-XAF amount parsing.

    Accepts ints and plain digit strings. Rejects bools, floats with a
    fractional part, scientific notation, zero and negatives.
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmount(f"{field} must be a whole number")

    if isinstance(value, int):
        amount = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise InvalidAmount(f"{field} must be a whole number (no decimals)")
        amount = int(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise InvalidAmount(f"{field} must be a whole number")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise InvalidAmount(f"{field} must be a plain number (scientific notation not allowed)")
        if "." in stripped:
            raise InvalidAmount(f"{field} must be a whole number (no decimals)")
        try:
            amount = int(stripped)
        except ValueError:
            raise InvalidAmount(f"{field} must be a whole number")
    else:
        raise InvalidAmount(f"{field} must be a whole number")

    require_positive_amount(amount, field)
    return amount


def require_positive_amount(amount: int, field: str = "amount") -> None:
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise InvalidAmount(f"{field} must be an integer")
    if amount <= 0:
        raise InvalidAmount(f"{field} must be greater than zero")
    if amount > MAX_AMOUNT:
        raise InvalidAmount(f"{field} cannot exceed {MAX_AMOUNT:,}")


def coerce_rate(value: Any) -> Decimal:
    """Parse a commission percentage and enforce its domain."""
    if value is None or isinstance(value, bool):
        raise InvalidRate("rate is required")
    try:
        rate = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidRate("rate must be a number")

    if not rate.is_finite():
        raise InvalidRate("rate must be a number")
    if rate < MIN_COMMISSION_RATE or rate > MAX_COMMISSION_RATE:
        raise InvalidRate(f"rate must be between {MIN_COMMISSION_RATE} and {MAX_COMMISSION_RATE}")
    if rate % COMMISSION_RATE_STEP != 0:
        raise InvalidRate(f"rate must be a multiple of {COMMISSION_RATE_STEP}")
    return rate.quantize(Decimal("0.01"))


def require_reference(reference_number: Any) -> str:
    if reference_number is None:
        raise MissingReference("reference_number is required")
    cleaned = str(reference_number).strip()
    if not cleaned:
        raise MissingReference("reference_number is required")
    if len(cleaned) > 128:
        raise ValidationError("reference_number exceeds max length 128")
    return cleaned


def parse_actor_id(value: Any, *, required: bool = True) -> int | None:
    """Acting user id from a request body (auth lives outside this service)."""
    if value is None or value == "":
        if required:
            raise ValidationError("actor_id is required")
        return None
    if isinstance(value, bool):
        raise ValidationError("actor_id must be an integer")
    try:
        actor_id = int(value)
    except (TypeError, ValueError):
        raise ValidationError("actor_id must be an integer")
    if actor_id <= 0:
        raise ValidationError("actor_id must be positive")
    return actor_id
