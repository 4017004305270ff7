"""
Input validation shared by the service layer.

Every helper raises ValidationError before anything is read or mutated.
"""

from datetime import date, datetime
from typing import Union

from stepcoin.core.errors import ValidationError

MAX_USER_ID_LENGTH = 100
MAX_KEY_LENGTH = 255
# Largest step count the BigInteger column can hold
MAX_PERSISTED_STEPS = 2 ** 63 - 1


def require_user_id(user_id) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError("user_id is required")
    cleaned = user_id.strip()
    if len(cleaned) > MAX_USER_ID_LENGTH:
        raise ValidationError(f"user_id longer than {MAX_USER_ID_LENGTH} characters")
    return cleaned


def coerce_day(value: Union[date, str]) -> date:
    """Accept a date or an ISO YYYY-MM-DD string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            raise ValidationError(f"Invalid date: {value!r} (expected YYYY-MM-DD)")
    raise ValidationError("date is required")


def require_steps(steps) -> int:
    if isinstance(steps, bool) or not isinstance(steps, int):
        raise ValidationError("steps must be an integer")
    if steps < 0:
        raise ValidationError("steps must be non-negative")
    if steps > MAX_PERSISTED_STEPS:
        raise ValidationError("steps exceeds the storable maximum")
    return steps


def require_idempotency_key(key) -> str:
    if not isinstance(key, str) or not key.strip():
        raise ValidationError("idempotency_key is required")
    cleaned = key.strip()
    if len(cleaned) > MAX_KEY_LENGTH:
        raise ValidationError(f"idempotency_key longer than {MAX_KEY_LENGTH} characters")
    return cleaned
