"""
Security module for certledger.

Input validation for values arriving from outside the process (HTTP
bodies, CLI arguments) and sanitization for anything written to logs.
"""

import base64
import re
from typing import Any, Dict, List, Optional

from .util import mask_sensitive


# ============================================================
# Input Validation
# ============================================================

DIGEST_PATTERN = re.compile(r'^sha256:[0-9a-f]{64}$')
IDENTITY_PATTERN = re.compile(r'^0x[0-9a-f]{40}$')
BASE64_PATTERN = re.compile(r'^[A-Za-z0-9+/]*={0,2}$')
CATEGORY_NAME_PATTERN = re.compile(r'^[A-Za-z0-9_.:-]{1,64}$')


class ValidationError(Exception):
    """Raised when input validation fails."""
    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


def validate_digest(value: Any, field_name: str) -> str:
    """
    Validate a ledger digest ("sha256:" + 64 lowercase hex).

    Uppercase hex is accepted and lowercased.
    """
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")

    value = value.strip()
    if value.lower().startswith("sha256:"):
        value = "sha256:" + value[7:].lower()

    if not DIGEST_PATTERN.match(value):
        raise ValidationError(field_name, "must be sha256: followed by 64 hex characters")

    return value


def validate_identity(value: Any, field_name: str) -> str:
    """Validate a key-derived identity ("0x" + 40 lowercase hex)."""
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")

    value = value.strip().lower()
    if not IDENTITY_PATTERN.match(value):
        raise ValidationError(field_name, "must be 0x followed by 40 hex characters")

    return value


def validate_category(value: Any, field_name: str = "category") -> str:
    """A category is either a digest or a short name."""
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")

    value = value.strip()
    if value.lower().startswith("sha256:"):
        return validate_digest(value, field_name)
    if not CATEGORY_NAME_PATTERN.match(value):
        raise ValidationError(field_name, "must be a digest or 1-64 characters of [A-Za-z0-9_.:-]")

    return value


def validate_base64(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")

    value = value.strip()

    if not value:
        raise ValidationError(field_name, "cannot be empty")

    if not BASE64_PATTERN.match(value):
        raise ValidationError(field_name, "must be valid base64")

    try:
        base64.b64decode(value, validate=True)
    except ValueError:
        raise ValidationError(field_name, "must be valid base64") from None

    return value


def validate_non_negative_int(value: Any, field_name: str, max_value: Optional[int] = None) -> int:
    if isinstance(value, bool):
        raise ValidationError(field_name, "must be an integer")
    try:
        int_value = int(value)
    except (TypeError, ValueError):
        raise ValidationError(field_name, "must be an integer") from None

    if int_value < 0:
        raise ValidationError(field_name, "must not be negative")

    if max_value is not None and int_value > max_value:
        raise ValidationError(field_name, f"must not exceed {max_value}")

    return int_value


def validate_string_length(
    value: Any,
    field_name: str,
    min_length: int = 1,
    max_length: int = 1000
) -> str:
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")

    if len(value) < min_length:
        raise ValidationError(field_name, f"must be at least {min_length} characters")

    if len(value) > max_length:
        raise ValidationError(field_name, f"must not exceed {max_length} characters")

    return value


# ============================================================
# Audit Logging Helpers
# ============================================================

def sanitize_for_logging(data: Dict[str, Any], sensitive_fields: List[str] = None) -> Dict[str, Any]:
    """
    Sanitize data for logging by masking sensitive fields.

    Args:
        data: The data to sanitize
        sensitive_fields: List of field names to mask

    Returns:
        Sanitized copy of the data
    """
    if sensitive_fields is None:
        sensitive_fields = ["sig", "private_key", "private_key_b64", "secret", "password", "token"]

    result = {}
    for key, value in data.items():
        if key in sensitive_fields:
            if isinstance(value, str) and len(value) > 8:
                result[key] = mask_sensitive(value)
            else:
                result[key] = "[REDACTED]"
        elif isinstance(value, dict):
            result[key] = sanitize_for_logging(value, sensitive_fields)
        elif isinstance(value, list):
            result[key] = [
                sanitize_for_logging(item, sensitive_fields) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value

    return result
