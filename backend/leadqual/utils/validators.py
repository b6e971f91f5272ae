# backend/leadqual/utils/validators.py
"""
Input validation for lead contact fields.

Provides:
- Phone number validation and E.164 normalization (phonenumbers)
- Email validation
- Website normalization
"""

import re
from typing import Optional, Tuple

import phonenumbers
from phonenumbers import NumberParseException


# ==================== Phone Number Validation ====================

def validate_phone_number(
    phone: str,
    default_region: str = "US"
) -> Tuple[bool, Optional[str], Optional[str]]:
    """
    Validate and normalize a phone number.

    Args:
        phone: The phone number to validate
        default_region: Default region code (ISO 3166-1 alpha-2)

    Returns:
        Tuple of (is_valid, normalized_number, error_message)
        - normalized_number is in E.164 format (+1234567890) if valid
    """
    if not phone or not phone.strip():
        return False, None, "Phone number is required"

    try:
        parsed = phonenumbers.parse(phone.strip(), default_region)
    except NumberParseException as e:
        return False, None, f"Invalid phone number: {str(e)}"

    if not phonenumbers.is_possible_number(parsed):
        return False, None, "Phone number format is not valid"

    normalized = phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)
    return True, normalized, None


# ==================== Email Validation ====================

# RFC 5322 compliant email regex (simplified)
EMAIL_REGEX = re.compile(
    r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
)


def validate_email(email: str) -> Tuple[bool, Optional[str]]:
    """
    Validate an email address.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not email:
        return False, "Email is required"

    email = email.strip().lower()

    if len(email) > 254:
        return False, "Email address is too long"

    if not EMAIL_REGEX.match(email) or '..' in email:
        return False, "Invalid email format"

    return True, None


# ==================== Website ====================

def normalize_website(website: Optional[str]) -> Optional[str]:
    """Strip whitespace and trailing slashes; empty input becomes None."""
    w = (website or "").strip().rstrip("/")
    return w or None
