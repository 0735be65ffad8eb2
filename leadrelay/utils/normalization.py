"""Data normalization utilities for phone numbers, emails, and names."""

import re
from typing import Optional


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize phone to E.164 format (+15551234567).

    Accepts:
    - 10 digits: 5551234567 → +15551234567
    - 11 digits starting with 1: 15551234567 → +15551234567
    - Already E.164 NANP: +15551234567 → +15551234567

    Returns:
        E.164 formatted phone or None if empty

    Raises:
        ValueError: If phone is not a valid North American number
    """
    if not phone:
        return None

    cleaned = phone.strip()
    if cleaned.startswith("+"):
        digits = re.sub(r"\D", "", cleaned[1:])
        if digits.startswith("1") and len(digits) == 11:
            return f"+{digits}"
    else:
        digits = re.sub(r"\D", "", cleaned)

    if len(digits) == 10:
        return f"+1{digits}"
    elif len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"

    raise ValueError(f"Invalid phone number '{phone}'. Use 10-digit format (e.g., 4035551234).")


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Normalize email to lowercase; None if empty."""
    if not email:
        return None
    return email.strip().lower()


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and bool(EMAIL_PATTERN.match(email.strip()))


def normalize_name(name: Optional[str]) -> Optional[str]:
    """Strip whitespace and collapse internal spaces."""
    if not name:
        return None
    return " ".join(name.split())


def mask_phone(phone: Optional[str]) -> str:
    """Mask a phone number for logs: +1403***1234."""
    if not phone:
        return ""
    if len(phone) <= 8:
        return "***"
    return f"{phone[:5]}***{phone[-4:]}"


def slugify(value: str) -> str:
    """Lowercase slug with non-alphanumerics collapsed to underscores."""
    return re.sub(r"[^a-z0-9]+", "_", value.lower()).strip("_")


def format_phone(phone: Optional[str]) -> str:
    """Display form for NANP numbers: (403) 555-1234."""
    if not phone:
        return ""
    digits = re.sub(r"\D", "", phone)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    if len(digits) != 10:
        return phone
    return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"
