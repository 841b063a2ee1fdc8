# accounts/validators.py
"""
Identifier normalization.

Every OTP and rate-limit row is keyed by a canonical identifier: a
lower-cased email address or a `+`-prefixed phone number. Callers must
normalize before touching the store, otherwise "A@B.com" and "a@b.com"
would get separate codes and separate rate limits.
"""
import re

from django.conf import settings
from django.core.exceptions import ValidationError

MIN_PHONE_DIGITS = 7
NATIONAL_NUMBER_DIGITS = 10

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+$")


def is_email(identifier: str) -> bool:
    """Email and SMS routing is decided by the presence of `@`."""
    return "@" in identifier


def normalize_email(value: str) -> str:
    """Trim and lower-case an email address."""
    email = (value or "").strip().lower()

    if not _EMAIL_RE.match(email):
        raise ValidationError("Invalid email address.")

    return email


def normalize_phone(value: str) -> str:
    """
    Canonicalize a phone number to `+<country><number>`.

    Formatting characters are dropped. Numbers longer than a national
    number are assumed to carry their country code already; shorter ones
    get the configured default country code.
    """
    phone = "".join(c for c in (value or "") if c.isdigit() or c == "+")

    # A '+' is only meaningful as the first character
    has_plus = phone.startswith("+")
    digits = phone.replace("+", "")

    if len(digits) < MIN_PHONE_DIGITS:
        raise ValidationError("Invalid phone number.")

    if has_plus or len(digits) > NATIONAL_NUMBER_DIGITS:
        return "+" + digits

    country_code = getattr(settings, "OTP_CONFIG", {}).get("DEFAULT_COUNTRY_CODE", "1")
    return f"+{country_code}{digits}"


def normalize_identifier(value: str) -> str:
    """Normalize an email or phone number, routing on `@`."""
    if not value or not value.strip():
        raise ValidationError("Email or phone number is required.")

    if is_email(value):
        return normalize_email(value)
    return normalize_phone(value)
