"""
Security utilities for the OTP system.
"""
import hashlib
import hmac
import secrets

from django.conf import settings

from accounts.validators import is_email


class OTPSecurity:
    """Cryptographic utilities for OTP codes."""

    def __init__(self, hmac_secret: str = None):
        self._hmac_secret = hmac_secret

    @property
    def hmac_secret(self) -> bytes:
        secret = (
            self._hmac_secret
            or getattr(settings, "OTP_CONFIG", {}).get("HMAC_SECRET")
            or settings.SECRET_KEY
        )
        return secret.encode()

    def generate_code(self, length: int = 6) -> str:
        """Uniform over the full `length`-digit space, leading zeros kept."""
        return str(secrets.randbelow(10 ** length)).zfill(length)

    def hash_code(self, code: str) -> str:
        """
        Keyed HMAC-SHA256 digest of a code.

        Deterministic, so rows can be looked up by (identifier, code_hash).
        The code is hashed as the exact string: "042315" and "42315"
        produce different digests.
        """
        return hmac.new(self.hmac_secret, code.encode(), hashlib.sha256).hexdigest()


def mask_email(email: str) -> str:
    at_index = email.find("@")
    if at_index <= 1:
        return email

    return email[0] + "***" + email[at_index:]


def mask_phone(phone: str) -> str:
    if len(phone) <= 4:
        return phone

    prefix = phone[:2] if len(phone) > 6 else phone[:1]
    return prefix + "***" + phone[-4:]


def mask_identifier(identifier: str) -> str:
    """Mask an identifier for logs and user-facing messages."""
    if is_email(identifier):
        return mask_email(identifier)
    return mask_phone(identifier)


# Global instance
otp_security = OTPSecurity()
