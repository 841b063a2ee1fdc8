# accounts/services/account_service.py
"""
Account-facing call sites of the OTP service: login/registration by code,
password reset, confirming the email/phone on file and linking a phone.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from django.db import transaction

from accounts.models import User
from accounts.services.otp_service import (
    IssueResult,
    IssueStatus,
    OTPService,
    VerifyResult,
    VerifyStatus,
    general_policy,
)
from accounts.utils.security import mask_identifier
from accounts.validators import is_email, normalize_identifier, normalize_phone
from core.exceptions import BusinessLogicException, CredentialConflictException

logger = logging.getLogger("accounts.otp")


@dataclass
class LoginResult:
    """Result of an OTP login"""
    verification: VerifyResult
    user: Optional[User] = None
    created: bool = False

    @property
    def ok(self) -> bool:
        return self.verification.ok


# ============================================================
# ACCOUNT LOOKUP
# ============================================================

def find_user(identifier: str) -> Optional[User]:
    if is_email(identifier):
        return User.objects.filter(email=identifier).first()
    return User.objects.filter(phone=identifier).first()


def find_account_id(identifier: str) -> Optional[int]:
    """Account id the identifier currently resolves to, or None."""
    user = find_user(identifier)
    return user.pk if user else None


def _default_service() -> OTPService:
    return OTPService(policy=general_policy())


# ============================================================
# LOGIN / REGISTRATION
# ============================================================

def login_with_otp(identifier: str, code: str, service: OTPService = None) -> LoginResult:
    """
    Verify a code and log the owner of `identifier` in.

    An identifier with no account yet gets one (verify-before-create).
    """
    identifier = normalize_identifier(identifier)
    service = service or _default_service()

    verification = service.verify(identifier, code)
    if not verification.ok:
        return LoginResult(verification=verification)

    with transaction.atomic():
        user = None
        if verification.account_id is not None:
            user = User.objects.select_for_update().filter(pk=verification.account_id).first()

        # Account deleted or created since the code was issued
        if user is None:
            user = find_user(identifier)

        created = user is None
        if created:
            if is_email(identifier):
                user = User.objects.create_user(email=identifier)
            else:
                user = User.objects.create_user(phone=identifier)

        if is_email(identifier):
            user.is_email_verified = True
        else:
            user.is_phone_verified = True

        user.last_login = service.clock()
        user.save()

    logger.info(
        "%s user %s via OTP (%s)",
        "Registered" if created else "Logged in",
        user.pk,
        mask_identifier(identifier),
    )
    return LoginResult(verification=verification, user=user, created=created)


# ============================================================
# PASSWORD RESET
# ============================================================

def send_password_reset(identifier: str, service: OTPService = None) -> IssueResult:
    """
    Send a reset code if an account owns `identifier`.

    Unknown identifiers are not issued a code but still go through the
    rate limiter, so callers can answer identically in both cases.
    """
    identifier = normalize_identifier(identifier)
    service = service or _default_service()

    account_id = find_account_id(identifier)
    if account_id is not None:
        result = service.issue(identifier, account_id=account_id)
        logger.info("Password reset code requested for %s: %s", mask_identifier(identifier), result.status)
        return result

    if service.rate_limiter.is_limited(identifier):
        return IssueResult(status=IssueStatus.RATE_LIMITED)

    service.rate_limiter.record_attempt(identifier)
    logger.info("Password reset requested for unknown identifier %s", mask_identifier(identifier))
    return IssueResult(status=IssueStatus.OK)


def reset_password_with_otp(
    identifier: str,
    code: str,
    new_password: str,
    service: OTPService = None,
) -> VerifyResult:
    """
    Set a new password after verifying a reset code.

    An unknown identifier reports NOT_FOUND without touching any record.
    """
    identifier = normalize_identifier(identifier)
    service = service or _default_service()

    user = find_user(identifier)
    if user is None:
        return VerifyResult(status=VerifyStatus.NOT_FOUND)

    verification = service.verify(identifier, code)
    if not verification.ok:
        return verification

    if verification.account_id is not None and verification.account_id != user.pk:
        logger.warning("Reset code for %s was issued to another account", mask_identifier(identifier))
        return VerifyResult(status=VerifyStatus.NOT_FOUND)

    user.set_password(new_password)
    user.save(update_fields=["password", "updated_at"])

    logger.info("Password reset successful for user %s", user.pk)
    return verification


# ============================================================
# CONTACT VERIFICATION
# ============================================================

CONTACT_LABELS = {
    "email": ("Email", "email address"),
    "phone": ("Phone", "phone number"),
}


@dataclass
class ContactVerificationResult:
    """Result of confirming the email or phone on file"""
    verification: Optional[VerifyResult] = None
    already_verified: bool = False

    @property
    def ok(self) -> bool:
        return self.already_verified or self.verification.ok


def _contact_on_file(user: User, contact_type: str) -> str:
    """
    The stored value for `contact_type`.

    Raises:
        BusinessLogicException: unknown type or nothing on file
    """
    if contact_type not in CONTACT_LABELS:
        raise BusinessLogicException("Type must be 'email' or 'phone'.")

    value = getattr(user, contact_type)
    if not value:
        raise BusinessLogicException(f"No {CONTACT_LABELS[contact_type][1]} on file.")
    return value


def request_contact_verification(user: User, contact_type: str, service: OTPService = None) -> IssueResult:
    """
    Send a code to the email or phone already on the user's account.

    Raises:
        BusinessLogicException: unknown type, nothing on file, or already verified
    """
    contact_type = (contact_type or "").lower()
    identifier = _contact_on_file(user, contact_type)

    if getattr(user, f"is_{contact_type}_verified"):
        raise BusinessLogicException(f"{CONTACT_LABELS[contact_type][0]} is already verified.")

    service = service or _default_service()
    result = service.issue(identifier, account_id=user.pk)

    logger.info("Verification code requested by user %s (%s): %s", user.pk, contact_type, result.status)
    return result


def confirm_contact_verification(
    user: User,
    contact_type: str,
    code: str,
    service: OTPService = None,
) -> ContactVerificationResult:
    """
    Mark the email or phone on file as verified after checking the code.

    A value that is already verified is reported as such without touching
    any code.
    """
    contact_type = (contact_type or "").lower()
    identifier = _contact_on_file(user, contact_type)
    verified_flag = f"is_{contact_type}_verified"

    if getattr(user, verified_flag):
        return ContactVerificationResult(already_verified=True)

    service = service or _default_service()
    verification = service.verify(identifier, code)
    if not verification.ok:
        logger.warning("Verification failed for user %s (%s): %s", user.pk, contact_type, verification.status)
        return ContactVerificationResult(verification=verification)

    setattr(user, verified_flag, True)
    user.save(update_fields=[verified_flag, "updated_at"])

    logger.info("User %s verified their %s", user.pk, contact_type)
    return ContactVerificationResult(verification=verification)


def verification_status(user: User) -> dict:
    return {
        "is_email_verified": user.is_email_verified,
        "is_phone_verified": user.is_phone_verified,
        "email": mask_identifier(user.email) if user.email else None,
        "phone": mask_identifier(user.phone) if user.phone else None,
    }


# ============================================================
# LINK PHONE
# ============================================================

def link_phone(user: User, phone: str, code: str, service: OTPService = None) -> VerifyResult:
    """
    Attach a phone to the user's account with a general-flow code.

    Raises:
        CredentialConflictException: another account owns the phone
    """
    phone = normalize_phone(phone)
    service = service or _default_service()

    if User.objects.filter(phone=phone).exclude(pk=user.pk).exists():
        raise CredentialConflictException("This phone number is already linked to another account.")

    verification = service.verify(phone, code)
    if not verification.ok:
        return verification

    with transaction.atomic():
        user = User.objects.select_for_update().get(pk=user.pk)
        user.phone = phone
        user.is_phone_verified = True
        user.save(update_fields=["phone", "is_phone_verified", "updated_at"])

    logger.info("Phone linked to user %s: %s", user.pk, mask_identifier(phone))
    return verification
