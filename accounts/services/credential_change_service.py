# accounts/services/credential_change_service.py
"""
Email / phone change confirmed by a code sent to the *new* value.

Uses the credential-change policy: longer TTL and a per-record cap on wrong
guesses. Requests are rate limited per account and change type rather than
per identifier, so an attacker cannot spray codes at arbitrary new values.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from django.db import transaction

from accounts.models import CredentialChangeOTP, User
from accounts.services.otp_service import (
    IssueResult,
    OTPService,
    VerifyResult,
    credential_change_policy,
)
from accounts.utils.security import mask_identifier
from accounts.validators import normalize_email, normalize_phone
from core.exceptions import BusinessLogicException, CredentialConflictException

logger = logging.getLogger("accounts.security")

ChangeType = CredentialChangeOTP.ChangeType


@dataclass
class ChangeResult:
    """Result of confirming a credential change"""
    verification: VerifyResult
    user: Optional[User] = None

    @property
    def ok(self) -> bool:
        return self.verification.ok


class CredentialChangeService:
    """
    Request and confirm a change of a user's email or phone.
    """

    FIELD_NAMES = {
        ChangeType.EMAIL.value: ("email", "is_email_verified"),
        ChangeType.PHONE.value: ("phone", "is_phone_verified"),
    }

    def __init__(self, otp_service: OTPService = None):
        self.otp_service = otp_service or OTPService(
            policy=credential_change_policy(),
            model=CredentialChangeOTP,
        )

    # --------------------------------------------------------
    # Helpers
    # --------------------------------------------------------

    @staticmethod
    def rate_limit_key(user: User, change_type: str) -> str:
        return f"{change_type}-change:account:{user.pk}"

    @staticmethod
    def normalize(change_type: str, value: str) -> str:
        if change_type == ChangeType.EMAIL:
            return normalize_email(value)
        return normalize_phone(value)

    def _scope(self, user: User, change_type: str) -> dict:
        return {"account_id": user.pk, "change_type": change_type}

    def _check_available(self, user: User, change_type: str, new_value: str):
        field, _ = self.FIELD_NAMES[change_type]

        taken = User.objects.filter(**{field: new_value}).exclude(pk=user.pk).exists()
        if taken:
            raise CredentialConflictException(f"{field.capitalize()} already registered")

    # --------------------------------------------------------
    # Operations
    # --------------------------------------------------------

    def request_change(self, user: User, change_type: str, new_value: str) -> IssueResult:
        """
        Send a confirmation code to the new email/phone.

        Raises:
            BusinessLogicException: new value equals the current one
            CredentialConflictException: new value belongs to another account
        """
        change_type = ChangeType(change_type).value
        new_value = self.normalize(change_type, new_value)
        field, _ = self.FIELD_NAMES[change_type]

        if getattr(user, field) == new_value:
            raise BusinessLogicException(f"New {field} is the same as current {field}")

        self._check_available(user, change_type, new_value)

        result = self.otp_service.issue(
            new_value,
            scope=self._scope(user, change_type),
            account_id=user.pk,
            rate_limit_key=self.rate_limit_key(user, change_type),
        )

        logger.info(
            "User %s requested %s change to %s: %s",
            user.pk,
            change_type,
            mask_identifier(new_value),
            result.status,
        )
        return result

    def verify_change(self, user: User, change_type: str, new_value: str, code: str) -> ChangeResult:
        """
        Confirm the code and apply the new email/phone.

        Raises:
            CredentialConflictException: the value was taken in the meantime
        """
        change_type = ChangeType(change_type).value
        new_value = self.normalize(change_type, new_value)
        field, verified_flag = self.FIELD_NAMES[change_type]

        self._check_available(user, change_type, new_value)

        verification = self.otp_service.verify(
            new_value,
            code,
            scope=self._scope(user, change_type),
        )

        if not verification.ok:
            return ChangeResult(verification=verification)

        with transaction.atomic():
            user = User.objects.select_for_update().get(pk=user.pk)
            setattr(user, field, new_value)
            setattr(user, verified_flag, True)
            user.save(update_fields=[field, verified_flag, "updated_at"])

        logger.info("User %s changed %s to %s", user.pk, change_type, mask_identifier(new_value))
        return ChangeResult(verification=verification, user=user)


def request_change(user: User, change_type: str, new_value: str) -> IssueResult:
    return CredentialChangeService().request_change(user, change_type, new_value)


def verify_change(user: User, change_type: str, new_value: str, code: str) -> ChangeResult:
    return CredentialChangeService().verify_change(user, change_type, new_value, code)
