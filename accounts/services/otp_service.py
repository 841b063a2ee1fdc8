# accounts/services/otp_service.py
"""
One-time code issuance and verification.

A single `OTPService` serves every flow (login, registration, password
reset, credential change); the flows differ only by `OTPPolicy`, the record
model and an optional record scope.

Record lifecycle:
    issued -> verified | superseded | locked by attempts   (is_used=True)
    issued -> expired                                       (derived from expires_at)

Diagnostic outcomes are returned as typed results. Database errors are never
caught here and reach the caller as-is.
"""

import logging
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Callable, Optional

from django.conf import settings
from django.db import models, transaction
from django.utils import timezone

from accounts.models import OTPRequest
from accounts.services.delivery import get_delivery_channel
from accounts.services.rate_limit_service import RateLimitService
from accounts.utils.security import mask_identifier, otp_security
from accounts.validators import normalize_identifier

logger = logging.getLogger("accounts.otp")


# ============================================================
# POLICIES
# ============================================================

@dataclass(frozen=True)
class OTPPolicy:
    """Per-flow knobs. `max_verify_attempts=None` disables the per-record cap."""
    name: str
    ttl_minutes: int
    code_length: int = 6
    max_verify_attempts: Optional[int] = None

    @property
    def ttl(self) -> timedelta:
        return timedelta(minutes=self.ttl_minutes)


GENERAL_POLICY = OTPPolicy(name="general", ttl_minutes=5)
CREDENTIAL_CHANGE_POLICY = OTPPolicy(name="credential_change", ttl_minutes=10, max_verify_attempts=5)


def general_policy() -> OTPPolicy:
    config = getattr(settings, "OTP_CONFIG", {})
    return replace(
        GENERAL_POLICY,
        ttl_minutes=config.get("GENERAL_TTL_MINUTES", GENERAL_POLICY.ttl_minutes),
        code_length=config.get("CODE_LENGTH", GENERAL_POLICY.code_length),
    )


def credential_change_policy() -> OTPPolicy:
    config = getattr(settings, "OTP_CONFIG", {})
    return replace(
        CREDENTIAL_CHANGE_POLICY,
        ttl_minutes=config.get("CREDENTIAL_CHANGE_TTL_MINUTES", CREDENTIAL_CHANGE_POLICY.ttl_minutes),
        code_length=config.get("CODE_LENGTH", CREDENTIAL_CHANGE_POLICY.code_length),
        max_verify_attempts=config.get(
            "CREDENTIAL_CHANGE_MAX_VERIFY_ATTEMPTS",
            CREDENTIAL_CHANGE_POLICY.max_verify_attempts,
        ),
    )


# ============================================================
# RESULTS
# ============================================================

class IssueStatus(models.TextChoices):
    OK = "ok", "OTP sent successfully."
    RATE_LIMITED = "rate_limited", "Too many OTP requests. Please try again later."
    DELIVERY_FAILED = "delivery_failed", "Failed to send OTP. Please try again."


class VerifyStatus(models.TextChoices):
    OK = "ok", "OTP verified successfully."
    NOT_FOUND = "not_found", "Invalid OTP."
    ALREADY_USED = "already_used", "This OTP has already been used."
    EXPIRED = "expired", "This OTP has expired."
    TOO_MANY_ATTEMPTS = "too_many_attempts", "Too many failed attempts. Please request a new code."


@dataclass
class IssueResult:
    """Result of issuing a code"""
    status: str
    code: Optional[str] = None
    record: Optional[models.Model] = None

    @property
    def ok(self) -> bool:
        return self.status == IssueStatus.OK

    @property
    def message(self) -> str:
        return IssueStatus(self.status).label


@dataclass
class VerifyResult:
    """Result of verifying a code"""
    status: str
    account_id: Optional[int] = None
    record: Optional[models.Model] = None

    @property
    def ok(self) -> bool:
        return self.status == VerifyStatus.OK

    @property
    def message(self) -> str:
        return VerifyStatus(self.status).label


# ============================================================
# SERVICE
# ============================================================

class OTPService:
    """
    Issue and verify single-use numeric codes bound to an identifier.

    Collaborators are injected so tests can control time and delivery:

        clock          zero-argument callable returning an aware datetime
        channel        object with send(identifier, message) -> bool
        account_lookup callable(identifier) -> account id or None
    """

    MESSAGE_TEMPLATE = "Your verification code is: {code}. It expires in {ttl} minutes."

    def __init__(
        self,
        policy: OTPPolicy = GENERAL_POLICY,
        rate_limiter: Optional[RateLimitService] = None,
        channel=None,
        account_lookup: Optional[Callable] = None,
        clock: Callable = timezone.now,
        model=OTPRequest,
        security=otp_security,
    ):
        if account_lookup is None:
            from accounts.services.account_service import find_account_id
            account_lookup = find_account_id

        self.policy = policy
        self.clock = clock
        self.rate_limiter = rate_limiter or RateLimitService(clock=clock)
        self.channel = channel or get_delivery_channel()
        self.account_lookup = account_lookup
        self.model = model
        self.security = security

    # --------------------------------------------------------
    # Issue
    # --------------------------------------------------------

    def issue(
        self,
        identifier: str,
        scope: Optional[dict] = None,
        account_id: Optional[int] = None,
        rate_limit_key: Optional[str] = None,
    ) -> IssueResult:
        """
        Issue a fresh code for `identifier` and hand it to the channel.

        Args:
            identifier: Normalized email or phone number
            scope: Extra exact-match fields for the record (e.g. change_type)
            account_id: Account to bind; looked up from `identifier` when omitted
            rate_limit_key: Limiter key; defaults to the identifier

        Returns:
            IssueResult (OK, RATE_LIMITED or DELIVERY_FAILED)
        """
        scope = scope or {}
        rate_limit_key = rate_limit_key or identifier

        if self.rate_limiter.is_limited(rate_limit_key):
            logger.info("OTP request refused for %s: rate limited", mask_identifier(identifier))
            return IssueResult(status=IssueStatus.RATE_LIMITED)

        code = self.security.generate_code(self.policy.code_length)

        if account_id is None:
            account_id = self.account_lookup(identifier)

        now = self.clock()

        # Supersession, the new record and the attempt are committed together
        # before anything is delivered
        with transaction.atomic():
            superseded = self._live_records(identifier, scope, now).update(is_used=True)

            record = self.model.objects.create(
                identifier=identifier,
                code_hash=self.security.hash_code(code),
                created_at=now,
                expires_at=now + self.policy.ttl,
                **{"account_id": account_id, **scope},
            )

            self.rate_limiter.record_attempt(rate_limit_key)

        logger.info(
            "Issued %s OTP for %s (superseded %d)",
            self.policy.name,
            mask_identifier(identifier),
            superseded,
        )

        message = self.MESSAGE_TEMPLATE.format(code=code, ttl=self.policy.ttl_minutes)

        if not self.channel.send(identifier, message):
            logger.warning("OTP delivery failed for %s", mask_identifier(identifier))
            return IssueResult(status=IssueStatus.DELIVERY_FAILED, code=code, record=record)

        return IssueResult(status=IssueStatus.OK, code=code, record=record)

    # --------------------------------------------------------
    # Verify
    # --------------------------------------------------------

    def verify(
        self,
        identifier: str,
        code: str,
        consume: bool = True,
        scope: Optional[dict] = None,
    ) -> VerifyResult:
        """
        Verify `code` for `identifier`.

        The newest live record carrying the code wins and is burned on
        success unless `consume` is False. Codes are compared as exact
        strings.
        """
        scope = scope or {}
        now = self.clock()
        code_hash = self.security.hash_code(str(code))

        with transaction.atomic():
            record = (
                self._live_records(identifier, scope, now)
                .select_for_update()
                .filter(code_hash=code_hash)
                .order_by("-created_at", "-pk")
                .first()
            )

            if record is not None:
                if consume:
                    record.is_used = True
                    record.save(update_fields=["is_used"])

                logger.info("Verified %s OTP for %s", self.policy.name, mask_identifier(identifier))
                return VerifyResult(status=VerifyStatus.OK, account_id=record.account_id, record=record)

            if self.policy.max_verify_attempts and self._register_failure(identifier, scope, now):
                return VerifyResult(status=VerifyStatus.TOO_MANY_ATTEMPTS)

            return self._diagnose(identifier, code_hash, scope, now)

    # --------------------------------------------------------
    # Internals
    # --------------------------------------------------------

    def _live_records(self, identifier, scope, now):
        return self.model.objects.filter(
            identifier=identifier,
            is_used=False,
            expires_at__gt=now,
            **scope,
        )

    def _register_failure(self, identifier, scope, now) -> bool:
        """
        Count a wrong guess against the newest live record.

        Returns True when this failure locked the record.
        """
        record = (
            self._live_records(identifier, scope, now)
            .select_for_update()
            .order_by("-created_at", "-pk")
            .first()
        )

        if record is None:
            return False

        record.attempts += 1

        locked = record.attempts >= self.policy.max_verify_attempts
        if locked:
            record.is_used = True
            logger.warning(
                "Locked %s OTP for %s after %d failed attempts",
                self.policy.name,
                mask_identifier(identifier),
                record.attempts,
            )

        record.save(update_fields=["attempts", "is_used"])
        return locked

    def _diagnose(self, identifier, code_hash, scope, now) -> VerifyResult:
        record = (
            self.model.objects
            .filter(identifier=identifier, code_hash=code_hash, **scope)
            .order_by("-created_at", "-pk")
            .first()
        )

        if record is None:
            status = VerifyStatus.NOT_FOUND
        elif record.is_used:
            status = VerifyStatus.ALREADY_USED
        elif record.is_expired(now):
            status = VerifyStatus.EXPIRED
        else:
            status = VerifyStatus.NOT_FOUND

        logger.info("OTP verification failed for %s: %s", mask_identifier(identifier), status)
        return VerifyResult(status=status, record=record)


# ============================================================
# CALL CONTRACTS
# ============================================================

def request_code(identifier: str) -> IssueResult:
    """
    Issue a general-purpose code (login, registration, verification).

    Raises:
        ValidationError: if the identifier is not a valid email or phone
    """
    identifier = normalize_identifier(identifier)
    return OTPService(policy=general_policy()).issue(identifier)


def verify_code(identifier: str, code: str, consume: bool = True) -> VerifyResult:
    identifier = normalize_identifier(identifier)
    return OTPService(policy=general_policy()).verify(identifier, code, consume=consume)
