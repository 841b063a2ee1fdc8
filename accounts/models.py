# accounts/models.py

from django.db import models
from django.utils import timezone
from django.contrib.auth.models import (
    AbstractBaseUser,
    PermissionsMixin,
    BaseUserManager,
)


# ============================================================
# USER MANAGER
# ============================================================

class UserManager(BaseUserManager):
    """Custom manager for accounts identified by email and/or phone."""

    use_in_migrations = True

    def create_user(self, email=None, phone=None, password=None, **extra_fields):
        if not email and not phone:
            raise ValueError("Email or phone number is required")

        user = self.model(
            email=self.normalize_email(email).lower() if email else None,
            phone=phone or None,
            **extra_fields,
        )
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        return self.create_user(email=email, password=password, **extra_fields)


# ============================================================
# USER MODEL
# ============================================================

class User(AbstractBaseUser, PermissionsMixin):
    """Account reachable by email, phone number, or both."""

    email = models.EmailField(max_length=255, unique=True, null=True, blank=True)
    phone = models.CharField(max_length=20, unique=True, null=True, blank=True)
    first_name = models.CharField(max_length=50, blank=True)
    last_name = models.CharField(max_length=50, blank=True)
    is_email_verified = models.BooleanField(default=False)
    is_phone_verified = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)
    date_joined = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    objects = UserManager()
    USERNAME_FIELD = "email"
    EMAIL_FIELD = "email"
    REQUIRED_FIELDS = []

    class Meta:
        db_table = "accounts_user"
        verbose_name = "User"
        verbose_name_plural = "Users"

    def __str__(self):
        return self.email or self.phone or f"user-{self.pk}"


# ============================================================
# OTP MODELS
# ============================================================

class BaseOTP(models.Model):
    """
    One issued code.

    Rows are never deleted; they stay as an audit trail. A row is dead once
    `is_used` is set (verified, superseded or locked by attempts) or once
    `expires_at` has passed. Expiry is derived, never written.
    """

    identifier = models.CharField(max_length=255)
    code_hash = models.CharField(max_length=64)
    created_at = models.DateTimeField(default=timezone.now)
    expires_at = models.DateTimeField()
    is_used = models.BooleanField(default=False)
    attempts = models.PositiveIntegerField(default=0)

    # Weak back-reference: lookup only, no FK constraint, no cascade
    account_id = models.BigIntegerField(null=True, blank=True, db_index=True)

    class Meta:
        abstract = True
        ordering = ["-created_at"]

    def is_expired(self, now=None):
        return (now or timezone.now()) >= self.expires_at

    def __str__(self):
        return f"{self.identifier} @ {self.created_at:%Y-%m-%d %H:%M:%S}"


class OTPRequest(BaseOTP):
    """Code issued for login, registration, verification or password reset."""

    class Meta(BaseOTP.Meta):
        db_table = "accounts_otp_request"
        verbose_name = "OTP Request"
        verbose_name_plural = "OTP Requests"
        indexes = [
            models.Index(fields=["identifier", "-created_at"], name="otp_request_ident_idx"),
        ]


class CredentialChangeOTP(BaseOTP):
    """
    Code sent to a *new* email/phone before it replaces the current one.

    `identifier` holds the new value and `account_id` the requesting account.
    """

    class ChangeType(models.TextChoices):
        EMAIL = "email", "Email"
        PHONE = "phone", "Phone"

    change_type = models.CharField(max_length=10, choices=ChangeType.choices)

    class Meta(BaseOTP.Meta):
        db_table = "accounts_credential_change_otp"
        verbose_name = "Credential Change OTP"
        verbose_name_plural = "Credential Change OTPs"
        indexes = [
            models.Index(
                fields=["account_id", "change_type", "identifier", "-created_at"],
                name="cred_change_otp_idx",
            ),
        ]


class OTPRateLimit(models.Model):
    """
    Per-key request window for OTP issuance.

    One row per key, re-initialized whenever the window rolls over.
    """

    identifier = models.CharField(max_length=255, unique=True)
    request_count = models.PositiveIntegerField(default=0)
    window_start = models.DateTimeField(default=timezone.now)
    blocked_until = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "accounts_otp_ratelimit"
        verbose_name = "OTP Rate Limit"
        verbose_name_plural = "OTP Rate Limits"

    def __str__(self):
        return f"{self.identifier} ({self.request_count})"
