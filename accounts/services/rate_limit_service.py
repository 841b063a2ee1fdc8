# accounts/services/rate_limit_service.py
"""
Rate limiting for OTP issuance.

Window semantics: a key may make `max_attempts` requests inside
[window_start, window_start + window). Reaching the limit blocks the key
until the *original* window would have rolled over; once the window has
elapsed the row is reset to a fresh window. A key is never punished for
longer than one window.

Rows live in the database so every worker sees the same counters. Store
errors propagate: a limiter that cannot read its row must not wave the
request through.
"""

import logging
from datetime import timedelta
from typing import Callable, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from accounts.models import OTPRateLimit
from accounts.utils.security import mask_identifier

logger = logging.getLogger("accounts.security")


class RateLimitService:
    """
    Database-backed request window per key.
    """

    DEFAULT_MAX_ATTEMPTS = 5
    DEFAULT_WINDOW_MINUTES = 15

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        window_minutes: Optional[int] = None,
        clock: Callable = timezone.now,
    ):
        config = getattr(settings, "OTP_RATE_LIMIT", {})
        if max_attempts is None:
            max_attempts = config.get("MAX_ATTEMPTS", self.DEFAULT_MAX_ATTEMPTS)
        if window_minutes is None:
            window_minutes = config.get("WINDOW_MINUTES", self.DEFAULT_WINDOW_MINUTES)
        self.max_attempts = max_attempts
        self.window_minutes = window_minutes
        self.clock = clock

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self.window_minutes)

    def _window_expired(self, record: OTPRateLimit, now) -> bool:
        return now >= record.window_start + self.window

    def is_limited(self, identifier: str) -> bool:
        """
        Check whether a new request for `identifier` must be refused.

        An elapsed window is reset (and persisted) as a side effect.
        """
        now = self.clock()

        with transaction.atomic():
            record = (
                OTPRateLimit.objects
                .select_for_update()
                .filter(identifier=identifier)
                .first()
            )

            if record is None:
                return False

            if record.blocked_until and now < record.blocked_until:
                logger.info("Rate limited: %s blocked until %s", mask_identifier(identifier), record.blocked_until)
                return True

            if self._window_expired(record, now):
                record.request_count = 0
                record.window_start = now
                record.blocked_until = None
                record.save(update_fields=["request_count", "window_start", "blocked_until"])
                return False

            return record.request_count >= self.max_attempts

    def record_attempt(self, identifier: str) -> OTPRateLimit:
        """
        Count a request that was allowed through to issuance.
        """
        now = self.clock()

        with transaction.atomic():
            record = (
                OTPRateLimit.objects
                .select_for_update()
                .filter(identifier=identifier)
                .first()
            )

            if record is None:
                return OTPRateLimit.objects.create(
                    identifier=identifier,
                    request_count=1,
                    window_start=now,
                )

            if self._window_expired(record, now):
                record.request_count = 1
                record.window_start = now
                record.blocked_until = None
            else:
                record.request_count += 1

                # Block for the remainder of the current window only
                if record.request_count >= self.max_attempts:
                    record.blocked_until = record.window_start + self.window
                    logger.warning(
                        "OTP request limit reached for %s (%d in %d min)",
                        mask_identifier(identifier),
                        record.request_count,
                        self.window_minutes,
                    )

            record.save(update_fields=["request_count", "window_start", "blocked_until"])
            return record

