# tests/test_otp_service.py
"""
Issuance / verification behaviour of the OTP service.
"""
from datetime import timedelta
from unittest import mock

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import TestCase, override_settings

from accounts.models import OTPRateLimit, OTPRequest
from accounts.services.otp_service import (
    GENERAL_POLICY,
    IssueStatus,
    OTPService,
    VerifyStatus,
    general_policy,
    request_code,
    verify_code,
)
from accounts.utils.security import otp_security
from tests.support import FakeChannel, FakeClock, SequentialSecurity

User = get_user_model()

PHONE = "+15551234567"
EMAIL = "a@b.com"


class OTPServiceTestMixin:

    def make_service(self, codes=("123456",), succeed=True, policy=GENERAL_POLICY):
        self.clock = getattr(self, "clock", None) or FakeClock()
        self.channel = FakeChannel(succeed=succeed)
        return OTPService(
            policy=policy,
            channel=self.channel,
            clock=self.clock,
            security=SequentialSecurity(codes),
        )


class IssueTests(OTPServiceTestMixin, TestCase):

    def test_issue_stores_hashed_code_and_delivers(self):
        service = self.make_service()

        result = service.issue(PHONE)

        self.assertEqual(result.status, IssueStatus.OK)
        self.assertEqual(result.message, "OTP sent successfully.")
        self.assertEqual(result.code, "123456")

        record = OTPRequest.objects.get()
        self.assertEqual(record.identifier, PHONE)
        self.assertNotEqual(record.code_hash, "123456")
        self.assertEqual(record.code_hash, otp_security.hash_code("123456"))
        self.assertEqual(record.expires_at, self.clock.now + timedelta(minutes=5))
        self.assertFalse(record.is_used)

        self.assertEqual(self.channel.sent[0][0], PHONE)
        self.assertEqual(self.channel.last_code, "123456")
        self.assertIn("5 minutes", self.channel.sent[0][1])

    def test_issue_captures_account_at_issue_time(self):
        user = User.objects.create_user(email=EMAIL)
        service = self.make_service()

        result = service.issue(EMAIL)

        self.assertEqual(result.record.account_id, user.pk)

    def test_issue_without_account_stores_none(self):
        result = self.make_service().issue(PHONE)

        self.assertIsNone(result.record.account_id)

    def test_issue_supersedes_previous_codes(self):
        service = self.make_service(codes=["111111", "222222"])

        first = service.issue(PHONE)
        self.clock.advance(seconds=10)
        service.issue(PHONE)

        first.record.refresh_from_db()
        self.assertTrue(first.record.is_used)
        self.assertEqual(OTPRequest.objects.filter(is_used=False).count(), 1)

    def test_supersession_is_per_identifier(self):
        service = self.make_service(codes=["111111", "222222"])

        first = service.issue(PHONE)
        service.issue(EMAIL)

        first.record.refresh_from_db()
        self.assertFalse(first.record.is_used)

    def test_rate_limited_after_max_attempts(self):
        service = self.make_service(codes=[f"{i:06d}" for i in range(10)])

        for _ in range(5):
            self.assertEqual(service.issue(EMAIL).status, IssueStatus.OK)

        result = service.issue(EMAIL)

        self.assertEqual(result.status, IssueStatus.RATE_LIMITED)
        self.assertIsNone(result.code)
        self.assertEqual(OTPRequest.objects.count(), 5)
        self.assertEqual(len(self.channel.sent), 5)
        self.assertEqual(OTPRateLimit.objects.get(identifier=EMAIL).request_count, 5)

    def test_requests_allowed_again_after_window(self):
        service = self.make_service(codes=[f"{i:06d}" for i in range(10)])
        for _ in range(5):
            service.issue(EMAIL)
        self.assertEqual(service.issue(EMAIL).status, IssueStatus.RATE_LIMITED)

        self.clock.advance(minutes=16)
        result = service.issue(EMAIL)

        self.assertEqual(result.status, IssueStatus.OK)
        self.assertEqual(OTPRateLimit.objects.get(identifier=EMAIL).request_count, 1)

    def test_delivery_failure_keeps_code_valid_and_counts(self):
        service = self.make_service(succeed=False)

        result = service.issue(PHONE)

        self.assertEqual(result.status, IssueStatus.DELIVERY_FAILED)
        self.assertEqual(result.message, "Failed to send OTP. Please try again.")
        self.assertEqual(OTPRateLimit.objects.get(identifier=PHONE).request_count, 1)
        self.assertEqual(service.verify(PHONE, "123456").status, VerifyStatus.OK)

    def test_store_failure_is_not_treated_as_allowed(self):
        service = self.make_service()

        with mock.patch.object(service.rate_limiter, "is_limited", side_effect=DatabaseError("timeout")):
            with self.assertRaises(DatabaseError):
                service.issue(PHONE)

        self.assertFalse(OTPRequest.objects.exists())
        self.assertEqual(self.channel.sent, [])

    def test_explicit_rate_limit_key(self):
        service = self.make_service()

        service.issue(PHONE, rate_limit_key="login:ip:127.0.0.1")

        self.assertTrue(OTPRateLimit.objects.filter(identifier="login:ip:127.0.0.1").exists())
        self.assertFalse(OTPRateLimit.objects.filter(identifier=PHONE).exists())


class VerifyTests(OTPServiceTestMixin, TestCase):

    def test_wrong_then_right_then_reused(self):
        service = self.make_service()
        service.issue(PHONE)
        self.clock.advance(seconds=1)

        self.assertEqual(service.verify(PHONE, "654321").status, VerifyStatus.NOT_FOUND)

        result = service.verify(PHONE, "123456")
        self.assertEqual(result.status, VerifyStatus.OK)
        self.assertEqual(result.message, "OTP verified successfully.")

        again = service.verify(PHONE, "123456")
        self.assertEqual(again.status, VerifyStatus.ALREADY_USED)
        self.assertEqual(again.message, "This OTP has already been used.")

    def test_expired_code(self):
        service = self.make_service()
        service.issue(PHONE)

        self.clock.advance(minutes=6)
        result = service.verify(PHONE, "123456")

        self.assertEqual(result.status, VerifyStatus.EXPIRED)
        self.assertEqual(result.message, "This OTP has expired.")

    def test_code_valid_until_expiry(self):
        service = self.make_service()
        service.issue(PHONE)

        self.clock.advance(minutes=4, seconds=59)

        self.assertEqual(service.verify(PHONE, "123456").status, VerifyStatus.OK)

    def test_superseded_code_reports_already_used(self):
        service = self.make_service(codes=["111111", "222222"])
        service.issue(PHONE)
        self.clock.advance(seconds=5)
        service.issue(PHONE)

        self.assertEqual(service.verify(PHONE, "111111").status, VerifyStatus.ALREADY_USED)
        self.assertEqual(service.verify(PHONE, "222222").status, VerifyStatus.OK)

    def test_code_compared_as_exact_string(self):
        service = self.make_service(codes=["000005"])
        service.issue(PHONE)

        self.assertEqual(service.verify(PHONE, "5").status, VerifyStatus.NOT_FOUND)
        self.assertEqual(service.verify(PHONE, "00005").status, VerifyStatus.NOT_FOUND)
        self.assertEqual(service.verify(PHONE, "000005").status, VerifyStatus.OK)

    def test_code_bound_to_identifier(self):
        service = self.make_service()
        service.issue(PHONE)

        self.assertEqual(service.verify("+15559999999", "123456").status, VerifyStatus.NOT_FOUND)

    def test_verify_returns_captured_account(self):
        service = self.make_service()
        service.issue(EMAIL)

        # Account created between issue and verify is not attributed
        User.objects.create_user(email=EMAIL)
        result = service.verify(EMAIL, "123456")

        self.assertEqual(result.status, VerifyStatus.OK)
        self.assertIsNone(result.account_id)

    def test_verify_without_consuming(self):
        service = self.make_service()
        service.issue(PHONE)

        self.assertEqual(service.verify(PHONE, "123456", consume=False).status, VerifyStatus.OK)
        self.assertEqual(service.verify(PHONE, "123456").status, VerifyStatus.OK)
        self.assertEqual(service.verify(PHONE, "123456").status, VerifyStatus.ALREADY_USED)

    def test_newest_record_wins_tie_break(self):
        service = self.make_service()
        now = self.clock.now
        code_hash = otp_security.hash_code("123456")

        OTPRequest.objects.create(
            identifier=PHONE, code_hash=code_hash, account_id=1,
            created_at=now - timedelta(seconds=30), expires_at=now + timedelta(minutes=4),
        )
        newest = OTPRequest.objects.create(
            identifier=PHONE, code_hash=code_hash, account_id=2,
            created_at=now - timedelta(seconds=10), expires_at=now + timedelta(minutes=4),
        )

        result = service.verify(PHONE, "123456")

        self.assertEqual(result.account_id, 2)
        newest.refresh_from_db()
        self.assertTrue(newest.is_used)

    def test_general_flow_has_no_attempt_cap(self):
        service = self.make_service()
        service.issue(PHONE)

        for _ in range(10):
            self.assertEqual(service.verify(PHONE, "000000").status, VerifyStatus.NOT_FOUND)

        self.assertEqual(service.verify(PHONE, "123456").status, VerifyStatus.OK)

    def test_unknown_code(self):
        service = self.make_service()

        result = service.verify(PHONE, "123456")

        self.assertEqual(result.status, VerifyStatus.NOT_FOUND)
        self.assertEqual(result.message, "Invalid OTP.")


class PolicyTests(TestCase):

    def test_general_policy_defaults(self):
        policy = general_policy()

        self.assertEqual(policy.ttl_minutes, 5)
        self.assertEqual(policy.code_length, 6)
        self.assertIsNone(policy.max_verify_attempts)

    @override_settings(OTP_CONFIG={"GENERAL_TTL_MINUTES": 3, "CODE_LENGTH": 8})
    def test_general_policy_from_settings(self):
        policy = general_policy()

        self.assertEqual(policy.ttl, timedelta(minutes=3))
        self.assertEqual(policy.code_length, 8)


class CallContractTests(TestCase):
    """Module-level request_code / verify_code with the configured channel."""

    def test_request_and_verify_normalize_identifier(self):
        channel = FakeChannel()

        with mock.patch("accounts.services.otp_service.get_delivery_channel", return_value=channel):
            issued = request_code("(555) 123-4567")
            self.assertEqual(issued.status, IssueStatus.OK)
            self.assertEqual(issued.record.identifier, PHONE)

            result = verify_code("555.123.4567", channel.last_code)

        self.assertEqual(result.status, VerifyStatus.OK)
