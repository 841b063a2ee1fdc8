# tests/test_api.py
"""
HTTP surface of the OTP flows.
"""
from unittest import mock

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.urls import reverse
from drf_spectacular.generators import SchemaGenerator
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import AccessToken

from accounts.models import CredentialChangeOTP, OTPRequest
from tests.support import FakeChannel

User = get_user_model()


class APITestBase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.channel = FakeChannel()

        patcher = mock.patch(
            "accounts.services.otp_service.get_delivery_channel",
            return_value=self.channel,
        )
        patcher.start()
        self.addCleanup(patcher.stop)


class OTPEndpointTests(APITestBase):

    def test_send_otp(self):
        resp = self.client.post(reverse("accounts:otp-send"), {"identifier": "John@Example.com"}, format="json")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data, {"success": True, "message": "OTP sent successfully."})
        self.assertEqual(self.channel.sent[0][0], "john@example.com")

    def test_send_otp_invalid_identifier(self):
        resp = self.client.post(reverse("accounts:otp-send"), {"identifier": "12"}, format="json")

        self.assertEqual(resp.status_code, 400)
        self.assertFalse(resp.data["success"])
        self.assertIn("identifier", resp.data)
        self.assertFalse(OTPRequest.objects.exists())

    def test_send_otp_rate_limited(self):
        url = reverse("accounts:otp-send")
        for _ in range(5):
            self.assertEqual(self.client.post(url, {"identifier": "+15551234567"}, format="json").status_code, 200)

        resp = self.client.post(url, {"identifier": "+15551234567"}, format="json")

        self.assertEqual(resp.status_code, 429)
        self.assertEqual(resp.data["message"], "Too many OTP requests. Please try again later.")
        self.assertEqual(resp.data["error_code"], "rate_limit_exceeded")

    def test_send_otp_delivery_failed(self):
        self.channel.succeed = False

        resp = self.client.post(reverse("accounts:otp-send"), {"identifier": "+15551234567"}, format="json")

        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.data["error_code"], "delivery_failed")
        self.assertEqual(OTPRequest.objects.count(), 1)

    def test_verify_creates_account_once(self):
        self.client.post(reverse("accounts:otp-send"), {"identifier": "+15551234567"}, format="json")
        payload = {"identifier": "+15551234567", "code": self.channel.last_code}

        resp = self.client.post(reverse("accounts:otp-verify"), payload, format="json")

        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.data["created"])
        self.assertEqual(resp.data["user"]["phone"], "+15551234567")
        self.assertEqual(resp.data["account_id"], User.objects.get().pk)

        again = self.client.post(reverse("accounts:otp-verify"), payload, format="json")
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.data["status"], "already_used")
        self.assertEqual(again.data["message"], "This OTP has already been used.")

    def test_verify_wrong_code(self):
        self.client.post(reverse("accounts:otp-send"), {"identifier": "+15551234567"}, format="json")
        wrong = "000000" if self.channel.last_code != "000000" else "111111"

        resp = self.client.post(
            reverse("accounts:otp-verify"),
            {"identifier": "+15551234567", "code": wrong},
            format="json",
        )

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.data["status"], "not_found")
        self.assertEqual(resp.data["message"], "Invalid OTP.")

    def test_verify_rejects_non_numeric_code(self):
        resp = self.client.post(
            reverse("accounts:otp-verify"),
            {"identifier": "+15551234567", "code": "12ab56"},
            format="json",
        )

        self.assertEqual(resp.status_code, 400)
        self.assertIn("code", resp.data)


class PasswordResetEndpointTests(APITestBase):

    def setUp(self):
        super().setUp()
        self.user = User.objects.create_user(email="john@example.com", password="Old-Passw0rd!")

    def test_send_answer_does_not_reveal_account(self):
        url = reverse("accounts:password-reset-send")

        known = self.client.post(url, {"email": "john@example.com"}, format="json")
        unknown = self.client.post(url, {"email": "ghost@example.com"}, format="json")

        self.assertEqual(known.status_code, unknown.status_code)
        self.assertEqual(known.data, unknown.data)
        self.assertEqual(len(self.channel.sent), 1)

    def test_send_requires_email_or_phone(self):
        resp = self.client.post(reverse("accounts:password-reset-send"), {}, format="json")

        self.assertEqual(resp.status_code, 400)
        self.assertFalse(resp.data["success"])

    def test_reset_password(self):
        self.client.post(reverse("accounts:password-reset-send"), {"email": "john@example.com"}, format="json")

        resp = self.client.post(
            reverse("accounts:password-reset-verify"),
            {"email": "john@example.com", "code": self.channel.last_code, "new_password": "N3w-Secure-Passw0rd"},
            format="json",
        )

        self.assertEqual(resp.status_code, 200)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password("N3w-Secure-Passw0rd"))

    def test_reset_unknown_account(self):
        resp = self.client.post(
            reverse("accounts:password-reset-verify"),
            {"email": "ghost@example.com", "code": "123456", "new_password": "N3w-Secure-Passw0rd"},
            format="json",
        )

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.data["message"], "Invalid reset code or account not found.")

    def test_weak_password_rejected(self):
        resp = self.client.post(
            reverse("accounts:password-reset-verify"),
            {"email": "john@example.com", "code": "123456", "new_password": "12345678"},
            format="json",
        )

        self.assertEqual(resp.status_code, 400)
        self.assertIn("new_password", resp.data)


class CredentialChangeEndpointTests(APITestBase):

    def setUp(self):
        super().setUp()
        self.user = User.objects.create_user(email="old@example.com")
        self.client.force_authenticate(user=self.user)

    def test_requires_authentication(self):
        client = APIClient()

        resp = client.post(reverse("accounts:change-email-request"), {"new_email": "new@example.com"}, format="json")

        self.assertEqual(resp.status_code, 401)

    def test_jwt_authentication_accepted(self):
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {AccessToken.for_user(self.user)}")

        resp = client.post(reverse("accounts:change-email-request"), {"new_email": "new@example.com"}, format="json")

        self.assertEqual(resp.status_code, 200)

    def test_change_email(self):
        resp = self.client.post(
            reverse("accounts:change-email-request"), {"new_email": "new@example.com"}, format="json"
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["message"], "Verification code sent to n***@example.com")

        resp = self.client.post(
            reverse("accounts:change-email-verify"),
            {"new_email": "new@example.com", "code": self.channel.last_code},
            format="json",
        )

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["message"], "Email updated successfully")
        self.user.refresh_from_db()
        self.assertEqual(self.user.email, "new@example.com")

    def test_change_phone(self):
        self.client.post(reverse("accounts:change-phone-request"), {"new_phone": "555 123 9999"}, format="json")
        self.assertEqual(CredentialChangeOTP.objects.get().identifier, "+15551239999")

        resp = self.client.post(
            reverse("accounts:change-phone-verify"),
            {"new_phone": "+15551239999", "code": self.channel.last_code},
            format="json",
        )

        self.assertEqual(resp.status_code, 200)
        self.user.refresh_from_db()
        self.assertEqual(self.user.phone, "+15551239999")
        self.assertTrue(self.user.is_phone_verified)

    def test_same_email_rejected(self):
        resp = self.client.post(
            reverse("accounts:change-email-request"), {"new_email": "OLD@example.com"}, format="json"
        )

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.data["error_code"], "business_error")

    def test_taken_email_conflict(self):
        User.objects.create_user(email="taken@example.com")

        resp = self.client.post(
            reverse("accounts:change-email-request"), {"new_email": "taken@example.com"}, format="json"
        )

        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.data["error_code"], "credential_conflict")

    def test_lockout_surfaces_as_invalid_or_expired(self):
        self.client.post(reverse("accounts:change-email-request"), {"new_email": "new@example.com"}, format="json")
        wrong = "000000" if self.channel.last_code != "000000" else "111111"

        for _ in range(5):
            resp = self.client.post(
                reverse("accounts:change-email-verify"),
                {"new_email": "new@example.com", "code": wrong},
                format="json",
            )

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.data["status"], "too_many_attempts")
        self.assertEqual(resp.data["message"], "Invalid or expired verification code")


class ContactVerificationEndpointTests(APITestBase):

    def setUp(self):
        super().setUp()
        self.user = User.objects.create_user(email="john@example.com")
        self.client.force_authenticate(user=self.user)

    def test_requires_authentication(self):
        resp = APIClient().get(reverse("accounts:verify-status"))

        self.assertEqual(resp.status_code, 401)

    def test_request_and_confirm_email(self):
        resp = self.client.post(reverse("accounts:verify-request"), {"type": "email"}, format="json")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["masked_identifier"], "j***@example.com")
        self.assertEqual(resp.data["expires_in_seconds"], 300)

        resp = self.client.post(
            reverse("accounts:verify-confirm"),
            {"type": "email", "code": self.channel.last_code},
            format="json",
        )

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["message"], "Email verified successfully!")
        self.assertTrue(resp.data["verified"])
        self.user.refresh_from_db()
        self.assertTrue(self.user.is_email_verified)

    def test_no_phone_on_file(self):
        resp = self.client.post(reverse("accounts:verify-request"), {"type": "phone"}, format="json")

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.data["message"], "No phone number on file.")

    def test_invalid_type(self):
        resp = self.client.post(reverse("accounts:verify-request"), {"type": "fax"}, format="json")

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.data["message"], "Type must be 'email' or 'phone'.")

    def test_confirm_wrong_code(self):
        self.client.post(reverse("accounts:verify-request"), {"type": "email"}, format="json")
        wrong = "000000" if self.channel.last_code != "000000" else "111111"

        resp = self.client.post(reverse("accounts:verify-confirm"), {"type": "email", "code": wrong}, format="json")

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.data["status"], "not_found")

    def test_status(self):
        resp = self.client.get(reverse("accounts:verify-status"))

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["email"], "j***@example.com")
        self.assertFalse(resp.data["is_email_verified"])
        self.assertIsNone(resp.data["phone"])


class LinkPhoneEndpointTests(APITestBase):

    def setUp(self):
        super().setUp()
        self.user = User.objects.create_user(email="john@example.com")
        self.client.force_authenticate(user=self.user)

    def test_link_phone_with_general_code(self):
        self.client.post(reverse("accounts:otp-send"), {"identifier": "555 123 4567"}, format="json")

        resp = self.client.post(
            reverse("accounts:link-phone"),
            {"phone": "+15551234567", "code": self.channel.last_code},
            format="json",
        )

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["user"]["phone"], "+15551234567")
        self.assertTrue(resp.data["user"]["is_phone_verified"])

    def test_phone_linked_elsewhere(self):
        User.objects.create_user(phone="+15551234567")

        resp = self.client.post(
            reverse("accounts:link-phone"),
            {"phone": "+15551234567", "code": "123456"},
            format="json",
        )

        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.data["message"], "This phone number is already linked to another account.")


class SchemaTests(TestCase):

    def test_credential_change_request_bodies_documented(self):
        schema = SchemaGenerator().get_schema(request=None, public=True)

        for path, component in [
            ("/api/auth/change-email/request/", "ChangeEmailRequest"),
            ("/api/auth/change-email/verify/", "ChangeEmailVerify"),
            ("/api/auth/change-phone/request/", "ChangePhoneRequest"),
            ("/api/auth/change-phone/verify/", "ChangePhoneVerify"),
        ]:
            with self.subTest(path=path):
                body = schema["paths"][path]["post"]["requestBody"]
                ref = body["content"]["application/json"]["schema"]["$ref"]
                self.assertIn(component, ref)
