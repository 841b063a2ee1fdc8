# accounts/api/views.py
from drf_spectacular.utils import extend_schema, extend_schema_view
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status
from rest_framework.permissions import IsAuthenticated, AllowAny

from core.exceptions import DeliveryFailedException, RateLimitException
from ..models import CredentialChangeOTP
from ..services.account_service import (
    confirm_contact_verification,
    link_phone,
    login_with_otp,
    request_contact_verification,
    reset_password_with_otp,
    send_password_reset,
    verification_status,
)
from ..services.credential_change_service import request_change, verify_change
from ..services.otp_service import IssueStatus, VerifyStatus, general_policy, request_code
from ..utils.security import mask_identifier
from ..validators import is_email
from .serializers import (
    ChangeEmailRequestSerializer,
    ChangeEmailVerifySerializer,
    ChangePhoneRequestSerializer,
    ChangePhoneVerifySerializer,
    ContactVerificationConfirmSerializer,
    ContactVerificationRequestSerializer,
    LinkPhoneSerializer,
    OTPSendSerializer,
    OTPVerifySerializer,
    PasswordResetSendSerializer,
    PasswordResetVerifySerializer,
    UserSerializer,
)


def raise_for_issue(result):
    """Map a refused issuance onto the API error it surfaces as."""
    if result.status == IssueStatus.RATE_LIMITED:
        raise RateLimitException(result.message)
    if result.status == IssueStatus.DELIVERY_FAILED:
        raise DeliveryFailedException(result.message)


def verification_failed(result, message=None):
    return Response(
        {
            "success": False,
            "status": result.status,
            "message": message or result.message,
        },
        status=status.HTTP_400_BAD_REQUEST,
    )


# ============================================================
# OTP VIEWS
# ============================================================

class OTPSendView(APIView):
    """Send a login/registration code to an email or phone."""
    permission_classes = [AllowAny]

    @extend_schema(request=OTPSendSerializer)
    def post(self, request):
        serializer = OTPSendSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = request_code(serializer.validated_data["identifier"])
        raise_for_issue(result)

        return Response(
            {"success": True, "message": result.message},
            status=status.HTTP_200_OK,
        )


class OTPVerifyView(APIView):
    """Verify a code and log in, creating the account on first use."""
    permission_classes = [AllowAny]

    @extend_schema(request=OTPVerifySerializer)
    def post(self, request):
        serializer = OTPVerifySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = login_with_otp(
            serializer.validated_data["identifier"],
            serializer.validated_data["code"],
        )

        if not result.ok:
            return verification_failed(result.verification)

        return Response(
            {
                "success": True,
                "message": result.verification.message,
                "account_id": result.user.pk,
                "created": result.created,
                "user": UserSerializer(result.user).data,
            },
            status=status.HTTP_200_OK,
        )


# ============================================================
# PASSWORD RESET VIEWS
# ============================================================

class PasswordResetSendView(APIView):
    """
    Send a password reset code.

    The answer is the same whether or not an account exists.
    """
    permission_classes = [AllowAny]

    @extend_schema(request=PasswordResetSendSerializer)
    def post(self, request):
        serializer = PasswordResetSendSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        identifier = serializer.validated_data["identifier"]
        result = send_password_reset(identifier)

        if result.status == IssueStatus.RATE_LIMITED:
            raise RateLimitException(result.message)

        kind = "email" if is_email(identifier) else "phone number"
        return Response(
            {
                "success": True,
                "message": f"If an account exists with this {kind}, a reset code has been sent.",
            },
            status=status.HTTP_200_OK,
        )


class PasswordResetVerifyView(APIView):
    """Reset the password with a code."""
    permission_classes = [AllowAny]

    @extend_schema(request=PasswordResetVerifySerializer)
    def post(self, request):
        serializer = PasswordResetVerifySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = reset_password_with_otp(
            serializer.validated_data["identifier"],
            serializer.validated_data["code"],
            serializer.validated_data["new_password"],
        )

        if not result.ok:
            message = None
            if result.status == VerifyStatus.NOT_FOUND:
                message = "Invalid reset code or account not found."
            return verification_failed(result, message)

        return Response(
            {
                "success": True,
                "message": "Password reset successfully. You can now login with your new password.",
            },
            status=status.HTTP_200_OK,
        )


# ============================================================
# CREDENTIAL CHANGE VIEWS
# ============================================================

class CredentialChangeRequestView(APIView):
    """Send a confirmation code to a new email or phone."""
    permission_classes = [IsAuthenticated]

    change_type = None
    serializer_class = None
    value_field = None

    def post(self, request):
        serializer = self.serializer_class(data=request.data)
        serializer.is_valid(raise_exception=True)

        new_value = serializer.validated_data[self.value_field]
        result = request_change(request.user, self.change_type, new_value)
        raise_for_issue(result)

        return Response(
            {"success": True, "message": f"Verification code sent to {mask_identifier(new_value)}"},
            status=status.HTTP_200_OK,
        )


class CredentialChangeVerifyView(APIView):
    """Confirm the code and apply the new email or phone."""
    permission_classes = [IsAuthenticated]

    change_type = None
    serializer_class = None
    value_field = None
    success_message = None

    def post(self, request):
        serializer = self.serializer_class(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = verify_change(
            request.user,
            self.change_type,
            serializer.validated_data[self.value_field],
            serializer.validated_data["code"],
        )

        if not result.ok:
            return verification_failed(result.verification, "Invalid or expired verification code")

        return Response(
            {
                "success": True,
                "message": self.success_message,
                "user": UserSerializer(result.user).data,
            },
            status=status.HTTP_200_OK,
        )


@extend_schema_view(post=extend_schema(request=ChangeEmailRequestSerializer))
class ChangeEmailRequestView(CredentialChangeRequestView):
    change_type = CredentialChangeOTP.ChangeType.EMAIL
    serializer_class = ChangeEmailRequestSerializer
    value_field = "new_email"


@extend_schema_view(post=extend_schema(request=ChangeEmailVerifySerializer))
class ChangeEmailVerifyView(CredentialChangeVerifyView):
    change_type = CredentialChangeOTP.ChangeType.EMAIL
    serializer_class = ChangeEmailVerifySerializer
    value_field = "new_email"
    success_message = "Email updated successfully"


@extend_schema_view(post=extend_schema(request=ChangePhoneRequestSerializer))
class ChangePhoneRequestView(CredentialChangeRequestView):
    change_type = CredentialChangeOTP.ChangeType.PHONE
    serializer_class = ChangePhoneRequestSerializer
    value_field = "new_phone"


@extend_schema_view(post=extend_schema(request=ChangePhoneVerifySerializer))
class ChangePhoneVerifyView(CredentialChangeVerifyView):
    change_type = CredentialChangeOTP.ChangeType.PHONE
    serializer_class = ChangePhoneVerifySerializer
    value_field = "new_phone"
    success_message = "Phone number updated successfully"


# ============================================================
# CONTACT VERIFICATION VIEWS
# ============================================================

class ContactVerificationRequestView(APIView):
    """Send a code to the email or phone already on the account."""
    permission_classes = [IsAuthenticated]

    @extend_schema(request=ContactVerificationRequestSerializer)
    def post(self, request):
        serializer = ContactVerificationRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        contact_type = serializer.validated_data["type"]
        result = request_contact_verification(request.user, contact_type)
        raise_for_issue(result)

        masked = mask_identifier(getattr(request.user, contact_type))
        return Response(
            {
                "success": True,
                "message": f"Verification code sent to {masked}",
                "masked_identifier": masked,
                "expires_in_seconds": general_policy().ttl_minutes * 60,
            },
            status=status.HTTP_200_OK,
        )


class ContactVerificationConfirmView(APIView):
    """Confirm the email or phone on file with a code."""
    permission_classes = [IsAuthenticated]

    @extend_schema(request=ContactVerificationConfirmSerializer)
    def post(self, request):
        serializer = ContactVerificationConfirmSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        contact_type = serializer.validated_data["type"]
        result = confirm_contact_verification(
            request.user,
            contact_type,
            serializer.validated_data["code"],
        )

        if not result.ok:
            return verification_failed(result.verification)

        label = "Email" if contact_type == "email" else "Phone"
        if result.already_verified:
            message = f"{label} is already verified."
        else:
            message = f"{label} verified successfully!"

        return Response(
            {"success": True, "message": message, "verified": True},
            status=status.HTTP_200_OK,
        )


class ContactVerificationStatusView(APIView):
    """Which of the user's email and phone are verified."""
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(verification_status(request.user), status=status.HTTP_200_OK)


class LinkPhoneView(APIView):
    """Attach a phone to the account with a code from otp/send."""
    permission_classes = [IsAuthenticated]

    @extend_schema(request=LinkPhoneSerializer)
    def post(self, request):
        serializer = LinkPhoneSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = link_phone(
            request.user,
            serializer.validated_data["phone"],
            serializer.validated_data["code"],
        )

        if not result.ok:
            return verification_failed(result)

        request.user.refresh_from_db()
        return Response(
            {
                "success": True,
                "message": "Phone number linked successfully.",
                "user": UserSerializer(request.user).data,
            },
            status=status.HTTP_200_OK,
        )
