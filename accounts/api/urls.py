# accounts/api/urls.py
from django.urls import path

from .views import (
    ChangeEmailRequestView,
    ChangeEmailVerifyView,
    ChangePhoneRequestView,
    ChangePhoneVerifyView,
    ContactVerificationConfirmView,
    ContactVerificationRequestView,
    ContactVerificationStatusView,
    LinkPhoneView,
    OTPSendView,
    OTPVerifyView,
    PasswordResetSendView,
    PasswordResetVerifyView,
)

app_name = "accounts"

urlpatterns = [
    # OTP Authentication
    path("otp/send/", OTPSendView.as_view(), name="otp-send"),
    path("otp/verify/", OTPVerifyView.as_view(), name="otp-verify"),
    path("link-phone/", LinkPhoneView.as_view(), name="link-phone"),

    # Password reset
    path("password-reset/send/", PasswordResetSendView.as_view(), name="password-reset-send"),
    path("password-reset/verify/", PasswordResetVerifyView.as_view(), name="password-reset-verify"),

    # Credential change
    path("change-email/request/", ChangeEmailRequestView.as_view(), name="change-email-request"),
    path("change-email/verify/", ChangeEmailVerifyView.as_view(), name="change-email-verify"),
    path("change-phone/request/", ChangePhoneRequestView.as_view(), name="change-phone-request"),
    path("change-phone/verify/", ChangePhoneVerifyView.as_view(), name="change-phone-verify"),

    # Verification of the email/phone on file
    path("verify/request/", ContactVerificationRequestView.as_view(), name="verify-request"),
    path("verify/confirm/", ContactVerificationConfirmView.as_view(), name="verify-confirm"),
    path("verify/status/", ContactVerificationStatusView.as_view(), name="verify-status"),
]
