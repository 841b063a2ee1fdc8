"""
API Serializers for OTP authentication and credential changes.
"""
from django.contrib.auth import password_validation
from rest_framework import serializers

from accounts.models import User
from accounts.validators import normalize_email, normalize_identifier, normalize_phone


class CodeField(serializers.CharField):
    """Numeric code kept as an exact string; leading zeros are significant."""

    def __init__(self, **kwargs):
        kwargs.setdefault("max_length", 10)
        kwargs.setdefault("trim_whitespace", True)
        super().__init__(**kwargs)

    def to_internal_value(self, data):
        value = super().to_internal_value(data)
        if not value.isdigit():
            raise serializers.ValidationError("Code must contain only digits.")
        return value


class OTPSendSerializer(serializers.Serializer):
    """Serializer for OTP send request."""

    identifier = serializers.CharField(max_length=255)

    def validate_identifier(self, value):
        return normalize_identifier(value)


class OTPVerifySerializer(OTPSendSerializer):
    """Serializer for OTP verification request."""

    code = CodeField()


class PasswordResetSendSerializer(serializers.Serializer):
    """Either email or phone; email wins when both are given."""

    email = serializers.CharField(max_length=255, required=False, allow_blank=True)
    phone = serializers.CharField(max_length=20, required=False, allow_blank=True)

    def validate(self, attrs):
        email = attrs.get("email")
        phone = attrs.get("phone")

        if not email and not phone:
            raise serializers.ValidationError("Either email or phone number is required.")

        if email:
            attrs["identifier"] = normalize_email(email)
        else:
            attrs["identifier"] = normalize_phone(phone)

        return attrs


class PasswordResetVerifySerializer(PasswordResetSendSerializer):
    code = CodeField()
    new_password = serializers.CharField(write_only=True, min_length=8, max_length=128)

    def validate_new_password(self, value):
        password_validation.validate_password(value)
        return value


class ChangeEmailRequestSerializer(serializers.Serializer):
    new_email = serializers.CharField(max_length=255)

    def validate_new_email(self, value):
        return normalize_email(value)


class ChangeEmailVerifySerializer(ChangeEmailRequestSerializer):
    code = CodeField()


class ChangePhoneRequestSerializer(serializers.Serializer):
    new_phone = serializers.CharField(max_length=20)

    def validate_new_phone(self, value):
        return normalize_phone(value)


class ChangePhoneVerifySerializer(ChangePhoneRequestSerializer):
    code = CodeField()


class ContactVerificationRequestSerializer(serializers.Serializer):
    type = serializers.CharField(max_length=10)

    def validate_type(self, value):
        return value.strip().lower()


class ContactVerificationConfirmSerializer(ContactVerificationRequestSerializer):
    code = CodeField()


class LinkPhoneSerializer(serializers.Serializer):
    phone = serializers.CharField(max_length=20)
    code = CodeField()

    def validate_phone(self, value):
        return normalize_phone(value)


class UserSerializer(serializers.ModelSerializer):
    """Serializer for user data."""

    class Meta:
        model = User
        fields = [
            "id",
            "email",
            "phone",
            "first_name",
            "last_name",
            "is_email_verified",
            "is_phone_verified",
            "date_joined",
        ]
        read_only_fields = fields
