from django.contrib import admin
from .models import (
    User,
    OTPRequest,
    CredentialChangeOTP,
    OTPRateLimit,
)


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "email",
        "phone",
        "is_email_verified",
        "is_phone_verified",
        "is_active",
    )
    search_fields = ("email", "phone")
    list_filter = ("is_email_verified", "is_phone_verified", "is_active", "is_staff")
    exclude = ("password",)
    ordering = ("-id",)


class ReadOnlyOTPAdmin(admin.ModelAdmin):
    """Codes are an audit trail: no adding, editing or deleting from the admin."""

    list_display = ("identifier", "account_id", "created_at", "expires_at", "is_used", "attempts")
    search_fields = ("identifier",)
    list_filter = ("is_used",)
    exclude = ("code_hash",)
    ordering = ("-created_at",)

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(OTPRequest)
class OTPRequestAdmin(ReadOnlyOTPAdmin):
    pass


@admin.register(CredentialChangeOTP)
class CredentialChangeOTPAdmin(ReadOnlyOTPAdmin):
    list_display = ReadOnlyOTPAdmin.list_display + ("change_type",)
    list_filter = ("is_used", "change_type")


@admin.register(OTPRateLimit)
class OTPRateLimitAdmin(admin.ModelAdmin):
    list_display = ("identifier", "request_count", "window_start", "blocked_until")
    search_fields = ("identifier",)
    ordering = ("-window_start",)
