# core/exceptions.py

"""
CUSTOM EXCEPTIONS

Business-rule rejections raised by services and views. OTP outcomes
(not found, expired, ...) are typed results and never use these.
"""

from rest_framework.exceptions import APIException
from rest_framework import status


class BusinessLogicException(APIException):
    """Base exception for business logic errors"""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "The request could not be completed."
    default_code = "business_error"


class CredentialConflictException(BusinessLogicException):
    """Email or phone already belongs to another account"""
    status_code = status.HTTP_409_CONFLICT
    default_detail = "This credential is already registered."
    default_code = "credential_conflict"


class RateLimitException(APIException):
    """Rate limit exceeded"""
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_detail = "Too many OTP requests. Please try again later."
    default_code = "rate_limit_exceeded"


class DeliveryFailedException(APIException):
    """The code was stored but could not be delivered"""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Failed to send OTP. Please try again."
    default_code = "delivery_failed"


# Exception handler for DRF
def custom_exception_handler(exc, context):
    """
    Custom exception handler for consistent error responses.
    """
    from rest_framework.views import exception_handler

    response = exception_handler(exc, context)

    if response is not None:
        if not isinstance(response.data, dict):
            response.data = {"detail": response.data}

        # Add error code to response
        response.data["error_code"] = getattr(exc, "default_code", "error")

        # Ensure consistent structure
        if "detail" in response.data:
            response.data["message"] = response.data.pop("detail")

        response.data["success"] = False

    return response
