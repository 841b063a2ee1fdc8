"""
OTP delivery channels.

Every channel exposes `send(identifier, message) -> bool`. A False return
means the provider refused or could not be reached; the caller decides what
to tell the user.
"""
import logging
import smtplib

from django.conf import settings
from django.core.mail import send_mail
from kavenegar import KavenegarAPI, APIException, HTTPException

from accounts.utils.security import mask_email, mask_identifier, mask_phone
from accounts.validators import is_email

logger = logging.getLogger("accounts.delivery")


class DeliveryChannel:
    """Base channel."""

    def send(self, identifier: str, message: str) -> bool:
        raise NotImplementedError


class EmailChannel(DeliveryChannel):
    """Send codes through Django's configured EMAIL_BACKEND."""

    subject = "Your verification code"

    def __init__(self, from_email: str = None):
        self.from_email = from_email or settings.DEFAULT_FROM_EMAIL

    def send(self, identifier: str, message: str) -> bool:
        try:
            sent = send_mail(
                self.subject,
                message,
                self.from_email,
                [identifier],
                fail_silently=False,
            )
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email delivery to {mask_email(identifier)} failed: {e}")
            return False

        if not sent:
            logger.error(f"Email delivery to {mask_email(identifier)} was not accepted")
            return False

        logger.info(f"Email sent to {mask_email(identifier)}")
        return True


class SmsChannel(DeliveryChannel):
    """Service for sending SMS via Kavenegar."""

    # Kavenegar statuses meaning queued, scheduled, sent or delivered
    ACCEPTED_STATUSES = [1, 2, 4, 5, 10]

    def __init__(self, api_key: str = None, sender: str = None, timeout: int = None):
        config = getattr(settings, "KAVENEGAR", {})
        self.api_key = api_key or config.get("API_KEY", "")
        self.sender = sender or config.get("SENDER", "")
        self.timeout = timeout or config.get("TIMEOUT", 10)
        self._api = None

    @property
    def api(self):
        """Lazy initialization of API client."""
        if self._api is None and self.api_key:
            self._api = KavenegarAPI(self.api_key, timeout=self.timeout)
        return self._api

    def send(self, identifier: str, message: str) -> bool:
        if not self.api:
            logger.error("Kavenegar API not configured")
            return False

        try:
            logger.info(f"Sending SMS to {mask_phone(identifier)}")

            response = self.api.sms_send({
                "receptor": identifier,
                "sender": self.sender,
                "message": message,
            })

        except APIException as e:
            logger.error(f"Kavenegar API error: {e}")
            return False
        except HTTPException as e:
            logger.error(f"Kavenegar HTTP error: {e}")
            return False

        if response and len(response) > 0:
            status_code = response[0].get("status")
            if status_code in self.ACCEPTED_STATUSES:
                logger.info(f"SMS sent to {mask_phone(identifier)}")
                return True

        logger.error(f"SMS delivery to {mask_phone(identifier)} rejected: {response}")
        return False


class ConsoleChannel(DeliveryChannel):
    """Development channel: writes the message to the log."""

    def send(self, identifier: str, message: str) -> bool:
        logger.info(f"[OTP to {mask_identifier(identifier)}] {message}")
        return True


class RoutingChannel(DeliveryChannel):
    """Email for identifiers containing `@`, SMS for everything else."""

    def __init__(self, email_channel: DeliveryChannel = None, sms_channel: DeliveryChannel = None):
        self.email_channel = email_channel or EmailChannel()
        self.sms_channel = sms_channel or SmsChannel()

    def send(self, identifier: str, message: str) -> bool:
        if is_email(identifier):
            return self.email_channel.send(identifier, message)
        return self.sms_channel.send(identifier, message)


def get_delivery_channel() -> DeliveryChannel:
    """Build the channel named by OTP_CONFIG["DELIVERY_BACKEND"]."""
    backend = getattr(settings, "OTP_CONFIG", {}).get("DELIVERY_BACKEND", "default")

    if backend == "console":
        return ConsoleChannel()

    return RoutingChannel()
