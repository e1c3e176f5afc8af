from django.conf import settings
from django.template.loader import render_to_string

from notifications.intents import NotificationIntent


def _ttl_minutes() -> int:
    return getattr(settings, "OTP_TTL_MINUTES", 10)


def signup_otp_intent(*, email: str, code: str, first_name: str = "") -> NotificationIntent:
    context = {"first_name": first_name, "code": code, "ttl_minutes": _ttl_minutes()}
    return NotificationIntent(
        to=email,
        subject="Verify Your Email",
        text=render_to_string("emails/signup_otp.txt", context),
        kind="signup_otp",
    )


def resend_otp_intent(*, email: str, code: str) -> NotificationIntent:
    context = {"code": code, "ttl_minutes": _ttl_minutes()}
    return NotificationIntent(
        to=email,
        subject="[Food Donation System] New OTP Verification",
        text=render_to_string("emails/resend_otp.txt", context),
        kind="resend_otp",
    )
