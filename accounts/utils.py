import datetime
import random
import secrets

from django.utils import timezone

OTP_MIN = 100000
OTP_MAX = 999999


def normalize_email(email: str | None) -> str | None:
    return email.strip().lower() if email else None


def gen_otp() -> str:
    # Range keeps every code at exactly six digits.
    return f"{random.randint(OTP_MIN, OTP_MAX)}"


def token_32():
    return secrets.token_urlsafe(32)


def expiry(minutes=10):
    return timezone.now() + datetime.timedelta(minutes=minutes)
