from django.contrib.auth.models import AbstractUser
from django.db import models
from django.utils import timezone


class User(AbstractUser):
    ROLE_ADMIN = "admin"
    ROLE_AGENT = "agent"
    ROLE_DONOR = "donor"
    ROLE_CHOICES = [
        (ROLE_ADMIN, "Admin"),
        (ROLE_AGENT, "Agent"),
        (ROLE_DONOR, "Donor"),
    ]

    # Unique at the database level: the constraint, not a pre-check, decides duplicates.
    email = models.EmailField(unique=True)
    role = models.CharField(max_length=16, choices=ROLE_CHOICES, default=ROLE_DONOR, db_index=True)
    phone = models.CharField(max_length=20, blank=True, default="")
    address = models.CharField(max_length=255, blank=True, default="")

    def __str__(self) -> str:
        return f"{self.first_name} {self.last_name} <{self.email}>".strip()


class Otp(models.Model):
    """
    Email one-time passcode for signup.

    One row per email: issuing again overwrites the code, so only the
    newest code verifies. Rows are deleted after successful verification.
    """
    email = models.EmailField(unique=True)
    code = models.CharField(max_length=6)
    issued_at = models.DateTimeField(default=timezone.now)
    expires_at = models.DateTimeField()

    def __str__(self):
        return f"{self.email} - OTP"

    def is_expired(self, now=None) -> bool:
        return (now or timezone.now()) >= self.expires_at
