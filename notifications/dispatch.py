"""
Outbound email for donation and signup events.

Services never send mail themselves: they return NotificationIntent values and
hand them to a NotificationDispatcher. Inside a request the dispatcher makes a
single attempt per intent (NOTIFICATION_MAX_ATTEMPTS defaults to 1) and parks a
failed send in FailedNotification right away; retry_failed_notifications
replays those later. Raising NOTIFICATION_MAX_ATTEMPTS adds in-process retries
with exponential backoff; those sleep inside the request.
Dispatching never raises, so a dead SMTP server cannot undo a state change
that is already committed.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.db import DatabaseError

from fooddonation.errors import NotificationError
from .intents import NotificationIntent
from .models import FailedNotification

logger = logging.getLogger(__name__)


@dataclass
class DeliveryOutcome:
    intent: NotificationIntent
    delivered: bool
    attempts: int
    error: str = ""
    dead_letter_id: Optional[int] = None


def _from_address() -> str:
    # Prefer authenticated SMTP user as from address for provider compatibility
    return (
        getattr(settings, "EMAIL_HOST_USER", None)
        or getattr(settings, "DEFAULT_FROM_EMAIL", None)
        or "noreply@fooddonation.local"
    )


def send_email(intent: NotificationIntent) -> None:
    """Send one intent as a plain-text email.

    Raises NotificationError on any delivery problem.
    """
    if not intent.to:
        raise NotificationError("Email has no recipient")
    try:
        msg = EmailMultiAlternatives(intent.subject, intent.text, _from_address(), [intent.to])
        sent_count = msg.send(fail_silently=False)
    except Exception as exc:
        raise NotificationError(f"Error sending email to {intent.to}: {exc}") from exc
    if not sent_count:
        raise NotificationError(f"Mail backend accepted no message for {intent.to}")
    logger.info("Email sent successfully: to=%s subject=%s", intent.to, intent.subject)


class NotificationDispatcher:
    def __init__(
        self,
        sender: Callable[[NotificationIntent], None] = send_email,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        if max_attempts is None:
            max_attempts = getattr(settings, "NOTIFICATION_MAX_ATTEMPTS", 1)
        if backoff_seconds is None:
            backoff_seconds = getattr(settings, "NOTIFICATION_RETRY_BACKOFF_SECONDS", 1.0)
        self.sender = sender
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_seconds = float(backoff_seconds)
        self.sleep = sleep or time.sleep

    def dispatch(self, intents: Iterable[NotificationIntent]) -> List[DeliveryOutcome]:
        # Each intent is independent: one recipient failing never skips the next.
        return [self._deliver(intent) for intent in intents]

    def _deliver(self, intent: NotificationIntent) -> DeliveryOutcome:
        last_error = ""
        for attempt in range(1, self.max_attempts + 1):
            try:
                self.sender(intent)
                return DeliveryOutcome(intent=intent, delivered=True, attempts=attempt)
            except NotificationError as exc:
                last_error = str(exc)
                logger.warning(
                    "Send attempt %s/%s failed: kind=%s to=%s error=%s",
                    attempt, self.max_attempts, intent.kind, intent.to, last_error,
                )
            if attempt < self.max_attempts and self.backoff_seconds > 0:
                self.sleep(self.backoff_seconds * (2 ** (attempt - 1)))

        return DeliveryOutcome(
            intent=intent,
            delivered=False,
            attempts=self.max_attempts,
            error=last_error,
            dead_letter_id=self._dead_letter(intent, last_error),
        )

    def _dead_letter(self, intent: NotificationIntent, error: str) -> Optional[int]:
        logger.error("Giving up on %s email to %s after %s attempts", intent.kind, intent.to, self.max_attempts)
        try:
            record = FailedNotification.objects.create(
                to=intent.to,
                subject=intent.subject,
                text=intent.text,
                kind=intent.kind,
                attempts=self.max_attempts,
                last_error=error,
            )
        except DatabaseError:
            logger.exception("Failed to store dead letter for %s email to %s", intent.kind, intent.to)
            return None
        return record.pk


def get_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher()
