from io import StringIO
from unittest.mock import patch

from django.core import mail
from django.core.management import call_command
from django.test import TestCase, override_settings

from fooddonation.errors import NotificationError
from .dispatch import NotificationDispatcher, send_email
from .intents import NotificationIntent
from .models import FailedNotification


def _intent(to="donor@example.com", kind="test"):
    return NotificationIntent(to=to, subject="Hello", text="Body", kind=kind)


@override_settings(EMAIL_BACKEND="django.core.mail.backends.locmem.EmailBackend")
class SendEmailTests(TestCase):
    def test_sends_plain_text_message(self):
        send_email(_intent())

        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ["donor@example.com"])
        self.assertEqual(mail.outbox[0].subject, "Hello")
        self.assertEqual(mail.outbox[0].body, "Body")

    def test_missing_recipient_raises(self):
        with self.assertRaises(NotificationError):
            send_email(_intent(to=""))

    def test_backend_error_wrapped(self):
        with patch("notifications.dispatch.EmailMultiAlternatives.send", side_effect=OSError("smtp down")):
            with self.assertRaises(NotificationError) as cm:
                send_email(_intent())
        self.assertIn("smtp down", str(cm.exception))


class NotificationDispatcherTests(TestCase):
    def test_retries_then_succeeds(self):
        calls = []

        def flaky(intent):
            calls.append(intent)
            if len(calls) < 2:
                raise NotificationError("temporary")

        sleeps = []
        dispatcher = NotificationDispatcher(sender=flaky, max_attempts=3, backoff_seconds=0.5, sleep=sleeps.append)
        [outcome] = dispatcher.dispatch([_intent()])

        self.assertTrue(outcome.delivered)
        self.assertEqual(outcome.attempts, 2)
        self.assertEqual(sleeps, [0.5])
        self.assertFalse(FailedNotification.objects.exists())

    def test_exhausted_send_is_dead_lettered(self):
        def broken(intent):
            raise NotificationError("smtp down")

        sleeps = []
        dispatcher = NotificationDispatcher(sender=broken, max_attempts=3, backoff_seconds=1, sleep=sleeps.append)
        with self.assertLogs("notifications.dispatch", level="WARNING") as cm:
            [outcome] = dispatcher.dispatch([_intent(kind="donation_accepted")])

        self.assertFalse(outcome.delivered)
        self.assertEqual(outcome.attempts, 3)
        self.assertEqual(sleeps, [1, 2])
        record = FailedNotification.objects.get()
        self.assertEqual(outcome.dead_letter_id, record.pk)
        self.assertEqual(record.kind, "donation_accepted")
        self.assertEqual(record.attempts, 3)
        self.assertEqual(record.last_error, "smtp down")
        self.assertTrue(any("Giving up" in line for line in cm.output))

    def test_one_failure_does_not_block_other_intents(self):
        delivered = []

        def sender(intent):
            if intent.to == "bad@example.com":
                raise NotificationError("rejected")
            delivered.append(intent.to)

        dispatcher = NotificationDispatcher(sender=sender, max_attempts=1, backoff_seconds=0)
        outcomes = dispatcher.dispatch([_intent(to="bad@example.com"), _intent(to="good@example.com")])

        self.assertEqual([o.delivered for o in outcomes], [False, True])
        self.assertEqual(delivered, ["good@example.com"])

    def test_default_is_single_attempt_without_sleeping(self):
        calls = []
        sleeps = []

        def broken(intent):
            calls.append(intent)
            raise NotificationError("smtp down")

        dispatcher = NotificationDispatcher(sender=broken, sleep=sleeps.append)
        [outcome] = dispatcher.dispatch([_intent()])

        self.assertEqual(len(calls), 1)
        self.assertEqual(sleeps, [])
        self.assertEqual(outcome.attempts, 1)
        self.assertEqual(FailedNotification.objects.get().attempts, 1)

    @override_settings(NOTIFICATION_MAX_ATTEMPTS=4, NOTIFICATION_RETRY_BACKOFF_SECONDS=0)
    def test_defaults_come_from_settings(self):
        dispatcher = NotificationDispatcher()
        self.assertEqual(dispatcher.max_attempts, 4)
        self.assertEqual(dispatcher.backoff_seconds, 0)


@override_settings(EMAIL_BACKEND="django.core.mail.backends.locmem.EmailBackend")
class RetryFailedNotificationsCommandTests(TestCase):
    def test_resends_and_marks_resolved(self):
        record = FailedNotification.objects.create(to="donor@example.com", subject="S", text="T", attempts=3)
        out = StringIO()

        call_command("retry_failed_notifications", stdout=out)

        record.refresh_from_db()
        self.assertIsNotNone(record.resolved_at)
        self.assertEqual(record.attempts, 4)
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn("delivered 1", out.getvalue())

    def test_failure_keeps_record_pending(self):
        record = FailedNotification.objects.create(to="donor@example.com", subject="S", text="T", attempts=3)

        with patch(
            "notifications.management.commands.retry_failed_notifications.send_email",
            side_effect=NotificationError("still down"),
        ):
            call_command("retry_failed_notifications", stdout=StringIO())

        record.refresh_from_db()
        self.assertIsNone(record.resolved_at)
        self.assertEqual(record.last_error, "still down")
