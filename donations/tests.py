from unittest.mock import patch

from django.core import mail
from django.db import DatabaseError
from django.test import TestCase, override_settings

from accounts.models import User
from fooddonation.errors import InvalidTransition, NotFound, NotificationError, StorageError, ValidationError
from notifications.dispatch import NotificationDispatcher
from notifications.models import FailedNotification
from . import services
from .emails import format_collection_time
from .models import Donation


class DonationTestMixin:
    def setUp(self):
        self.donor = User.objects.create_user(
            username="donor@example.com", email="donor@example.com", password="pw12",
            first_name="Dev", role=User.ROLE_DONOR,
        )
        self.agent = User.objects.create_user(
            username="agent@example.com", email="agent@example.com", password="pw12",
            first_name="Arjun", role=User.ROLE_AGENT,
        )
        self.donation = Donation.objects.create(
            donor=self.donor,
            item_name="Rice",
            food_type="cooked",
            address="12 MG Road",
            phone="9876543210",
        )

    def assertInvariants(self, donation):
        donation.refresh_from_db()
        self.assertIn(donation.status, [s for s, _ in Donation.STATUS_CHOICES])
        self.assertEqual(donation.agent_id is not None, donation.status in Donation.AGENT_STATUSES)
        self.assertEqual(donation.collection_time is not None, donation.status == Donation.STATUS_COLLECTED)


@override_settings(
    EMAIL_BACKEND="django.core.mail.backends.locmem.EmailBackend",
    DONATION_OVERSIGHT_EMAIL="oversight@example.com",
    NOTIFICATION_RETRY_BACKOFF_SECONDS=0,
)
class LifecycleTests(DonationTestMixin, TestCase):
    def test_accept_sends_one_donor_email(self):
        result = services.accept(self.donation.pk)

        self.assertEqual(result.donation.status, Donation.STATUS_ACCEPTED)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ["donor@example.com"])
        self.assertEqual(mail.outbox[0].subject, "Your Donation Has Been Accepted")
        self.assertIn("Hello Dev", mail.outbox[0].body)
        self.assertIn('"Rice"', mail.outbox[0].body)
        self.assertInvariants(self.donation)

    def test_reject_sends_one_donor_email(self):
        result = services.reject(self.donation.pk)

        self.assertEqual(result.donation.status, Donation.STATUS_REJECTED)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].subject, "Your Donation Has Been Rejected")
        self.assertInvariants(self.donation)

    def test_accept_twice_resends(self):
        services.accept(self.donation.pk)
        services.accept(self.donation.pk)

        self.assertEqual(len(mail.outbox), 2)

    def test_unknown_donation_not_found(self):
        with self.assertRaises(NotFound):
            services.accept(999999)
        self.assertEqual(len(mail.outbox), 0)

    def test_rejected_is_terminal(self):
        services.reject(self.donation.pk)

        with self.assertRaises(InvalidTransition):
            services.accept(self.donation.pk)
        with self.assertRaises(InvalidTransition):
            services.assign(self.donation.pk, self.agent.pk)

    def test_assign_notifies_donor_and_agent(self):
        services.accept(self.donation.pk)
        mail.outbox.clear()

        result = services.assign(self.donation.pk, self.agent.pk, "Ring the bell")

        donation = result.donation
        self.assertEqual(donation.status, Donation.STATUS_ASSIGNED)
        self.assertEqual(donation.agent, self.agent)
        self.assertEqual(donation.admin_to_agent_msg, "Ring the bell")
        self.assertEqual(len(mail.outbox), 2)
        donor_mail, agent_mail = mail.outbox
        self.assertEqual(donor_mail.to, ["donor@example.com"])
        self.assertIn("Arjun", donor_mail.body)
        self.assertIn("9876543210", donor_mail.body)
        self.assertEqual(agent_mail.to, ["agent@example.com"])
        self.assertIn("Pickup Address: 12 MG Road", agent_mail.body)
        self.assertIn("Message from Admin: Ring the bell", agent_mail.body)
        self.assertInvariants(self.donation)

    def test_assign_without_message_uses_default_text(self):
        result = services.assign(self.donation.pk, self.agent.pk, "")

        self.assertIsNone(result.donation.admin_to_agent_msg)
        self.assertIn("Message from Admin: No message provided.", mail.outbox[1].body)

    def test_assign_requires_agent_role(self):
        with self.assertRaises(ValidationError):
            services.assign(self.donation.pk, self.donor.pk)
        with self.assertRaises(NotFound):
            services.assign(self.donation.pk, 424242)

        self.donation.refresh_from_db()
        self.assertEqual(self.donation.status, Donation.STATUS_PENDING)
        self.assertEqual(len(mail.outbox), 0)

    def test_collect_notifies_donor_and_oversight(self):
        services.assign(self.donation.pk, self.agent.pk)
        mail.outbox.clear()

        result = services.collect(self.donation.pk)

        donation = result.donation
        self.assertEqual(donation.status, Donation.STATUS_COLLECTED)
        self.assertIsNotNone(donation.collection_time)
        self.assertEqual([m.to for m in mail.outbox], [["donor@example.com"], ["oversight@example.com"]])
        when = format_collection_time(donation.collection_time)
        self.assertIn(when, mail.outbox[0].body)
        self.assertIn(f"Agent Arjun has collected the donation \"Rice\" from donor Dev on {when}", mail.outbox[1].body)
        self.assertInvariants(self.donation)

    def test_collect_again_is_accepted(self):
        services.assign(self.donation.pk, self.agent.pk)
        services.collect(self.donation.pk)
        mail.outbox.clear()

        result = services.collect(self.donation.pk)

        self.assertEqual(result.donation.status, Donation.STATUS_COLLECTED)
        self.assertEqual(len(mail.outbox), 2)

    def test_collect_requires_assignment(self):
        with self.assertRaises(InvalidTransition):
            services.collect(self.donation.pk)
        self.assertInvariants(self.donation)

    def test_collect_by_other_agent_not_found(self):
        other = User.objects.create_user(username="o@example.com", email="o@example.com", role=User.ROLE_AGENT)
        services.assign(self.donation.pk, self.agent.pk)

        with self.assertRaises(NotFound):
            services.collect(self.donation.pk, agent=other)

    def test_collect_falls_back_to_food_type(self):
        Donation.objects.filter(pk=self.donation.pk).update(item_name="")
        services.assign(self.donation.pk, self.agent.pk)
        mail.outbox.clear()

        services.collect(self.donation.pk)

        self.assertIn('"cooked"', mail.outbox[0].body)

    def test_failed_send_keeps_transition(self):
        with patch("notifications.dispatch.EmailMultiAlternatives.send", side_effect=OSError("smtp down")):
            result = services.assign(self.donation.pk, self.agent.pk)

        self.assertFalse(result.all_delivered)
        self.donation.refresh_from_db()
        self.assertEqual(self.donation.status, Donation.STATUS_ASSIGNED)
        self.assertEqual(FailedNotification.objects.count(), 2)

    @override_settings(NOTIFICATION_RETRY_BACKOFF_SECONDS=1)
    def test_failed_send_is_tried_once_per_email(self):
        with patch(
            "notifications.dispatch.EmailMultiAlternatives.send", side_effect=OSError("smtp down")
        ) as send, patch("notifications.dispatch.time.sleep") as sleep:
            result = services.assign(self.donation.pk, self.agent.pk)

        self.assertEqual(send.call_count, 2)
        sleep.assert_not_called()
        self.assertEqual([o.attempts for o in result.outcomes], [1, 1])
        self.assertEqual(FailedNotification.objects.filter(resolved_at__isnull=True).count(), 2)

    def test_one_failed_send_does_not_skip_the_other(self):
        sent = []

        def flaky_sender(intent):
            if intent.to == "donor@example.com":
                raise NotificationError("mailbox full")
            sent.append(intent.to)

        dispatcher = NotificationDispatcher(sender=flaky_sender, max_attempts=2, backoff_seconds=0)
        result = services.assign(self.donation.pk, self.agent.pk, dispatcher=dispatcher)

        self.assertEqual(sent, ["agent@example.com"])
        self.assertEqual([o.delivered for o in result.outcomes], [False, True])

    def test_render_failure_changes_nothing(self):
        with patch("donations.emails.render_to_string", side_effect=RuntimeError("template broken")):
            with self.assertLogs("donations.services", level="ERROR"):
                with self.assertRaises(NotificationError):
                    services.accept(self.donation.pk)

        self.donation.refresh_from_db()
        self.assertEqual(self.donation.status, Donation.STATUS_PENDING)
        self.assertEqual(len(mail.outbox), 0)

    def test_storage_error_on_write_aborts_transition(self):
        with patch.object(Donation, "save", side_effect=DatabaseError("disk full")):
            with self.assertRaises(StorageError):
                services.accept(self.donation.pk)

        self.donation.refresh_from_db()
        self.assertEqual(self.donation.status, Donation.STATUS_PENDING)
        self.assertEqual(len(mail.outbox), 0)

    def test_donor_cannot_change(self):
        other = User.objects.create_user(username="x@example.com", email="x@example.com")
        self.donation.donor = other

        with self.assertRaises(ValueError):
            self.donation.save()


class ReadModelTests(DonationTestMixin, TestCase):
    def test_admin_dashboard_counts(self):
        Donation.objects.create(donor=self.donor, item_name="Dal", address="a", phone="1", status="collected", agent=self.agent)

        counts = services.admin_dashboard_counts()

        self.assertEqual(counts["users"], {"admin": 0, "agent": 1, "donor": 1})
        self.assertEqual(counts["donations"]["pending"], 1)
        self.assertEqual(counts["donations"]["collected"], 1)
        self.assertEqual(counts["donations"]["assigned"], 0)

    def test_agent_dashboard_counts(self):
        Donation.objects.create(donor=self.donor, item_name="Dal", address="a", phone="1", status="assigned", agent=self.agent)

        self.assertEqual(services.agent_dashboard_counts(self.agent), {"assigned": 1, "collected": 0})

    def test_pending_and_previous_lists(self):
        collected = Donation.objects.create(
            donor=self.donor, item_name="Dal", address="a", phone="1", status="collected", agent=self.agent
        )
        rejected = Donation.objects.create(donor=self.donor, item_name="Roti", address="a", phone="1", status="rejected")

        pending_ids = [d.pk for d in services.pending_donations()]
        self.assertIn(self.donation.pk, pending_ids)
        self.assertNotIn(rejected.pk, pending_ids)
        self.assertEqual([d.pk for d in services.previous_donations()], [collected.pk])

    def test_list_agents_only_agents(self):
        self.assertEqual(services.list_agents(), [self.agent])

    def test_create_donation_starts_pending(self):
        donation = services.create_donation(self.donor, item_name="Bread", address="x", phone="123")

        self.assertEqual(donation.status, Donation.STATUS_PENDING)
        self.assertIsNone(donation.agent)

    def test_create_donation_requires_address(self):
        with self.assertRaises(ValidationError):
            services.create_donation(self.donor, item_name="Bread", address="", phone="123")
