from unittest.mock import patch

from django.core import mail
from django.test import TestCase, override_settings
from django.urls import reverse

from accounts.models import User
from .models import Donation


@override_settings(
    EMAIL_BACKEND="django.core.mail.backends.locmem.EmailBackend",
    DONATION_OVERSIGHT_EMAIL="oversight@example.com",
    NOTIFICATION_RETRY_BACKOFF_SECONDS=0,
)
class DonationViewTests(TestCase):
    def setUp(self):
        self.admin = User.objects.create_user(
            username="admin@example.com", email="admin@example.com", password="pw12", role=User.ROLE_ADMIN
        )
        self.agent = User.objects.create_user(
            username="agent@example.com", email="agent@example.com", password="pw12",
            first_name="Arjun", role=User.ROLE_AGENT,
        )
        self.donor = User.objects.create_user(
            username="donor@example.com", email="donor@example.com", password="pw12",
            first_name="Dev", role=User.ROLE_DONOR,
        )
        self.donation = Donation.objects.create(
            donor=self.donor, item_name="Rice", address="12 MG Road", phone="9876543210"
        )

    def test_anonymous_gets_401(self):
        resp = self.client.get(reverse("donations:admin_dashboard"))

        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["redirect"], "/auth/login")

    def test_wrong_role_gets_403(self):
        self.client.force_login(self.donor)

        resp = self.client.post(reverse("donations:admin_accept", args=[self.donation.pk]))

        self.assertEqual(resp.status_code, 403)
        self.donation.refresh_from_db()
        self.assertEqual(self.donation.status, Donation.STATUS_PENDING)

    def test_admin_accept(self):
        self.client.force_login(self.admin)

        resp = self.client.post(reverse("donations:admin_accept", args=[self.donation.pk]))

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["donation"]["status"], "accepted")
        self.assertEqual(body["notifications"][0]["kind"], "donation_accepted")
        self.assertTrue(body["notifications"][0]["delivered"])
        self.assertEqual(len(mail.outbox), 1)

    def test_accept_requires_post(self):
        self.client.force_login(self.admin)

        resp = self.client.get(reverse("donations:admin_accept", args=[self.donation.pk]))

        self.assertEqual(resp.status_code, 405)

    def test_accept_unknown_donation_404(self):
        self.client.force_login(self.admin)

        resp = self.client.post(reverse("donations:admin_accept", args=[999999]))

        self.assertEqual(resp.status_code, 404)
        self.assertFalse(resp.json()["ok"])

    def test_reject_collected_donation_conflict(self):
        Donation.objects.filter(pk=self.donation.pk).update(status="collected", agent=self.agent)
        self.client.force_login(self.admin)

        resp = self.client.post(reverse("donations:admin_reject", args=[self.donation.pk]))

        self.assertEqual(resp.status_code, 409)

    def test_assign_form_lists_agents(self):
        self.client.force_login(self.admin)

        resp = self.client.get(reverse("donations:admin_assign", args=[self.donation.pk]))

        self.assertEqual(resp.status_code, 200)
        self.assertEqual([a["email"] for a in resp.json()["agents"]], ["agent@example.com"])

    def test_assign_requires_agent(self):
        self.client.force_login(self.admin)

        resp = self.client.post(reverse("donations:admin_assign", args=[self.donation.pk]), {})

        self.assertEqual(resp.status_code, 400)

    def test_assign_then_agent_collects(self):
        self.client.force_login(self.admin)
        resp = self.client.post(
            reverse("donations:admin_assign", args=[self.donation.pk]),
            {"agent": self.agent.pk, "adminToAgentMsg": "Gate 2"},
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(len(resp.json()["notifications"]), 2)

        self.client.force_login(self.agent)
        resp = self.client.get(reverse("donations:agent_pending"))
        self.assertEqual([d["id"] for d in resp.json()["collections"]], [self.donation.pk])

        resp = self.client.post(reverse("donations:agent_collect", args=[self.donation.pk]))

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["donation"]["status"], "collected")
        self.assertEqual(mail.outbox[-1].to, ["oversight@example.com"])

        resp = self.client.get(reverse("donations:agent_dashboard"))
        self.assertEqual(resp.json(), {"ok": True, "assigned": 0, "collected": 1})

    def test_failed_email_still_reports_success(self):
        self.client.force_login(self.admin)

        with patch("notifications.dispatch.EmailMultiAlternatives.send", side_effect=OSError("smtp down")):
            resp = self.client.post(reverse("donations:admin_accept", args=[self.donation.pk]))

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertIn("will be retried", body["message"])
        self.assertFalse(body["notifications"][0]["delivered"])
        self.donation.refresh_from_db()
        self.assertEqual(self.donation.status, Donation.STATUS_ACCEPTED)

    def test_broken_email_template_returns_error_without_collecting(self):
        Donation.objects.filter(pk=self.donation.pk).update(status="assigned", agent=self.agent)
        self.client.force_login(self.agent)

        with patch("donations.emails.render_to_string", side_effect=RuntimeError("template broken")):
            resp = self.client.post(reverse("donations:agent_collect", args=[self.donation.pk]))

        self.assertEqual(resp.status_code, 502)
        self.assertFalse(resp.json()["ok"])
        self.donation.refresh_from_db()
        self.assertEqual(self.donation.status, Donation.STATUS_ASSIGNED)
        self.assertIsNone(self.donation.collection_time)

    def test_agent_cannot_see_other_agents_collection(self):
        other = User.objects.create_user(
            username="other@example.com", email="other@example.com", password="pw12", role=User.ROLE_AGENT
        )
        Donation.objects.filter(pk=self.donation.pk).update(status="assigned", agent=other)
        self.client.force_login(self.agent)

        self.assertEqual(self.client.get(reverse("donations:agent_view", args=[self.donation.pk])).status_code, 404)
        self.assertEqual(self.client.post(reverse("donations:agent_collect", args=[self.donation.pk])).status_code, 404)

    def test_admin_dashboard_counts(self):
        self.client.force_login(self.admin)

        body = self.client.get(reverse("donations:admin_dashboard")).json()

        self.assertEqual(body["users"], {"admin": 1, "agent": 1, "donor": 1})
        self.assertEqual(body["donations"]["pending"], 1)

    def test_donor_donates_and_lists(self):
        self.client.force_login(self.donor)

        resp = self.client.post(
            reverse("donations:donor_donate"),
            {"item_name": "Chapati", "quantity": "20", "address": "Flat 4", "phone": "99", "cooking_time": "2026-10-19T12:30"},
        )

        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.json()["donation"]["status"], "pending")
        listed = self.client.get(reverse("donations:donor_donations")).json()["donations"]
        self.assertEqual(len(listed), 2)

    def test_donor_bad_cooking_time(self):
        self.client.force_login(self.donor)

        resp = self.client.post(
            reverse("donations:donor_donate"),
            {"item_name": "Chapati", "address": "Flat 4", "phone": "99", "cooking_time": "yesterday"},
        )

        self.assertEqual(resp.status_code, 400)
