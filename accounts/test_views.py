from unittest.mock import patch

from django.core import mail
from django.core.cache import cache
from django.test import Client, TestCase, override_settings
from django.urls import reverse

from .models import Otp, User


@override_settings(
    EMAIL_BACKEND="django.core.mail.backends.locmem.EmailBackend",
    NOTIFICATION_RETRY_BACKOFF_SECONDS=0,
)
class SignupViewTests(TestCase):
    def setUp(self):
        cache.clear()

    def _signup(self, **overrides):
        data = {
            "first_name": "Asha",
            "last_name": "Verma",
            "email": "a@x.com",
            "password1": "abcd",
            "password2": "abcd",
            "role": "donor",
        }
        data.update(overrides)
        return self.client.post(reverse("accounts:signup"), data)

    def test_signup_then_verify_creates_user(self):
        resp = self._signup()
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["email_sent"])
        self.assertEqual(len(mail.outbox), 1)

        code = Otp.objects.get(email="a@x.com").code
        resp = self.client.post(reverse("accounts:verify_otp"), {"otp": code, "token": body["token"]})

        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.json()["redirect"], "/auth/login")
        self.assertTrue(User.objects.filter(email="a@x.com", role="donor").exists())

    def test_signup_validation_errors_listed(self):
        resp = self._signup(password2="zzzz")

        self.assertEqual(resp.status_code, 400)
        self.assertIn("Passwords are not matching", resp.json()["errors"])
        self.assertFalse(Otp.objects.exists())

    def test_duplicate_email_conflict(self):
        User.objects.create_user(username="a@x.com", email="a@x.com", password="abcd")

        resp = self._signup()

        self.assertEqual(resp.status_code, 409)

    def test_verify_without_session_redirects_to_signup(self):
        resp = self.client.post(reverse("accounts:verify_otp"), {"otp": "123456"})

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["redirect"], "/auth/signup")
        self.assertFalse(User.objects.exists())

    def test_resend_missing_email(self):
        resp = self.client.post(reverse("accounts:resend_otp"), {})

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "Email missing. Please sign up again.")

    def test_resend_after_signup_only_new_code_verifies(self):
        with patch("accounts.utils.random.randint", side_effect=[123456, 654321]):
            self._signup()
            resp = self.client.post(reverse("accounts:resend_otp"), {"email": "a@x.com"})
        self.assertEqual(resp.status_code, 200)

        resp = self.client.post(reverse("accounts:verify_otp"), {"otp": "123456"})
        self.assertEqual(resp.status_code, 400)
        resp = self.client.post(reverse("accounts:verify_otp"), {"otp": "654321"})
        self.assertEqual(resp.status_code, 201)

    def test_signup_requires_anonymous(self):
        user = User.objects.create_user(username="d@x.com", email="d@x.com", password="abcd", role="donor")
        self.client.force_login(user)

        resp = self._signup(email="other@x.com")

        self.assertEqual(resp.status_code, 403)


class LoginViewTests(TestCase):
    def test_login_with_email_and_password(self):
        User.objects.create_user(username="agent1", email="agent@x.com", password="abcd", role="agent")

        resp = self.client.post(reverse("accounts:login"), {"email": "Agent@x.com", "password": "abcd"})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["redirect"], "/agent/dashboard")

    def test_wrong_password_rejected(self):
        User.objects.create_user(username="agent1", email="agent@x.com", password="abcd", role="agent")

        resp = self.client.post(reverse("accounts:login"), {"email": "agent@x.com", "password": "nope"})

        self.assertEqual(resp.status_code, 400)


@override_settings(
    EMAIL_BACKEND="django.core.mail.backends.locmem.EmailBackend",
    NOTIFICATION_RETRY_BACKOFF_SECONDS=0,
)
class CsrfTests(TestCase):
    def setUp(self):
        cache.clear()
        self.client = Client(enforce_csrf_checks=True)
        self.signup_data = {
            "first_name": "Asha",
            "last_name": "Verma",
            "email": "a@x.com",
            "password1": "abcd",
            "password2": "abcd",
        }

    def test_post_without_token_rejected(self):
        resp = self.client.post(reverse("accounts:signup"), self.signup_data)

        self.assertEqual(resp.status_code, 403)
        self.assertFalse(resp.json()["ok"])
        self.assertFalse(Otp.objects.exists())

    def test_csrf_endpoint_sets_cookie(self):
        resp = self.client.get(reverse("accounts:csrf"))

        self.assertEqual(resp.status_code, 200)
        self.assertIn("csrftoken", resp.cookies)
        self.assertTrue(resp.json()["csrf_token"])

    def test_signup_and_login_with_token(self):
        self.client.get(reverse("accounts:csrf"))
        token = self.client.cookies["csrftoken"].value

        resp = self.client.post(reverse("accounts:signup"), self.signup_data, HTTP_X_CSRFTOKEN=token)
        self.assertEqual(resp.status_code, 200)

        code = Otp.objects.get(email="a@x.com").code
        resp = self.client.post(reverse("accounts:verify_otp"), {"otp": code}, HTTP_X_CSRFTOKEN=token)
        self.assertEqual(resp.status_code, 201)

        resp = self.client.post(
            reverse("accounts:login"), {"email": "a@x.com", "password": "abcd"}, HTTP_X_CSRFTOKEN=token
        )
        self.assertEqual(resp.status_code, 200)
