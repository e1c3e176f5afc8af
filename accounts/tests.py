from datetime import timedelta
from unittest.mock import patch

from django.contrib.auth.hashers import check_password
from django.core import mail
from django.core.cache import cache
from django.test import TestCase, override_settings
from django.utils import timezone

from fooddonation.errors import (
    DuplicateEmail,
    InvalidOtp,
    MissingEmail,
    OtpThrottled,
    SessionExpired,
    ValidationError,
)
from notifications.models import FailedNotification
from . import services
from .models import Otp, User
from .utils import gen_otp


def _signup_data(**overrides):
    data = {
        "first_name": "Asha",
        "last_name": "Verma",
        "email": "a@x.com",
        "password1": "abcd",
        "password2": "abcd",
        "role": "donor",
    }
    data.update(overrides)
    return data


@override_settings(
    EMAIL_BACKEND="django.core.mail.backends.locmem.EmailBackend",
    NOTIFICATION_RETRY_BACKOFF_SECONDS=0,
)
class SignupProtocolTests(TestCase):
    def setUp(self):
        cache.clear()
        self.session = {}

    def test_gen_otp_is_six_digits_in_range(self):
        for _ in range(200):
            code = gen_otp()
            self.assertEqual(len(code), 6)
            self.assertTrue(code.isdigit())
            self.assertTrue(100000 <= int(code) <= 999999)

    def test_end_to_end_signup(self):
        pending = services.start_signup(self.session, _signup_data())

        otp = Otp.objects.get(email="a@x.com")
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ["a@x.com"])
        self.assertIn(otp.code, mail.outbox[0].body)
        self.assertTrue(pending.email_delivered)
        self.assertIn(services.SIGNUP_SESSION_KEY, self.session)

        user = services.verify_otp(self.session, otp.code)

        self.assertEqual(user.role, "donor")
        self.assertEqual(user.email, "a@x.com")
        self.assertTrue(check_password("abcd", user.password))
        self.assertNotEqual(user.password, "abcd")
        self.assertFalse(Otp.objects.filter(email="a@x.com").exists())
        self.assertNotIn(services.SIGNUP_SESSION_KEY, self.session)

    def test_session_never_holds_plaintext_password(self):
        services.start_signup(self.session, _signup_data(password1="s3cret!", password2="s3cret!"))

        staged = self.session[services.SIGNUP_SESSION_KEY]
        self.assertNotIn("s3cret!", staged.values())
        self.assertTrue(check_password("s3cret!", staged["password_hash"]))

    def test_validation_reports_every_violation(self):
        with self.assertRaises(ValidationError) as cm:
            services.start_signup(self.session, _signup_data(last_name="", password1="ab", password2="xy"))

        self.assertIn("Please fill in all the fields", cm.exception.messages)
        self.assertIn("Passwords are not matching", cm.exception.messages)
        self.assertIn("Password length should be at least 4 characters", cm.exception.messages)

    def test_password_mismatch_leaves_no_state(self):
        with self.assertRaises(ValidationError):
            services.start_signup(self.session, _signup_data(password2="abce"))

        self.assertFalse(Otp.objects.exists())
        self.assertEqual(self.session, {})
        self.assertEqual(len(mail.outbox), 0)

    def test_admin_role_cannot_be_self_assigned(self):
        with self.assertRaises(ValidationError):
            services.start_signup(self.session, _signup_data(role="admin"))

    def test_duplicate_email_rejected(self):
        User.objects.create_user(username="a@x.com", email="a@x.com", password="pw12")

        with self.assertRaises(DuplicateEmail):
            services.start_signup(self.session, _signup_data(email="A@X.com"))

        self.assertFalse(Otp.objects.exists())

    def test_verify_without_signup_is_session_expired(self):
        with self.assertRaises(SessionExpired):
            services.verify_otp(self.session, "123456")

        self.assertFalse(User.objects.exists())

    def test_wrong_code_is_invalid_and_retryable(self):
        services.start_signup(self.session, _signup_data())
        otp = Otp.objects.get(email="a@x.com")
        wrong = "100000" if otp.code != "100000" else "100001"

        with self.assertRaises(InvalidOtp):
            services.verify_otp(self.session, wrong)

        self.assertFalse(User.objects.exists())
        user = services.verify_otp(self.session, otp.code)
        self.assertEqual(user.email, "a@x.com")

    def test_expired_code_is_invalid(self):
        services.start_signup(self.session, _signup_data())
        otp = Otp.objects.get(email="a@x.com")
        Otp.objects.filter(pk=otp.pk).update(expires_at=timezone.now() - timedelta(seconds=1))

        with self.assertRaises(InvalidOtp):
            services.verify_otp(self.session, otp.code)

    def test_stale_ticket_is_session_expired(self):
        services.start_signup(self.session, _signup_data())
        otp = Otp.objects.get(email="a@x.com")
        self.session[services.SIGNUP_SESSION_KEY]["created_at"] = (timezone.now() - timedelta(hours=2)).isoformat()

        with self.assertRaises(SessionExpired):
            services.verify_otp(self.session, otp.code)
        self.assertNotIn(services.SIGNUP_SESSION_KEY, self.session)

    def test_token_mismatch_is_session_expired(self):
        services.start_signup(self.session, _signup_data())
        otp = Otp.objects.get(email="a@x.com")

        with self.assertRaises(SessionExpired):
            services.verify_otp(self.session, otp.code, token="not-the-token")

    def test_resend_supersedes_signup_code(self):
        with patch("accounts.utils.random.randint", side_effect=[123456, 654321]):
            services.start_signup(self.session, _signup_data())
            services.resend_otp("a@x.com")

        with self.assertRaises(InvalidOtp):
            services.verify_otp(self.session, "123456")
        user = services.verify_otp(self.session, "654321")
        self.assertEqual(user.email, "a@x.com")

    def test_second_resend_invalidates_first(self):
        with patch("accounts.utils.random.randint", side_effect=[111111, 222222]):
            services.resend_otp("b@x.com")
            services.resend_otp("b@x.com")

        self.assertEqual(Otp.objects.filter(email="b@x.com").count(), 1)
        self.session[services.SIGNUP_SESSION_KEY] = services.SignupTicket(
            token="t",
            first_name="Bala",
            last_name="K",
            email="b@x.com",
            password_hash="!",
            role="agent",
            created_at=timezone.now().isoformat(),
        ).to_session()

        with self.assertRaises(InvalidOtp):
            services.verify_otp(self.session, "111111")
        user = services.verify_otp(self.session, "222222")
        self.assertEqual(user.role, "agent")

    def test_resend_requires_email(self):
        with self.assertRaises(MissingEmail):
            services.resend_otp("   ")
        self.assertFalse(Otp.objects.exists())

    @override_settings(OTP_RESEND_MAX=2)
    def test_resend_is_throttled(self):
        services.resend_otp("c@x.com")
        services.resend_otp("c@x.com")

        with self.assertRaises(OtpThrottled):
            services.resend_otp("c@x.com")

    def test_failed_otp_email_does_not_block_signup(self):
        with patch("notifications.dispatch.EmailMultiAlternatives.send", side_effect=OSError("smtp down")):
            pending = services.start_signup(self.session, _signup_data())

        self.assertFalse(pending.email_delivered)
        self.assertIn(services.SIGNUP_SESSION_KEY, self.session)
        self.assertEqual(FailedNotification.objects.get().kind, "signup_otp")

    def test_email_registered_meanwhile_is_duplicate(self):
        services.start_signup(self.session, _signup_data())
        otp = Otp.objects.get(email="a@x.com")
        User.objects.create_user(username="someone", email="a@x.com", password="pw12")

        with self.assertRaises(DuplicateEmail):
            services.verify_otp(self.session, otp.code)
        self.assertEqual(User.objects.filter(email="a@x.com").count(), 1)
