"""
OTP-gated signup.

start_signup validates the form, emails a six digit code and stages a
SignupTicket in the caller's session. verify_otp turns the ticket into a User
once the newest unexpired code for the staged email is submitted.
resend_otp reissues a code for an email, invalidating every earlier one.

The ticket only ever holds a salted password hash; the plaintext password
does not leave start_signup.
"""
import hmac
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Optional

from django.conf import settings
from django.contrib.auth.hashers import make_password
from django.core.cache import cache
from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from fooddonation.errors import (
    DuplicateEmail,
    InvalidOtp,
    MissingEmail,
    OtpThrottled,
    SessionExpired,
    StorageError,
    ValidationError,
)
from notifications.dispatch import NotificationDispatcher, get_dispatcher
from .emails import resend_otp_intent, signup_otp_intent
from .forms import SignUpForm
from .models import Otp, User
from .utils import expiry, gen_otp, normalize_email, token_32

logger = logging.getLogger(__name__)

SIGNUP_SESSION_KEY = "signup_ticket"


@dataclass(frozen=True)
class SignupTicket:
    token: str
    first_name: str
    last_name: str
    email: str
    password_hash: str
    role: str
    created_at: str

    def to_session(self) -> dict:
        return asdict(self)

    @classmethod
    def from_session(cls, data) -> Optional["SignupTicket"]:
        if not isinstance(data, dict):
            return None
        try:
            return cls(**data)
        except TypeError:
            return None

    def is_stale(self, now=None) -> bool:
        created = parse_datetime(self.created_at or "")
        if created is None:
            return True
        ttl = timedelta(minutes=getattr(settings, "SIGNUP_TICKET_TTL_MINUTES", 30))
        return (now or timezone.now()) - created > ttl


@dataclass
class PendingVerification:
    email: str
    expires_at: datetime
    email_delivered: bool
    ticket: Optional[SignupTicket] = None


def _resend_key(email: str) -> str:
    return f"accounts:otp:resend_count:{email}"


def issue_otp(email: str) -> Otp:
    """Create or overwrite the OTP row for ``email``; the previous code stops working."""
    now = timezone.now()
    try:
        otp, _ = Otp.objects.update_or_create(
            email=email,
            defaults={
                "code": gen_otp(),
                "issued_at": now,
                "expires_at": expiry(getattr(settings, "OTP_TTL_MINUTES", 10)),
            },
        )
    except DatabaseError as exc:
        logger.exception("Failed to store OTP for %s", email)
        raise StorageError() from exc
    return otp


def start_signup(session, data, dispatcher: Optional[NotificationDispatcher] = None) -> PendingVerification:
    form = SignUpForm(data)
    if not form.is_valid():
        raise ValidationError(form.error_messages_list())

    cleaned = form.cleaned_data
    email = cleaned["email"]
    try:
        exists = User.objects.filter(email__iexact=email).exists()
    except DatabaseError as exc:
        logger.exception("Failed to look up existing user for %s", email)
        raise StorageError() from exc
    if exists:
        raise DuplicateEmail()

    otp = issue_otp(email)
    dispatcher = dispatcher or get_dispatcher()
    [outcome] = dispatcher.dispatch([signup_otp_intent(email=email, code=otp.code, first_name=cleaned["first_name"])])

    ticket = SignupTicket(
        token=token_32(),
        first_name=cleaned["first_name"].strip(),
        last_name=cleaned["last_name"].strip(),
        email=email,
        password_hash=make_password(cleaned["password1"]),
        role=cleaned["role"],
        created_at=timezone.now().isoformat(),
    )
    session[SIGNUP_SESSION_KEY] = ticket.to_session()
    logger.info("Signup OTP issued for email=%s role=%s delivered=%s", email, ticket.role, outcome.delivered)
    return PendingVerification(
        email=email, expires_at=otp.expires_at, email_delivered=outcome.delivered, ticket=ticket
    )


def current_ticket(session) -> Optional[SignupTicket]:
    ticket = SignupTicket.from_session(session.get(SIGNUP_SESSION_KEY))
    if ticket is not None and ticket.is_stale():
        session.pop(SIGNUP_SESSION_KEY, None)
        return None
    return ticket


def verify_otp(session, code, token: Optional[str] = None) -> User:
    ticket = current_ticket(session)
    if ticket is None:
        raise SessionExpired()
    if token and not hmac.compare_digest(token.encode("utf-8"), ticket.token.encode("utf-8")):
        raise SessionExpired()

    submitted = (code or "").strip()
    try:
        otp = Otp.objects.filter(email=ticket.email).first()
    except DatabaseError as exc:
        logger.exception("Failed to load OTP for %s", ticket.email)
        raise StorageError() from exc

    if otp is None or otp.is_expired():
        logger.warning("OTP not found or expired for %s", ticket.email)
        raise InvalidOtp()
    if not hmac.compare_digest(otp.code.encode("utf-8"), submitted.encode("utf-8")):
        logger.warning("OTP mismatch for %s", ticket.email)
        raise InvalidOtp()

    try:
        with transaction.atomic():
            user = User(
                username=ticket.email[:150],
                email=ticket.email,
                first_name=ticket.first_name,
                last_name=ticket.last_name,
                role=ticket.role,
                password=ticket.password_hash,
            )
            user.save()
            Otp.objects.filter(email=ticket.email).delete()
    except IntegrityError as exc:
        logger.warning("Email %s was registered while its OTP was pending", ticket.email)
        raise DuplicateEmail() from exc
    except DatabaseError as exc:
        logger.exception("Failed to create user for %s", ticket.email)
        raise StorageError() from exc

    session.pop(SIGNUP_SESSION_KEY, None)
    logger.info("Created %s account for %s", user.role, user.email)
    return user


def resend_otp(email, dispatcher: Optional[NotificationDispatcher] = None) -> PendingVerification:
    email = normalize_email(email)
    if not email:
        raise MissingEmail()

    request_key = _resend_key(email)
    request_count = cache.get(request_key, 0)
    if request_count >= getattr(settings, "OTP_RESEND_MAX", 5):
        logger.warning("OTP resend throttled for %s", email)
        raise OtpThrottled()

    otp = issue_otp(email)
    dispatcher = dispatcher or get_dispatcher()
    [outcome] = dispatcher.dispatch([resend_otp_intent(email=email, code=otp.code)])
    cache.set(request_key, request_count + 1, timeout=getattr(settings, "OTP_RESEND_WINDOW_SECONDS", 600))

    logger.info("OTP reissued for email=%s delivered=%s", email, outcome.delivered)
    return PendingVerification(email=email, expires_at=otp.expires_at, email_delivered=outcome.delivered)
