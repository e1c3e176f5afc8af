import logging

from django.contrib.auth import authenticate, login, logout
from django.middleware.csrf import get_token
from django.views.decorators.cache import never_cache
from django.views.decorators.csrf import ensure_csrf_cookie
from django.views.decorators.http import require_GET, require_POST

from fooddonation.errors import CoreError, SessionExpired
from fooddonation.http import error_response, ok_response
from . import services
from .decorators import anonymous_required
from .models import User

logger = logging.getLogger(__name__)


@require_GET
@ensure_csrf_cookie
@never_cache
def csrf_view(request):
    """Hands out the CSRF cookie; clients echo it in ``X-CSRFToken`` on every POST."""
    return ok_response(csrf_token=get_token(request))


@require_POST
@never_cache
@anonymous_required
def signup_view(request):
    try:
        pending = services.start_signup(request.session, request.POST)
    except CoreError as exc:
        return error_response(exc)

    return ok_response(
        email=pending.email,
        token=pending.ticket.token,
        expires_at=pending.expires_at.isoformat(),
        email_sent=pending.email_delivered,
        message="OTP sent. Check your email to verify your account.",
    )


@require_POST
@never_cache
def verify_otp_view(request):
    try:
        user = services.verify_otp(
            request.session,
            request.POST.get("otp", ""),
            token=request.POST.get("token") or None,
        )
    except SessionExpired as exc:
        return error_response(exc, redirect="/auth/signup")
    except CoreError as exc:
        return error_response(exc)

    return ok_response(
        status=201,
        user_id=user.pk,
        role=user.role,
        message="You are successfully registered and can log in.",
        redirect="/auth/login",
    )


@require_POST
@never_cache
def resend_otp_view(request):
    try:
        pending = services.resend_otp(request.POST.get("email", ""))
    except CoreError as exc:
        return error_response(exc)

    return ok_response(
        email=pending.email,
        expires_at=pending.expires_at.isoformat(),
        email_sent=pending.email_delivered,
        message="New OTP has been sent to your email.",
    )


@require_POST
@never_cache
@anonymous_required
def login_view(request):
    email = (request.POST.get("email") or "").strip().lower()
    password = request.POST.get("password") or ""
    account = User.objects.filter(email__iexact=email).first()
    user = authenticate(request, username=account.username if account else email, password=password)
    if user is None:
        logger.info("Failed login for %s", email)
        return error_response(CoreError("Incorrect email or password."), redirect="/auth/login")
    login(request, user)
    return ok_response(role=user.role, redirect=request.session.pop("return_to", None) or f"/{user.role}/dashboard")


def logout_view(request):
    logout(request)
    return ok_response(message="You are logged out!", redirect="/")
