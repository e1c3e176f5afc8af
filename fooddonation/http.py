from django.http import JsonResponse

from .errors import CoreError, ValidationError


def error_response(exc: CoreError, **extra) -> JsonResponse:
    payload = {"ok": False, "error": exc.message}
    if isinstance(exc, ValidationError):
        payload["errors"] = exc.messages
    payload.update(extra)
    return JsonResponse(payload, status=exc.status_code)


def ok_response(status=200, **payload) -> JsonResponse:
    return JsonResponse({"ok": True, **payload}, status=status)


def csrf_failure(request, reason=""):
    """JSON stand-in for Django's CSRF failure page."""
    return JsonResponse(
        {
            "ok": False,
            "error": "Missing or invalid CSRF token. Fetch /auth/csrf and send the token in X-CSRFToken.",
            "reason": reason,
        },
        status=403,
    )
