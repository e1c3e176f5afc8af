from functools import wraps

from django.http import JsonResponse

from .models import User


def role_required(*roles):
    """Gate a view on the logged-in user's role (admin / agent / donor)."""

    def decorator(view_func):
        @wraps(view_func)
        def _wrapped(request, *args, **kwargs):
            user = request.user
            if not user.is_authenticated:
                return JsonResponse({"ok": False, "error": "Please log in first.", "redirect": "/auth/login"}, status=401)
            if getattr(user, "role", None) not in roles:
                return JsonResponse({"ok": False, "error": "You are not allowed to access this page."}, status=403)
            return view_func(request, *args, **kwargs)

        return _wrapped

    return decorator


admin_required = role_required(User.ROLE_ADMIN)
agent_required = role_required(User.ROLE_AGENT)


def anonymous_required(view_func):
    @wraps(view_func)
    def _wrapped(request, *args, **kwargs):
        if request.user.is_authenticated:
            return JsonResponse(
                {"ok": False, "error": "You are already logged in.", "redirect": f"/{request.user.role}/dashboard"},
                status=403,
            )
        return view_func(request, *args, **kwargs)

    return _wrapped
