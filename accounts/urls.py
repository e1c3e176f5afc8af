from django.urls import path

from . import views

app_name = "accounts"
urlpatterns = [
    path("auth/csrf", views.csrf_view, name="csrf"),
    path("auth/signup", views.signup_view, name="signup"),
    path("auth/verify-otp", views.verify_otp_view, name="verify_otp"),
    path("auth/resend-otp", views.resend_otp_view, name="resend_otp"),
    path("auth/login", views.login_view, name="login"),
    path("auth/logout", views.logout_view, name="logout"),
]
