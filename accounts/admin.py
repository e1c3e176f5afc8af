from django.contrib import admin
from django.contrib.auth.admin import UserAdmin

from .models import Otp, User


@admin.register(User)
class FoodDonationUserAdmin(UserAdmin):
    list_display = ("email", "first_name", "last_name", "role", "is_active", "date_joined")
    search_fields = ("email", "first_name", "last_name")
    list_filter = ("role", "is_active")
    fieldsets = UserAdmin.fieldsets + (("Food donation", {"fields": ("role", "phone", "address")}),)


@admin.register(Otp)
class OtpAdmin(admin.ModelAdmin):
    list_display = ("email", "issued_at", "expires_at")
    search_fields = ("email",)
    readonly_fields = ("issued_at",)
