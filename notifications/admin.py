from django.contrib import admin
from .models import FailedNotification


@admin.register(FailedNotification)
class FailedNotificationAdmin(admin.ModelAdmin):
    list_display = ("id", "kind", "to", "subject", "attempts", "created_at", "resolved_at")
    search_fields = ("to", "subject", "kind")
    list_filter = ("kind", "resolved_at")
    readonly_fields = ("created_at",)
