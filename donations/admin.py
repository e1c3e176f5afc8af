from django.contrib import admin
from .models import Donation


@admin.register(Donation)
class DonationAdmin(admin.ModelAdmin):
    list_display = ("id", "display_item", "donor", "status", "agent", "collection_time", "created_at")
    search_fields = ("item_name", "food_type", "donor__email", "agent__email")
    list_filter = ("status",)
    raw_id_fields = ("donor", "agent")
    readonly_fields = ("created_at", "updated_at")
