from django.conf import settings
from django.db import models


class Donation(models.Model):
    STATUS_PENDING = "pending"
    STATUS_ACCEPTED = "accepted"
    STATUS_ASSIGNED = "assigned"
    STATUS_REJECTED = "rejected"
    STATUS_COLLECTED = "collected"
    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_ACCEPTED, "Accepted"),
        (STATUS_ASSIGNED, "Assigned"),
        (STATUS_REJECTED, "Rejected"),
        (STATUS_COLLECTED, "Collected"),
    ]
    # Statuses that must carry an agent
    AGENT_STATUSES = (STATUS_ASSIGNED, STATUS_COLLECTED)

    donor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="donations")
    item_name = models.CharField(max_length=128, blank=True, default="")
    food_type = models.CharField(max_length=64, blank=True, default="")
    quantity = models.CharField(max_length=64, blank=True, default="")
    cooking_time = models.DateTimeField(null=True, blank=True)
    address = models.CharField(max_length=255)
    phone = models.CharField(max_length=20)
    donor_to_admin_msg = models.TextField(blank=True, default="")

    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    agent = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="collections",
    )
    admin_to_agent_msg = models.TextField(null=True, blank=True)
    collection_time = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)

    def __str__(self):
        return f"#{self.pk} {self.display_item} ({self.status})"

    @property
    def display_item(self) -> str:
        return self.item_name or self.food_type

    def save(self, *args, **kwargs):
        # The donor is fixed once the row exists.
        if self.pk is not None:
            original_donor_id = (
                Donation.objects.filter(pk=self.pk).values_list("donor_id", flat=True).first()
            )
            if original_donor_id is not None and original_donor_id != self.donor_id:
                raise ValueError("A donation's donor cannot be changed.")
        super().save(*args, **kwargs)
