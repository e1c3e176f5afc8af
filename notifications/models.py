from django.db import models

from .intents import NotificationIntent


class FailedNotification(models.Model):
    """An email whose send attempts were all exhausted; replayed by retry_failed_notifications."""

    to = models.EmailField()
    subject = models.CharField(max_length=255)
    text = models.TextField()
    kind = models.CharField(max_length=64, blank=True, default="", db_index=True)
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ("created_at",)

    def __str__(self):
        return f"{self.kind or 'email'} -> {self.to} ({'resolved' if self.resolved_at else 'pending'})"

    def as_intent(self) -> NotificationIntent:
        return NotificationIntent(to=self.to, subject=self.subject, text=self.text, kind=self.kind)
