from django.core.management.base import BaseCommand
from django.utils import timezone

from fooddonation.errors import NotificationError
from notifications.dispatch import send_email
from notifications.models import FailedNotification


class Command(BaseCommand):
    help = "Replay dead-lettered notification emails"

    def add_arguments(self, parser):
        parser.add_argument("--max", type=int, default=100, help="Max dead letters to process")

    def handle(self, *args, **opts):
        qs = FailedNotification.objects.filter(resolved_at__isnull=True).order_by("created_at")

        cnt = 0
        ok = 0
        for record in qs[: opts["max"]]:
            cnt += 1
            record.attempts += 1
            try:
                send_email(record.as_intent())
            except NotificationError as e:
                record.last_error = str(e)
                record.save(update_fields=["attempts", "last_error"])
                self.stdout.write(self.style.WARNING(f"#{record.pk} {record.to}: {e}"))
                continue
            record.resolved_at = timezone.now()
            record.save(update_fields=["attempts", "resolved_at"])
            ok += 1
            self.stdout.write(self.style.SUCCESS(f"#{record.pk} {record.to} -> sent"))

        self.stdout.write(self.style.SUCCESS(f"Checked {cnt}, delivered {ok} notifications."))
