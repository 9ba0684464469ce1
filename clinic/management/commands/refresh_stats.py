from django.core.management.base import BaseCommand
from django.utils import timezone

from clinic.services.billing import BillingService, bump_stats_version
from clinic.services.realtime import broadcast_update


class Command(BaseCommand):
    help = "Invalidate and re-warm the cached billing statistics; broadcast a refresh event."

    def handle(self, *args, **options):
        now = timezone.now()
        bump_stats_version()
        stats = BillingService().get_billing_stats()
        broadcast_update("stats.refreshed", {"startDate": stats["start_date"].isoformat(),
                                             "endDate": stats["end_date"].isoformat()})
        self.stdout.write(self.style.SUCCESS(
            f"Billing stats refreshed for {stats['start_date']}..{stats['end_date']} at {now}"
        ))
