from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.core.management.base import BaseCommand
from django.utils import timezone

from visits.models import QueueEntry
from visits.services.metrics import compute_metrics
from visits.services.notify import QUEUE_GROUP
from visits.services.queue import clinic_day_bounds, local_day


class Command(BaseCommand):
    help = "Print today's queue metrics per department; broadcast a WebSocket refresh event."

    def add_arguments(self, parser):
        parser.add_argument('--department', default='', help='Only report this department')
        parser.add_argument('--no-broadcast', action='store_true', help='Skip the WebSocket refresh')

    def handle(self, *args, **options):
        now = timezone.now()
        department = options['department']
        if department:
            departments = [department]
        else:
            start, end = clinic_day_bounds(local_day())
            departments = sorted(set(
                QueueEntry.objects.filter(check_in_time__gte=start, check_in_time__lt=end)
                .values_list('department', flat=True)
            ))

        rows = [('(all)', compute_metrics())] if not department else []
        rows += [(d, compute_metrics(department=d)) for d in departments if d]
        for label, metrics in rows:
            data = metrics.as_dict()
            self.stdout.write(
                f"{label}: waiting={data['totalWaiting']} called={data['totalCalled']} "
                f"in-progress={data['totalInProgress']} completed={data['completedToday']} "
                f"no-show={data['noShowsToday']} avg-wait={data['averageWaitTime']}m "
                f"no-show-rate={data['noShowRate']}% completion-rate={data['completionRate']}% "
                f"throughput={data['throughputRate']}/h"
            )

        if not options['no_broadcast']:
            channel_layer = get_channel_layer()
            if channel_layer is not None:
                event = {"type": "queue.refresh", "event": "metrics", "ts": now.isoformat()}
                async_to_sync(channel_layer.group_send)(QUEUE_GROUP, event)

        self.stdout.write(self.style.SUCCESS(f"Reported {len(rows)} queue(s) at {now}"))
