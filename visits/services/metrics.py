"""
Queue metrics for the dashboard.

Metrics are a read-only projection recomputed from today's entries on
every call; nothing here is stored.  Rates are carried as exact
fractions and only rounded (half-up, one decimal) when rendered.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from fractions import Fraction
from typing import Optional

from visits import lifecycle
from visits.models import QueueEntry
from visits.services.queue import clinic_day_bounds, local_day, store_errors

logger = logging.getLogger(__name__)

_ONE_HOUR = 3600


@dataclass(frozen=True)
class QueueMetrics:
    total_waiting: int
    total_called: int
    total_in_progress: int
    completed_today: int
    no_shows_today: int
    average_wait_time: int
    no_show_rate: Fraction
    completion_rate: Fraction
    throughput_rate: Fraction

    def as_dict(self) -> dict:
        return {
            'totalWaiting': self.total_waiting,
            'totalCalled': self.total_called,
            'totalInProgress': self.total_in_progress,
            'completedToday': self.completed_today,
            'noShowsToday': self.no_shows_today,
            'averageWaitTime': self.average_wait_time,
            'noShowRate': display(self.no_show_rate),
            'completionRate': display(self.completion_rate),
            'throughputRate': display(self.throughput_rate),
        }


def display(value: Fraction) -> float:
    """Round an exact rate half-up to one decimal place."""
    exact = Decimal(value.numerator) / Decimal(value.denominator)
    return float(exact.quantize(Decimal('0.1'), rounding=ROUND_HALF_UP))


def percentage(part: int, whole: int) -> Fraction:
    if not whole:
        return Fraction(0)
    return Fraction(part * 100, whole)


def compute_metrics(department: Optional[str] = None, now: Optional[datetime] = None) -> QueueMetrics:
    """Metrics for the clinic day containing ``now``.

    ``averageWaitTime`` is the truncated mean of ``actual_wait_time`` over
    entries called today.  ``throughputRate`` is completions per hour
    over the span from the first check-in to the last completion of the
    day (at least one hour), so it depends only on stored timestamps.
    """
    start, end = clinic_day_bounds(local_day(now))
    base = QueueEntry.objects.all()
    if department:
        base = base.filter(department=department)
    checked_in_today = base.filter(check_in_time__gte=start, check_in_time__lt=end)

    with store_errors():
        by_status = dict.fromkeys(lifecycle.STATUSES, 0)
        for status in checked_in_today.values_list('status', flat=True):
            by_status[status] += 1

        waits = list(
            base.filter(called_time__gte=start, called_time__lt=end, actual_wait_time__isnull=False)
            .values_list('actual_wait_time', flat=True)
        )
        completed = list(
            base.filter(status=lifecycle.COMPLETED, completed_time__gte=start, completed_time__lt=end)
            .values_list('completed_time', flat=True)
        )
        first_check_in = (
            checked_in_today.order_by('check_in_time').values_list('check_in_time', flat=True).first()
        )
    average_wait = int(Fraction(sum(waits), len(waits))) if waits else 0

    terminal = by_status[lifecycle.COMPLETED] + by_status[lifecycle.NO_SHOW]
    throughput = Fraction(0)
    if completed:
        span_start = min([first_check_in or min(completed)] + completed)
        seconds = max(int((max(completed) - span_start).total_seconds()), _ONE_HOUR)
        throughput = Fraction(len(completed) * _ONE_HOUR, seconds)

    metrics = QueueMetrics(
        total_waiting=by_status[lifecycle.WAITING],
        total_called=by_status[lifecycle.CALLED],
        total_in_progress=by_status[lifecycle.IN_PROGRESS],
        completed_today=len(completed),
        no_shows_today=by_status[lifecycle.NO_SHOW],
        average_wait_time=average_wait,
        no_show_rate=percentage(by_status[lifecycle.NO_SHOW], terminal),
        completion_rate=percentage(by_status[lifecycle.COMPLETED], terminal),
        throughput_rate=throughput,
    )
    logger.debug("Computed queue metrics", extra={'department': department or '', 'day': start.date().isoformat()})
    return metrics
