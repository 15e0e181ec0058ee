"""
Queue lifecycle manager.

Every mutation follows the same shape: open a transaction, lock the row
(``select_for_update`` is a no-op on SQLite), ask :mod:`visits.lifecycle`
what may change, then write through a conditional ``UPDATE`` that matches
the ``version`` and ``status`` we read.  If the conditional update touches
no row another staff action got there first and :class:`Conflict` is
raised; nothing is retried here.

Ordering is (priority tier, position, check-in time).  ``position`` starts
out increasing with check-in order and is only changed by :func:`move`.
"""
from __future__ import annotations

import html
import logging
import re
import uuid
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta
from functools import partial
from typing import Optional

import bleach
from django.conf import settings
from django.db import InterfaceError, OperationalError, transaction
from django.db.models import Case, F, IntegerField, Max, Q, Value, When
from django.utils import timezone

from visits import lifecycle
from visits.exceptions import (
    Conflict,
    EmptyQueue,
    InvalidOperation,
    NotFound,
    StoreUnavailable,
    TerminalStateViolation,
    ValidationError,
)
from visits.models import QueueEntry, QueueEntryTransition
from visits.services import notify
from visits.services.audit import log_action

logger = logging.getLogger(__name__)

_PRIORITY_ORDER = Case(
    *[When(priority=p, then=Value(rank)) for p, rank in lifecycle.PRIORITY_RANK.items()],
    output_field=IntegerField(),
)

# patient, provider and room ids
REFERENCE_RE = re.compile(r'^[A-Za-z0-9][A-Za-z0-9._:/#&+-]*\Z')
REFERENCE_MAX_LENGTH = 64

SORT_FIELDS = {
    'queueNumber': 'number',
    'priority': 'priority_rank',
    'checkinTime': 'check_in_time',
    'calledTime': 'called_time',
    'completedTime': 'completed_time',
}
SORT_ORDERS = ('asc', 'desc')


def _now() -> datetime:
    return timezone.now()


@contextmanager
def store_errors():
    """Surface connection-level database failures as :class:`StoreUnavailable`."""
    try:
        yield
    except (OperationalError, InterfaceError) as exc:
        logger.error("Queue store unavailable: %s", exc)
        raise StoreUnavailable() from exc


def _average_service_minutes() -> int:
    return int(getattr(settings, 'QUEUE_AVERAGE_SERVICE_MINUTES', 15))


def _enforce_terminal() -> bool:
    return bool(getattr(settings, 'QUEUE_ENFORCE_TERMINAL', False))


def _clean(value) -> str:
    """Drop markup from free text; the result is stored and served as plain text."""
    return html.unescape(bleach.clean(str(value or '').strip(), strip=True))


def _reference(value, field: str) -> str:
    """Ids owned by other systems are stored verbatim, once their characters check out."""
    value = str(value or '').strip()
    if value and not REFERENCE_RE.match(value):
        raise ValidationError(f'{field} may only contain letters, digits and ._:/#&+-')
    if len(value) > REFERENCE_MAX_LENGTH:
        raise ValidationError(f'{field} is longer than {REFERENCE_MAX_LENGTH} characters')
    return value


def _entry_pk(entry_id) -> uuid.UUID:
    if isinstance(entry_id, uuid.UUID):
        return entry_id
    try:
        return uuid.UUID(str(entry_id))
    except ValueError:
        raise NotFound(f'queue entry {entry_id} not found')


def _validate_status(value: str) -> None:
    if value not in lifecycle.STATUSES:
        raise ValidationError(f"Invalid status. Allowed values: {', '.join(lifecycle.STATUSES)}")


def _validate_priority(value: str) -> None:
    if value not in lifecycle.PRIORITIES:
        raise ValidationError(f"Invalid priority. Allowed values: {', '.join(lifecycle.PRIORITIES)}")


# ---------------------------------------------------------------------------
# Clinic day & ordering
# ---------------------------------------------------------------------------

def local_day(now: Optional[datetime] = None) -> date:
    """The clinic's calendar day (``settings.TIME_ZONE``), not the UTC one."""
    return timezone.localtime(now or _now()).date()


def clinic_day_bounds(day: date) -> tuple[datetime, datetime]:
    tz = timezone.get_current_timezone()
    start = timezone.make_aware(datetime.combine(day, time.min), tz)
    end = timezone.make_aware(datetime.combine(day + timedelta(days=1), time.min), tz)
    return start, end


def ordered(qs):
    """Apply queue order: urgent first, then position, then arrival."""
    return qs.annotate(priority_rank=_PRIORITY_ORDER).order_by('priority_rank', 'position', 'check_in_time')


def sorted_by(qs, sort: str, order: str = 'asc'):
    key = F(SORT_FIELDS[sort])
    key = key.desc(nulls_last=True) if order == 'desc' else key.asc(nulls_last=True)
    return qs.annotate(priority_rank=_PRIORITY_ORDER).order_by(key, 'number')


def waiting_entries(department: Optional[str] = None):
    qs = QueueEntry.objects.filter(status=lifecycle.WAITING)
    if department:
        qs = qs.filter(department=department)
    return ordered(qs)


def _ahead_count(priority: str, department: Optional[str]) -> int:
    rank = lifecycle.priority_rank(priority)
    tiers = [p for p in lifecycle.PRIORITIES if lifecycle.priority_rank(p) <= rank]
    qs = QueueEntry.objects.filter(status=lifecycle.WAITING, priority__in=tiers)
    if department:
        qs = qs.filter(department=department)
    return qs.count()


def live_estimates(department: Optional[str] = None) -> dict:
    """Recompute the wait estimate of every waiting entry from the current ordering.

    Entries are counted per department so a patient only waits behind
    patients of the same department.
    """
    seen: dict[str, int] = {}
    estimates = {}
    per_patient = _average_service_minutes()
    for entry in waiting_entries(department).only('id', 'department', 'priority', 'position', 'check_in_time'):
        ahead = seen.get(entry.department, 0)
        estimates[entry.pk] = lifecycle.estimate_wait_minutes(ahead, per_patient)
        seen[entry.department] = ahead + 1
    return estimates


def current_estimate(entry: QueueEntry) -> int:
    """Estimated minutes until ``entry`` is called, from the live ordering."""
    if entry.status != lifecycle.WAITING:
        return 0
    rank = lifecycle.priority_rank(entry.priority)
    higher = [p for p in lifecycle.PRIORITIES if lifecycle.priority_rank(p) < rank]
    ahead = QueueEntry.objects.filter(status=lifecycle.WAITING, department=entry.department).filter(
        Q(priority__in=higher)
        | Q(priority=entry.priority, position__lt=entry.position)
        | Q(priority=entry.priority, position=entry.position, check_in_time__lt=entry.check_in_time)
    ).count()
    return lifecycle.estimate_wait_minutes(ahead, _average_service_minutes())


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_entry(entry_id) -> QueueEntry:
    with store_errors():
        entry = QueueEntry.objects.filter(pk=_entry_pk(entry_id)).first()
    if entry is None:
        raise NotFound(f'queue entry {entry_id} not found')
    return entry


def list_entries(*, department: Optional[str] = None, status: Optional[str] = None,
                 priority: Optional[str] = None, day: Optional[date] = None,
                 include_all: bool = False, sort: Optional[str] = None,
                 order: str = 'asc') -> list[QueueEntry]:
    """Entries checked in on ``day`` (default today) in queue order.

    Without ``status`` or ``include_all`` only the active part of the
    queue (``waiting`` and ``called``) is returned.  ``sort`` (a key of
    :data:`SORT_FIELDS`) replaces the queue order; ties fall back to the
    ticket number and unset timestamps sort last either way.
    """
    if sort and sort not in SORT_FIELDS:
        raise ValidationError(f"Invalid sort. Allowed values: {', '.join(SORT_FIELDS)}")
    if order not in SORT_ORDERS:
        raise ValidationError(f"Invalid order. Allowed values: {', '.join(SORT_ORDERS)}")
    if status:
        _validate_status(status)
    if priority:
        _validate_priority(priority)
    start, end = clinic_day_bounds(day or local_day())
    qs = QueueEntry.objects.filter(check_in_time__gte=start, check_in_time__lt=end)
    if status:
        qs = qs.filter(status=status)
    elif not include_all:
        qs = qs.filter(status__in=[lifecycle.WAITING, lifecycle.CALLED])
    if priority:
        qs = qs.filter(priority=priority)
    if department:
        qs = qs.filter(department=department)
    with store_errors():
        return list(sorted_by(qs, sort, order) if sort else ordered(qs))


def entry_history(entry_id) -> list[QueueEntryTransition]:
    entry = get_entry(entry_id)
    with store_errors():
        return list(entry.transitions.select_related('operator').order_by('timestamp', 'id'))


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def _locked(entry_id) -> QueueEntry:
    entry = QueueEntry.objects.select_for_update().filter(pk=_entry_pk(entry_id)).first()
    if entry is None:
        raise NotFound(f'queue entry {entry_id} not found')
    return entry


def _compare_and_set(entry: QueueEntry, now: datetime, **changes) -> None:
    updated = QueueEntry.objects.filter(pk=entry.pk, version=entry.version, status=entry.status).update(
        version=F('version') + 1, updated_at=now, **changes
    )
    if not updated:
        logger.warning("Lost update race on queue entry", extra={'entry_id': str(entry.pk), 'version': entry.version})
        raise Conflict(f'queue entry {entry.pk} was modified concurrently')


def _record_transition(entry: QueueEntry, from_status: Optional[str], to_status: str,
                       operator, at: datetime, reason: str) -> None:
    QueueEntryTransition.objects.create(
        entry=entry,
        from_status=from_status,
        to_status=to_status,
        operator=operator if getattr(operator, 'pk', None) else None,
        timestamp=at,
        reason=reason,
    )


def enqueue(*, patient_id, appointment_type: str = '', priority: str = lifecycle.NORMAL,
            is_walk_in: bool = False, department: str = '', notes: str = '',
            operator=None) -> QueueEntry:
    """Check a patient in: create a ``waiting`` entry at the end of its tier."""
    patient_id = _reference(patient_id, 'patientId')
    if not patient_id:
        raise ValidationError('patientId is required')
    _validate_priority(priority)
    department = _clean(department)
    with store_errors(), transaction.atomic():
        now = _now()
        start, end = clinic_day_bounds(local_day(now))
        last_number = QueueEntry.objects.filter(
            check_in_time__gte=start, check_in_time__lt=end
        ).aggregate(m=Max('number'))['m'] or 0
        last_position = QueueEntry.objects.aggregate(m=Max('position'))['m'] or 0
        ahead = _ahead_count(priority, department)
        entry = QueueEntry.objects.create(
            patient_id=patient_id,
            number=last_number + 1,
            appointment_type=_clean(appointment_type),
            department=department,
            priority=priority,
            position=last_position + 1,
            check_in_time=now,
            estimated_wait_time=lifecycle.estimate_wait_minutes(ahead, _average_service_minutes()),
            notes=_clean(notes),
            is_walk_in=bool(is_walk_in),
        )
        _record_transition(entry, None, lifecycle.WAITING, operator, now, 'check-in')
        log_action(user=operator, action='queue_enqueue', object_type='queue_entry', object_id=entry.pk,
                   detail={'patientId': patient_id, 'priority': priority, 'department': department})
        transaction.on_commit(partial(notify.broadcast_refresh, 'enqueued', entry))
    logger.info("Patient checked in", extra={'entry_id': str(entry.pk), 'patient_id': patient_id,
                                              'priority': priority, 'number': entry.number})
    return entry


def _apply(entry_id, new_status: str, *, enforce_path: bool, expected_version: Optional[int] = None,
           provider_id=None, room_id=None, notes=None, operator=None, reason: str = '') -> QueueEntry:
    provider_id = _reference(provider_id, 'providerId')
    room_id = _reference(room_id, 'roomId')
    with store_errors(), transaction.atomic():
        entry = _locked(entry_id)
        if expected_version is not None and entry.version != expected_version:
            logger.warning("Stale queue entry version", extra={
                'entry_id': str(entry.pk), 'expected': expected_version, 'actual': entry.version})
            raise Conflict(f'queue entry {entry.pk} changed (now {entry.status})')
        old_status = entry.status
        if enforce_path and not lifecycle.can_transition(old_status, new_status):
            if old_status == new_status:
                raise Conflict(f'queue entry {entry.pk} is already {old_status}')
            raise InvalidOperation(f'cannot change status from {old_status} to {new_status}')
        if (not enforce_path and _enforce_terminal()
                and lifecycle.is_terminal(old_status) and new_status != old_status):
            raise TerminalStateViolation(f'queue entry {entry.pk} is already {old_status}')

        now = _now()
        changes = lifecycle.stamp_changes(
            new_status=new_status,
            now=now,
            check_in_time=entry.check_in_time,
            called_time=entry.called_time,
            completed_time=entry.completed_time,
        )
        changes['status'] = new_status
        if provider_id:
            changes['provider_id'] = provider_id
        if room_id:
            changes['room_id'] = room_id
        if notes:
            changes['notes'] = lifecycle.append_note(entry.notes, _clean(notes))
        _compare_and_set(entry, now, **changes)
        entry.refresh_from_db()

        if new_status != old_status:
            _record_transition(entry, old_status, new_status, operator, now, reason)
        action = 'queue_call' if new_status == lifecycle.CALLED and enforce_path else 'queue_status'
        log_action(user=operator, action=action, object_type='queue_entry', object_id=entry.pk,
                   detail={'from': old_status, 'to': new_status, 'reason': reason})
        if new_status == lifecycle.CALLED and old_status != lifecycle.CALLED:
            transaction.on_commit(partial(notify.patient_called, entry))
        else:
            transaction.on_commit(partial(notify.broadcast_refresh, 'status', entry))
    logger.info("Queue entry status changed", extra={
        'entry_id': str(entry.pk), 'from': old_status, 'to': new_status, 'reason': reason})
    return entry


def call_next(*, department: Optional[str] = None, provider_id=None, room_id=None,
              operator=None) -> QueueEntry:
    """Call the highest-priority, earliest waiting patient."""
    with store_errors():
        candidate = waiting_entries(department).only('id', 'version').first()
    if candidate is None:
        raise EmptyQueue()
    return _apply(candidate.pk, lifecycle.CALLED, enforce_path=True, expected_version=candidate.version,
                  provider_id=provider_id, room_id=room_id, operator=operator, reason='call-next')


def call_entry(entry_id, *, expected_version: Optional[int] = None, provider_id=None, room_id=None,
               operator=None) -> QueueEntry:
    return _apply(entry_id, lifecycle.CALLED, enforce_path=True, expected_version=expected_version,
                  provider_id=provider_id, room_id=room_id, operator=operator, reason='manual call')


def begin(entry_id, *, expected_version: Optional[int] = None, provider_id=None, room_id=None,
          operator=None) -> QueueEntry:
    return _apply(entry_id, lifecycle.IN_PROGRESS, enforce_path=True, expected_version=expected_version,
                  provider_id=provider_id, room_id=room_id, operator=operator, reason='visit started')


def complete(entry_id, *, expected_version: Optional[int] = None, notes=None, operator=None) -> QueueEntry:
    return _apply(entry_id, lifecycle.COMPLETED, enforce_path=True, expected_version=expected_version,
                  notes=notes, operator=operator, reason='visit finished')


def mark_no_show(entry_id, *, expected_version: Optional[int] = None, notes=None, operator=None) -> QueueEntry:
    return _apply(entry_id, lifecycle.NO_SHOW, enforce_path=True, expected_version=expected_version,
                  notes=notes, operator=operator, reason='no-show')


def set_status(entry_id, status: str, *, provider_id=None, room_id=None, notes=None,
               expected_version: Optional[int] = None, operator=None) -> QueueEntry:
    """Staff override: any status from any status.

    Timestamps are still stamped the first time ``called``/``completed``
    is reached and never rewritten.
    """
    _validate_status(status)
    return _apply(entry_id, status, enforce_path=False, expected_version=expected_version,
                  provider_id=provider_id, room_id=room_id, notes=notes, operator=operator,
                  reason='staff override')


def move(entry_id, direction: str, *, department: Optional[str] = None, operator=None) -> QueueEntry:
    """Swap a waiting entry with its neighbour in the displayed ordering.

    The neighbour is the adjacent waiting entry of the same priority tier,
    so an urgent patient can never be pushed behind a normal one.  At the
    top or bottom of its tier the entry is returned unchanged.
    """
    if direction not in lifecycle.DIRECTIONS:
        raise ValidationError(f"Invalid direction. Allowed values: {', '.join(lifecycle.DIRECTIONS)}")
    with store_errors(), transaction.atomic():
        entry = _locked(entry_id)
        if entry.status != lifecycle.WAITING:
            raise InvalidOperation(f'only waiting entries can be moved (entry is {entry.status})')
        if department and department != entry.department:
            raise InvalidOperation(f'queue entry {entry.pk} is not in department {department}')
        peers = QueueEntry.objects.select_for_update().filter(
            status=lifecycle.WAITING, priority=entry.priority
        ).exclude(pk=entry.pk)
        if department:
            peers = peers.filter(department=department)
        if direction == lifecycle.UP:
            neighbour = peers.filter(position__lt=entry.position).order_by('-position', '-check_in_time').first()
        else:
            neighbour = peers.filter(position__gt=entry.position).order_by('position', 'check_in_time').first()
        if neighbour is None:
            logger.debug("Queue entry already at the %s edge of its tier", direction,
                         extra={'entry_id': str(entry.pk)})
            return entry
        now = _now()
        entry_position, neighbour_position = entry.position, neighbour.position
        _compare_and_set(entry, now, position=neighbour_position)
        _compare_and_set(neighbour, now, position=entry_position)
        entry.refresh_from_db()
        log_action(user=operator, action='queue_move', object_type='queue_entry', object_id=entry.pk,
                   detail={'direction': direction, 'swappedWith': str(neighbour.pk)})
        transaction.on_commit(partial(notify.broadcast_refresh, 'moved', entry))
    logger.info("Queue entry moved", extra={'entry_id': str(entry.pk), 'direction': direction})
    return entry


def remove(entry_id, *, operator=None) -> None:
    """Hard-delete an entry in any state."""
    with store_errors(), transaction.atomic():
        entry = _locked(entry_id)
        detail = {'patientId': entry.patient_id, 'status': entry.status, 'number': entry.number}
        entry_pk = entry.pk
        entry.delete()
        log_action(user=operator, action='queue_remove', object_type='queue_entry', object_id=entry_pk,
                   detail=detail)
        entry.pk = entry_pk
        transaction.on_commit(partial(notify.broadcast_refresh, 'removed', entry))
    logger.info("Queue entry removed", extra={'entry_id': str(entry_pk), **detail})
