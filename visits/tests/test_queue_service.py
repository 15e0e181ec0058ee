"""
Queue lifecycle manager tests.

The service clock is frozen by the ``clock`` fixture so ticket numbers,
stamps and waits are deterministic.
"""
import threading
from datetime import timedelta

import pytest
from django.db import OperationalError, connection, connections

from visits.exceptions import (
    Conflict,
    EmptyQueue,
    InvalidOperation,
    NotFound,
    StoreUnavailable,
    TerminalStateViolation,
    ValidationError,
)
from visits.models import OperationLog, QueueEntry, User
from visits.services import notify
from visits.services import queue as queue_service
from visits.services.metrics import compute_metrics

pytestmark = pytest.mark.django_db


def checkin(patient_id, **kwargs):
    return queue_service.enqueue(patient_id=patient_id, **kwargs)


def test_enqueue_numbers_and_estimates(clock):
    a = checkin('p-a')
    b = checkin('p-b')
    c = checkin('p-c')
    urgent = checkin('p-u', priority='urgent')
    low = checkin('p-l', priority='low')

    assert [e.number for e in (a, b, c, urgent, low)] == [1, 2, 3, 4, 5]
    assert [a.estimated_wait_time, b.estimated_wait_time, c.estimated_wait_time] == [0, 15, 30]
    assert urgent.estimated_wait_time == 0
    assert low.estimated_wait_time == 60
    assert a.status == 'waiting'
    assert a.check_in_time == clock.now
    assert a.called_time is None and a.completed_time is None


def test_enqueue_uses_configured_service_minutes(clock, settings):
    settings.QUEUE_AVERAGE_SERVICE_MINUTES = 10
    checkin('p-a')
    assert checkin('p-b').estimated_wait_time == 10


def test_ticket_numbers_restart_each_clinic_day(clock):
    checkin('p-a')
    checkin('p-b')
    clock.advance(days=1)
    assert checkin('p-c').number == 1


def test_enqueue_rejects_bad_input(clock):
    with pytest.raises(ValidationError):
        checkin('   ')
    with pytest.raises(ValidationError):
        checkin('p-a', priority='asap')
    assert not QueueEntry.objects.exists()


def test_enqueue_strips_markup(clock):
    e = checkin('p-a', notes='<script>x</script>allergic to penicillin')
    assert '<script>' not in e.notes
    assert 'allergic to penicillin' in e.notes


def test_call_next_prefers_urgent_then_arrival(clock):
    a = checkin('p-a')
    checkin('p-b')
    urgent = checkin('p-u', priority='urgent')

    first = queue_service.call_next()
    assert first.pk == urgent.pk
    assert first.status == 'called'
    second = queue_service.call_next()
    assert second.pk == a.pk


def test_call_next_on_empty_queue(clock):
    with pytest.raises(EmptyQueue):
        queue_service.call_next()
    checkin('p-a', department='cardiology')
    with pytest.raises(EmptyQueue):
        queue_service.call_next(department='dermatology')


def test_call_next_assigns_provider_and_room(clock):
    checkin('p-a')
    e = queue_service.call_next(provider_id='dr-1', room_id='room-3')
    assert (e.provider_id, e.room_id) == ('dr-1', 'room-3')


def test_visit_walkthrough(clock, nurse):
    e = checkin('p-1', appointment_type='consultation', operator=nurse)
    t0 = clock.now

    clock.advance(minutes=20)
    e = queue_service.call_next(operator=nurse)
    assert e.called_time == t0 + timedelta(minutes=20)
    assert e.actual_wait_time == 20

    clock.advance(minutes=5)
    e = queue_service.begin(e.pk, operator=nurse)
    assert e.status == 'in-progress'
    assert e.called_time == t0 + timedelta(minutes=20)

    clock.advance(minutes=20)
    e = queue_service.complete(e.pk, notes='follow up in 2 weeks', operator=nurse)
    assert e.status == 'completed'
    assert e.completed_time == t0 + timedelta(minutes=45)
    assert e.notes == 'follow up in 2 weeks'
    assert e.is_terminal

    history = [(t.from_status, t.to_status) for t in queue_service.entry_history(e.pk)]
    assert history == [
        (None, 'waiting'),
        ('waiting', 'called'),
        ('called', 'in-progress'),
        ('in-progress', 'completed'),
    ]
    actions = list(OperationLog.objects.filter(user=nurse).order_by('id').values_list('action', flat=True))
    assert actions == ['queue_enqueue', 'queue_call', 'queue_status', 'queue_status']


def test_version_increases_on_every_write(clock):
    e = checkin('p-a')
    assert e.version == 0
    e = queue_service.call_entry(e.pk)
    assert e.version == 1
    e = queue_service.begin(e.pk)
    assert e.version == 2


def test_off_path_moves_are_rejected(clock):
    e = checkin('p-a')
    with pytest.raises(InvalidOperation):
        queue_service.complete(e.pk)
    with pytest.raises(InvalidOperation):
        queue_service.begin(e.pk)
    e = queue_service.mark_no_show(e.pk)
    with pytest.raises(InvalidOperation):
        queue_service.call_entry(e.pk)
    assert QueueEntry.objects.get(pk=e.pk).status == 'no-show'


def test_repeating_a_transition_is_a_conflict(clock):
    e = checkin('p-a')
    queue_service.call_entry(e.pk)
    with pytest.raises(Conflict):
        queue_service.call_entry(e.pk)


def test_stale_version_is_a_conflict(clock):
    e = checkin('p-a')
    queue_service.call_entry(e.pk, expected_version=e.version)
    with pytest.raises(Conflict):
        queue_service.mark_no_show(e.pk, expected_version=e.version)
    assert QueueEntry.objects.get(pk=e.pk).status == 'called'


def test_conditional_update_rejects_a_stale_read(clock, monkeypatch):
    e = checkin('p-a')
    stale = QueueEntry.objects.get(pk=e.pk)
    queue_service.call_entry(e.pk)

    monkeypatch.setattr(queue_service, '_locked', lambda entry_id: stale)
    with pytest.raises(Conflict):
        queue_service.mark_no_show(e.pk)
    current = QueueEntry.objects.get(pk=e.pk)
    assert current.status == 'called'
    assert current.version == 1


def test_unknown_entry(clock):
    with pytest.raises(NotFound):
        queue_service.get_entry('not-a-uuid')
    with pytest.raises(NotFound):
        queue_service.call_entry('00000000-0000-0000-0000-000000000000')


def test_set_status_overrides_but_keeps_first_stamps(clock):
    e = checkin('p-a')
    clock.advance(minutes=10)
    queue_service.call_entry(e.pk)
    queue_service.begin(e.pk)
    clock.advance(minutes=15)
    e = queue_service.complete(e.pk)
    completed_at = e.completed_time

    clock.advance(minutes=5)
    e = queue_service.set_status(e.pk, 'waiting')
    assert e.status == 'waiting'
    assert e.completed_time == completed_at

    clock.advance(minutes=30)
    e = queue_service.set_status(e.pk, 'completed')
    assert e.completed_time == completed_at
    assert e.actual_wait_time == 10


def test_set_status_straight_to_completed(clock):
    e = checkin('p-a')
    clock.advance(minutes=7)
    e = queue_service.set_status(e.pk, 'completed')
    assert e.called_time == clock.now
    assert e.completed_time == clock.now
    assert e.actual_wait_time == 7


def test_set_status_validates(clock):
    e = checkin('p-a')
    with pytest.raises(ValidationError):
        queue_service.set_status(e.pk, 'cancelled')


def test_terminal_enforcement_when_enabled(clock, settings):
    settings.QUEUE_ENFORCE_TERMINAL = True
    e = checkin('p-a')
    queue_service.mark_no_show(e.pk)
    with pytest.raises(TerminalStateViolation):
        queue_service.set_status(e.pk, 'waiting')
    # re-asserting the same terminal status is not a violation
    assert queue_service.set_status(e.pk, 'no-show').status == 'no-show'


def _order(**filters):
    return [e.patient_id for e in queue_service.list_entries(**filters)]


def test_move_swaps_within_tier(clock):
    checkin('p-a')
    checkin('p-b')
    c = checkin('p-c')

    queue_service.move(c.pk, 'up')
    assert _order() == ['p-a', 'p-c', 'p-b']
    estimates = queue_service.live_estimates()
    by_patient = {e.patient_id: estimates[e.pk] for e in queue_service.list_entries()}
    assert by_patient == {'p-a': 0, 'p-c': 15, 'p-b': 30}


def test_move_at_edge_is_a_no_op(clock):
    a = checkin('p-a')
    b = checkin('p-b')
    before = QueueEntry.objects.get(pk=a.pk).version

    assert queue_service.move(a.pk, 'up').position == a.position
    assert queue_service.move(b.pk, 'down').position == b.position
    assert QueueEntry.objects.get(pk=a.pk).version == before
    assert _order() == ['p-a', 'p-b']


def test_move_never_crosses_priority_tiers(clock):
    checkin('p-a')
    urgent = checkin('p-u', priority='urgent')
    queue_service.move(urgent.pk, 'down')
    assert _order() == ['p-u', 'p-a']


def test_move_rejects_non_waiting_and_bad_direction(clock):
    e = checkin('p-a')
    with pytest.raises(ValidationError):
        queue_service.move(e.pk, 'sideways')
    queue_service.call_entry(e.pk)
    with pytest.raises(InvalidOperation):
        queue_service.move(e.pk, 'up')


def test_remove_deletes_and_audits(clock, admin):
    e = checkin('p-a')
    queue_service.remove(e.pk, operator=admin)
    assert not QueueEntry.objects.filter(pk=e.pk).exists()
    with pytest.raises(NotFound):
        queue_service.get_entry(e.pk)
    log = OperationLog.objects.get(action='queue_remove')
    assert log.user == admin
    assert log.object_id == str(e.pk)


def test_list_entries_filters(clock):
    a = checkin('p-a', department='cardiology')
    checkin('p-b', department='dermatology', priority='low')
    checkin('p-c', department='cardiology')
    queue_service.call_entry(a.pk)
    queue_service.begin(a.pk)

    assert _order() == ['p-c', 'p-b']
    assert _order(include_all=True) == ['p-a', 'p-c', 'p-b']
    assert _order(status='in-progress') == ['p-a']
    assert _order(priority='low') == ['p-b']
    assert _order(department='cardiology') == ['p-c']
    with pytest.raises(ValidationError):
        queue_service.list_entries(status='gone')


def test_list_entries_is_scoped_to_a_day(clock):
    checkin('p-old')
    day_one = queue_service.local_day()
    clock.advance(days=1)
    checkin('p-new')
    assert _order() == ['p-new']
    assert _order(day=day_one) == ['p-old']


def test_estimates_are_per_department(clock):
    a = checkin('p-a', department='cardiology')
    b = checkin('p-b', department='dermatology')
    assert b.estimated_wait_time == 0
    assert queue_service.current_estimate(a) == 0
    c = checkin('p-c', department='cardiology')
    assert queue_service.current_estimate(c) == 15
    assert queue_service.live_estimates() == {a.pk: 0, b.pk: 0, c.pk: 15}


def test_notifications_fire_after_commit(clock, monkeypatch, django_capture_on_commit_callbacks):
    calls = []
    monkeypatch.setattr(notify, 'patient_called', lambda entry: calls.append(('called', entry.pk)))
    monkeypatch.setattr(notify, 'broadcast_refresh', lambda event, entry: calls.append((event, entry.pk)))

    with django_capture_on_commit_callbacks(execute=True):
        e = checkin('p-a')
    with django_capture_on_commit_callbacks(execute=True):
        queue_service.call_next()
    with django_capture_on_commit_callbacks(execute=True):
        queue_service.begin(e.pk)
    assert calls == [('enqueued', e.pk), ('called', e.pk), ('status', e.pk)]


def test_store_errors_map_to_store_unavailable():
    with pytest.raises(StoreUnavailable):
        with queue_service.store_errors():
            raise OperationalError('database is locked')


def test_urgent_arrival_is_called_first(clock):
    p1 = checkin('P1')
    clock.advance(minutes=5)
    p2 = checkin('P2', priority='urgent')

    first = queue_service.call_next()
    assert first.pk == p2.pk
    assert first.actual_wait_time == 0

    clock.advance(minutes=3)
    second = queue_service.call_next()
    assert second.pk == p1.pk
    assert second.actual_wait_time == 8
    assert second.called_time >= second.check_in_time

    metrics = compute_metrics(now=clock.now)
    assert metrics.total_waiting == 0
    assert metrics.completed_today == 0


def test_moving_a_completed_entry_leaves_order_alone(clock):
    done = checkin('p-a')
    checkin('p-b')
    checkin('p-c')
    queue_service.set_status(done.pk, 'completed')
    before = _order(include_all=True)
    with pytest.raises(InvalidOperation):
        queue_service.move(done.pk, 'up')
    assert _order(include_all=True) == before


def test_second_desk_calling_the_same_patient_gets_conflict(clock, monkeypatch, nurse, admin):
    e = checkin('p-a')
    real_waiting_entries = queue_service.waiting_entries

    class CandidateReadBeforeOtherDesk:
        def __init__(self, department=None):
            self.candidate = real_waiting_entries(department).only('id', 'version').first()

        def only(self, *fields):
            return self

        def first(self):
            # the other desk calls the same patient and commits first
            monkeypatch.setattr(queue_service, 'waiting_entries', real_waiting_entries)
            queue_service.call_next(operator=admin)
            return self.candidate

    monkeypatch.setattr(queue_service, 'waiting_entries', CandidateReadBeforeOtherDesk)
    with pytest.raises(Conflict):
        queue_service.call_next(operator=nurse)

    current = QueueEntry.objects.get(pk=e.pk)
    assert current.status == 'called'
    assert current.version == 1
    calls = OperationLog.objects.filter(action='queue_call', object_id=str(e.pk))
    assert list(calls.values_list('user__username', flat=True)) == ['admin1']
    assert current.transitions.filter(to_status='called').count() == 1


@pytest.mark.django_db(transaction=True)
@pytest.mark.skipif(connection.vendor == 'sqlite', reason='SQLite serialises writers per database file')
def test_two_desks_calling_at_once_call_one_patient():
    desks = [User.objects.create_user(username=f'desk{i}', password='P@ssw0rd1', role='nurse') for i in (1, 2)]
    entry = queue_service.enqueue(patient_id='p-a')
    barrier = threading.Barrier(len(desks))
    outcomes = []

    def desk(user):
        try:
            barrier.wait(timeout=5)
            outcomes.append(queue_service.call_next(operator=user).pk)
        except (Conflict, EmptyQueue) as exc:
            outcomes.append(type(exc))
        finally:
            connections.close_all()

    threads = [threading.Thread(target=desk, args=(u,)) for u in desks]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert len(outcomes) == 2
    assert outcomes.count(entry.pk) == 1
    assert OperationLog.objects.filter(action='queue_call', object_id=str(entry.pk)).count() == 1


def test_free_text_and_references_keep_their_characters(clock):
    e = checkin('A&B-1', notes='BP < 120 & stable')
    assert e.patient_id == 'A&B-1'
    assert e.notes == 'BP < 120 & stable'
    e = queue_service.set_status(e.pk, 'called', provider_id='dr#7', notes='x > y')
    assert e.provider_id == 'dr#7'
    assert e.notes == 'BP < 120 & stable\nx > y'
    assert QueueEntry.objects.filter(patient_id='A&B-1').exists()


def test_references_are_validated(clock):
    with pytest.raises(ValidationError):
        checkin('<b>p-a</b>')
    e = checkin('p-a')
    with pytest.raises(ValidationError):
        queue_service.call_entry(e.pk, room_id='room 3')
    assert QueueEntry.objects.get(pk=e.pk).status == 'waiting'


def test_list_entries_sort(clock):
    checkin('p-a')
    clock.advance(minutes=1)
    checkin('p-b', priority='urgent')
    clock.advance(minutes=1)
    c = checkin('p-c', priority='low')

    assert _order(sort='queueNumber') == ['p-a', 'p-b', 'p-c']
    assert _order(sort='queueNumber', order='desc') == ['p-c', 'p-b', 'p-a']
    assert _order(sort='priority') == ['p-b', 'p-a', 'p-c']
    assert _order(sort='checkinTime', order='desc') == ['p-c', 'p-b', 'p-a']

    clock.advance(minutes=1)
    queue_service.call_entry(c.pk)
    clock.advance(minutes=1)
    queue_service.call_entry(QueueEntry.objects.get(patient_id='p-a').pk)
    assert _order(sort='calledTime') == ['p-c', 'p-a', 'p-b']
    assert _order(sort='calledTime', order='desc') == ['p-a', 'p-c', 'p-b']
    with pytest.raises(ValidationError):
        queue_service.list_entries(sort='name')


def test_move_rejects_an_entry_from_another_department(clock):
    a = checkin('p-a', department='cardiology')
    b = checkin('p-b', department='dermatology')
    with pytest.raises(InvalidOperation):
        queue_service.move(b.pk, 'up', department='cardiology')
    assert QueueEntry.objects.get(pk=a.pk).position == a.position
    assert QueueEntry.objects.get(pk=b.pk).position == b.position
